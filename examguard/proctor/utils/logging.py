"""
Proctoring Logger - Structured log lines for proctoring events
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def log_proctor_event(
    session_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    """
    Log a proctoring event.

    Args:
        session_id: Proctoring session ID
        event_type: Type of event (session_start, violation, termination, etc.)
        details: Optional event details
        level: Log level (debug, info, warning, error)
    """
    message = f"[PROCTOR] session={session_id} event={event_type}"

    if details:
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        message += f" {detail_str}"

    log = getattr(logger, level, logger.info)
    log(message)


def log_session_start(session_id: str, assessment_id: str, student_id: str):
    """Log session start event"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_start",
        details={
            "assessment_id": assessment_id,
            "student_id": student_id
        }
    )


def log_violation_recorded(session_id: str, violation_type: str, count: int):
    log_proctor_event(
        session_id=session_id,
        event_type="violation",
        details={"type": violation_type, "count": count},
        level="warning"
    )


def log_environment_warning(session_id: str, kind: str, warning: int, max_warnings: int):
    log_proctor_event(
        session_id=session_id,
        event_type="environment_warning",
        details={"kind": kind, "warning": f"{warning}/{max_warnings}"},
        level="warning"
    )


def log_termination(session_id: str, reason: str):
    """Log assessment termination"""
    log_proctor_event(
        session_id=session_id,
        event_type="termination",
        details={"reason": repr(reason)},
        level="error"
    )


def log_session_end(session_id: str, counters: Dict[str, int], ticks: int, terminated: bool):
    """Log session end event"""
    violations = ",".join(f"{k}:{v}" for k, v in counters.items() if v) or "none"
    log_proctor_event(
        session_id=session_id,
        event_type="session_end",
        details={
            "violations": violations,
            "ticks_processed": ticks,
            "terminated": terminated
        }
    )
