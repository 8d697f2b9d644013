"""Proctoring utilities"""

from .logging import (
    log_proctor_event,
    log_session_start,
    log_violation_recorded,
    log_environment_warning,
    log_termination,
    log_session_end
)
from .annotate import draw_detection_results

__all__ = [
    "log_proctor_event",
    "log_session_start",
    "log_violation_recorded",
    "log_environment_warning",
    "log_termination",
    "log_session_end",
    "draw_detection_results"
]
