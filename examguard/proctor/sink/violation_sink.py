"""
Violation Sink - Buffered, rate-limited writes to the submission record

Violations are buffered as deltas and written in batches. A failed batch is
put back in front of anything recorded since and retried with exponential
backoff. The sink never raises into the detection loop.
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..types import EnvironmentalViolationType, ViolationEvent, ViolationType

logger = logging.getLogger(__name__)


@dataclass
class PendingBatch:
    """Deltas not yet written to the submission record"""
    face_violations: List[Dict[str, Any]] = field(default_factory=list)
    object_violations: List[Dict[str, Any]] = field(default_factory=list)
    fullscreen_delta: int = 0
    tab_switch_delta: int = 0
    terminated: bool = False

    def is_empty(self) -> bool:
        return not (
            self.face_violations
            or self.object_violations
            or self.fullscreen_delta
            or self.tab_switch_delta
            or self.terminated
        )

    def merged_with(self, newer: "PendingBatch") -> "PendingBatch":
        """Combine with a newer batch, keeping this batch's entries first"""
        return PendingBatch(
            face_violations=self.face_violations + newer.face_violations,
            object_violations=self.object_violations + newer.object_violations,
            fullscreen_delta=self.fullscreen_delta + newer.fullscreen_delta,
            tab_switch_delta=self.tab_switch_delta + newer.tab_switch_delta,
            terminated=self.terminated or newer.terminated,
        )


class ViolationSink:
    """
    Write-behind buffer in front of a SubmissionRepository.

    Termination is one-way: once marked, new records are rejected, but
    anything recorded earlier is still flushed.
    """

    def __init__(
        self,
        repository,
        submission_id: str,
        min_flush_interval: float = 2.0,
        max_backoff: float = 10.0,
        clock=time.monotonic
    ):
        self.repository = repository
        self.submission_id = submission_id
        self.min_flush_interval = min_flush_interval
        self.max_backoff = max_backoff
        self.clock = clock

        self._pending = PendingBatch()
        self._buffer_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._terminated = False

        self._last_write_at: Optional[float] = None
        self._retry_at: Optional[float] = None
        self.consecutive_failures = 0

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    @property
    def pending(self) -> PendingBatch:
        with self._buffer_lock:
            return self._pending.merged_with(PendingBatch())

    @staticmethod
    def _now_iso() -> str:
        return datetime.utcnow().isoformat()

    # ============== Recording ==============

    def record_violation(self, event: ViolationEvent) -> bool:
        """Buffer a face or object violation. Returns False once terminated."""
        if self._terminated:
            logger.warning(f"Rejected {event.type.value} for {self.submission_id}: submission terminated")
            return False

        with self._buffer_lock:
            if event.type == ViolationType.ELECTRONIC_DEVICE_DETECTED:
                self._pending.object_violations.append({
                    "timestamp": self._now_iso(),
                    "devices_detected": [device.to_dict() for device in event.devices],
                    "violation_count": event.count,
                })
            else:
                self._pending.face_violations.append({
                    "timestamp": self._now_iso(),
                    "type": event.type.value,
                    "detail": event.detail,
                })
        return True

    def record_environmental(self, kind: EnvironmentalViolationType) -> bool:
        """Buffer one fullscreen-exit or tab-switch unit. Returns False once terminated."""
        if self._terminated:
            logger.warning(f"Rejected {kind.value} for {self.submission_id}: submission terminated")
            return False

        with self._buffer_lock:
            if EnvironmentalViolationType(kind) == EnvironmentalViolationType.FULLSCREEN_EXIT:
                self._pending.fullscreen_delta += 1
            else:
                self._pending.tab_switch_delta += 1
        return True

    def mark_terminated(self) -> bool:
        """Flag the submission as terminated. Only the first call has effect."""
        with self._buffer_lock:
            if self._terminated:
                return False
            self._terminated = True
            self._pending.terminated = True
        logger.info(f"Submission {self.submission_id} marked terminated")
        return True

    # ============== Flushing ==============

    def _backoff_delay(self) -> float:
        return min(2 ** (self.consecutive_failures - 1), self.max_backoff)

    def flush(self, force: bool = False) -> bool:
        """
        Write pending deltas.

        Args:
            force: Ignore the rate limit and any retry backoff

        Returns:
            True if nothing is left pending, False if the write was deferred
            or failed
        """
        with self._flush_lock:
            now = self.clock()
            if not force:
                if self._retry_at is not None and now < self._retry_at:
                    return False
                if self._last_write_at is not None and now - self._last_write_at < self.min_flush_interval:
                    return False

            with self._buffer_lock:
                batch = self._pending
                if batch.is_empty():
                    return True
                self._pending = PendingBatch()

            try:
                self.repository.apply_batch(self.submission_id, batch)
            except Exception as e:
                with self._buffer_lock:
                    self._pending = batch.merged_with(self._pending)
                self.consecutive_failures += 1
                delay = self._backoff_delay()
                self._retry_at = now + delay
                logger.error(
                    f"Failed to persist violations for {self.submission_id} "
                    f"(attempt {self.consecutive_failures}), retrying in {delay:.0f}s: {e}"
                )
                return False

            self.consecutive_failures = 0
            self._retry_at = None
            self._last_write_at = now
            return True
