"""
Proctoring State Machine - Turns per-tick detections into status and violations

Each tick resolves to exactly one status. Precedence, highest first:
device present, no face, multiple faces, covered, not centered, rapid
movement. The first failing check increments its counter and emits a
ViolationEvent; lower checks are not evaluated.
"""

import logging
from typing import List, Optional, Sequence

from ..detectors.heuristics import (
    DetectionOptions,
    FaceHistory,
    face_center_offset,
    is_face_centered,
    is_face_covered,
    is_rapid_movement,
)
from ..metrics import ViolationCounters
from ..types import (
    STATUS_MESSAGES,
    DetectionResult,
    DeviceCandidate,
    FaceDetection,
    ProctoringStatus,
    ViolationEvent,
    ViolationType,
)

logger = logging.getLogger(__name__)


class ProctoringStateMachine:
    """
    Tracks status, counters, and face tracking state for one session.

    Tracking state (face history, no-face streak, last-seen timestamp) can be
    reset; counters cannot.
    """

    def __init__(
        self,
        options: Optional[DetectionOptions] = None,
        no_face_debounce: int = 5,
        disappearance_window: float = 10.0
    ):
        """
        Args:
            options: Heuristic thresholds
            no_face_debounce: Consecutive no-face ticks before noFaceDetected counts
            disappearance_window: Seconds after a sighting in which a vanishing
                face counts as frequentDisappearance
        """
        self.options = options or DetectionOptions()
        self.no_face_debounce = max(1, no_face_debounce)
        self.disappearance_window = disappearance_window

        self.counters = ViolationCounters()
        self.history = FaceHistory()
        self.status = ProctoringStatus.INITIALIZING
        self.message = STATUS_MESSAGES[self.status]

        self.no_face_streak = 0
        self.last_face_seen: Optional[float] = None
        self.halted = False

    def reset_tracking(self) -> None:
        """Clear face tracking state; counters are preserved"""
        self.history.clear()
        self.no_face_streak = 0
        self.last_face_seen = None
        if not self.halted:
            self._set_status(ProctoringStatus.INITIALIZING)

    def halt(self) -> None:
        """Freeze the machine after termination. No further increments."""
        if not self.halted:
            logger.info("State machine halted")
        self.halted = True

    def mark_error(self, message: Optional[str] = None, timestamp: float = 0.0) -> DetectionResult:
        """Enter the error status (camera or model failure)"""
        self._set_status(ProctoringStatus.ERROR, message)
        return DetectionResult(
            status=self.status,
            message=self.message,
            processed=False,
            timestamp=timestamp
        )

    def no_usable_result(self, timestamp: float = 0.0) -> DetectionResult:
        """A tick that failed to produce a detection; status and counters unchanged"""
        return DetectionResult(
            status=self.status,
            message=self.message,
            processed=False,
            timestamp=timestamp
        )

    def _set_status(self, status: ProctoringStatus, message: Optional[str] = None) -> None:
        if status != self.status:
            logger.debug(f"Status {self.status.value} -> {status.value}")
        self.status = status
        self.message = message or STATUS_MESSAGES[status]

    def _emit(
        self,
        violation_type: ViolationType,
        timestamp: float,
        detail: str,
        devices: Optional[List[DeviceCandidate]] = None
    ) -> ViolationEvent:
        count = self.counters.increment(violation_type)
        logger.info(f"Violation {violation_type.value} (count={count}): {detail}")
        return ViolationEvent(
            type=violation_type,
            timestamp=timestamp,
            detail=detail,
            count=count,
            devices=list(devices or [])
        )

    def update(
        self,
        faces: Sequence[FaceDetection],
        devices: Sequence[DeviceCandidate],
        frame_width: int,
        frame_height: int,
        timestamp: float,
        check_landmarks: bool = True
    ) -> DetectionResult:
        """
        Apply one tick of detector and scanner output.

        Args:
            faces: Faces found this tick
            devices: Device candidates found this tick (face regions excluded)
            frame_width: Frame width in pixels
            frame_height: Frame height in pixels
            timestamp: Capture time in monotonic seconds
            check_landmarks: Whether landmark completeness feeds the occlusion check

        Returns:
            DetectionResult with the tick's status and emitted violations
        """
        if self.halted:
            return self.no_usable_result(timestamp)

        faces = list(faces)
        devices = list(devices)
        violations: List[ViolationEvent] = []
        seen_recently = (
            self.last_face_seen is not None
            and timestamp - self.last_face_seen <= self.disappearance_window
        )

        # Tracking bookkeeping
        if faces:
            self.no_face_streak = 0
            self.last_face_seen = timestamp
        if len(faces) == 1:
            self.history.add(faces[0].box, timestamp)
        else:
            self.history.clear()

        if devices:
            kinds = ", ".join(sorted({d.device_type.value for d in devices}))
            violations.append(self._emit(
                ViolationType.ELECTRONIC_DEVICE_DETECTED,
                timestamp,
                f"Detected {len(devices)} device(s): {kinds}",
                devices
            ))
            self._set_status(ProctoringStatus.OBJECT_DETECTED)

        elif not faces:
            self.no_face_streak += 1
            if self.no_face_streak >= self.no_face_debounce:
                violations.append(self._emit(
                    ViolationType.NO_FACE_DETECTED,
                    timestamp,
                    f"No face for {self.no_face_streak} consecutive checks"
                ))
                self.no_face_streak = 0
            if seen_recently:
                violations.append(self._emit(
                    ViolationType.FREQUENT_DISAPPEARANCE,
                    timestamp,
                    f"Face disappeared within {self.disappearance_window:.0f}s of last sighting"
                ))
            self._set_status(ProctoringStatus.NO_FACE_DETECTED)

        elif len(faces) > 1:
            violations.append(self._emit(
                ViolationType.MULTIPLE_FACES_DETECTED,
                timestamp,
                f"{len(faces)} faces in frame"
            ))
            self._set_status(ProctoringStatus.MULTIPLE_FACES_DETECTED)

        else:
            violations.extend(self._check_single_face(
                faces[0], frame_width, frame_height, timestamp, check_landmarks
            ))

        expressions = faces[0].expressions if len(faces) == 1 else None

        return DetectionResult(
            status=self.status,
            faces_count=len(faces),
            message=self.message,
            faces=faces,
            expressions=expressions,
            devices=devices,
            violations=violations,
            processed=True,
            timestamp=timestamp
        )

    def _check_single_face(
        self,
        face: FaceDetection,
        frame_width: int,
        frame_height: int,
        timestamp: float,
        check_landmarks: bool
    ) -> List[ViolationEvent]:
        options = self.options

        if is_face_covered(face, frame_width, frame_height, options, check_landmarks):
            self._set_status(ProctoringStatus.FACE_COVERED)
            return [self._emit(
                ViolationType.FACE_COVERED,
                timestamp,
                f"Face partially hidden (confidence {face.score:.2f})"
            )]

        if not is_face_centered(face, frame_width, frame_height, options.centered_tolerance):
            offset_x, offset_y = face_center_offset(face.box, frame_width, frame_height)
            self._set_status(ProctoringStatus.FACE_NOT_CENTERED)
            return [self._emit(
                ViolationType.FACE_NOT_CENTERED,
                timestamp,
                f"Face offset x={offset_x:.2f} y={offset_y:.2f}"
            )]

        if is_rapid_movement(self.history, options):
            self._set_status(ProctoringStatus.RAPID_MOVEMENT)
            return [self._emit(
                ViolationType.RAPID_MOVEMENT,
                timestamp,
                "Rapid head movement"
            )]

        self._set_status(ProctoringStatus.FACE_DETECTED)
        return []
