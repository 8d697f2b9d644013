"""
Proctor Session - Manages a single proctoring session
"""

import uuid
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..config import settings as default_settings
from .camera import FrameSource
from .detectors import (
    DetectionOptions,
    DeviceScanner,
    DlibFaceDetector,
    FaceDetector,
    ScannerOptions
)
from .errors import CameraError, ModelLoadError, SessionTerminatedError
from .monitoring import EnvironmentalMonitor, ProctoringStateMachine
from .monitoring.platform import ClientReportedFullscreen, PlatformFullscreen
from .sink import ViolationSink
from .types import (
    DetectionFrame,
    DetectionResult,
    DeviceCandidate,
    EnvironmentalViolationType,
    FaceDetection,
    FacingMode,
    ProctoringStatus
)
from .utils.logging import (
    log_environment_warning,
    log_session_end,
    log_session_start,
    log_termination,
    log_violation_recorded
)

logger = logging.getLogger(__name__)


class ProctorSession:
    """
    Manages a single proctoring session.

    Runs the detection tick (either from a local camera or from frames pushed
    by the client), feeds the state machine, relays environment events, and
    forwards every violation to the sink.
    """

    def __init__(
        self,
        assessment_id: str,
        student_id: str,
        session_id: Optional[str] = None,
        settings=None,
        face_detector: Optional[FaceDetector] = None,
        frame_source: Optional[FrameSource] = None,
        scanner: Optional[DeviceScanner] = None,
        sink: Optional[ViolationSink] = None,
        scheduler=None,
        platform: Optional[PlatformFullscreen] = None
    ):
        """
        Initialize a new proctoring session.

        Args:
            assessment_id: ID of the assessment being proctored
            student_id: ID of the student being proctored
            session_id: Optional custom session ID (auto-generated if not provided)
            settings: Settings instance (defaults to the application settings)
            face_detector: Face detector (defaults to the dlib detector)
            frame_source: Local camera; None when the client pushes frames
            scanner: Device-presence scanner
            sink: Violation sink for the submission record
            scheduler: Timer source for environment countdowns
            platform: Host fullscreen capability
        """
        self.settings = settings or default_settings
        s = self.settings

        self.id = session_id or f"EXM_{uuid.uuid4().hex[:6].upper()}"
        self.assessment_id = assessment_id
        self.student_id = student_id
        self.started_at = datetime.utcnow()

        self.face_detector = face_detector or DlibFaceDetector(
            models_dir=s.MODELS_DIR,
            upsample_times=s.FACE_UPSAMPLE_TIMES,
            adjust_threshold=s.FACE_ADJUST_THRESHOLD
        )
        self.frame_source = frame_source
        self.facing = FacingMode.USER
        self.scanner = scanner or DeviceScanner(ScannerOptions.from_settings(s))
        self.sink = sink
        self.platform = platform

        self.state_machine = ProctoringStateMachine(
            options=DetectionOptions.from_settings(s),
            no_face_debounce=s.NO_FACE_DEBOUNCE_TICKS,
            disappearance_window=s.DISAPPEARANCE_WINDOW_SECONDS
        )
        self.environment = EnvironmentalMonitor(
            countdown_seconds=s.ENV_COUNTDOWN_SECONDS,
            max_warnings=s.ENV_MAX_WARNINGS,
            on_violation=self._on_environment_violation,
            on_terminate=self._on_environment_terminate,
            scheduler=scheduler,
            platform=platform
        )

        self.is_active = False
        self.is_terminated = False
        self.termination_reason: Optional[str] = None
        self.vision_available = False
        self.last_result: Optional[DetectionResult] = None
        self.ticks_processed = 0
        self.ticks_skipped = 0

        self._detect_lock = asyncio.Lock()
        self._stop_lock = asyncio.Lock()
        self._closed = False
        self._tick_task: Optional[asyncio.Task] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._shutdown_task: Optional[asyncio.Task] = None
        self._pending_flushes: Set[asyncio.Task] = set()

        self._status_callbacks: List[Callable[[DetectionResult], None]] = []
        self._termination_callbacks: List[Callable[[str], None]] = []

    # ============== Callbacks ==============

    def on_status(self, callback: Callable[[DetectionResult], None]) -> None:
        self._status_callbacks.append(callback)

    def on_termination(self, callback: Callable[[str], None]) -> None:
        self._termination_callbacks.append(callback)

    def _notify_status(self, result: DetectionResult) -> None:
        for callback in self._status_callbacks:
            try:
                callback(result)
            except Exception as e:
                logger.warning(f"Status callback failed for session {self.id}: {e}")

    # ============== Lifecycle ==============

    @property
    def status(self) -> ProctoringStatus:
        return self.state_machine.status

    @property
    def counters(self) -> Dict[str, int]:
        return self.state_machine.counters.as_dict()

    async def start(self) -> None:
        """Load models, acquire the camera (if any) and start the tick loop"""
        if self.is_active or self._closed:
            return

        self.is_active = True
        log_session_start(self.id, self.assessment_id, self.student_id)

        if self.platform is not None:
            self.platform.enter()

        await self._initialize_vision()
        self._start_loop()
        if self.sink is not None:
            self._flush_task = asyncio.create_task(self._run_flush_loop())
        logger.info(f"Proctoring session started: {self.id}")

    async def _initialize_vision(self, switch_camera: bool = False) -> None:
        try:
            await asyncio.to_thread(self.face_detector.load)
            if self.frame_source is not None:
                open_camera = self.frame_source.switch_facing if switch_camera else self.frame_source.acquire
                await asyncio.to_thread(open_camera, self.facing)
        except (ModelLoadError, CameraError) as e:
            self._fail_vision(e)
            return

        self.vision_available = True
        logger.info(f"Visual proctoring ready for session {self.id}")

    def _fail_vision(self, error: Exception) -> DetectionResult:
        """Switch to the error status; environment monitoring keeps running"""
        self.vision_available = False
        if self.frame_source is not None:
            self.frame_source.release()
        logger.error(f"Visual proctoring unavailable for session {self.id}: {error}")
        result = self.state_machine.mark_error(str(error))
        self.last_result = result
        self._notify_status(result)
        return result

    def _start_loop(self) -> None:
        if self.frame_source is None or not self.vision_available:
            return
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.create_task(self._run_loop())

    @staticmethod
    async def _cancel_task(task: Optional[asyncio.Task]) -> None:
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cancel_loop(self) -> None:
        task = self._tick_task
        self._tick_task = None
        await self._cancel_task(task)

    async def _run_loop(self) -> None:
        interval = self.settings.DETECTION_INTERVAL_MS / 1000.0
        while self.is_active and not self.is_terminated and self.vision_available:
            await self.tick()
            await asyncio.sleep(interval)

    async def _run_flush_loop(self) -> None:
        """Retry deferred or failed writes when no frames or events arrive"""
        interval = self.settings.SINK_RETRY_INTERVAL_SECONDS
        while not self._closed:
            await asyncio.sleep(interval)
            await self._flush()

    async def reinitialize(self, facing: Optional[FacingMode] = None) -> Dict[str, Any]:
        """
        Tear down and rebuild visual proctoring.

        Face tracking state is cleared; counters are kept.

        Raises:
            SessionTerminatedError: if the session was already terminated
        """
        if self.is_terminated:
            raise SessionTerminatedError(f"Session {self.id} is terminated")

        logger.info(f"Reinitializing session {self.id}")
        await self._cancel_loop()
        if facing is not None:
            self.facing = FacingMode(facing)

        # Frames pushed meanwhile are dropped, and an in-flight detection
        # finishes before tracking is cleared
        async with self._detect_lock:
            self.state_machine.reset_tracking()
            await self._initialize_vision(switch_camera=True)

        if self.is_active:
            self._start_loop()
        return self.snapshot()

    async def stop(self) -> Dict[str, Any]:
        """
        Stop the session: cancel the tick loop and countdowns, release the
        camera and force a final flush. Safe to call repeatedly.

        Returns:
            Session summary
        """
        async with self._stop_lock:
            if self._closed:
                return self.snapshot()

            self.is_active = False
            await self._cancel_loop()
            flush_task, self._flush_task = self._flush_task, None
            await self._cancel_task(flush_task)
            self.environment.stop()

            if self.frame_source is not None:
                # Waits for a read still running in a worker thread
                await asyncio.to_thread(self.frame_source.release)
            if self.platform is not None:
                self.platform.exit()

            await self._flush(force=True)
            self._closed = True

        log_session_end(self.id, self.counters, self.ticks_processed, self.is_terminated)
        logger.info(f"Session {self.id} stopped: terminated={self.is_terminated}")
        return self.snapshot()

    # ============== Detection ==============

    async def tick(self) -> Optional[DetectionResult]:
        """
        Run one detection tick from the local camera.

        Returns:
            DetectionResult, or None if the tick was skipped
        """
        if not self.is_active or self.is_terminated or not self.vision_available:
            return None
        if self.frame_source is None or not self.frame_source.is_open or not self.face_detector.is_ready:
            self.ticks_skipped += 1
            return None

        try:
            frame = await asyncio.to_thread(self.frame_source.read)
        except CameraError as e:
            return self._fail_vision(e)

        return await self.process_frame(frame)

    def _detect(self, frame: DetectionFrame) -> Tuple[List[FaceDetection], List[DeviceCandidate]]:
        faces = self.face_detector.detect(frame)
        devices = self.scanner.scan(frame.image, [face.box for face in faces])
        return faces, devices

    async def process_frame(self, frame: DetectionFrame) -> Optional[DetectionResult]:
        """
        Process a single frame through the detection pipeline.

        At most one detection runs at a time; a frame arriving while one is
        in flight is dropped and None is returned.

        Args:
            frame: Captured or client-supplied frame

        Returns:
            DetectionResult for the frame, or None if it was skipped
        """
        if self.is_terminated:
            return self.state_machine.no_usable_result(frame.timestamp)
        if not self.vision_available:
            return self.state_machine.no_usable_result(frame.timestamp)

        if self._detect_lock.locked():
            self.ticks_skipped += 1
            logger.debug(f"Detection in flight for session {self.id}, skipping frame")
            return None

        async with self._detect_lock:
            try:
                faces, devices = await asyncio.to_thread(self._detect, frame)
            except Exception as e:
                logger.warning(f"Detection error in session {self.id}: {e}")
                result = self.state_machine.no_usable_result(frame.timestamp)
                self.last_result = result
                return result

            result = self.state_machine.update(
                faces,
                devices,
                frame.width,
                frame.height,
                frame.timestamp,
                check_landmarks=self.face_detector.landmarks_enabled
            )
            if result.processed:
                self.ticks_processed += 1

        self._record(result)
        self.last_result = result
        self._notify_status(result)
        await self._flush()
        return result

    def _record(self, result: DetectionResult) -> None:
        for event in result.violations:
            log_violation_recorded(self.id, event.type.value, event.count)
            if self.sink is not None:
                self.sink.record_violation(event)

    async def _flush(self, force: bool = False) -> None:
        if self.sink is not None:
            await asyncio.to_thread(self.sink.flush, force)

    # ============== Environment ==============

    def handle_fullscreen_change(self, is_fullscreen: bool) -> bool:
        if isinstance(self.platform, ClientReportedFullscreen):
            self.platform.report(is_fullscreen)
        return self.environment.handle_fullscreen_change(is_fullscreen)

    def handle_visibility_change(self, is_visible: bool) -> bool:
        return self.environment.handle_visibility_change(is_visible)

    def pending_client_commands(self) -> List[str]:
        if isinstance(self.platform, ClientReportedFullscreen):
            return self.platform.drain_commands()
        return []

    def _on_environment_violation(self, kind: EnvironmentalViolationType, warning_count: int) -> None:
        log_environment_warning(self.id, kind.value, warning_count, self.environment.max_warnings)
        if self.sink is not None and self.sink.record_environmental(kind):
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        """Flush from the event path without blocking the caller"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.sink.flush()
            return

        task = loop.create_task(self._flush())
        self._pending_flushes.add(task)
        task.add_done_callback(self._pending_flushes.discard)

    def _on_environment_terminate(self, reason: str) -> None:
        self._terminate(reason)

    def _terminate(self, reason: str) -> None:
        if self.is_terminated:
            return

        self.is_terminated = True
        self.termination_reason = reason
        self.state_machine.halt()
        if self.sink is not None:
            self.sink.mark_terminated()
        log_termination(self.id, reason)

        for callback in self._termination_callbacks:
            try:
                callback(reason)
            except Exception as e:
                logger.warning(f"Termination callback failed for session {self.id}: {e}")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self._shutdown_task = loop.create_task(self.stop())
        elif self.sink is not None:
            self.sink.flush(force=True)

    async def wait_closed(self) -> None:
        """Wait for a termination-triggered shutdown to finish"""
        if self._shutdown_task is not None:
            await self._shutdown_task

    # ============== Reporting ==============

    def snapshot(self) -> Dict[str, Any]:
        result = self.last_result
        return {
            "session_id": self.id,
            "assessment_id": self.assessment_id,
            "student_id": self.student_id,
            "status": self.status.value,
            "message": self.state_machine.message,
            "faces_count": result.faces_count if result else 0,
            "is_active": self.is_active,
            "is_terminated": self.is_terminated,
            "termination_reason": self.termination_reason,
            "vision_available": self.vision_available,
            "counters": self.counters,
            "environment": self.environment.snapshot(),
            "ticks_processed": self.ticks_processed,
            "ticks_skipped": self.ticks_skipped,
            "submission_id": self.sink.submission_id if self.sink is not None else None,
            "duration_seconds": (datetime.utcnow() - self.started_at).total_seconds(),
        }
