"""
Frame Source - Owns the live capture handle for a proctoring session

Only one handle is open at a time; re-acquiring or switching the facing mode
releases the previous handle first. Reads and releases are serialised, so a
release issued while a worker thread is reading waits for that read.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

import cv2

from ..errors import CameraError
from ..types import DetectionFrame, FacingMode

logger = logging.getLogger(__name__)


class FrameSource:
    """
    Wraps an OpenCV capture device.

    Resolution and frame-rate are requested as hints. A rejected frame-rate
    hint is degraded (halved) rather than treated as a failure.
    """

    def __init__(
        self,
        device_indices: Optional[Dict[FacingMode, int]] = None,
        width: int = 640,
        height: int = 480,
        frame_rate: int = 15,
        capture_factory: Callable[[int], "cv2.VideoCapture"] = cv2.VideoCapture
    ):
        """
        Initialize frame source.

        Args:
            device_indices: Mapping of facing hint to OpenCV device index
            width: Target frame width hint
            height: Target frame height hint
            frame_rate: Target frame rate hint
            capture_factory: Callable opening a capture for a device index
        """
        self.device_indices = device_indices or {
            FacingMode.USER: 0,
            FacingMode.ENVIRONMENT: 1,
        }
        self.width = width
        self.height = height
        self.frame_rate = frame_rate
        self._capture_factory = capture_factory

        self._capture = None
        self._lock = threading.RLock()
        self.facing: Optional[FacingMode] = None
        self.active_frame_rate: Optional[int] = None

    @classmethod
    def from_settings(cls, settings) -> "FrameSource":
        return cls(
            device_indices={
                FacingMode.USER: settings.CAMERA_USER_INDEX,
                FacingMode.ENVIRONMENT: settings.CAMERA_ENVIRONMENT_INDEX,
            },
            width=settings.CAMERA_WIDTH,
            height=settings.CAMERA_HEIGHT,
            frame_rate=settings.CAMERA_FRAME_RATE,
        )

    @property
    def is_open(self) -> bool:
        return self._capture is not None and self._capture.isOpened()

    def acquire(self, facing: FacingMode = FacingMode.USER) -> None:
        """
        Open the capture device for the given facing hint.

        Raises:
            CameraError: if no device exists for the hint or it cannot be opened
        """
        with self._lock:
            self._acquire(facing)

    def _acquire(self, facing: FacingMode) -> None:
        # Never leak a previous handle
        self.release()

        index = self.device_indices.get(facing)
        if index is None:
            raise CameraError(f"No capture device configured for facing mode '{facing.value}'")

        try:
            capture = self._capture_factory(index)
        except Exception as e:
            raise CameraError(f"Could not open camera {index}: {e}") from e

        if capture is None or not capture.isOpened():
            if capture is not None:
                capture.release()
            raise CameraError(
                f"Could not open camera {index}. Please ensure a camera is connected "
                f"and access is allowed."
            )

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.active_frame_rate = self._apply_frame_rate(capture)

        self._capture = capture
        self.facing = facing
        logger.info(
            f"Camera acquired: index={index} facing={facing.value} "
            f"fps={self.active_frame_rate or 'device default'}"
        )

    def _apply_frame_rate(self, capture) -> Optional[int]:
        """Request the frame rate hint, halving it until the device accepts"""
        rate = self.frame_rate
        while rate >= 1:
            if capture.set(cv2.CAP_PROP_FPS, rate):
                return rate
            logger.info(f"Camera rejected {rate} fps, trying lower")
            rate //= 2
        logger.warning("Camera rejected all frame-rate hints, using device default")
        return None

    def switch_facing(self, facing: FacingMode) -> None:
        """Tear down the current handle and re-acquire with a new facing hint"""
        logger.info(f"Switching camera to facing mode '{facing.value}'")
        self.acquire(facing)

    def read(self) -> DetectionFrame:
        """
        Grab the current frame.

        Raises:
            CameraError: if no handle is open or the device stopped delivering
        """
        with self._lock:
            if not self.is_open:
                raise CameraError("Camera is not acquired")
            ok, image = self._capture.read()

        if not ok or image is None:
            raise CameraError("Failed to read frame from camera")

        return DetectionFrame(image=image, timestamp=time.monotonic())

    def release(self) -> None:
        """Stop the capture device. Safe to call repeatedly."""
        with self._lock:
            if self._capture is None:
                return
            try:
                self._capture.release()
            finally:
                self._capture = None
                logger.info("Camera released")

    def __enter__(self) -> "FrameSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
