"""
Face Detector contract

The state machine only depends on this interface, so any model backend (or
a deterministic fake in tests) can be plugged in.
"""

from abc import ABC, abstractmethod
from typing import List

from ..types import DetectionFrame, FaceDetection


class FaceDetector(ABC):
    """
    Detects faces in a frame.

    Implementations must not modify the frame and must return the same
    result for the same frame.
    """

    def __init__(self):
        self.landmarks_enabled = True
        self.expressions_enabled = False

    def with_landmarks(self, enabled: bool = True) -> "FaceDetector":
        self.landmarks_enabled = enabled
        return self

    def with_expressions(self, enabled: bool = True) -> "FaceDetector":
        self.expressions_enabled = enabled
        return self

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """True once models are loaded"""

    @abstractmethod
    def load(self) -> None:
        """
        Load model weights. Repeat calls are no-ops.

        Raises:
            ModelLoadError: if the weights cannot be loaded
        """

    @abstractmethod
    def detect(self, frame: DetectionFrame) -> List[FaceDetection]:
        """Return zero or more faces found in the frame"""
