"""
Proctoring Types - Shared data model for the integrity-monitoring core
"""

import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np


class ProctoringStatus(str, Enum):
    """Single classification of the current detection tick"""
    INITIALIZING = "initializing"
    NO_FACE_DETECTED = "noFaceDetected"
    FACE_DETECTED = "faceDetected"
    MULTIPLE_FACES_DETECTED = "multipleFacesDetected"
    FACE_COVERED = "faceCovered"
    FACE_NOT_CENTERED = "faceNotCentered"
    RAPID_MOVEMENT = "rapidMovement"
    OBJECT_DETECTED = "objectDetected"
    ERROR = "error"


class ViolationType(str, Enum):
    NO_FACE_DETECTED = "noFaceDetected"
    MULTIPLE_FACES_DETECTED = "multipleFacesDetected"
    FACE_NOT_CENTERED = "faceNotCentered"
    FACE_COVERED = "faceCovered"
    RAPID_MOVEMENT = "rapidMovement"
    FREQUENT_DISAPPEARANCE = "frequentDisappearance"
    ELECTRONIC_DEVICE_DETECTED = "electronicDeviceDetected"


class EnvironmentalViolationType(str, Enum):
    FULLSCREEN_EXIT = "fullscreenExit"
    TAB_SWITCH = "tabSwitch"


class FacingMode(str, Enum):
    USER = "user"
    ENVIRONMENT = "environment"


class DeviceType(str, Enum):
    SMARTPHONE = "smartphone"
    TABLET = "tablet"
    LAPTOP = "laptop"
    GENERIC = "generic device"


# User-facing messages per status (shown by the presentation layer)
STATUS_MESSAGES: Dict[ProctoringStatus, str] = {
    ProctoringStatus.INITIALIZING: "Initializing proctoring...",
    ProctoringStatus.NO_FACE_DETECTED: "No face detected. Please position yourself in front of the camera.",
    ProctoringStatus.FACE_DETECTED: "Face detected successfully.",
    ProctoringStatus.MULTIPLE_FACES_DETECTED: "Multiple faces detected. Please ensure only you are visible.",
    ProctoringStatus.FACE_COVERED: "Face appears to be covered. Please remove any obstructions.",
    ProctoringStatus.FACE_NOT_CENTERED: "Face not centered. Please position yourself in the middle of the frame.",
    ProctoringStatus.RAPID_MOVEMENT: "Rapid movement detected. Please keep your head still.",
    ProctoringStatus.OBJECT_DETECTED: "Electronic device detected. Please remove it from view.",
    ProctoringStatus.ERROR: "Proctoring is unavailable. Check camera permissions and reload.",
}


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in pixel coordinates"""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def intersects(self, other: "BoundingBox") -> bool:
        return (
            self.x < other.right and other.x < self.right
            and self.y < other.bottom and other.y < self.bottom
        )

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (int(self.x), int(self.y), int(self.width), int(self.height))


@dataclass
class DetectionFrame:
    """One captured frame, produced per tick and discarded afterwards"""
    image: np.ndarray
    timestamp: float = field(default_factory=time.monotonic)

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@dataclass
class FaceDetection:
    """A detected face with optional landmarks and expressions"""
    box: BoundingBox
    score: float
    landmarks: Optional[np.ndarray] = None
    expressions: Optional[Dict[str, float]] = None


@dataclass
class DeviceCandidate:
    """Screen-like region classified as a probable electronic device"""
    box: BoundingBox
    device_type: DeviceType
    confidence: float
    edge_density: float = 0.0
    contrast: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.device_type.value,
            "confidence": round(self.confidence, 3),
            "bbox": list(self.box.as_tuple()),
        }


@dataclass
class ViolationEvent:
    """One counter increment, as forwarded to the violation sink"""
    type: ViolationType
    timestamp: float
    detail: str = ""
    count: int = 0
    devices: List[DeviceCandidate] = field(default_factory=list)


@dataclass
class DetectionResult:
    """Outcome of one detection tick"""
    status: ProctoringStatus
    faces_count: int = 0
    message: str = ""
    faces: List[FaceDetection] = field(default_factory=list)
    expressions: Optional[Dict[str, float]] = None
    devices: List[DeviceCandidate] = field(default_factory=list)
    violations: List[ViolationEvent] = field(default_factory=list)
    processed: bool = True
    timestamp: float = 0.0
