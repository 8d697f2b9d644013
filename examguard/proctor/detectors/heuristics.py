"""
Geometric Heuristics - Per-face checks for centering, occlusion and movement

All checks operate on a single face detection (plus a short position
history for movement). The occlusion check is a proxy built from landmark
completeness and detector confidence; it is not a trained classifier.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple

import numpy as np

from ..types import BoundingBox, FaceDetection

logger = logging.getLogger(__name__)

# 68-point landmark layout (iBUG 300-W)
NOSE_POINTS = range(27, 36)
LEFT_EYE_POINTS = range(36, 42)
RIGHT_EYE_POINTS = range(42, 48)
MOUTH_POINTS = range(48, 68)

FACE_HISTORY_CAPACITY = 5


@dataclass
class DetectionOptions:
    """Thresholds for the geometric heuristics"""
    centered_tolerance: float = 0.3
    covered_confidence: float = 0.5
    rapid_movement_threshold: float = 0.3
    rapid_movement_samples: int = 3
    rapid_movement_max_span: float = 1.5
    min_nose_points: int = 6
    min_eye_points: int = 4
    min_mouth_points: int = 12

    @classmethod
    def from_settings(cls, settings) -> "DetectionOptions":
        return cls(
            centered_tolerance=settings.FACE_CENTERED_TOLERANCE,
            covered_confidence=settings.FACE_COVERED_CONFIDENCE,
            rapid_movement_threshold=settings.RAPID_MOVEMENT_THRESHOLD,
            rapid_movement_samples=settings.RAPID_MOVEMENT_SAMPLES,
            rapid_movement_max_span=settings.RAPID_MOVEMENT_MAX_SPAN_SECONDS,
        )


class FaceHistory:
    """Ring buffer of recent (box, timestamp) samples for a single face"""

    def __init__(self, capacity: int = FACE_HISTORY_CAPACITY):
        self._samples: Deque[Tuple[BoundingBox, float]] = deque(maxlen=capacity)

    def add(self, box: BoundingBox, timestamp: float) -> None:
        self._samples.append((box, timestamp))

    def clear(self) -> None:
        self._samples.clear()

    def recent(self, count: int) -> List[Tuple[BoundingBox, float]]:
        if count <= 0:
            return []
        return list(self._samples)[-count:]

    def __len__(self) -> int:
        return len(self._samples)


def face_center_offset(box: BoundingBox, frame_width: int, frame_height: int) -> Tuple[float, float]:
    """
    Offset of the face centre from the frame centre, normalized by the
    frame width and height respectively.
    """
    face_x, face_y = box.center
    offset_x = abs(face_x - frame_width / 2) / frame_width
    offset_y = abs(face_y - frame_height / 2) / frame_height
    return offset_x, offset_y


def is_face_centered(
    face: FaceDetection,
    frame_width: int,
    frame_height: int,
    tolerance: float
) -> bool:
    if frame_width <= 0 or frame_height <= 0:
        return False
    offset_x, offset_y = face_center_offset(face.box, frame_width, frame_height)
    return offset_x <= tolerance and offset_y <= tolerance


def _count_valid_points(
    landmarks: np.ndarray,
    indices: range,
    frame_width: int,
    frame_height: int
) -> int:
    """Count landmark points that exist, are finite, and lie inside the frame"""
    selected = [i for i in indices if i < len(landmarks)]
    if not selected:
        return 0
    points = landmarks[selected]
    finite = np.all(np.isfinite(points), axis=1)
    inside = (
        (points[:, 0] >= 0) & (points[:, 0] < frame_width)
        & (points[:, 1] >= 0) & (points[:, 1] < frame_height)
    )
    return int(np.count_nonzero(finite & inside))


def landmarks_complete(
    landmarks: Optional[np.ndarray],
    frame_width: int,
    frame_height: int,
    options: DetectionOptions
) -> bool:
    """
    Check that nose, both eyes and mouth have enough visible points.

    Args:
        landmarks: (N, 2) array in the 68-point layout
        frame_width: Frame width in pixels
        frame_height: Frame height in pixels
        options: Minimum point counts per feature

    Returns:
        True if every facial feature meets its minimum point count
    """
    if landmarks is None or len(landmarks) == 0:
        return False

    landmarks = np.asarray(landmarks, dtype=np.float64)
    requirements = (
        (NOSE_POINTS, options.min_nose_points),
        (LEFT_EYE_POINTS, options.min_eye_points),
        (RIGHT_EYE_POINTS, options.min_eye_points),
        (MOUTH_POINTS, options.min_mouth_points),
    )
    for indices, minimum in requirements:
        if _count_valid_points(landmarks, indices, frame_width, frame_height) < minimum:
            return False
    return True


def is_face_covered(
    face: FaceDetection,
    frame_width: int,
    frame_height: int,
    options: DetectionOptions,
    check_landmarks: bool = True
) -> bool:
    """
    Occlusion proxy: incomplete landmarks or low detector confidence.

    When landmarks were not requested from the detector only the
    confidence test applies.
    """
    if face.score < options.covered_confidence:
        return True
    if check_landmarks and not landmarks_complete(face.landmarks, frame_width, frame_height, options):
        return True
    return False


def is_rapid_movement(history: FaceHistory, options: DetectionOptions) -> bool:
    """
    Detect rapid head movement from the most recent history samples.

    Both conditions must hold: the mean centre displacement (relative to the
    current face width) exceeds the threshold, and the samples span less than
    the maximum window. Slow drift over a longer period is ignored.
    """
    samples = history.recent(options.rapid_movement_samples)
    if len(samples) < options.rapid_movement_samples or len(samples) < 2:
        return False

    current_box = samples[-1][0]
    if current_box.width <= 0:
        return False

    displacements = []
    for (prev_box, _), (next_box, _) in zip(samples, samples[1:]):
        (px, py), (nx, ny) = prev_box.center, next_box.center
        displacements.append(math.hypot(nx - px, ny - py) / current_box.width)

    mean_displacement = sum(displacements) / len(displacements)
    span = samples[-1][1] - samples[0][1]

    return mean_displacement > options.rapid_movement_threshold and span < options.rapid_movement_max_span
