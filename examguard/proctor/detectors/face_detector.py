"""
Face Detector - Detects faces using dlib's HOG detector

dlib reports SVM margins rather than probabilities, so margins are squashed
with a logistic curve into a [0, 1] confidence. Expression scores are not
available from this backend.
"""

import math
import logging
from typing import List, Optional

import cv2
import numpy as np

from .base import FaceDetector
from ..errors import ModelLoadError
from ..types import BoundingBox, DetectionFrame, FaceDetection

logger = logging.getLogger(__name__)


def margin_to_confidence(margin: float, steepness: float = 2.0) -> float:
    """Map a dlib detection margin to [0, 1]; a zero margin maps to 0.5"""
    return 1.0 / (1.0 + math.exp(-steepness * margin))


class DlibFaceDetector(FaceDetector):
    """
    Detects faces in video frames using dlib's HOG-based face detector.

    Provides:
    - Face bounding boxes
    - Detection confidence
    - Facial landmarks (68-point), when enabled
    """

    def __init__(
        self,
        models_dir: Optional[str] = None,
        upsample_times: int = 0,
        adjust_threshold: float = 0.0
    ):
        """
        Initialize face detector. Models are not loaded until load().

        Args:
            models_dir: Directory holding shape_predictor_68_face_landmarks.dat
            upsample_times: How often dlib upsamples the image (finds smaller faces)
            adjust_threshold: Offset added to dlib's decision threshold
        """
        super().__init__()
        self.models_dir = models_dir
        self.upsample_times = upsample_times
        self.adjust_threshold = adjust_threshold

        self._detector = None
        self._predictor = None

    @property
    def is_ready(self) -> bool:
        if self._detector is None:
            return False
        return self._predictor is not None or not self.landmarks_enabled

    def load(self) -> None:
        if self.is_ready:
            return

        from ..models import get_frontal_face_detector, get_dlib_predictor

        self._detector = get_frontal_face_detector()
        if self.landmarks_enabled:
            self._predictor = get_dlib_predictor(self.models_dir)

        if self.expressions_enabled:
            logger.warning("Expression scores are not supported by the dlib backend")

    def detect(self, frame: DetectionFrame) -> List[FaceDetection]:
        """
        Detect faces in a frame.

        Args:
            frame: Captured frame (BGR or grayscale)

        Returns:
            List of FaceDetection, empty when no face is found
        """
        if not self.is_ready:
            raise ModelLoadError("Face detection models are not loaded")

        image = frame.image
        if image is None or image.size == 0:
            return []

        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image

        rects, margins, _ = self._detector.run(gray, self.upsample_times, self.adjust_threshold)

        faces: List[FaceDetection] = []
        for rect, margin in zip(rects, margins):
            box = BoundingBox(
                x=float(rect.left()),
                y=float(rect.top()),
                width=float(rect.width()),
                height=float(rect.height())
            )

            landmarks = None
            if self.landmarks_enabled and self._predictor is not None:
                try:
                    marks = self._predictor(gray, rect)
                    landmarks = np.array(
                        [(marks.part(i).x, marks.part(i).y) for i in range(marks.num_parts)],
                        dtype=np.float32
                    )
                except Exception as e:
                    logger.warning(f"Error getting landmarks: {e}")

            faces.append(FaceDetection(
                box=box,
                score=margin_to_confidence(float(margin)),
                landmarks=landmarks
            ))

        return faces
