"""Model loading utilities"""

from .model_loader import get_dlib_predictor, get_frontal_face_detector, check_models

__all__ = ["get_dlib_predictor", "get_frontal_face_detector", "check_models"]
