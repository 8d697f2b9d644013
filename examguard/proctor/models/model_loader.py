"""
Model Loader - Lazy loading and caching of face detection models

Models are loaded once per process; every detector instance shares them.
"""

import os
import logging
from functools import lru_cache
from typing import Optional

from ..errors import ModelLoadError

logger = logging.getLogger(__name__)

# Default model directory (relative to this file's directory)
MODELS_DIR = os.path.join(os.path.dirname(__file__), "weights")

PREDICTOR_FILENAME = "shape_predictor_68_face_landmarks.dat"


def find_predictor_path(models_dir: Optional[str] = None) -> Optional[str]:
    """
    Locate the 68-point shape predictor on disk.

    Returns:
        Path to the predictor file or None if not found
    """
    possible_paths = [
        os.path.join(models_dir, PREDICTOR_FILENAME) if models_dir else None,
        os.path.join(MODELS_DIR, PREDICTOR_FILENAME),
        PREDICTOR_FILENAME  # Current directory
    ]

    for path in possible_paths:
        if path and os.path.exists(path):
            return path
    return None


@lru_cache(maxsize=1)
def get_frontal_face_detector():
    """
    Get dlib's HOG frontal face detector.

    Raises:
        ModelLoadError: if dlib is unavailable
    """
    try:
        import dlib
    except ImportError as e:
        raise ModelLoadError("dlib not installed. Run: pip install dlib") from e

    logger.info("dlib frontal face detector initialized")
    return dlib.get_frontal_face_detector()


@lru_cache(maxsize=4)
def get_dlib_predictor(models_dir: Optional[str] = None):
    """
    Get dlib shape predictor for 68-point facial landmarks.

    Model file: shape_predictor_68_face_landmarks.dat
    Download from: http://dlib.net/files/shape_predictor_68_face_landmarks.dat.bz2

    Raises:
        ModelLoadError: if dlib or the model file is unavailable
    """
    try:
        import dlib
    except ImportError as e:
        raise ModelLoadError("dlib not installed. Run: pip install dlib") from e

    path = find_predictor_path(models_dir)
    if path is None:
        raise ModelLoadError(
            f"{PREDICTOR_FILENAME} not found. "
            f"Download from http://dlib.net/files/{PREDICTOR_FILENAME}.bz2 "
            f"and place in {models_dir or MODELS_DIR}"
        )

    logger.info(f"Loading dlib predictor from: {path}")
    try:
        return dlib.shape_predictor(path)
    except RuntimeError as e:
        raise ModelLoadError(f"Could not load {path}: {e}") from e


def check_models(models_dir: Optional[str] = None) -> dict:
    """
    Check which models are available.

    Returns:
        Dict with model status
    """
    status = {
        "dlib": False,
        "shape_predictor": False,
    }

    try:
        import dlib  # noqa: F401
        status["dlib"] = True
    except ImportError:
        pass

    if find_predictor_path(models_dir):
        status["shape_predictor"] = True

    return status
