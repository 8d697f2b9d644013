"""Detector modules for proctoring"""

from .base import FaceDetector
from .face_detector import DlibFaceDetector
from .heuristics import DetectionOptions, FaceHistory
from .device_scanner import DeviceScanner, ScannerOptions

__all__ = [
    "FaceDetector",
    "DlibFaceDetector",
    "DetectionOptions",
    "FaceHistory",
    "DeviceScanner",
    "ScannerOptions"
]
