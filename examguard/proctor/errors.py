"""
Proctoring Errors
"""


class ProctoringError(Exception):
    """Base class for integrity-monitoring failures"""


class CameraError(ProctoringError):
    """Capture device is missing, busy, or access was denied"""


class ModelLoadError(ProctoringError):
    """Face detection models could not be loaded"""


class SessionTerminatedError(ProctoringError):
    """Operation attempted on a session that was already terminated"""
