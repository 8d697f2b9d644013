"""
ExamGuard Configuration Settings

All proctoring thresholds live here. They are heuristic tuning values,
override them per deployment through environment variables or `.env`.
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Configuration for the ExamGuard proctoring service."""

    # API Settings
    APP_NAME: str = "ExamGuard Proctoring Service"
    DEBUG: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: Optional[str] = None

    # Persistence (external submission record)
    DATABASE_URL: str = "sqlite:///./examguard.sqlite"
    SINK_FLUSH_INTERVAL_SECONDS: float = 2.0
    SINK_MAX_BACKOFF_SECONDS: float = 10.0
    SINK_RETRY_INTERVAL_SECONDS: float = 1.0  # background flush of deferred or failed writes

    # Models
    MODELS_DIR: Optional[str] = None
    FACE_UPSAMPLE_TIMES: int = 0
    FACE_ADJUST_THRESHOLD: float = -0.3  # dlib margin offset, lets weak faces through

    # Camera hints
    CAMERA_USER_INDEX: int = 0
    CAMERA_ENVIRONMENT_INDEX: int = 1
    CAMERA_WIDTH: int = 640
    CAMERA_HEIGHT: int = 480
    CAMERA_FRAME_RATE: int = 15

    # Detection loop
    DETECTION_INTERVAL_MS: int = 1000
    NO_FACE_DEBOUNCE_TICKS: int = 5
    DISAPPEARANCE_WINDOW_SECONDS: float = 10.0

    # Geometric heuristics
    FACE_CENTERED_TOLERANCE: float = 0.3
    FACE_COVERED_CONFIDENCE: float = 0.5
    RAPID_MOVEMENT_THRESHOLD: float = 0.3
    RAPID_MOVEMENT_SAMPLES: int = 3
    RAPID_MOVEMENT_MAX_SPAN_SECONDS: float = 1.5

    # Device-presence scanner
    DEVICE_BLOCK_SIZE: int = 60
    DEVICE_BLOCK_STRIDE: int = 30
    DEVICE_EDGE_DENSITY: float = 0.1
    DEVICE_CONTRAST: float = 0.3

    # Environmental monitor
    ENV_COUNTDOWN_SECONDS: float = 30.0
    ENV_MAX_WARNINGS: int = 3

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
