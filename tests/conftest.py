"""
Pytest Configuration for ExamGuard Tests
"""
import os
import sys
import time
from typing import List, Optional

import cv2
import numpy as np
import pytest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from examguard.config import Settings
from examguard.proctor.detectors.base import FaceDetector
from examguard.proctor.errors import ModelLoadError
from examguard.proctor.sink import SubmissionRepository
from examguard.proctor.types import BoundingBox, DetectionFrame, FaceDetection

FRAME_WIDTH = 640
FRAME_HEIGHT = 480


# ============== Builders ==============

def make_landmarks(box: BoundingBox) -> np.ndarray:
    """68 points spread over a 9-column grid inside the box"""
    points = []
    for i in range(68):
        col, row = i % 9, i // 9
        points.append((box.x + 10 + col * (box.width - 20) / 8, box.y + 10 + row * (box.height - 20) / 7))
    return np.array(points, dtype=np.float32)


def make_face(
    x: float = 270,
    y: float = 190,
    width: float = 100,
    height: float = 100,
    score: float = 0.9,
    with_landmarks: bool = True
) -> FaceDetection:
    box = BoundingBox(x, y, width, height)
    return FaceDetection(
        box=box,
        score=score,
        landmarks=make_landmarks(box) if with_landmarks else None
    )


def make_image(value: int = 90) -> np.ndarray:
    return np.full((FRAME_HEIGHT, FRAME_WIDTH, 3), value, dtype=np.uint8)


def make_frame(timestamp: float = 0.0, value: int = 90) -> DetectionFrame:
    return DetectionFrame(image=make_image(value), timestamp=timestamp)


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "DATABASE_URL": f"sqlite:///{tmp_path / 'examguard-test.sqlite'}",
        "DETECTION_INTERVAL_MS": 10,
        "SINK_FLUSH_INTERVAL_SECONDS": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


# ============== Fakes ==============

class FakeFaceDetector(FaceDetector):
    """Deterministic detector: scripted results first, then a default"""

    def __init__(self, script: Optional[list] = None, default: Optional[List[FaceDetection]] = None, fail_load: bool = False):
        super().__init__()
        self.script = list(script or [])
        self.default = list(default or [])
        self.fail_load = fail_load
        self.loaded = False
        self.calls = 0

    @property
    def is_ready(self) -> bool:
        return self.loaded

    def load(self) -> None:
        if self.fail_load:
            raise ModelLoadError("shape predictor missing")
        self.loaded = True

    def detect(self, frame: DetectionFrame) -> List[FaceDetection]:
        self.calls += 1
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return list(item)
        return list(self.default)


class FakeTimerHandle:
    def __init__(self, delay: float, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled and not self.fired:
            self.fired = True
            self.callback()


class FakeScheduler:
    """Collects timers; tests fire them explicitly"""

    def __init__(self):
        self.timers: List[FakeTimerHandle] = []

    def call_later(self, delay: float, callback) -> FakeTimerHandle:
        handle = FakeTimerHandle(delay, callback)
        self.timers.append(handle)
        return handle

    def pending(self) -> List[FakeTimerHandle]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_all(self):
        for timer in self.pending():
            timer.fire()


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeCapture:
    """Stand-in for cv2.VideoCapture"""

    def __init__(self, index: int = 0, opened: bool = True, accepted_fps=None, fail_reads: bool = False, read_delay: float = 0.0):
        self.index = index
        self.opened = opened
        self.accepted_fps = accepted_fps
        self.fail_reads = fail_reads
        self.read_delay = read_delay
        self.released = False
        self.reading = False
        self.released_during_read = False
        self.props = {}
        self.fps_requests = []

    def isOpened(self) -> bool:
        return self.opened and not self.released

    def set(self, prop, value) -> bool:
        if prop == cv2.CAP_PROP_FPS:
            self.fps_requests.append(value)
            if self.accepted_fps is not None and value not in self.accepted_fps:
                return False
        self.props[prop] = value
        return True

    def read(self):
        if self.fail_reads or self.released:
            return False, None
        self.reading = True
        try:
            time.sleep(self.read_delay)
        finally:
            self.reading = False
        return True, make_image()

    def release(self):
        if self.reading:
            self.released_during_read = True
        self.released = True


class CaptureFactory:
    """Records every capture it opens"""

    def __init__(self, **capture_kwargs):
        self.capture_kwargs = capture_kwargs
        self.opened: List[FakeCapture] = []

    def __call__(self, index: int) -> FakeCapture:
        capture = FakeCapture(index=index, **self.capture_kwargs)
        self.opened.append(capture)
        return capture


class FlakyRepository:
    """Delegates to a real repository after failing the first writes"""

    def __init__(self, repository: SubmissionRepository, failures: int = 1):
        self.repository = repository
        self.failures = failures
        self.attempts = 0

    def apply_batch(self, submission_id, batch):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("database unavailable")
        self.repository.apply_batch(submission_id, batch)

    def __getattr__(self, name):
        return getattr(self.repository, name)


# ============== Fixtures ==============

@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository(tmp_path):
    """Submission repository backed by a temporary SQLite file"""
    repo = SubmissionRepository(f"sqlite:///{tmp_path / 'submissions.sqlite'}")
    repo.init_schema()
    yield repo
    repo.dispose()


@pytest.fixture
def test_settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def client(repository):
    """FastAPI test client with a fake face detector and temp database"""
    from fastapi.testclient import TestClient
    from examguard.main import app
    from examguard.proctor import api

    def build_detector(**kwargs):
        return FakeFaceDetector(default=[make_face()])

    with patch("examguard.proctor.api.get_repository", return_value=repository), \
            patch("examguard.proctor.api.DlibFaceDetector", new=build_detector):
        with TestClient(app) as test_client:
            yield test_client

    api._sessions.clear()
