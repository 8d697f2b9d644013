"""
Tests for the dlib face detector adapter and model loading

dlib itself is replaced with mocks; only the adapter logic is exercised.
"""

import os

import pytest
from unittest.mock import MagicMock, patch

from examguard.proctor.detectors import DlibFaceDetector
from examguard.proctor.detectors.face_detector import margin_to_confidence
from examguard.proctor.errors import ModelLoadError
from examguard.proctor.models import model_loader

from conftest import make_frame


def mock_rect(left, top, width, height):
    rect = MagicMock()
    rect.left.return_value = left
    rect.top.return_value = top
    rect.width.return_value = width
    rect.height.return_value = height
    return rect


def mock_shape(num_parts=68):
    shape = MagicMock()
    shape.num_parts = num_parts
    shape.part.side_effect = lambda i: MagicMock(x=300 + i % 10, y=220 + i // 10)
    return shape


class TestMarginToConfidence:
    def test_zero_margin_is_even(self):
        assert margin_to_confidence(0.0) == pytest.approx(0.5)

    def test_monotonic(self):
        assert margin_to_confidence(-1.0) < margin_to_confidence(0.5) < margin_to_confidence(2.0)

    def test_bounded(self):
        assert 0.0 < margin_to_confidence(-20.0) < 0.01
        assert 0.99 < margin_to_confidence(20.0) <= 1.0


class TestDlibFaceDetector:
    """Tests for DlibFaceDetector"""

    def test_detect_before_load_raises(self):
        detector = DlibFaceDetector()

        assert not detector.is_ready
        with pytest.raises(ModelLoadError):
            detector.detect(make_frame())

    def test_builder_flags(self):
        detector = DlibFaceDetector().with_landmarks(False).with_expressions(True)

        assert detector.landmarks_enabled is False
        assert detector.expressions_enabled is True

    def test_load_is_idempotent(self):
        with patch("examguard.proctor.models.get_frontal_face_detector") as get_detector, \
                patch("examguard.proctor.models.get_dlib_predictor") as get_predictor:
            detector = DlibFaceDetector(models_dir="/models")
            detector.load()
            detector.load()

        assert detector.is_ready
        get_detector.assert_called_once()
        get_predictor.assert_called_once_with("/models")

    def test_landmarks_disabled_skips_predictor(self):
        with patch("examguard.proctor.models.get_frontal_face_detector"), \
                patch("examguard.proctor.models.get_dlib_predictor") as get_predictor:
            detector = DlibFaceDetector().with_landmarks(False)
            detector.load()

        assert detector.is_ready
        get_predictor.assert_not_called()

    def test_detect_builds_faces(self):
        detector = DlibFaceDetector(upsample_times=1, adjust_threshold=-0.3)
        detector._detector = MagicMock()
        detector._detector.run.return_value = ([mock_rect(270, 190, 100, 100)], [1.5], [0])
        detector._predictor = MagicMock(return_value=mock_shape())

        faces = detector.detect(make_frame())

        assert len(faces) == 1
        face = faces[0]
        assert face.box.as_tuple() == (270, 190, 100, 100)
        assert face.score == pytest.approx(margin_to_confidence(1.5))
        assert face.landmarks.shape == (68, 2)
        assert face.expressions is None

        args = detector._detector.run.call_args[0]
        assert args[1:] == (1, -0.3)
        assert args[0].ndim == 2

    def test_landmark_failure_leaves_landmarks_empty(self):
        detector = DlibFaceDetector()
        detector._detector = MagicMock()
        detector._detector.run.return_value = ([mock_rect(0, 0, 50, 50)], [0.2], [0])
        detector._predictor = MagicMock(side_effect=RuntimeError("bad rect"))

        faces = detector.detect(make_frame())

        assert len(faces) == 1
        assert faces[0].landmarks is None

    def test_no_faces(self):
        detector = DlibFaceDetector()
        detector._detector = MagicMock()
        detector._detector.run.return_value = ([], [], [])
        detector._predictor = MagicMock()

        assert detector.detect(make_frame()) == []


class TestModelLoader:
    """Tests for model discovery"""

    def test_find_predictor_in_models_dir(self, tmp_path):
        path = tmp_path / model_loader.PREDICTOR_FILENAME
        path.write_bytes(b"")

        assert model_loader.find_predictor_path(str(tmp_path)) == str(path)

    def test_missing_predictor(self, tmp_path, monkeypatch):
        monkeypatch.setattr(model_loader, "MODELS_DIR", str(tmp_path / "weights"))
        monkeypatch.chdir(tmp_path)

        assert model_loader.find_predictor_path(str(tmp_path / "empty")) is None

    def test_check_models_reports_predictor(self, tmp_path):
        (tmp_path / model_loader.PREDICTOR_FILENAME).write_bytes(b"")

        status = model_loader.check_models(str(tmp_path))

        assert status["shape_predictor"] is True
        assert set(status) == {"dlib", "shape_predictor"}

    def test_missing_predictor_raises(self, tmp_path, monkeypatch):
        monkeypatch.setattr(model_loader, "MODELS_DIR", str(tmp_path / "weights"))
        monkeypatch.chdir(tmp_path)
        model_loader.get_dlib_predictor.cache_clear()

        with patch.dict("sys.modules", {"dlib": MagicMock()}):
            with pytest.raises(ModelLoadError):
                model_loader.get_dlib_predictor(str(tmp_path / os.sep.join(["no", "models"])))
