"""
Tests for the Device-Presence Scanner
"""

import numpy as np
import pytest

from examguard.proctor.detectors import DeviceScanner, ScannerOptions
from examguard.proctor.types import BoundingBox, DeviceType


def blank_frame() -> np.ndarray:
    return np.zeros((480, 640, 3), dtype=np.uint8)


def striped_phone_frame() -> np.ndarray:
    """An 80x160 portrait region of alternating bright/mid columns"""
    frame = blank_frame()
    region = frame[150:310, 300:380]
    region[:, ::2] = 255
    region[:, 1::2] = 60
    return frame


class TestDeviceScanner:
    """Tests for DeviceScanner.scan"""

    def test_flat_gray_block_has_no_candidates(self):
        """A flat 100x150 gray block on a 640x480 frame is not a device"""
        frame = blank_frame()
        frame[165:315, 270:370] = 128

        assert DeviceScanner().scan(frame) == []

    def test_flat_frame_has_no_candidates(self):
        frame = np.full((480, 640, 3), 150, dtype=np.uint8)
        assert DeviceScanner().scan(frame) == []

    def test_screen_like_region_is_detected(self):
        """Dense edges with strong contrast read as a phone"""
        devices = DeviceScanner().scan(striped_phone_frame())

        assert len(devices) == 1
        device = devices[0]
        assert device.device_type == DeviceType.SMARTPHONE
        assert device.box.as_tuple() == (300, 150, 81, 161)
        assert 0.3 <= device.confidence <= 0.95

    def test_grayscale_input(self):
        gray = striped_phone_frame()[:, :, 0]
        devices = DeviceScanner().scan(gray)

        assert len(devices) == 1

    def test_face_region_is_excluded(self):
        """Blocks that touch a face box are never scanned"""
        face_box = BoundingBox(250, 100, 200, 260)
        assert DeviceScanner().scan(striped_phone_frame(), [face_box]) == []

    def test_frame_smaller_than_block(self):
        frame = np.zeros((40, 40, 3), dtype=np.uint8)
        assert DeviceScanner().scan(frame) == []

    def test_serialized_candidate(self):
        device = DeviceScanner().scan(striped_phone_frame())[0]
        payload = device.to_dict()

        assert payload["type"] == "smartphone"
        assert payload["bbox"] == [300, 150, 81, 161]


class TestDeviceClassification:
    """Tests for aspect-ratio / area classification"""

    @pytest.mark.parametrize("width,height,expected", [
        (80, 160, DeviceType.SMARTPHONE),
        (400, 250, DeviceType.LAPTOP),
        (100, 140, DeviceType.TABLET),
        (100, 100, DeviceType.GENERIC),
    ])
    def test_classify(self, width, height, expected):
        assert DeviceScanner.classify(width, height, 640, 480) == expected

    def test_generic_confidence_is_capped(self):
        assert DeviceScanner._confidence(DeviceType.GENERIC, 1.0, 1.0) == pytest.approx(0.6)
        assert DeviceScanner._confidence(DeviceType.SMARTPHONE, 1.0, 1.0) == pytest.approx(0.95)
        assert DeviceScanner._confidence(DeviceType.TABLET, 0.0, 0.0) >= 0.3


class TestScannerOptions:
    def test_from_settings(self, test_settings):
        options = ScannerOptions.from_settings(test_settings)

        assert options.block_size == test_settings.DEVICE_BLOCK_SIZE
        assert options.stride == test_settings.DEVICE_BLOCK_STRIDE
        assert options.edge_density_threshold == test_settings.DEVICE_EDGE_DENSITY
