"""
Device-Presence Scanner - Block-based heuristic for screen-like regions

Scans the frame outside known face boxes for rectangular regions with dense
edges and strong contrast, the signature of a phone, tablet or laptop
screen. Works on raw pixels and needs no model.

This heuristic favours recall over precision. A single detection must never
terminate an assessment on its own; only repeated detections should.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..types import BoundingBox, DeviceCandidate, DeviceType

logger = logging.getLogger(__name__)


@dataclass
class ScannerOptions:
    """Tuning values for the device scanner"""
    block_size: int = 60
    stride: int = 30
    edge_delta: int = 30                  # brightness step that counts as an edge crossing
    edge_density_threshold: float = 0.1
    contrast_threshold: float = 0.3
    brightness_min: float = 100.0
    brightness_max: float = 220.0
    bright_level: int = 200
    bright_fraction_threshold: float = 0.2
    min_device_size: int = 40
    max_device_fraction: float = 0.7
    profile_fraction: float = 0.2         # share of the peak edge profile kept when refining

    @classmethod
    def from_settings(cls, settings) -> "ScannerOptions":
        return cls(
            block_size=settings.DEVICE_BLOCK_SIZE,
            stride=settings.DEVICE_BLOCK_STRIDE,
            edge_density_threshold=settings.DEVICE_EDGE_DENSITY,
            contrast_threshold=settings.DEVICE_CONTRAST,
        )


@dataclass
class BlockMetrics:
    """Image statistics for one scan block"""
    brightness: float
    edge_density: float
    contrast: float
    bright_fraction: float

    def is_candidate(self, options: ScannerOptions) -> bool:
        if self.edge_density <= options.edge_density_threshold:
            return False
        if self.contrast <= options.contrast_threshold:
            return False
        in_screen_range = options.brightness_min <= self.brightness <= options.brightness_max
        return in_screen_range or self.bright_fraction > options.bright_fraction_threshold


class DeviceScanner:
    """
    Finds candidate electronic devices in a frame.

    Pipeline:
    1. Edge maps from horizontal/vertical brightness deltas
    2. Overlapping block scan, skipping blocks that touch a face
    3. Candidate blocks merged into connected regions
    4. Regions refined to their true edge extents and size-filtered
    5. Classification by aspect ratio and relative area
    """

    def __init__(self, options: Optional[ScannerOptions] = None):
        self.options = options or ScannerOptions()

    @staticmethod
    def _to_gray(image: np.ndarray) -> np.ndarray:
        if image.ndim == 3:
            channels = image.shape[2]
            if channels == 4:
                image = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
            elif channels == 3:
                image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
            else:
                image = image[:, :, 0]
        return image.astype(np.int16)

    def _edge_maps(self, gray: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Boolean maps of horizontal and vertical brightness-delta crossings"""
        horizontal = np.zeros(gray.shape, dtype=bool)
        vertical = np.zeros(gray.shape, dtype=bool)
        horizontal[:, 1:] = np.abs(np.diff(gray, axis=1)) > self.options.edge_delta
        vertical[1:, :] = np.abs(np.diff(gray, axis=0)) > self.options.edge_delta
        return horizontal, vertical

    def block_metrics(
        self,
        gray: np.ndarray,
        horizontal: np.ndarray,
        vertical: np.ndarray,
        x: int,
        y: int
    ) -> BlockMetrics:
        size = self.options.block_size
        block = gray[y:y + size, x:x + size]
        pixels = block.size

        crossings = (
            np.count_nonzero(horizontal[y:y + size, x:x + size])
            + np.count_nonzero(vertical[y:y + size, x:x + size])
        )
        low, high = np.percentile(block, [2, 98])

        return BlockMetrics(
            brightness=float(block.mean()),
            edge_density=crossings / pixels,
            contrast=float(high - low) / 255.0,
            bright_fraction=np.count_nonzero(block > self.options.bright_level) / pixels,
        )

    def _candidate_blocks(
        self,
        gray: np.ndarray,
        horizontal: np.ndarray,
        vertical: np.ndarray,
        face_boxes: Sequence[BoundingBox]
    ) -> List[Tuple[int, int, BlockMetrics]]:
        size = self.options.block_size
        stride = max(1, self.options.stride)
        height, width = gray.shape

        candidates = []
        for y in range(0, height - size + 1, stride):
            for x in range(0, width - size + 1, stride):
                block_box = BoundingBox(x, y, size, size)
                if any(block_box.intersects(face) for face in face_boxes):
                    continue
                metrics = self.block_metrics(gray, horizontal, vertical, x, y)
                if metrics.is_candidate(self.options):
                    candidates.append((x, y, metrics))
        return candidates

    def _merge_regions(
        self,
        shape: Tuple[int, int],
        blocks: List[Tuple[int, int, BlockMetrics]]
    ) -> List[Tuple[Tuple[int, int, int, int], List[BlockMetrics]]]:
        """Group overlapping candidate blocks into connected regions"""
        size = self.options.block_size
        mask = np.zeros(shape, dtype=np.uint8)
        for x, y, _ in blocks:
            mask[y:y + size, x:x + size] = 1

        count, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)

        members: Dict[int, List[BlockMetrics]] = {}
        for x, y, metrics in blocks:
            members.setdefault(int(labels[y, x]), []).append(metrics)

        regions = []
        for label in range(1, count):
            x, y, w, h = (int(v) for v in stats[label, :4])
            regions.append(((x, y, w, h), members.get(label, [])))
        return regions

    def _refine(
        self,
        edge_counts: np.ndarray,
        rect: Tuple[int, int, int, int]
    ) -> Optional[Tuple[int, int, int, int]]:
        """Shrink a merged region to the rows/columns that actually carry edges"""
        x, y, w, h = rect
        region = edge_counts[y:y + h, x:x + w]

        columns = region.sum(axis=0)
        rows = region.sum(axis=1)
        if columns.max() == 0 or rows.max() == 0:
            return None

        kept_cols = np.nonzero(columns >= self.options.profile_fraction * columns.max())[0]
        kept_rows = np.nonzero(rows >= self.options.profile_fraction * rows.max())[0]

        left, right = int(kept_cols[0]), int(kept_cols[-1]) + 1
        top, bottom = int(kept_rows[0]), int(kept_rows[-1]) + 1
        return (x + left, y + top, right - left, bottom - top)

    def _plausible_size(self, w: int, h: int, frame_width: int, frame_height: int) -> bool:
        minimum = self.options.min_device_size
        fraction = self.options.max_device_fraction
        return (
            minimum <= w <= fraction * frame_width
            and minimum <= h <= fraction * frame_height
        )

    @staticmethod
    def classify(w: int, h: int, frame_width: int, frame_height: int) -> DeviceType:
        """Classify a refined region by aspect ratio and relative area"""
        aspect = max(w, h) / max(1, min(w, h))
        area_fraction = (w * h) / float(frame_width * frame_height)
        landscape = w > h

        if landscape and 1.3 <= aspect <= 1.9 and area_fraction >= 0.15:
            return DeviceType.LAPTOP
        if 1.6 <= aspect <= 2.4 and area_fraction < 0.15:
            return DeviceType.SMARTPHONE
        if 1.2 <= aspect < 1.6 and area_fraction < 0.35:
            return DeviceType.TABLET
        return DeviceType.GENERIC

    @staticmethod
    def _confidence(device_type: DeviceType, edge_density: float, contrast: float) -> float:
        score = 0.4 + 0.3 * min(1.0, edge_density / 0.5) + 0.25 * min(1.0, contrast)
        ceiling = 0.6 if device_type == DeviceType.GENERIC else 0.95
        return float(min(ceiling, max(0.3, score)))

    def scan(
        self,
        image: np.ndarray,
        face_boxes: Sequence[BoundingBox] = ()
    ) -> List[DeviceCandidate]:
        """
        Scan a frame for screen-like regions.

        Args:
            image: BGR, BGRA or grayscale frame
            face_boxes: Known face boxes; blocks touching them are skipped

        Returns:
            List of DeviceCandidate (empty if nothing plausible was found)
        """
        if image is None or image.size == 0:
            return []

        gray = self._to_gray(image)
        frame_height, frame_width = gray.shape
        horizontal, vertical = self._edge_maps(gray)

        blocks = self._candidate_blocks(gray, horizontal, vertical, face_boxes)
        if not blocks:
            return []

        edge_counts = horizontal.astype(np.int32) + vertical.astype(np.int32)

        devices: List[DeviceCandidate] = []
        for rect, members in self._merge_regions(gray.shape, blocks):
            refined = self._refine(edge_counts, rect)
            if refined is None:
                continue

            x, y, w, h = refined
            if not self._plausible_size(w, h, frame_width, frame_height):
                logger.debug(f"Discarded region {refined}: implausible device size")
                continue

            edge_density = float(np.mean([m.edge_density for m in members])) if members else 0.0
            contrast = float(np.mean([m.contrast for m in members])) if members else 0.0
            device_type = self.classify(w, h, frame_width, frame_height)

            devices.append(DeviceCandidate(
                box=BoundingBox(float(x), float(y), float(w), float(h)),
                device_type=device_type,
                confidence=self._confidence(device_type, edge_density, contrast),
                edge_density=edge_density,
                contrast=contrast,
            ))

        if devices:
            logger.debug(f"Device scanner found {len(devices)} candidate(s)")
        return devices
