"""
Debug overlay - Draws faces, devices and status onto a frame copy
"""

from typing import Dict, Optional, Sequence

import cv2
import numpy as np

from ..types import DeviceCandidate, FaceDetection, ProctoringStatus

# BGR colours per status
STATUS_COLORS = {
    ProctoringStatus.FACE_DETECTED: (0, 200, 0),
    ProctoringStatus.MULTIPLE_FACES_DETECTED: (0, 0, 255),
    ProctoringStatus.OBJECT_DETECTED: (0, 0, 255),
    ProctoringStatus.NO_FACE_DETECTED: (0, 255, 255),
    ProctoringStatus.FACE_COVERED: (0, 165, 255),
    ProctoringStatus.FACE_NOT_CENTERED: (0, 165, 255),
    ProctoringStatus.RAPID_MOVEMENT: (0, 165, 255),
}
DEFAULT_COLOR = (200, 200, 200)
DEVICE_COLOR = (255, 0, 255)


def draw_detection_results(
    frame: np.ndarray,
    faces: Sequence[FaceDetection],
    status: ProctoringStatus,
    devices: Sequence[DeviceCandidate] = (),
    counters: Optional[Dict[str, int]] = None,
    show_debug: bool = False
) -> np.ndarray:
    """
    Draw detection results on a copy of the frame.

    Args:
        frame: BGR frame
        faces: Faces found this tick
        status: Current proctoring status
        devices: Device candidates found this tick
        counters: Violation counters, drawn when show_debug is set
        show_debug: Also draw landmarks, confidences and counters

    Returns:
        Annotated copy; the input frame is never modified
    """
    annotated = frame.copy()
    color = STATUS_COLORS.get(status, DEFAULT_COLOR)

    for face in faces:
        x, y, w, h = face.box.as_tuple()
        cv2.rectangle(annotated, (x, y), (x + w, y + h), color, 2)

        if show_debug:
            cv2.putText(
                annotated,
                f"{face.score:.2f}",
                (x, max(0, y - 8)),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.5,
                color,
                1
            )
            if face.landmarks is not None:
                for px, py in face.landmarks:
                    cv2.circle(annotated, (int(px), int(py)), 1, color, -1)

    for device in devices:
        x, y, w, h = device.box.as_tuple()
        cv2.rectangle(annotated, (x, y), (x + w, y + h), DEVICE_COLOR, 2)
        cv2.putText(
            annotated,
            f"{device.device_type.value} {device.confidence:.2f}",
            (x, max(0, y - 8)),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.5,
            DEVICE_COLOR,
            1
        )

    cv2.putText(
        annotated,
        status.value,
        (10, 25),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.7,
        color,
        2
    )

    if show_debug and counters:
        for i, (name, value) in enumerate(counters.items()):
            cv2.putText(
                annotated,
                f"{name}: {value}",
                (10, 50 + 18 * i),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.45,
                DEFAULT_COLOR,
                1
            )

    return annotated
