"""
Violation Counters - Append-only per-type tallies for a proctoring session
"""

import logging
from dataclasses import dataclass, fields
from typing import Dict

from ..types import ViolationType

logger = logging.getLogger(__name__)


@dataclass
class ViolationCounters:
    """
    One counter per ViolationType.

    Counters only ever grow during a session. Reinitializing tracking
    leaves them untouched.
    """

    no_face_detected: int = 0
    multiple_faces_detected: int = 0
    face_not_centered: int = 0
    face_covered: int = 0
    rapid_movement: int = 0
    frequent_disappearance: int = 0
    electronic_device_detected: int = 0

    _FIELD_BY_TYPE = {
        ViolationType.NO_FACE_DETECTED: "no_face_detected",
        ViolationType.MULTIPLE_FACES_DETECTED: "multiple_faces_detected",
        ViolationType.FACE_NOT_CENTERED: "face_not_centered",
        ViolationType.FACE_COVERED: "face_covered",
        ViolationType.RAPID_MOVEMENT: "rapid_movement",
        ViolationType.FREQUENT_DISAPPEARANCE: "frequent_disappearance",
        ViolationType.ELECTRONIC_DEVICE_DETECTED: "electronic_device_detected",
    }

    def increment(self, violation_type: ViolationType) -> int:
        """Add one to the counter for a type and return the new value"""
        name = self._FIELD_BY_TYPE[ViolationType(violation_type)]
        value = getattr(self, name) + 1
        setattr(self, name, value)
        return value

    def get(self, violation_type: ViolationType) -> int:
        return getattr(self, self._FIELD_BY_TYPE[ViolationType(violation_type)])

    @property
    def total(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))

    def as_dict(self) -> Dict[str, int]:
        """Counters keyed by violation type value (camelCase)"""
        return {vtype.value: getattr(self, name) for vtype, name in self._FIELD_BY_TYPE.items()}
