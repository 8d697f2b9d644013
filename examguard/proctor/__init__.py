"""
ExamGuard Proctoring Module

Enforces exam integrity during assessments by detecting:
- Face absence and frequent disappearance
- Multiple-person presence
- Covered or off-centre faces
- Rapid head movement
- Electronic devices in view
- Leaving fullscreen or switching tabs

Violations are counted per type and written to the submission record;
unresolved environment violations terminate the assessment.
"""

from .api import router

__all__ = ["router"]
