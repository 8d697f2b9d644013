"""Persistence of violations to the submission record"""

from .repository import SubmissionRepository
from .violation_sink import PendingBatch, ViolationSink

__all__ = ["SubmissionRepository", "PendingBatch", "ViolationSink"]
