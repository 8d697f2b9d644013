"""Violation counters for proctoring sessions"""

from .counters import ViolationCounters

__all__ = ["ViolationCounters"]
