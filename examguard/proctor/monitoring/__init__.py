"""Status and environment monitoring"""

from .state_machine import ProctoringStateMachine
from .environment import AsyncioScheduler, EnvironmentalMonitor, EpisodeState
from .platform import ClientReportedFullscreen, PlatformFullscreen

__all__ = [
    "ProctoringStateMachine",
    "AsyncioScheduler",
    "EnvironmentalMonitor",
    "EpisodeState",
    "ClientReportedFullscreen",
    "PlatformFullscreen"
]
