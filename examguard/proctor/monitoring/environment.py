"""
Environmental Monitor - Fullscreen and tab-visibility enforcement

Each kind (fullscreenExit, tabSwitch) runs its own episode state machine:

    compliant --leave--> violating --return--> compliant
                             |
                             +--countdown expiry / warning limit--> terminated

Entering the violating state counts one warning and starts a countdown.
Returning in time cancels the countdown. Termination is emitted once and
freezes every kind.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..types import EnvironmentalViolationType
from .platform import PlatformFullscreen

logger = logging.getLogger(__name__)


class EpisodeState(str, Enum):
    COMPLIANT = "compliant"
    VIOLATING = "violating"
    TERMINATED = "terminated"


@dataclass
class EnvironmentalViolation:
    """Episode state for one environmental violation kind"""
    kind: EnvironmentalViolationType
    state: EpisodeState = EpisodeState.COMPLIANT
    warning_count: int = 0
    episode_started_at: Optional[float] = None
    deadline: Optional[float] = None
    timer: Any = field(default=None, repr=False)

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class AsyncioScheduler:
    """Schedules callbacks on the running asyncio event loop"""

    def call_later(self, delay: float, callback: Callable[[], None]):
        return asyncio.get_running_loop().call_later(delay, callback)


class EnvironmentalMonitor:
    """
    Enforces fullscreen and tab visibility for one session.

    Timers come from an injectable scheduler exposing
    ``call_later(delay, callback)`` that returns a handle with ``cancel()``.
    """

    def __init__(
        self,
        countdown_seconds: float = 30.0,
        max_warnings: int = 3,
        on_violation: Optional[Callable[[EnvironmentalViolationType, int], None]] = None,
        on_terminate: Optional[Callable[[str], None]] = None,
        scheduler=None,
        clock: Callable[[], float] = time.monotonic,
        platform: Optional[PlatformFullscreen] = None
    ):
        """
        Args:
            countdown_seconds: Time allowed to return to compliance
            max_warnings: Warnings per kind that terminate immediately
            on_violation: Called with (kind, warning_count) once per episode
            on_terminate: Called once with the termination reason
            scheduler: Timer source (defaults to the running asyncio loop)
            clock: Monotonic clock used for deadlines
            platform: Host fullscreen capability used by sync()
        """
        self.countdown_seconds = countdown_seconds
        self.max_warnings = max_warnings
        self.on_violation = on_violation
        self.on_terminate = on_terminate
        self.scheduler = scheduler or AsyncioScheduler()
        self.clock = clock
        self.platform = platform

        self._episodes: Dict[EnvironmentalViolationType, EnvironmentalViolation] = {
            kind: EnvironmentalViolation(kind=kind) for kind in EnvironmentalViolationType
        }
        self._terminated = False
        self._stopped = False
        self.termination_reason: Optional[str] = None

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    def episode(self, kind: EnvironmentalViolationType) -> EnvironmentalViolation:
        return self._episodes[EnvironmentalViolationType(kind)]

    def warning_count(self, kind: EnvironmentalViolationType) -> int:
        return self.episode(kind).warning_count

    # ============== Host events ==============

    def handle_fullscreen_change(self, is_fullscreen: bool) -> bool:
        """Returns True if the event changed episode state"""
        if is_fullscreen:
            return self._resolve(EnvironmentalViolationType.FULLSCREEN_EXIT)
        return self._enter(EnvironmentalViolationType.FULLSCREEN_EXIT)

    def handle_visibility_change(self, is_visible: bool) -> bool:
        """Returns True if the event changed episode state"""
        if is_visible:
            return self._resolve(EnvironmentalViolationType.TAB_SWITCH)
        return self._enter(EnvironmentalViolationType.TAB_SWITCH)

    def sync(self) -> bool:
        """Re-read the platform fullscreen state and dispatch a change if it differs"""
        if self.platform is None:
            return False
        episode = self._episodes[EnvironmentalViolationType.FULLSCREEN_EXIT]
        active = self.platform.is_active()
        if active and episode.state == EpisodeState.VIOLATING:
            return self.handle_fullscreen_change(True)
        if not active and episode.state == EpisodeState.COMPLIANT:
            return self.handle_fullscreen_change(False)
        return False

    # ============== Episode transitions ==============

    def _enter(self, kind: EnvironmentalViolationType) -> bool:
        if self._terminated or self._stopped:
            return False

        episode = self._episodes[kind]
        if episode.state != EpisodeState.COMPLIANT:
            logger.debug(f"Ignoring duplicate {kind.value} event")
            return False

        now = self.clock()
        episode.state = EpisodeState.VIOLATING
        episode.warning_count += 1
        episode.episode_started_at = now
        episode.deadline = now + self.countdown_seconds

        logger.warning(
            f"Environmental violation {kind.value}: warning "
            f"{episode.warning_count}/{self.max_warnings}"
        )
        if self.on_violation is not None:
            self.on_violation(kind, episode.warning_count)

        if episode.warning_count >= self.max_warnings:
            self.terminate(f"Maximum {kind.value} warnings reached ({self.max_warnings})")
            return True

        episode.timer = self.scheduler.call_later(
            self.countdown_seconds, lambda: self._expire(kind)
        )
        return True

    def _resolve(self, kind: EnvironmentalViolationType) -> bool:
        if self._terminated or self._stopped:
            return False

        episode = self._episodes[kind]
        if episode.state != EpisodeState.VIOLATING:
            return False

        episode.cancel_timer()
        episode.state = EpisodeState.COMPLIANT
        episode.deadline = None
        logger.info(f"{kind.value} resolved after {self.clock() - episode.episode_started_at:.1f}s")
        return True

    def _expire(self, kind: EnvironmentalViolationType) -> None:
        episode = self._episodes[kind]
        episode.timer = None
        if self._terminated or self._stopped or episode.state != EpisodeState.VIOLATING:
            return
        self.terminate(f"{kind.value} not resolved within {self.countdown_seconds:.0f} seconds")

    def terminate(self, reason: str) -> bool:
        """
        Terminate the session. Only the first call has any effect.

        Returns:
            True if this call performed the termination
        """
        if self._terminated:
            return False

        self._terminated = True
        self.termination_reason = reason
        for episode in self._episodes.values():
            episode.cancel_timer()
            episode.state = EpisodeState.TERMINATED
            episode.deadline = None

        logger.warning(f"Assessment terminated: {reason}")
        if self.on_terminate is not None:
            self.on_terminate(reason)
        return True

    def stop(self) -> None:
        """Cancel all countdowns and ignore further events"""
        self._stopped = True
        for episode in self._episodes.values():
            episode.cancel_timer()

    # ============== Reporting ==============

    def time_remaining(self, kind: EnvironmentalViolationType) -> Optional[float]:
        """Seconds left on the countdown, or None if no countdown is running"""
        episode = self.episode(kind)
        if episode.state != EpisodeState.VIOLATING or episode.deadline is None:
            return None
        return max(0.0, episode.deadline - self.clock())

    def snapshot(self) -> Dict[str, Any]:
        return {
            "terminated": self._terminated,
            "termination_reason": self.termination_reason,
            "episodes": {
                kind.value: {
                    "state": episode.state.value,
                    "warnings": episode.warning_count,
                    "time_remaining": self.time_remaining(kind),
                }
                for kind, episode in self._episodes.items()
            },
        }
