"""
Tests for the Environmental Monitor

Fullscreen and tab-visibility episodes, countdown expiry and the
warning-limit termination.
"""

import asyncio

import pytest

from examguard.proctor.monitoring import (
    ClientReportedFullscreen,
    EnvironmentalMonitor,
    EpisodeState,
)
from examguard.proctor.types import EnvironmentalViolationType

FULLSCREEN = EnvironmentalViolationType.FULLSCREEN_EXIT
TAB = EnvironmentalViolationType.TAB_SWITCH


@pytest.fixture
def events():
    return {"violations": [], "terminations": []}


@pytest.fixture
def monitor(scheduler, clock, events):
    return EnvironmentalMonitor(
        countdown_seconds=30.0,
        max_warnings=3,
        on_violation=lambda kind, count: events["violations"].append((kind, count)),
        on_terminate=lambda reason: events["terminations"].append(reason),
        scheduler=scheduler,
        clock=clock
    )


class TestFullscreenEpisodes:
    """Tests for the fullscreen-exit state machine"""

    def test_exit_and_return_in_time(self, monitor, scheduler, clock, events):
        """One exit resolved before the countdown: one warning, no termination"""
        assert monitor.handle_fullscreen_change(False)
        clock.advance(10)
        assert monitor.handle_fullscreen_change(True)

        assert monitor.warning_count(FULLSCREEN) == 1
        assert monitor.episode(FULLSCREEN).state == EpisodeState.COMPLIANT
        assert not monitor.is_terminated
        assert scheduler.pending() == []
        assert events["violations"] == [(FULLSCREEN, 1)]

    def test_third_warning_terminates(self, monitor, events):
        """Three resolved exits terminate on the third warning only"""
        for _ in range(2):
            monitor.handle_fullscreen_change(False)
            monitor.handle_fullscreen_change(True)
        assert not monitor.is_terminated

        monitor.handle_fullscreen_change(False)

        assert monitor.is_terminated
        assert monitor.warning_count(FULLSCREEN) == 3
        assert len(events["terminations"]) == 1

    def test_unresolved_exit_terminates_once(self, monitor, scheduler, events):
        monitor.handle_fullscreen_change(False)
        assert len(scheduler.pending()) == 1
        assert scheduler.pending()[0].delay == 30.0

        scheduler.fire_all()

        assert monitor.is_terminated
        assert events["terminations"] and len(events["terminations"]) == 1
        assert monitor.episode(FULLSCREEN).state == EpisodeState.TERMINATED

        # Later events are ignored
        assert not monitor.handle_fullscreen_change(True)
        assert not monitor.handle_visibility_change(False)
        assert not monitor.terminate("again")
        assert len(events["violations"]) == 1
        assert len(events["terminations"]) == 1

    def test_duplicate_exit_ignored(self, monitor, scheduler):
        assert monitor.handle_fullscreen_change(False)
        assert not monitor.handle_fullscreen_change(False)

        assert monitor.warning_count(FULLSCREEN) == 1
        assert len(scheduler.timers) == 1

    def test_return_without_exit_ignored(self, monitor):
        assert not monitor.handle_fullscreen_change(True)
        assert monitor.warning_count(FULLSCREEN) == 0

    def test_cancelled_timer_does_not_terminate(self, monitor, scheduler):
        monitor.handle_fullscreen_change(False)
        timer = scheduler.timers[0]
        monitor.handle_fullscreen_change(True)

        timer.fire()
        assert not monitor.is_terminated

    def test_time_remaining(self, monitor, clock):
        assert monitor.time_remaining(FULLSCREEN) is None

        monitor.handle_fullscreen_change(False)
        clock.advance(12)

        assert monitor.time_remaining(FULLSCREEN) == pytest.approx(18.0)


class TestTabSwitchEpisodes:
    """Tab switches run independently of fullscreen"""

    def test_kinds_are_independent(self, monitor, events):
        monitor.handle_fullscreen_change(False)
        monitor.handle_visibility_change(False)
        monitor.handle_visibility_change(True)

        assert monitor.warning_count(FULLSCREEN) == 1
        assert monitor.warning_count(TAB) == 1
        assert monitor.episode(FULLSCREEN).state == EpisodeState.VIOLATING
        assert monitor.episode(TAB).state == EpisodeState.COMPLIANT
        assert events["violations"] == [(FULLSCREEN, 1), (TAB, 1)]

    def test_tab_countdown_expiry(self, monitor, scheduler):
        monitor.handle_visibility_change(False)
        scheduler.fire_all()

        assert monitor.is_terminated
        assert "tabSwitch" in monitor.termination_reason

    def test_termination_cancels_other_countdowns(self, monitor, scheduler):
        monitor.handle_visibility_change(False)
        for _ in range(2):
            monitor.handle_fullscreen_change(False)
            monitor.handle_fullscreen_change(True)
        monitor.handle_fullscreen_change(False)

        assert monitor.is_terminated
        assert scheduler.pending() == []


class TestLifecycle:
    def test_stop_cancels_and_is_idempotent(self, monitor, scheduler):
        monitor.handle_fullscreen_change(False)
        monitor.stop()
        monitor.stop()

        assert scheduler.pending() == []
        assert not monitor.handle_visibility_change(False)
        assert not monitor.is_terminated

    def test_snapshot(self, monitor, clock):
        monitor.handle_visibility_change(False)
        snapshot = monitor.snapshot()

        assert snapshot["terminated"] is False
        assert snapshot["episodes"]["tabSwitch"]["state"] == "violating"
        assert snapshot["episodes"]["tabSwitch"]["warnings"] == 1
        assert snapshot["episodes"]["fullscreenExit"]["time_remaining"] is None

    def test_sync_with_client_reported_platform(self, scheduler, clock):
        platform = ClientReportedFullscreen(initially_active=True)
        monitor = EnvironmentalMonitor(scheduler=scheduler, clock=clock, platform=platform)

        assert not monitor.sync()

        platform.report(False)
        assert monitor.sync()
        assert monitor.episode(FULLSCREEN).state == EpisodeState.VIOLATING

        platform.report(True)
        assert monitor.sync()
        assert monitor.episode(FULLSCREEN).state == EpisodeState.COMPLIANT

    def test_client_commands_queue(self):
        platform = ClientReportedFullscreen()
        platform.enter()
        platform.exit()

        assert platform.pop_command() == "enter"
        assert platform.drain_commands() == ["exit"]
        assert platform.pop_command() is None

    @pytest.mark.asyncio
    async def test_default_scheduler_uses_event_loop(self):
        terminations = []
        monitor = EnvironmentalMonitor(
            countdown_seconds=0.01,
            on_terminate=terminations.append
        )

        monitor.handle_fullscreen_change(False)
        await asyncio.sleep(0.1)

        assert monitor.is_terminated
        assert len(terminations) == 1
