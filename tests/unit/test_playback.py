"""
Unit tests for the playback gate controller and progress heartbeat.
"""

import asyncio

import pytest

from learnloop.errors import PersistenceError
from learnloop.playback import BLOCKED_SKIP_NOTICE, PlaybackGateController, ProgressHeartbeat


@pytest.fixture
def gate():
    gate = PlaybackGateController(duration=100.0)
    gate.play()
    return gate


class TestSkipBlocking:
    """Forward seeks never pass the furthest watched point."""

    def test_seek_past_max_allowed_is_clamped(self, gate):
        gate.time_update(30.0)
        notices = []
        gate.add_notice_listener(notices.append)

        result = gate.seek(gate.max_allowed_time + 10)

        assert result.blocked is True
        assert result.position == 30.0
        assert gate.current_time == 30.0
        assert notices == [BLOCKED_SKIP_NOTICE]

    def test_seek_backwards_allowed(self, gate):
        gate.time_update(30.0)

        result = gate.seek(10.0)

        assert result.blocked is False
        assert gate.current_time == 10.0
        assert gate.max_allowed_time == 30.0

    def test_seek_within_watched_range(self, gate):
        gate.time_update(30.0)
        gate.seek(5.0)

        result = gate.seek(25.0)

        assert result.blocked is False
        assert gate.current_time == 25.0

    def test_rewind(self, gate):
        gate.time_update(30.0)

        gate.rewind()

        assert gate.current_time == 20.0

    def test_rewind_clamps_at_zero(self, gate):
        gate.time_update(4.0)

        gate.rewind(10)

        assert gate.current_time == 0.0

    def test_privileged_seek_leaves_limit(self, gate):
        gate.time_update(50.0)

        gate.privileged_seek(10.0)

        assert gate.current_time == 10.0
        assert gate.max_allowed_time == 50.0

    def test_resume_position_counts_as_watched(self):
        gate = PlaybackGateController(duration=100.0, start_position=40.0)

        assert gate.seek(35.0).blocked is False
        assert gate.seek(45.0).blocked is True


class TestPlayback:
    def test_tick_only_while_playing(self, gate):
        gate.tick(5.0)
        gate.pause()
        gate.tick(5.0)

        assert gate.current_time == 5.0

    def test_stops_at_end(self, gate):
        gate.time_update(99.0)
        gate.tick(5.0)

        assert gate.current_time == 100.0
        assert gate.at_end is True
        assert gate.is_playing is False

    def test_time_listener_reports_continuity(self, gate):
        events = []
        gate.add_time_listener(lambda prev, cur, continuous: events.append((prev, cur, continuous)))

        gate.tick(1.0)
        gate.seek(0.5)

        assert events == [(0.0, 1.0, True), (1.0, 0.5, False)]


class TestProgressHeartbeat:
    """Periodic saves; failures are counted and retried."""

    @pytest.mark.asyncio
    async def test_flush_success(self):
        saves = []

        async def save():
            saves.append(1)

        heartbeat = ProgressHeartbeat(save=save, interval_seconds=10)

        assert await heartbeat.flush() is True
        assert heartbeat.status.total_saves == 1
        assert heartbeat.status.last_saved_at is not None

    @pytest.mark.asyncio
    async def test_flush_failure_is_counted(self):
        async def save():
            raise PersistenceError("database unavailable")

        heartbeat = ProgressHeartbeat(save=save)

        assert await heartbeat.flush() is False
        assert heartbeat.status.failed_saves == 1
        assert heartbeat.status.last_error == "database unavailable"

    @pytest.mark.asyncio
    async def test_loop_saves_periodically(self):
        saves = []

        async def save():
            saves.append(1)

        heartbeat = ProgressHeartbeat(save=save, interval_seconds=0.01)
        heartbeat.start()
        assert heartbeat.status.is_running
        await asyncio.sleep(0.05)
        await heartbeat.stop(final_flush=True)

        assert not heartbeat.status.is_running
        assert len(saves) >= 2

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self):
        calls = []

        async def save():
            calls.append(1)
            if len(calls) == 1:
                raise PersistenceError("transient")

        heartbeat = ProgressHeartbeat(save=save, interval_seconds=0.01)
        heartbeat.start()
        await asyncio.sleep(0.05)
        await heartbeat.stop(final_flush=False)

        assert heartbeat.status.failed_saves == 1
        assert heartbeat.status.total_saves >= 1
