"""
Playback gate and progress heartbeat.

PlaybackGateController is the only writer of the video position. It keeps
the furthest watched time (max_allowed_time) and rejects learner seeks past
it; remediation jumps use privileged_seek(), which ignores the limit and
does not raise it.

ProgressHeartbeat saves lecture progress on a fixed interval while a
session is running.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from learnloop.errors import PersistenceError
from learnloop.models import utcnow

BLOCKED_SKIP_NOTICE = "You can't skip ahead. Answer questions to progress."

# (previous, current, continuous) - continuous is False for seeks
TimeListener = Callable[[float, float, bool], None]
NoticeListener = Callable[[str], None]


@dataclass(frozen=True)
class SeekResult:
    """Outcome of a learner-initiated seek."""

    requested: float
    position: float
    blocked: bool
    notice: str | None = None


class PlaybackGateController:
    """Owns current_time, max_allowed_time and duration for one lecture video."""

    def __init__(self, duration: float, start_position: float = 0.0):
        """
        Initialize the gate.

        Args:
            duration: Video length in seconds (0 if unknown)
            start_position: Resume point; already watched, so it is also the
                initial max_allowed_time
        """
        self.duration = max(0.0, duration)
        start = self._clamp(max(0.0, start_position))
        self.current_time = start
        self.max_allowed_time = start
        self.is_playing = False
        self._time_listeners: list[TimeListener] = []
        self._notice_listeners: list[NoticeListener] = []

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_time_listener(self, listener: TimeListener) -> None:
        self._time_listeners.append(listener)

    def add_notice_listener(self, listener: NoticeListener) -> None:
        self._notice_listeners.append(listener)

    def _emit_time(self, previous: float, continuous: bool) -> None:
        for listener in list(self._time_listeners):
            listener(previous, self.current_time, continuous)

    def _emit_notice(self, notice: str) -> None:
        for listener in list(self._notice_listeners):
            listener(notice)

    # =========================================================================
    # Transport
    # =========================================================================

    def _clamp(self, t: float) -> float:
        t = max(0.0, t)
        return min(t, self.duration) if self.duration > 0 else t

    @property
    def at_end(self) -> bool:
        return self.duration > 0 and self.current_time >= self.duration

    def play(self) -> None:
        self.is_playing = True

    def pause(self) -> None:
        self.is_playing = False

    def time_update(self, t: float) -> None:
        """Natural playback reached `t`; the watched limit follows it."""
        previous = self.current_time
        self.current_time = self._clamp(t)
        self.max_allowed_time = max(self.max_allowed_time, self.current_time)
        self._emit_time(previous, continuous=True)
        if self.at_end:
            self.is_playing = False

    def tick(self, dt: float) -> None:
        """Advance playback by `dt` seconds if playing."""
        if self.is_playing and dt > 0:
            self.time_update(self.current_time + dt)

    def seek(self, t: float) -> SeekResult:
        """
        Learner-initiated seek.

        Backward seeks and seeks within the watched range are allowed. A seek
        past max_allowed_time is clamped back to it and a notice is emitted.
        """
        previous = self.current_time
        target = self._clamp(t)
        if target > self.max_allowed_time:
            logger.info(f"Blocked skip to {t:.1f}s (watched up to {self.max_allowed_time:.1f}s)")
            self.current_time = self.max_allowed_time
            self._emit_notice(BLOCKED_SKIP_NOTICE)
            self._emit_time(previous, continuous=False)
            return SeekResult(requested=t, position=self.current_time, blocked=True, notice=BLOCKED_SKIP_NOTICE)

        self.current_time = target
        self._emit_time(previous, continuous=False)
        return SeekResult(requested=t, position=self.current_time, blocked=False)

    def rewind(self, seconds: float = 10.0) -> SeekResult:
        return self.seek(self.current_time - seconds)

    def privileged_seek(self, t: float) -> None:
        """Remediation jump: bypasses the forward limit and leaves it unchanged."""
        previous = self.current_time
        self.current_time = self._clamp(t)
        logger.debug(f"Privileged seek {previous:.1f}s -> {self.current_time:.1f}s")
        self._emit_time(previous, continuous=False)


# =============================================================================
# Heartbeat
# =============================================================================


@dataclass
class HeartbeatStatus:
    is_running: bool = False
    last_saved_at: datetime | None = None
    last_error: str | None = None
    total_saves: int = 0
    failed_saves: int = 0


@dataclass
class ProgressHeartbeat:
    """
    Periodic progress saver.

    Usage:
        heartbeat = ProgressHeartbeat(save=session.save_progress, interval_seconds=10)
        heartbeat.start()
        # ... session runs ...
        await heartbeat.stop()

    A failed save is logged and retried on the next beat.
    """

    save: Callable[[], Awaitable[object]]
    interval_seconds: float = 10.0

    _status: HeartbeatStatus = field(default_factory=HeartbeatStatus)
    _task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def status(self) -> HeartbeatStatus:
        return self._status

    def start(self) -> None:
        """Start the loop on the running event loop."""
        if self._status.is_running:
            logger.warning("Progress heartbeat already running")
            return
        self._status.is_running = True
        self._task = asyncio.create_task(self._loop(), name="progress-heartbeat")
        logger.debug(f"Progress heartbeat started (interval: {self.interval_seconds}s)")

    async def stop(self, final_flush: bool = True) -> None:
        """Cancel the loop and optionally save one last time."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._status.is_running = False
        if final_flush:
            await self.flush()

    async def flush(self) -> bool:
        """Save now. Returns False if the save failed."""
        try:
            await self.save()
        except PersistenceError as e:
            self._status.failed_saves += 1
            self._status.last_error = str(e)
            logger.warning(f"Heartbeat save failed, will retry: {e}")
            return False
        self._status.total_saves += 1
        self._status.last_saved_at = utcnow()
        self._status.last_error = None
        return True

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.flush()
