"""
Time Controller — variable-speed, pausable virtual clock.

State machine: Stopped -> Running -> {Paused <-> Running} -> Stopped.

Each heartbeat compares the wall clock against the last tick; once at
least ``tick_interval_ms`` of real time has passed, the virtual clock
advances by ``real_delta * speed`` and ``on_tick(simulated_delta,
current_time)`` fires. Resuming re-anchors the last tick to "now", so
wall-clock time spent paused is never charged to the simulation.

The heartbeat source is either an asyncio task (started automatically
when ``start``/``resume`` run inside an event loop) or the host calling
:meth:`TimeController.heartbeat` directly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from spendguard.config import settings
from spendguard.domain.schema import now_ms

logger = logging.getLogger(__name__)

VALID_SPEEDS = (1, 2, 5, 10)

TickCallback = Callable[[int, int], None]
Clock = Callable[[], int]


class TimeController:
    """Converts real elapsed time into simulated time at a chosen speed."""

    def __init__(
        self,
        on_tick: TickCallback | None = None,
        speed: int | None = None,
        tick_interval_ms: int | None = None,
        frame_interval_ms: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Args:
            on_tick: Called with (simulated_delta_ms, current_time_ms) per tick.
                May be bound later through the ``on_tick`` attribute.
            speed: Initial multiplier, one of 1, 2, 5 or 10.
            tick_interval_ms: Minimum real time between two ticks.
            frame_interval_ms: Sleep between heartbeats of the asyncio driver.
            clock: Wall-clock source in epoch milliseconds (injectable for tests).
        """
        self.on_tick = on_tick
        self._speed = _checked_speed(speed if speed is not None else settings.default_speed)
        self._tick_interval = tick_interval_ms or settings.tick_interval_ms
        self._frame_interval = frame_interval_ms or settings.frame_interval_ms
        self._clock = clock or now_ms

        self._is_running = False
        self._is_paused = False
        self._current_time = 0
        self._start_time = 0
        self._last_tick_time = 0
        self._task: asyncio.Task | None = None

    # ── Lifecycle ───────────────────────────────────────────────

    def start(self) -> None:
        """Start from Stopped. No-op while already running."""
        if self._is_running:
            return
        now = self._clock()
        self._is_running = True
        self._is_paused = False
        self._start_time = now
        self._current_time = now
        self._last_tick_time = now
        logger.info("Clock started at %d (speed x%d)", now, self._speed)
        self._ensure_driver()

    def pause(self) -> None:
        self._is_paused = True

    def resume(self) -> None:
        """Leave Paused. Real time spent paused is discarded."""
        if not self._is_running:
            return
        self._is_paused = False
        self._last_tick_time = self._clock()
        self._ensure_driver()

    def stop(self) -> None:
        """Halt the heartbeat; the current virtual time is kept."""
        self._is_running = False
        self._is_paused = False

    def reset(self) -> None:
        self.stop()
        self._current_time = 0
        self._start_time = 0
        self._last_tick_time = 0

    # ── Speed and readings ──────────────────────────────────────

    def set_speed(self, speed: int) -> None:
        """
        Change the multiplier; takes effect from the next tick.

        Raises:
            ValueError: If ``speed`` is not one of 1, 2, 5 or 10.
        """
        self._speed = _checked_speed(speed)

    def get_speed(self) -> int:
        return self._speed

    def get_current_time(self) -> int:
        return self._current_time

    def get_elapsed_time(self) -> int:
        return self._current_time - self._start_time

    def is_active(self) -> bool:
        return self._is_running and not self._is_paused

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def is_paused(self) -> bool:
        return self._is_paused

    @property
    def clock(self) -> Clock:
        return self._clock

    # ── Heartbeat ───────────────────────────────────────────────

    def heartbeat(self) -> bool:
        """
        Run one heartbeat of the tick algorithm.

        Returns:
            True if a tick was emitted.
        """
        if not self._is_running or self._is_paused:
            return False

        now = self._clock()
        real_delta = now - self._last_tick_time
        if real_delta < self._tick_interval:
            return False

        simulated_delta = real_delta * self._speed
        self._current_time += simulated_delta
        self._last_tick_time = now
        if self.on_tick is not None:
            self.on_tick(simulated_delta, self._current_time)
        return True

    async def run(self) -> None:
        """Drive heartbeats until stopped or paused."""
        while self._is_running and not self._is_paused:
            self.heartbeat()
            await asyncio.sleep(self._frame_interval / 1000)

    def _ensure_driver(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the host calls heartbeat() itself.
            return
        if self._task is None or self._task.done():
            self._task = loop.create_task(self.run())


def _checked_speed(speed: int) -> int:
    if speed not in VALID_SPEEDS:
        raise ValueError(f"Unsupported simulation speed {speed}; expected one of {VALID_SPEEDS}")
    return speed
