"""Single recompute loop driven by the feeds' update channel.

Feeds only write their own grid slice and enqueue a notification.  This
loop is the one place the fair estimate is recomputed: it waits for a
notification (or the idle timeout), drains the queue, runs any due
rollover check to completion, recomputes, then sleeps out the remainder
of ``recompute_interval_seconds`` so bursts cannot exceed the rate.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional

from fair_bot.fair_engine import CombinedFairEngine
from fair_bot.lifecycle import MarketLifecycleManager

LOGGER = logging.getLogger(__name__)

RecomputeHook = Callable[[float], Awaitable[None]]


class RecomputeScheduler:
    def __init__(
        self,
        engine: CombinedFairEngine,
        lifecycle: MarketLifecycleManager,
        updates: "asyncio.Queue[Any]",
        recompute_interval_seconds: float = 0.05,
        idle_interval_seconds: float = 0.5,
        rollover_check_interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._engine = engine
        self._lifecycle = lifecycle
        self._updates = updates
        self._interval = recompute_interval_seconds
        self._idle = idle_interval_seconds
        self._rollover_interval = rollover_check_interval_seconds
        self._clock = clock
        self._hooks: List[RecomputeHook] = []
        self._last_rollover_check = 0.0
        self._running = False
        self._task: Optional[asyncio.Task[None]] = None
        self.recompute_count = 0
        self.drained = 0

    def add_hook(self, hook: RecomputeHook) -> None:
        """Awaited after every recompute with the recompute timestamp."""
        self._hooks.append(hook)

    def drain(self) -> int:
        count = 0
        while True:
            try:
                self._updates.get_nowait()
            except asyncio.QueueEmpty:
                break
            count += 1
        self.drained += count
        return count

    async def step(self, now: Optional[float] = None) -> None:
        """One recompute pass: rollover check (if due), update, hooks."""
        ts = now if now is not None else self._clock()
        if ts - self._last_rollover_check >= self._rollover_interval:
            self._last_rollover_check = ts
            await self._lifecycle.check_rollover(ts)
        self._engine.update_all(ts, self._lifecycle.active_assets())
        self.recompute_count += 1
        for hook in self._hooks:
            await hook(ts)

    async def run(self) -> None:
        while self._running:
            try:
                await asyncio.wait_for(self._updates.get(), timeout=self._idle)
            except asyncio.TimeoutError:
                pass
            self.drain()
            started = self._clock()
            try:
                await self.step(started)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("RecomputeScheduler: recompute failed")
            elapsed = self._clock() - started
            if elapsed < self._interval:
                await asyncio.sleep(self._interval - elapsed)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self.run(), name="recompute-scheduler")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
