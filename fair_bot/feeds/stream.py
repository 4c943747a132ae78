"""Self-healing WebSocket connection shared by every feed.

One owner task per feed runs connect -> subscribe -> receive.  The same
task checks the watchdog (no message for ``stale_after_seconds``), sends
keep-alive pings and honours reconnect requests, so a forced close can
never race an in-flight reconnect.  Failed or closed connections are
retried after ``min(base * attempt, cap)`` seconds; ``attempt`` resets to 0
on every successful open.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncContextManager, Awaitable, Callable, Optional

import websockets

LOGGER = logging.getLogger(__name__)

Connector = Callable[[str], AsyncContextManager[Any]]
Sleeper = Callable[[float], Awaitable[None]]


def default_connector(url: str) -> AsyncContextManager[Any]:
    return websockets.connect(
        url,
        ping_interval=20,
        ping_timeout=10,
        close_timeout=2,
        max_size=None,
    )


def reconnect_delay(attempt: int, base_seconds: float = 1.0, max_seconds: float = 10.0) -> float:
    """Capped linear-growth backoff: 1, 2, 3, ... capped at *max_seconds*."""
    return min(base_seconds * max(attempt, 0), max_seconds)


class StaleConnection(Exception):
    """Raised by the watchdog when an open socket has gone silent."""


class StreamFeed:
    """Base class: subclasses implement :meth:`_on_open` and :meth:`handle_raw`."""

    name = "stream"

    def __init__(
        self,
        url: str,
        *,
        reconnect_base_seconds: float = 1.0,
        reconnect_max_seconds: float = 10.0,
        watchdog_interval_seconds: float = 2.0,
        stale_after_seconds: float = 5.0,
        ping_interval_seconds: Optional[float] = None,
        connector: Optional[Connector] = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._url = url
        self._reconnect_base = reconnect_base_seconds
        self._reconnect_max = reconnect_max_seconds
        self._watchdog_interval = watchdog_interval_seconds
        self._stale_after = stale_after_seconds
        self._ping_interval = ping_interval_seconds
        self._connector: Connector = connector or default_connector
        self._sleep = sleep
        self._clock = clock

        self._running = False
        self._task: Optional[asyncio.Task[None]] = None
        self._ws: Any = None
        self._attempt = 0
        self._last_message_ts = 0.0
        self._last_ping_ts = 0.0
        self._reconnect_requested = False
        self.connect_count = 0
        self.stale_closes = 0

    # ── public API ─────────────────────────────────────────────────

    @property
    def url(self) -> str:
        return self._url

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def last_message_ts(self) -> float:
        return self._last_message_ts

    @property
    def running(self) -> bool:
        return self._running

    def is_stale(self, now: Optional[float] = None) -> bool:
        ts = now if now is not None else self._clock()
        return ts - self._last_message_ts > self._stale_after

    def next_delay(self) -> float:
        """Count a failed/closed attempt and return the delay before the next one."""
        self._attempt += 1
        return reconnect_delay(self._attempt, self._reconnect_base, self._reconnect_max)

    def request_reconnect(self) -> None:
        """Ask the owner task to drop the current socket and reconnect now."""
        self._reconnect_requested = True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"feed-{self.name}")
        LOGGER.info("%s: started (%s)", self.name, self._url)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._ws = None
        LOGGER.info("%s: stopped", self.name)

    # ── hooks ──────────────────────────────────────────────────────

    async def _on_open(self, ws: Any) -> None:
        """Send subscriptions on a freshly opened socket."""

    def handle_raw(self, raw: Any, now: float) -> int:
        """Process one inbound frame; return the number of updates applied."""
        raise NotImplementedError

    def ping_message(self, now: float) -> Optional[str]:
        return None

    async def _on_idle(self, ws: Any) -> None:
        """Called after each receive/timeout on the owner task."""

    # ── owner task ─────────────────────────────────────────────────

    async def _run(self) -> None:
        while self._running:
            try:
                await self._connect_once()
            except asyncio.CancelledError:
                raise
            except StaleConnection as exc:
                self.stale_closes += 1
                LOGGER.warning("%s: %s, forcing reconnect", self.name, exc)
            except Exception as exc:
                LOGGER.warning("%s: connection error: %s", self.name, exc)

            if not self._running:
                break
            if self._reconnect_requested:
                self._reconnect_requested = False
                LOGGER.info("%s: reconnecting on request", self.name)
                continue

            delay = self.next_delay()
            LOGGER.info("%s: reconnecting in %.1fs (attempt %d)", self.name, delay, self._attempt)
            await self._sleep(delay)

    async def _connect_once(self) -> None:
        async with self._connector(self._url) as ws:
            self._ws = ws
            self._attempt = 0
            self._reconnect_requested = False
            now = self._clock()
            self._last_message_ts = now
            self._last_ping_ts = now
            self.connect_count += 1
            LOGGER.info("%s: connected", self.name)
            try:
                await self._on_open(ws)
                await self._stream(ws)
            finally:
                self._ws = None

    async def _stream(self, ws: Any) -> None:
        while self._running:
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=self._watchdog_interval)
            except asyncio.TimeoutError:
                raw = None

            now = self._clock()
            if raw is not None:
                self._last_message_ts = now
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                self.handle_raw(raw, now)
            elif self.is_stale(now):
                raise StaleConnection(
                    f"no message for {now - self._last_message_ts:.1f}s"
                )

            if self._reconnect_requested:
                return

            if self._ping_interval and now - self._last_ping_ts >= self._ping_interval:
                payload = self.ping_message(now)
                if payload is not None:
                    await ws.send(payload)
                self._last_ping_ts = now

            await self._on_idle(ws)
