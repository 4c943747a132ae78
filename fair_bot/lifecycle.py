"""15-minute window lifecycle and coordinated rollover.

Per asset: ``PENDING`` (never discovered) or ``ACTIVE(window)`` ->
``EXPIRED`` once ``now > expiry + grace`` -> ``REDISCOVERING`` -> ``ACTIVE``
with the new window.  Rollover is one awaited pipeline run from the
scheduler task, so no recompute can observe a half-applied window:

1. discover every asset in parallel, each bounded by a timeout;
2. sync start time/price into every venue slice and track the new tokens;
3. force a full reconnect of the order book feed;
4. reset published estimates (and basis state) to neutral;
5. mark the renewed assets ACTIVE.

An asset whose discovery fails keeps its previous window, contributes
nothing, and is retried after ``retry_seconds``.  Retries run discovery for
the waiting assets only, off the scheduler's path; the result is applied
through the same steps on the next check.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol

from fair_bot.fair_engine import CombinedFairEngine
from fair_bot.models import Asset, MarketWindow, TokenResolver
from fair_bot.state import VenueStateGrid

LOGGER = logging.getLogger(__name__)


class LifecyclePhase(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REDISCOVERING = "rediscovering"


class TokenSubscriber(Protocol):
    def update_token_ids(self, asset: Asset, up: Optional[str], down: Optional[str]) -> None:
        ...

    def request_reconnect(self) -> None:
        ...


class MarketLifecycleManager:
    """Parameters
    ----------
    resolver:
        Window discovery (``get_window(asset)``).
    grid, engine:
        State reset on rollover.
    order_book_feed:
        Receives new token ids and the forced reconnect.
    grace_seconds:
        Clock-skew allowance past expiry before a window counts as expired.
    retry_seconds:
        Delay before retrying assets whose discovery failed.
    discovery_timeout_seconds:
        Upper bound per asset lookup.
    """

    def __init__(
        self,
        resolver: TokenResolver,
        grid: VenueStateGrid,
        engine: CombinedFairEngine,
        order_book_feed: Optional[TokenSubscriber] = None,
        grace_seconds: float = 2.0,
        retry_seconds: float = 5.0,
        discovery_timeout_seconds: float = 5.0,
    ) -> None:
        self._resolver = resolver
        self._grid = grid
        self._engine = engine
        self._order_book_feed = order_book_feed
        self._grace = grace_seconds
        self._retry = retry_seconds
        self._discovery_timeout = discovery_timeout_seconds
        self._windows: Dict[Asset, Optional[MarketWindow]] = {a: None for a in grid.assets}
        self._phases: Dict[Asset, LifecyclePhase] = {a: LifecyclePhase.PENDING for a in grid.assets}
        self._next_retry = 0.0
        self._retry_task: Optional[asyncio.Task[Dict[Asset, Optional[MarketWindow]]]] = None
        self._retry_assets: List[Asset] = []
        self.rollover_count = 0

    # ── queries ────────────────────────────────────────────────────

    def phase(self, asset: Asset) -> LifecyclePhase:
        return self._phases[asset]

    def window(self, asset: Asset) -> Optional[MarketWindow]:
        return self._windows.get(asset)

    def windows(self) -> Dict[Asset, MarketWindow]:
        return {a: w for a, w in self._windows.items() if w is not None}

    def active_assets(self) -> FrozenSet[Asset]:
        return frozenset(a for a, p in self._phases.items() if p is LifecyclePhase.ACTIVE)

    def is_expired(self, asset: Asset, now: float) -> bool:
        window = self._windows.get(asset)
        return window is not None and window.is_known and now > window.expiry_time + self._grace

    def is_valid_window(self, window: Optional[MarketWindow], now: float) -> bool:
        return (
            window is not None
            and window.is_known
            and bool(window.up_token_id)
            and bool(window.down_token_id)
            and now <= window.expiry_time + self._grace
        )

    # ── pipeline ───────────────────────────────────────────────────

    async def initialize(self, now: Optional[float] = None) -> Dict[Asset, MarketWindow]:
        """First discovery; returns the windows that became active."""
        ts = now if now is not None else time.time()
        await self._rollover(self._grid.assets, ts, reset_all=True)
        return self.windows()

    async def check_rollover(self, now: Optional[float] = None) -> bool:
        """Apply a rollover if any window expired or a retry finished.

        Expiry runs the full all-asset pipeline inline.  Retries for assets
        that are still waiting run discovery in a background task and are
        applied on a later call, so healthy assets never wait on them.
        """
        ts = now if now is not None else time.time()
        expired = [a for a, p in self._phases.items()
                   if p is LifecyclePhase.ACTIVE and self.is_expired(a, ts)]
        for asset in expired:
            self._phases[asset] = LifecyclePhase.EXPIRED
            LOGGER.info("Lifecycle: %s window expired", asset.value)

        if expired:
            await self.cancel_retry()
            await self._rollover(self._grid.assets, ts, reset_all=True)
            return True

        if self._retry_task is not None:
            if not self._retry_task.done():
                return False
            task, assets = self._retry_task, self._retry_assets
            self._retry_task = None
            await self._apply(assets, task.result(), ts, reset_all=False)
            return True

        waiting = [a for a, p in self._phases.items() if p is not LifecyclePhase.ACTIVE]
        if waiting and ts >= self._next_retry:
            for asset in waiting:
                self._phases[asset] = LifecyclePhase.REDISCOVERING
            self._retry_assets = waiting
            self._retry_task = asyncio.create_task(self.discover(waiting), name="lifecycle-retry")
        return False

    async def cancel_retry(self) -> None:
        if self._retry_task is None:
            return
        self._retry_task.cancel()
        try:
            await self._retry_task
        except asyncio.CancelledError:
            pass
        self._retry_task = None

    async def discover(self, assets: Iterable[Asset]) -> Dict[Asset, Optional[MarketWindow]]:
        assets = list(assets)
        results = await asyncio.gather(*(self._discover_one(a) for a in assets))
        return dict(zip(assets, results))

    async def _discover_one(self, asset: Asset) -> Optional[MarketWindow]:
        try:
            return await asyncio.wait_for(self._resolver.get_window(asset), timeout=self._discovery_timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Lifecycle: %s discovery timed out after %.1fs", asset.value, self._discovery_timeout)
        except Exception as exc:
            LOGGER.warning("Lifecycle: %s discovery failed: %s", asset.value, exc)
        return None

    async def _rollover(self, assets: Iterable[Asset], now: float, reset_all: bool) -> None:
        assets = list(assets)
        for asset in assets:
            if self._phases[asset] is not LifecyclePhase.ACTIVE:
                self._phases[asset] = LifecyclePhase.REDISCOVERING
        found = await self.discover(assets)
        await self._apply(assets, found, now, reset_all)

    async def _apply(
        self,
        assets: List[Asset],
        found: Dict[Asset, Optional[MarketWindow]],
        now: float,
        reset_all: bool,
    ) -> None:
        """Sync discovered windows, reconnect the book, reset estimates."""
        previous = {a: self._phases[a] for a in assets}
        renewed: List[Asset] = []
        for asset in assets:
            window = found.get(asset)
            if not self.is_valid_window(window, now):
                continue
            current = self._windows.get(asset)
            if current is not None and current.start_time == window.start_time \
                    and previous[asset] is LifecyclePhase.ACTIVE:
                continue
            self._grid.apply_window(window)
            if self._order_book_feed is not None:
                self._order_book_feed.update_token_ids(asset, window.up_token_id, window.down_token_id)
            self._windows[asset] = window
            renewed.append(asset)
            LOGGER.info("Lifecycle: %s window synced (open=%d)", asset.value, int(window.start_time))

        if renewed and self._order_book_feed is not None:
            self._order_book_feed.request_reconnect()

        if reset_all:
            self._engine.reset_all()
        else:
            for asset in renewed:
                self._engine.reset_asset(asset)

        failed = []
        for asset in assets:
            if asset in renewed or previous[asset] is LifecyclePhase.ACTIVE:
                self._phases[asset] = LifecyclePhase.ACTIVE
            elif self._windows.get(asset) is not None:
                self._phases[asset] = LifecyclePhase.EXPIRED
                failed.append(asset)
            else:
                self._phases[asset] = LifecyclePhase.PENDING
                failed.append(asset)

        if failed:
            self._next_retry = now + self._retry
            LOGGER.warning("Lifecycle: no new window for %s, retrying in %.0fs",
                           ",".join(a.value for a in failed), self._retry)
        if renewed:
            self.rollover_count += 1
            LOGGER.info("Lifecycle: rollover complete for %s", ",".join(a.value for a in renewed))
