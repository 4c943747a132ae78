"""Generic exchange trade feed parameterised by a :class:`VenueAdapter`."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Tuple

from fair_bot.feeds.stream import StreamFeed
from fair_bot.feeds.venues import VenueAdapter
from fair_bot.models import Asset, MarketWindow, PriceTick, Venue
from fair_bot.state import VenueStateGrid

LOGGER = logging.getLogger(__name__)

_PARSE_ERRORS: Tuple[type, ...] = (ValueError, KeyError, TypeError, IndexError, AttributeError)


class ExchangeFeed(StreamFeed):
    """One persistent connection to one venue.

    Valid ticks are written into this venue's column of the shared grid and
    published on the ``updates`` queue for the recompute scheduler.  When
    the queue is full the notification is dropped; the grid already holds
    the price, so the next recompute still sees it.
    """

    def __init__(
        self,
        adapter: VenueAdapter,
        grid: VenueStateGrid,
        updates: Optional["asyncio.Queue[PriceTick]"] = None,
        on_tick: Optional[Callable[[PriceTick], None]] = None,
        **kwargs: Any,
    ) -> None:
        self.adapter = adapter
        self._grid = grid
        self._assets = tuple(a for a in grid.assets if a in adapter.symbols)
        self._updates = updates
        self._on_tick = on_tick
        self.name = adapter.venue.value
        self.ticks_received = 0
        self.dropped_messages = 0
        self.dropped_updates = 0
        kwargs.setdefault("ping_interval_seconds", adapter.ping_interval_seconds)
        super().__init__(adapter.endpoint(self._assets), **kwargs)

    @property
    def venue(self) -> Venue:
        return self.adapter.venue

    @property
    def assets(self) -> Tuple[Asset, ...]:
        return self._assets

    async def connect(self, initial_windows: Optional[Mapping[Asset, MarketWindow]] = None) -> None:
        """Seed this venue's window fields, then start the owner task."""
        for window in (initial_windows or {}).values():
            sl = self._grid.find(window.asset, self.venue)
            if sl is not None and window.is_known:
                sl.apply_window(window)
        await self.start()

    async def _on_open(self, ws: Any) -> None:
        self.adapter.on_connect()
        messages = self.adapter.subscribe_messages(self._assets)
        for msg in messages:
            await ws.send(msg)
        if messages:
            LOGGER.info("%s: subscribed %s", self.name, ",".join(a.value for a in self._assets))

    def ping_message(self, now: float) -> Optional[str]:
        return self.adapter.ping_message(now)

    def handle_raw(self, raw: Any, now: float) -> int:
        try:
            parsed = self.adapter.parse(raw)
        except json.JSONDecodeError:
            self.dropped_messages += 1
            LOGGER.debug("%s: dropped non-JSON message %.80r", self.name, raw)
            return 0
        except _PARSE_ERRORS as exc:
            self.dropped_messages += 1
            LOGGER.debug("%s: dropped malformed message (%s)", self.name, exc)
            return 0
        return self.apply_trades(parsed, now)

    def apply_trades(self, trades: Iterable[Tuple[Asset, float]], now: float) -> int:
        applied = 0
        for asset, price in trades:
            if asset not in self._assets or not PriceTick.is_valid_price(price):
                continue
            sl = self._grid.find(asset, self.venue)
            if sl is None:
                continue
            tick = PriceTick(asset=asset, venue=self.venue, timestamp=now, price=price)
            if sl.record_tick(tick):
                LOGGER.info("%s: %s start price set: %s", self.name, asset.value, price)
            applied += 1
            self.ticks_received += 1
            self._publish(tick)
        return applied

    def _publish(self, tick: PriceTick) -> None:
        if self._on_tick is not None:
            self._on_tick(tick)
        if self._updates is None:
            return
        try:
            self._updates.put_nowait(tick)
        except asyncio.QueueFull:
            self.dropped_updates += 1
