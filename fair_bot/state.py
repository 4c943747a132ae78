"""Shared per-(asset, venue) price state.

The grid is built once from the configured assets and venues.  Each venue
feed is the only writer of its own column (``last_price``, ``start_price``,
the volatility model); the lifecycle manager writes window fields while the
scheduler is paused for rollover.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from fair_bot.models import Asset, MarketWindow, PriceTick, Venue
from fair_bot.volatility_model import VolatilityModel

LOGGER = logging.getLogger(__name__)


@dataclass
class VenueSlice:
    asset: Asset
    venue: Venue
    model: VolatilityModel
    last_price: float = 0.0
    last_tick_ts: float = 0.0
    start_price: float = 0.0
    start_time: float = 0.0

    def record_tick(self, tick: PriceTick) -> bool:
        """Apply a tick.  Returns True if it also set the start price."""
        self.model.add_price(tick.price, tick.timestamp)
        self.last_price = tick.price
        self.last_tick_ts = tick.timestamp
        if self.start_price <= 0 and self.start_time > 0 and tick.timestamp >= self.start_time:
            self.start_price = tick.price
            return True
        return False

    def apply_window(self, window: MarketWindow) -> None:
        self.start_time = window.start_time
        self.start_price = window.start_price if window.start_price > 0 else 0.0


class VenueStateGrid:
    """Explicit (asset, venue) -> :class:`VenueSlice` map."""

    def __init__(
        self,
        assets: Iterable[Asset],
        venues: Iterable[Venue],
        model_factory: Callable[[], VolatilityModel] = VolatilityModel,
    ) -> None:
        self._assets: Tuple[Asset, ...] = tuple(assets)
        self._venues: Tuple[Venue, ...] = tuple(venues)
        self._slices: Dict[Tuple[Asset, Venue], VenueSlice] = {
            (a, v): VenueSlice(asset=a, venue=v, model=model_factory())
            for a in self._assets
            for v in self._venues
        }

    @property
    def assets(self) -> Tuple[Asset, ...]:
        return self._assets

    @property
    def venues(self) -> Tuple[Venue, ...]:
        return self._venues

    def get(self, asset: Asset, venue: Venue) -> VenueSlice:
        return self._slices[(asset, venue)]

    def find(self, asset: Asset, venue: Venue) -> Optional[VenueSlice]:
        return self._slices.get((asset, venue))

    def for_asset(self, asset: Asset) -> List[VenueSlice]:
        return [self._slices[(asset, v)] for v in self._venues]

    def for_venue(self, venue: Venue) -> List[VenueSlice]:
        return [self._slices[(a, venue)] for a in self._assets]

    def __iter__(self) -> Iterator[VenueSlice]:
        return iter(self._slices.values())

    def apply_window(self, window: MarketWindow) -> None:
        """Sync a new window's start time/price to every venue of its asset."""
        for sl in self.for_asset(window.asset):
            sl.apply_window(window)

    def start_times(self) -> Dict[Asset, float]:
        return {a: max((sl.start_time for sl in self.for_asset(a)), default=0.0) for a in self._assets}
