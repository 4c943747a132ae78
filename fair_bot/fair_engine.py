"""Combines calibrated per-venue probabilities into one published estimate."""

from __future__ import annotations

import logging
import math
from typing import Collection, Dict, Iterable, Optional, Protocol, Tuple

import numpy as np

from fair_bot.basis_calibrator import BasisCalibrator
from fair_bot.models import (
    NEUTRAL_ESTIMATE,
    WINDOW_SECONDS,
    Asset,
    FairEstimate,
    Side,
    TradeSignal,
    Venue,
)
from fair_bot.prob_math import checked_probability
from fair_bot.state import VenueStateGrid

LOGGER = logging.getLogger(__name__)


class MidSource(Protocol):
    def get_mid(self, asset: Asset, side: Side = Side.UP) -> float:
        ...


class CombinedFairEngine:
    """Owns per-venue calibrated values and the published FairEstimate.

    Parameters
    ----------
    grid:
        Shared (asset, venue) price state.
    order_book:
        Anything exposing ``get_mid(asset, side)``; 0 means unavailable.
    calibrator:
        Basis state machine applied per (asset, venue).
    active_venues:
        Venues evaluated on each recompute.
    anchor_venue:
        Reference venue for the hybrid estimate; excluded from the average.
    non_comparable_venues:
        Venues quoting in a different basis; excluded from the average.
    hybrid_moneyness_scale:
        |ln(S/S0)| at which the hybrid blend fully trusts the market mid.
    venue_stale_seconds:
        A venue with no tick for longer than this drops out of the average.
    """

    def __init__(
        self,
        grid: VenueStateGrid,
        order_book: MidSource,
        calibrator: Optional[BasisCalibrator] = None,
        active_venues: Optional[Iterable[Venue]] = None,
        anchor_venue: Venue = Venue.BINANCE,
        non_comparable_venues: Iterable[Venue] = (Venue.DEEPCOIN, Venue.COINBASE),
        hybrid_moneyness_scale: float = 0.002,
        venue_stale_seconds: float = 15.0,
    ) -> None:
        if hybrid_moneyness_scale <= 0:
            raise ValueError("hybrid_moneyness_scale must be positive")
        self._grid = grid
        self._book = order_book
        self._calibrator = calibrator or BasisCalibrator()
        venues = tuple(active_venues) if active_venues is not None else grid.venues
        self._active_venues = tuple(v for v in venues if v in grid.venues)
        self._anchor = anchor_venue
        self._excluded = frozenset(non_comparable_venues) | {anchor_venue}
        self._moneyness_scale = hybrid_moneyness_scale
        self._venue_stale = venue_stale_seconds
        self._per_venue: Dict[Tuple[Asset, Venue], Optional[float]] = {}
        self._published: Dict[Asset, FairEstimate] = {a: NEUTRAL_ESTIMATE for a in grid.assets}
        self.fallback_count = 0

    @property
    def calibrator(self) -> BasisCalibrator:
        return self._calibrator

    @property
    def anchor_venue(self) -> Venue:
        return self._anchor

    def comparable_venues(self) -> Tuple[Venue, ...]:
        return tuple(v for v in self._active_venues if v not in self._excluded)

    # ── recompute ──────────────────────────────────────────────────

    def update_all(self, now: float, active_assets: Optional[Collection[Asset]] = None) -> None:
        """Recompute every asset whose window is active."""
        for asset in self._grid.assets:
            if active_assets is not None and asset not in active_assets:
                continue
            self.update_asset(asset, now)

    def update_asset(self, asset: Asset, now: float) -> FairEstimate:
        start_time = self._grid.start_times().get(asset, 0.0)
        if start_time <= 0:
            self._clear_venues(asset)
            self._published[asset] = NEUTRAL_ESTIMATE
            return NEUTRAL_ESTIMATE

        minutes_left = (start_time + WINDOW_SECONDS - now) / 60.0
        if minutes_left <= 0:
            # Window over; hold the last estimate until rollover resets it.
            return self._published[asset]

        market_mid = self._book.get_mid(asset, Side.UP)
        for venue in self._active_venues:
            sl = self._grid.get(asset, venue)
            if sl.last_price <= 0 or sl.start_price <= 0:
                self._per_venue[(asset, venue)] = None
                continue
            if now - sl.last_tick_ts > self._venue_stale:
                if self._per_venue.get((asset, venue)) is not None:
                    LOGGER.info("CombinedFairEngine: %s/%s silent for %.1fs, excluded",
                                asset.value, venue.value, now - sl.last_tick_ts)
                self._per_venue[(asset, venue)] = None
                continue
            result = self._calibrator.calibrate(
                asset,
                venue,
                sl.model,
                sl.last_price,
                sl.start_price,
                minutes_left,
                market_mid,
                now=now,
            )
            if result.fallback_used:
                self.fallback_count += 1
                LOGGER.warning(
                    "CombinedFairEngine: %s/%s non-finite calibrated value, using %.3f",
                    asset.value, venue.value, result.value,
                )
            self._per_venue[(asset, venue)] = result.value

        estimate = FairEstimate.from_up(self.get_combined_fair(asset))
        self._published[asset] = estimate
        return estimate

    # ── outputs ────────────────────────────────────────────────────

    def get_combined_fair(self, asset: Asset) -> float:
        """Mean of valid comparable per-venue values; book mid, else 0.5."""
        values = [
            v
            for venue in self.comparable_venues()
            for v in (self._per_venue.get((asset, venue)),)
            if v is not None and 0.0 < v < 1.0
        ]
        market_mid = self._book.get_mid(asset, Side.UP)
        if not values:
            return checked_probability(market_mid if market_mid > 0 else 0.5).value

        result = checked_probability(float(np.mean(values)), fallback=market_mid)
        if result.fallback_used:
            self.fallback_count += 1
            LOGGER.warning("CombinedFairEngine: %s NaN in combined fair, using %.3f",
                           asset.value, result.value)
        return result.value

    def get_fair(self, asset: Asset) -> FairEstimate:
        return self._published.get(asset, NEUTRAL_ESTIMATE)

    def get_per_venue_fair(self, asset: Asset, venue: Venue) -> float:
        value = self._per_venue.get((asset, venue))
        return 0.5 if value is None else value

    def per_venue_snapshot(self, asset: Asset) -> Dict[Venue, Optional[float]]:
        return {v: self._per_venue.get((asset, v)) for v in self._active_venues}

    def get_hybrid_fair(self, asset: Asset, now: float) -> FairEstimate:
        """Anchor-venue model blended toward the book mid.

        The mid's weight grows with moneyness and as time runs out:
        ``w = 1 - (1 - time_factor) * (1 - money_factor)``.
        """
        sl = self._grid.find(asset, self._anchor)
        if sl is None or sl.start_time <= 0 or sl.last_price <= 0 or sl.start_price <= 0:
            return NEUTRAL_ESTIMATE
        minutes_left = (sl.start_time + WINDOW_SECONDS - now) / 60.0
        model_up = sl.model.calculate(sl.last_price, sl.start_price, minutes_left).up
        market_mid = self._book.get_mid(asset, Side.UP)
        if market_mid <= 0:
            return FairEstimate.from_up(checked_probability(model_up).value)

        time_factor = min(1.0, max(0.0, 1.0 - minutes_left / (WINDOW_SECONDS / 60.0)))
        money_factor = min(1.0, abs(math.log(sl.last_price / sl.start_price)) / self._moneyness_scale)
        weight = 1.0 - (1.0 - time_factor) * (1.0 - money_factor)
        result = checked_probability((1.0 - weight) * model_up + weight * market_mid, fallback=market_mid)
        if result.fallback_used:
            LOGGER.warning("CombinedFairEngine: %s NaN in hybrid fair, using book mid", asset.value)
        return FairEstimate.from_up(result.value)

    def trade_signal(self, asset: Asset, side: Optional[Side] = None) -> Optional[TradeSignal]:
        """Edge of the published estimate over the book mid for *side*.

        Without a side, the side with the larger edge is returned.
        """
        if side is None:
            signals = [s for s in (self.trade_signal(asset, sd) for sd in Side) if s is not None]
            return max(signals, key=lambda s: s.edge, default=None)
        market_mid = self._book.get_mid(asset, side)
        if market_mid <= 0:
            return None
        fair = self.get_fair(asset).for_side(side)
        return TradeSignal(asset=asset, side=side, fair=fair, market_mid=market_mid,
                           edge=fair - market_mid)

    # ── resets ─────────────────────────────────────────────────────

    def reset_asset(self, asset: Asset) -> None:
        """Neutral estimate, no per-venue values, fresh basis state."""
        self._clear_venues(asset)
        self._calibrator.reset_asset(asset)
        self._published[asset] = NEUTRAL_ESTIMATE

    def reset_all(self) -> None:
        for asset in self._grid.assets:
            self.reset_asset(asset)

    def _clear_venues(self, asset: Asset) -> None:
        for venue in self._grid.venues:
            self._per_venue.pop((asset, venue), None)
