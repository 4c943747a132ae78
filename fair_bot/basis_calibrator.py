"""Basis calibration of venue-local model probabilities to the market mid.

For each (asset, venue) the calibrator keeps an additive offset
``basis = market_mid - model_up`` and publishes ``model_up + basis``.

* Calm and converged (projected or raw gap under tolerance): snap the basis.
* Calm but diverged: hold the basis, start a latch clock; once diverged for
  ``latch_timeout_seconds`` snap anyway so a bad basis cannot persist.
* Spike (|recent move| above threshold): freeze the basis and clear the
  latch, letting the estimate move away from a stale mid.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

from fair_bot.models import Asset, Venue
from fair_bot.prob_math import ProbabilityResult, checked_probability
from fair_bot.volatility_model import VolatilityModel

LOGGER = logging.getLogger(__name__)


class BasisPhase(Enum):
    UNLATCHED = "unlatched"
    LATCHED = "latched"


@dataclass
class BasisState:
    offset: Optional[float] = None
    latch_start: Optional[float] = None

    @property
    def phase(self) -> BasisPhase:
        return BasisPhase.UNLATCHED if self.latch_start is None else BasisPhase.LATCHED

    def snap(self, market_mid: float, model_up: float) -> None:
        self.offset = market_mid - model_up
        self.latch_start = None


class BasisCalibrator:
    """Per-(asset, venue) basis state machine.

    Parameters
    ----------
    spike_window_seconds:
        Lookback for the shock detector.
    spike_threshold_pct:
        |percent change| over the window that counts as a spike (0.035 = 0.035%).
    spike_threshold_overrides:
        Per-asset thresholds replacing the default.
    converge_tolerance:
        Gap under which model and market are considered aligned.
    latch_timeout_seconds:
        Divergence duration after which the basis is force-snapped.
    """

    def __init__(
        self,
        spike_window_seconds: float = 0.5,
        spike_threshold_pct: float = 0.035,
        spike_threshold_overrides: Optional[Mapping[Asset, float]] = None,
        converge_tolerance: float = 0.005,
        latch_timeout_seconds: float = 3.0,
    ) -> None:
        self._spike_window = spike_window_seconds
        self._spike_threshold = spike_threshold_pct
        self._spike_overrides: Dict[Asset, float] = dict(spike_threshold_overrides or {})
        self._tolerance = converge_tolerance
        self._latch_timeout = latch_timeout_seconds
        self._states: Dict[Tuple[Asset, Venue], BasisState] = {}

    def state(self, asset: Asset, venue: Venue) -> BasisState:
        key = (asset, venue)
        st = self._states.get(key)
        if st is None:
            st = BasisState()
            self._states[key] = st
        return st

    def spike_threshold(self, asset: Asset) -> float:
        return self._spike_overrides.get(asset, self._spike_threshold)

    def is_spike(self, asset: Asset, model: VolatilityModel) -> bool:
        return abs(model.get_recent_pct_change(self._spike_window)) > self.spike_threshold(asset)

    def reset_asset(self, asset: Asset) -> None:
        for key in [k for k in self._states if k[0] == asset]:
            del self._states[key]

    def reset(self) -> None:
        self._states.clear()

    # ── state machine ──────────────────────────────────────────────

    def apply(
        self,
        asset: Asset,
        venue: Venue,
        model_up: float,
        market_mid: float,
        is_spike: bool,
        now: Optional[float] = None,
    ) -> ProbabilityResult:
        """Advance the basis state and return the calibrated UP probability."""
        ts = now if now is not None else time.time()
        st = self.state(asset, venue)

        if market_mid > 0:
            if st.offset is None:
                st.offset = market_mid - model_up

            if is_spike:
                st.latch_start = None
            else:
                diff = abs(model_up + st.offset - market_mid)
                raw_diff = abs(model_up - market_mid)
                if diff < self._tolerance or raw_diff < self._tolerance:
                    st.snap(market_mid, model_up)
                else:
                    if st.latch_start is None:
                        st.latch_start = ts
                    if ts - st.latch_start >= self._latch_timeout:
                        LOGGER.debug(
                            "BasisCalibrator: %s/%s diverged %.2fs, force snap (gap=%.4f)",
                            asset.value, venue.value, ts - st.latch_start, diff,
                        )
                        st.snap(market_mid, model_up)

        offset = st.offset or 0.0
        return checked_probability(model_up + offset, fallback=market_mid)

    def calibrate(
        self,
        asset: Asset,
        venue: Venue,
        model: VolatilityModel,
        current_price: float,
        start_price: float,
        minutes_remaining: float,
        market_mid: float,
        now: Optional[float] = None,
    ) -> ProbabilityResult:
        """Run the model for this venue and calibrate it against *market_mid*."""
        model_up = model.calculate(current_price, start_price, minutes_remaining).up
        return self.apply(
            asset,
            venue,
            model_up,
            market_mid,
            is_spike=self.is_spike(asset, model),
            now=now,
        )
