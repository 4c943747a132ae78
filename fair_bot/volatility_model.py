"""Diffusion (GBM) probability estimator for one (asset, venue) pair.

Tracks a short, time-bounded tick history and an EWMA of squared tick
log-returns.  Ticks are assumed to arrive roughly once per second, so the
per-sample variance is scaled by sqrt(60) to a per-minute volatility:

    sigma_min = max(sqrt(ewma_var) * sqrt(60), sigma_floor)
    d         = ln(S / S0) / (sigma_min * sqrt(tau_minutes))
    P(UP)     = N(d)

Near expiry a gap-risk floor ``0.001 / max(0.1, sqrt(tau))`` keeps the
estimate from snapping to 0/1 in the closing seconds.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from typing import Deque, Optional, Sequence, Tuple

from fair_bot.models import UpDown
from fair_bot.prob_math import checked_probability, norm_cdf

LOGGER = logging.getLogger(__name__)


class VolatilityModel:
    """Per-(asset, venue) EWMA volatility and up-probability estimator.

    Parameters
    ----------
    ewma_lambda:
        Decay per update.  0.985 ~ 66-tick memory.
    min_sigma_per_minute:
        Volatility floor (fraction per minute).
    retention_seconds:
        Ticks older than this (relative to the newest) are pruned.
    gap_risk_enabled:
        Apply the near-expiry volatility floor.
    """

    def __init__(
        self,
        ewma_lambda: float = 0.985,
        min_sigma_per_minute: float = 0.00025,
        retention_seconds: float = 60.0,
        gap_risk_enabled: bool = True,
    ) -> None:
        if not 0.0 < ewma_lambda < 1.0:
            raise ValueError(f"ewma_lambda must be in (0, 1), got {ewma_lambda}")
        self._lambda = ewma_lambda
        self._min_sigma = min_sigma_per_minute
        self._retention = retention_seconds
        self._gap_risk_enabled = gap_risk_enabled
        self._history: Deque[Tuple[float, float]] = deque()  # (ts, price)
        self._ewma_variance = 0.0
        self._last_probability: Optional[float] = None

    # ── state ──────────────────────────────────────────────────────

    @property
    def ewma_variance(self) -> float:
        return self._ewma_variance

    @property
    def last_probability(self) -> Optional[float]:
        return self._last_probability

    @property
    def min_sigma_per_minute(self) -> float:
        return self._min_sigma

    def __len__(self) -> int:
        return len(self._history)

    def latest_price(self) -> Optional[float]:
        if not self._history:
            return None
        return self._history[-1][1]

    # ── ingestion ──────────────────────────────────────────────────

    def add_price(self, price: float, timestamp: Optional[float] = None) -> None:
        """Append a tick, prune old history and update the EWMA variance."""
        if not (math.isfinite(price) and price > 0):
            return
        ts = timestamp if timestamp is not None else time.time()
        prev_price = self._history[-1][1] if self._history else None
        self._history.append((ts, price))

        cutoff = ts - self._retention
        while self._history and self._history[0][0] < cutoff:
            self._history.popleft()

        if prev_price is not None:
            r = math.log(price / prev_price)
            self._ewma_variance = (
                self._lambda * self._ewma_variance + (1.0 - self._lambda) * r * r
            )

    def preload_history(
        self,
        prices: Sequence[float],
        interval_seconds: float = 60.0,
        timestamp: Optional[float] = None,
    ) -> int:
        """Seed the EWMA from historical closes (oldest first).

        Returns sampled every *interval_seconds* are rescaled to the
        per-sample variance of the ~1 s live stream.  Resets history.
        Returns the number of returns folded in.
        """
        self.reset()
        scale = 1.0 / max(interval_seconds, 1.0)
        valid = [p for p in prices if math.isfinite(p) and p > 0]
        count = 0
        for prev, curr in zip(valid, valid[1:]):
            r = math.log(curr / prev)
            self._ewma_variance = (
                self._lambda * self._ewma_variance + (1.0 - self._lambda) * r * r * scale
            )
            count += 1
        if valid:
            ts = timestamp if timestamp is not None else time.time()
            self._history.append((ts, valid[-1]))
        LOGGER.debug("VolatilityModel: preloaded %d returns (sigma/min=%.6f)",
                     count, self.estimate_volatility_per_minute())
        return count

    def reset(self) -> None:
        self._history.clear()
        self._ewma_variance = 0.0
        self._last_probability = None

    # ── estimates ──────────────────────────────────────────────────

    def estimate_volatility_per_minute(self) -> float:
        if self._ewma_variance <= 0:
            return self._min_sigma
        sigma_per_minute = math.sqrt(self._ewma_variance) * math.sqrt(60.0)
        return max(sigma_per_minute, self._min_sigma)

    def get_recent_pct_change(self, window_seconds: float) -> float:
        """Percent change from the newest tick back to the newest tick at or
        before ``newest_ts - window_seconds``.  0 when history is too short.
        """
        if len(self._history) < 2:
            return 0.0
        latest_ts, latest_price = self._history[-1]
        target = latest_ts - window_seconds
        for ts, price in reversed(self._history):
            if ts <= target:
                return (latest_price - price) / price * 100.0
        return 0.0

    def calculate(
        self,
        current_price: float,
        start_price: float,
        minutes_remaining: float,
    ) -> UpDown:
        """Probability that the window settles UP given the current price."""
        if minutes_remaining <= 0 or current_price <= 0 or start_price <= 0:
            up = 1.0 if current_price >= start_price else 0.0
            return UpDown(up=up, down=1.0 - up)

        tau = minutes_remaining
        sigma = self.estimate_volatility_per_minute()
        if self._gap_risk_enabled:
            sigma = max(sigma, 0.001 / max(0.1, math.sqrt(tau)))

        d = math.log(current_price / start_price) / (sigma * math.sqrt(tau))
        result = checked_probability(norm_cdf(d))
        if result.fallback_used:
            LOGGER.warning(
                "VolatilityModel: non-finite probability (price=%s start=%s tau=%s)",
                current_price, start_price, tau,
            )
        self._last_probability = result.value
        return UpDown(up=result.value, down=1.0 - result.value)
