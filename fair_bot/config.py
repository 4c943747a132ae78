"""Configuration for the fair-value engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List

from dotenv import load_dotenv

from fair_bot.models import Asset, Venue, parse_asset, parse_venue


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _as_csv(value: str | None) -> List[str]:
    if value is None or not value.strip():
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _as_assets(value: str | None, default: List[Asset]) -> List[Asset]:
    return [parse_asset(p) for p in _as_csv(value)] or list(default)


def _as_venues(value: str | None, default: List[Venue]) -> List[Venue]:
    parts = _as_csv(value)
    if value is not None and value.strip().lower() == "none":
        return []
    return [parse_venue(p) for p in parts] or list(default)


def _as_asset_floats(value: str | None) -> Dict[Asset, float]:
    """``"SOL:0.05,XRP:0.06"`` -> ``{Asset.SOL: 0.05, Asset.XRP: 0.06}``."""
    out: Dict[Asset, float] = {}
    for part in _as_csv(value):
        name, sep, raw = part.partition(":")
        if not sep:
            raise ValueError(f"expected ASSET:VALUE, got {part!r}")
        out[parse_asset(name)] = float(raw)
    return out


_ALL_ASSETS = [Asset.BTC, Asset.ETH, Asset.SOL, Asset.XRP]
_DEFAULT_VENUES = [
    Venue.BINANCE,
    Venue.BYBIT,
    Venue.GATE,
    Venue.OKX,
    Venue.MEXC,
    Venue.BITGET,
    Venue.DEEPCOIN,
    Venue.COINBASE,
    Venue.BITFINEX,
]
_DEFAULT_NON_COMPARABLE = [Venue.DEEPCOIN, Venue.COINBASE]


@dataclass(frozen=True)
class FairSettings:
    """Settings for the fair-value engine.

    All env vars are prefixed with ``FAIR_``.
    """

    assets: List[Asset] = field(default_factory=lambda: list(_ALL_ASSETS))
    active_venues: List[Venue] = field(default_factory=lambda: list(_DEFAULT_VENUES))
    anchor_venue: Venue = Venue.BINANCE
    non_comparable_venues: List[Venue] = field(default_factory=lambda: list(_DEFAULT_NON_COMPARABLE))

    # ── Volatility model ───────────────────────────────────────────
    ewma_lambda: float = 0.985
    min_sigma_per_minute: float = 0.00025
    history_retention_seconds: float = 60.0
    gap_risk_enabled: bool = True

    # ── Basis calibration ──────────────────────────────────────────
    spike_window_seconds: float = 0.5
    spike_threshold_pct: float = 0.035
    spike_threshold_overrides: Dict[Asset, float] = field(default_factory=dict)
    converge_tolerance: float = 0.005
    latch_timeout_seconds: float = 3.0
    hybrid_moneyness_scale: float = 0.002
    venue_stale_seconds: float = 15.0

    # ── Scheduling / lifecycle ─────────────────────────────────────
    recompute_interval_seconds: float = 0.05
    idle_recompute_seconds: float = 0.5
    rollover_check_seconds: float = 1.0
    rollover_grace_seconds: float = 2.0
    rediscovery_retry_seconds: float = 5.0
    discovery_timeout_seconds: float = 5.0
    update_queue_size: int = 10_000

    # ── Connections ────────────────────────────────────────────────
    reconnect_base_seconds: float = 1.0
    reconnect_max_seconds: float = 10.0
    orderbook_reconnect_max_seconds: float = 8.0
    watchdog_interval_seconds: float = 2.0
    feed_stale_seconds: float = 5.0
    orderbook_stale_seconds: float = 15.0
    orderbook_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
    gamma_url: str = "https://gamma-api.polymarket.com/markets"
    binance_klines_url: str = "https://fapi.binance.com/fapi/v1/klines"
    start_price_source: str = "BINANCE"  # "BINANCE" | "COINBASE"
    http_timeout_seconds: float = 5.0

    # ── Volatility preload ─────────────────────────────────────────
    preload_enabled: bool = True
    preload_minutes: int = 60

    # ── Trading ────────────────────────────────────────────────────
    trading_enabled: bool = False
    price_difference_threshold: float = 0.018
    trade_amount: float = 15.0
    trade_cooldown_seconds: float = 20.0

    # ── Output ─────────────────────────────────────────────────────
    log_level: str = "INFO"
    status_log_interval_seconds: float = 5.0

    def __post_init__(self) -> None:
        if not self.assets:
            raise ValueError("at least one asset is required")
        if not self.active_venues:
            raise ValueError("at least one venue is required")
        if not 0.0 < self.ewma_lambda < 1.0:
            raise ValueError(f"ewma_lambda must be in (0, 1), got {self.ewma_lambda}")
        if self.start_price_source.upper() not in {"BINANCE", "COINBASE"}:
            raise ValueError(f"unknown start_price_source: {self.start_price_source!r}")
        if self.hybrid_moneyness_scale <= 0:
            raise ValueError("hybrid_moneyness_scale must be positive")
        if self.venue_stale_seconds <= 0:
            raise ValueError("venue_stale_seconds must be positive")
        if self.recompute_interval_seconds <= 0:
            raise ValueError("recompute_interval_seconds must be positive")


def load_fair_settings() -> FairSettings:
    """Build ``FairSettings`` from ``FAIR_*`` environment variables (and ``.env``)."""
    load_dotenv(override=False)
    d = FairSettings()
    return FairSettings(
        assets=_as_assets(os.getenv("FAIR_ASSETS"), d.assets),
        active_venues=_as_venues(os.getenv("FAIR_VENUES"), d.active_venues),
        anchor_venue=parse_venue(os.getenv("FAIR_ANCHOR_VENUE", d.anchor_venue.value)),
        non_comparable_venues=_as_venues(os.getenv("FAIR_NON_COMPARABLE_VENUES"), d.non_comparable_venues),
        ewma_lambda=_as_float(os.getenv("FAIR_EWMA_LAMBDA"), d.ewma_lambda),
        min_sigma_per_minute=_as_float(os.getenv("FAIR_MIN_SIGMA_PER_MINUTE"), d.min_sigma_per_minute),
        history_retention_seconds=_as_float(os.getenv("FAIR_HISTORY_RETENTION_SECONDS"), d.history_retention_seconds),
        gap_risk_enabled=_as_bool(os.getenv("FAIR_GAP_RISK_ENABLED"), d.gap_risk_enabled),
        spike_window_seconds=_as_float(os.getenv("FAIR_SPIKE_WINDOW_SECONDS"), d.spike_window_seconds),
        spike_threshold_pct=_as_float(os.getenv("FAIR_SPIKE_THRESHOLD_PCT"), d.spike_threshold_pct),
        spike_threshold_overrides=_as_asset_floats(os.getenv("FAIR_SPIKE_THRESHOLD_OVERRIDES")),
        converge_tolerance=_as_float(os.getenv("FAIR_CONVERGE_TOLERANCE"), d.converge_tolerance),
        latch_timeout_seconds=_as_float(os.getenv("FAIR_LATCH_TIMEOUT_SECONDS"), d.latch_timeout_seconds),
        hybrid_moneyness_scale=_as_float(os.getenv("FAIR_HYBRID_MONEYNESS_SCALE"), d.hybrid_moneyness_scale),
        venue_stale_seconds=_as_float(os.getenv("FAIR_VENUE_STALE_SECONDS"), d.venue_stale_seconds),
        recompute_interval_seconds=_as_float(os.getenv("FAIR_RECOMPUTE_INTERVAL_SECONDS"), d.recompute_interval_seconds),
        idle_recompute_seconds=_as_float(os.getenv("FAIR_IDLE_RECOMPUTE_SECONDS"), d.idle_recompute_seconds),
        rollover_check_seconds=_as_float(os.getenv("FAIR_ROLLOVER_CHECK_SECONDS"), d.rollover_check_seconds),
        rollover_grace_seconds=_as_float(os.getenv("FAIR_ROLLOVER_GRACE_SECONDS"), d.rollover_grace_seconds),
        rediscovery_retry_seconds=_as_float(os.getenv("FAIR_REDISCOVERY_RETRY_SECONDS"), d.rediscovery_retry_seconds),
        discovery_timeout_seconds=_as_float(os.getenv("FAIR_DISCOVERY_TIMEOUT_SECONDS"), d.discovery_timeout_seconds),
        update_queue_size=_as_int(os.getenv("FAIR_UPDATE_QUEUE_SIZE"), d.update_queue_size),
        reconnect_base_seconds=_as_float(os.getenv("FAIR_RECONNECT_BASE_SECONDS"), d.reconnect_base_seconds),
        reconnect_max_seconds=_as_float(os.getenv("FAIR_RECONNECT_MAX_SECONDS"), d.reconnect_max_seconds),
        orderbook_reconnect_max_seconds=_as_float(
            os.getenv("FAIR_ORDERBOOK_RECONNECT_MAX_SECONDS"), d.orderbook_reconnect_max_seconds,
        ),
        watchdog_interval_seconds=_as_float(os.getenv("FAIR_WATCHDOG_INTERVAL_SECONDS"), d.watchdog_interval_seconds),
        feed_stale_seconds=_as_float(os.getenv("FAIR_FEED_STALE_SECONDS"), d.feed_stale_seconds),
        orderbook_stale_seconds=_as_float(os.getenv("FAIR_ORDERBOOK_STALE_SECONDS"), d.orderbook_stale_seconds),
        orderbook_url=os.getenv("FAIR_ORDERBOOK_URL", d.orderbook_url),
        gamma_url=os.getenv("FAIR_GAMMA_URL", d.gamma_url),
        binance_klines_url=os.getenv("FAIR_BINANCE_KLINES_URL", d.binance_klines_url),
        start_price_source=os.getenv("FAIR_START_PRICE_SOURCE", d.start_price_source).upper(),
        http_timeout_seconds=_as_float(os.getenv("FAIR_HTTP_TIMEOUT_SECONDS"), d.http_timeout_seconds),
        preload_enabled=_as_bool(os.getenv("FAIR_PRELOAD_ENABLED"), d.preload_enabled),
        preload_minutes=_as_int(os.getenv("FAIR_PRELOAD_MINUTES"), d.preload_minutes),
        trading_enabled=_as_bool(os.getenv("FAIR_TRADING_ENABLED"), d.trading_enabled),
        price_difference_threshold=_as_float(
            os.getenv("FAIR_PRICE_DIFFERENCE_THRESHOLD"), d.price_difference_threshold,
        ),
        trade_amount=_as_float(os.getenv("FAIR_TRADE_AMOUNT"), d.trade_amount),
        trade_cooldown_seconds=_as_float(os.getenv("FAIR_TRADE_COOLDOWN_SECONDS"), d.trade_cooldown_seconds),
        log_level=os.getenv("FAIR_LOG_LEVEL", d.log_level),
        status_log_interval_seconds=_as_float(
            os.getenv("FAIR_STATUS_LOG_INTERVAL_SECONDS"), d.status_log_interval_seconds,
        ),
    )
