"""Tests for environment-driven settings."""

from __future__ import annotations

import os
from unittest import mock

import pytest

from fair_bot.config import FairSettings, load_fair_settings
from fair_bot.models import Asset, Venue


def test_defaults() -> None:
    with mock.patch.dict(os.environ, {}, clear=True):
        s = load_fair_settings()
    assert s.assets == [Asset.BTC, Asset.ETH, Asset.SOL, Asset.XRP]
    assert len(s.active_venues) == 9
    assert s.anchor_venue is Venue.BINANCE
    assert s.non_comparable_venues == [Venue.DEEPCOIN, Venue.COINBASE]
    assert s.ewma_lambda == 0.985
    assert s.feed_stale_seconds == 5.0
    assert s.orderbook_stale_seconds == 15.0
    assert s.reconnect_max_seconds == 10.0
    assert s.orderbook_reconnect_max_seconds == 8.0
    assert s.latch_timeout_seconds == 3.0
    assert s.venue_stale_seconds == 15.0
    assert not s.trading_enabled


def test_env_overrides() -> None:
    env = {
        "FAIR_ASSETS": "btc, sol",
        "FAIR_VENUES": "BYBIT,OKX",
        "FAIR_ANCHOR_VENUE": "okx",
        "FAIR_NON_COMPARABLE_VENUES": "none",
        "FAIR_EWMA_LAMBDA": "0.97",
        "FAIR_GAP_RISK_ENABLED": "false",
        "FAIR_SPIKE_THRESHOLD_OVERRIDES": "SOL:0.05,XRP:0.06",
        "FAIR_UPDATE_QUEUE_SIZE": "64",
        "FAIR_START_PRICE_SOURCE": "coinbase",
        "FAIR_TRADING_ENABLED": "yes",
    }
    with mock.patch.dict(os.environ, env, clear=True):
        s = load_fair_settings()
    assert s.assets == [Asset.BTC, Asset.SOL]
    assert s.active_venues == [Venue.BYBIT, Venue.OKX]
    assert s.anchor_venue is Venue.OKX
    assert s.non_comparable_venues == []
    assert s.ewma_lambda == pytest.approx(0.97)
    assert s.gap_risk_enabled is False
    assert s.spike_threshold_overrides == {Asset.SOL: 0.05, Asset.XRP: 0.06}
    assert s.update_queue_size == 64
    assert s.start_price_source == "COINBASE"
    assert s.trading_enabled


@pytest.mark.parametrize(
    "env",
    [
        {"FAIR_ASSETS": "DOGE"},
        {"FAIR_VENUES": "KRAKEN"},
        {"FAIR_EWMA_LAMBDA": "1.0"},
        {"FAIR_START_PRICE_SOURCE": "kraken"},
        {"FAIR_SPIKE_THRESHOLD_OVERRIDES": "SOL=0.05"},
        {"FAIR_RECOMPUTE_INTERVAL_SECONDS": "0"},
        {"FAIR_HYBRID_MONEYNESS_SCALE": "0"},
        {"FAIR_VENUE_STALE_SECONDS": "-1"},
    ],
)
def test_invalid_values_rejected(env) -> None:
    with mock.patch.dict(os.environ, env, clear=True):
        with pytest.raises(ValueError):
            load_fair_settings()


def test_empty_venue_list_rejected() -> None:
    with pytest.raises(ValueError):
        FairSettings(active_venues=[])
