"""Tests for the EWMA diffusion estimator."""

from __future__ import annotations

import math

import pytest

from fair_bot.volatility_model import VolatilityModel


def _model(**kwargs) -> VolatilityModel:
    return VolatilityModel(**kwargs)


class TestCalculate:
    @pytest.mark.parametrize(
        "current,start,minutes",
        [(100.0, 100.0, 5.0), (101.0, 100.0, 0.2), (99.0, 100.0, 14.9), (0.61, 0.6, 7.0), (50500.0, 50000.0, 10.0)],
    )
    def test_up_plus_down_is_one_and_bounded(self, current: float, start: float, minutes: float) -> None:
        res = _model().calculate(current, start, minutes)
        assert res.up + res.down == pytest.approx(1.0)
        assert 0.001 <= res.up <= 0.999
        assert 0.001 <= res.down <= 0.999

    def test_equal_prices_give_half(self) -> None:
        assert _model().calculate(42000.0, 42000.0, 7.5).up == 0.5

    def test_expired_window_is_one_hot(self) -> None:
        m = _model()
        assert m.calculate(101.0, 100.0, 0.0).up == 1.0
        assert m.calculate(99.0, 100.0, -1.0).up == 0.0
        assert m.calculate(100.0, 100.0, 0.0).up == 1.0

    def test_missing_price_is_one_hot(self) -> None:
        res = _model().calculate(100.0, 0.0, 5.0)
        assert (res.up, res.down) == (1.0, 0.0)

    def test_floor_dominated_move_saturates(self) -> None:
        m = _model(min_sigma_per_minute=0.0004)
        res = m.calculate(50500.0, 50000.0, 10.0)
        sigma = m.estimate_volatility_per_minute()
        assert sigma == 0.0004
        d = math.log(1.01) / (sigma * math.sqrt(10.0))
        assert d > 7
        assert res.up == 0.999
        assert res.down == pytest.approx(0.001)

    def test_gap_risk_floor_softens_closing_seconds(self) -> None:
        with_floor = _model().calculate(100.01, 100.0, 0.05).up
        without = _model(gap_risk_enabled=False).calculate(100.01, 100.0, 0.05).up
        assert with_floor < without

    def test_last_probability_recorded(self) -> None:
        m = _model()
        assert m.last_probability is None
        res = m.calculate(100.02, 100.0, 5.0)
        assert m.last_probability == res.up


class TestVolatility:
    def test_constant_price_keeps_variance_zero(self) -> None:
        m = _model(min_sigma_per_minute=0.00025)
        for i in range(50):
            m.add_price(64000.0, timestamp=1000.0 + i)
        assert m.ewma_variance == 0.0
        assert m.estimate_volatility_per_minute() == 0.00025

    def test_ewma_update(self) -> None:
        m = _model(ewma_lambda=0.9)
        m.add_price(100.0, timestamp=1.0)
        m.add_price(101.0, timestamp=2.0)
        r = math.log(101.0 / 100.0)
        assert m.ewma_variance == pytest.approx(0.1 * r * r)

    def test_sigma_scales_per_minute(self) -> None:
        m = _model(ewma_lambda=0.5, min_sigma_per_minute=1e-9)
        m.add_price(100.0, timestamp=1.0)
        m.add_price(101.0, timestamp=2.0)
        assert m.estimate_volatility_per_minute() == pytest.approx(math.sqrt(m.ewma_variance * 60.0))

    def test_invalid_prices_ignored(self) -> None:
        m = _model()
        m.add_price(0.0, timestamp=1.0)
        m.add_price(-5.0, timestamp=1.0)
        m.add_price(math.nan, timestamp=1.0)
        assert len(m) == 0

    def test_history_pruned_to_retention(self) -> None:
        m = _model(retention_seconds=10.0)
        for i in range(30):
            m.add_price(100.0 + i * 0.01, timestamp=float(i))
        assert len(m) == 11
        assert m.latest_price() == pytest.approx(100.29)

    def test_rejects_bad_lambda(self) -> None:
        with pytest.raises(ValueError):
            VolatilityModel(ewma_lambda=1.0)

    def test_preload_scales_minute_returns(self) -> None:
        m = _model(ewma_lambda=0.5, min_sigma_per_minute=1e-9)
        count = m.preload_history([100.0, 101.0], interval_seconds=60.0, timestamp=5.0)
        r = math.log(1.01)
        assert count == 1
        assert m.ewma_variance == pytest.approx(0.5 * r * r / 60.0)
        # per-minute sigma recovers the minute return magnitude
        assert m.estimate_volatility_per_minute() == pytest.approx(math.sqrt(0.5) * abs(r))
        assert m.latest_price() == 101.0


class TestRecentPctChange:
    def test_insufficient_history(self) -> None:
        m = _model()
        assert m.get_recent_pct_change(0.5) == 0.0
        m.add_price(100.0, timestamp=1.0)
        m.add_price(100.5, timestamp=1.2)
        assert m.get_recent_pct_change(0.5) == 0.0

    def test_percent_units(self) -> None:
        m = _model()
        m.add_price(100.0, timestamp=1.0)
        m.add_price(100.02, timestamp=1.3)
        m.add_price(100.05, timestamp=1.6)
        # newest tick at or before 1.1 is the first one
        assert m.get_recent_pct_change(0.5) == pytest.approx(0.05)

    def test_uses_most_recent_qualifying_tick(self) -> None:
        m = _model()
        m.add_price(100.0, timestamp=0.0)
        m.add_price(200.0, timestamp=0.4)
        m.add_price(202.0, timestamp=1.0)
        assert m.get_recent_pct_change(0.5) == pytest.approx(1.0)
