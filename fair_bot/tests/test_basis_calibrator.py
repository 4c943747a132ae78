"""Tests for the basis freeze/latch state machine."""

from __future__ import annotations

import pytest

from fair_bot.basis_calibrator import BasisCalibrator, BasisPhase
from fair_bot.models import Asset, Venue
from fair_bot.volatility_model import VolatilityModel

A, V = Asset.BTC, Venue.BYBIT


class TestConvergence:
    def test_small_raw_gap_snaps_offset(self) -> None:
        cal = BasisCalibrator()
        res = cal.apply(A, V, model_up=0.52, market_mid=0.521, is_spike=False, now=10.0)
        st = cal.state(A, V)
        assert st.offset == pytest.approx(0.001)
        assert st.latch_start is None
        assert st.phase is BasisPhase.UNLATCHED
        assert res.value == pytest.approx(0.521)

    def test_projected_gap_snaps_after_model_moves(self) -> None:
        cal = BasisCalibrator()
        cal.apply(A, V, 0.40, 0.50, False, now=1.0)  # offset 0.10
        res = cal.apply(A, V, 0.402, 0.503, False, now=2.0)
        assert cal.state(A, V).offset == pytest.approx(0.101)
        assert res.value == pytest.approx(0.503)

    def test_no_mid_leaves_model_untouched(self) -> None:
        cal = BasisCalibrator()
        res = cal.apply(A, V, 0.7, 0.0, False, now=1.0)
        assert cal.state(A, V).offset is None
        assert res.value == pytest.approx(0.7)


class TestSpikeFreeze:
    def test_offset_frozen_across_spike_cycles(self) -> None:
        cal = BasisCalibrator()
        cal.apply(A, V, 0.5, 0.5, False, now=0.0)
        before = cal.state(A, V).offset
        outputs = []
        for i, model_up in enumerate((0.58, 0.63, 0.70)):
            outputs.append(cal.apply(A, V, model_up, 0.5, True, now=1.0 + i).value)
            assert cal.state(A, V).offset == before
            assert cal.state(A, V).latch_start is None
        assert outputs == pytest.approx([0.58, 0.63, 0.70])

    def test_spike_clears_running_latch(self) -> None:
        cal = BasisCalibrator()
        cal.apply(A, V, 0.5, 0.5, False, now=0.0)
        cal.apply(A, V, 0.6, 0.5, False, now=1.0)
        assert cal.state(A, V).latch_start == 1.0
        cal.apply(A, V, 0.6, 0.5, True, now=2.0)
        assert cal.state(A, V).latch_start is None
        # the clock restarts on the next calm sample
        cal.apply(A, V, 0.6, 0.5, False, now=3.5)
        assert cal.state(A, V).latch_start == 3.5

    def test_is_spike_uses_recent_move(self) -> None:
        cal = BasisCalibrator(spike_threshold_overrides={Asset.SOL: 0.1})
        m = VolatilityModel()
        m.add_price(100.0, timestamp=0.0)
        m.add_price(100.05, timestamp=0.6)
        assert cal.is_spike(Asset.BTC, m)
        assert not cal.is_spike(Asset.SOL, m)


class TestLatchTimeout:
    def _diverged(self) -> BasisCalibrator:
        cal = BasisCalibrator(latch_timeout_seconds=3.0)
        cal.apply(A, V, 0.5, 0.5, False, now=100.0)  # offset 0
        cal.apply(A, V, 0.6, 0.5, False, now=100.0)  # latch starts
        return cal

    def test_holds_offset_before_timeout(self) -> None:
        cal = self._diverged()
        res = cal.apply(A, V, 0.6, 0.5, False, now=102.999)
        st = cal.state(A, V)
        assert st.offset == 0.0
        assert st.phase is BasisPhase.LATCHED
        assert res.value == pytest.approx(0.6)

    def test_force_snaps_at_timeout(self) -> None:
        cal = self._diverged()
        res = cal.apply(A, V, 0.6, 0.5, False, now=103.0)
        st = cal.state(A, V)
        assert st.offset == pytest.approx(-0.1)
        assert st.latch_start is None
        assert res.value == pytest.approx(0.5)


def test_output_is_clamped() -> None:
    cal = BasisCalibrator()
    cal.apply(A, V, 0.5, 0.9, False, now=0.0)  # offset 0.4
    res = cal.apply(A, V, 0.95, 0.9, True, now=1.0)
    assert res.value == 0.999


def test_reset_asset_only_touches_that_asset() -> None:
    cal = BasisCalibrator()
    cal.apply(Asset.BTC, V, 0.5, 0.52, False, now=0.0)
    cal.apply(Asset.ETH, V, 0.5, 0.52, False, now=0.0)
    cal.reset_asset(Asset.BTC)
    assert cal.state(Asset.BTC, V).offset is None
    assert cal.state(Asset.ETH, V).offset == pytest.approx(0.02)


def test_calibrate_runs_model_for_venue() -> None:
    cal = BasisCalibrator()
    m = VolatilityModel()
    res = cal.calibrate(A, V, m, 100.0, 100.0, 5.0, market_mid=0.55, now=1.0)
    assert res.value == pytest.approx(0.55)
    assert cal.state(A, V).offset == pytest.approx(0.05)
