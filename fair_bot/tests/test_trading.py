"""Tests for edge-gated order submission."""

from __future__ import annotations

import asyncio

import pytest

from fair_bot.fair_engine import CombinedFairEngine
from fair_bot.feeds.orderbook import OrderBook
from fair_bot.models import Asset, FairEstimate, MarketWindow, Side, Venue
from fair_bot.state import VenueStateGrid
from fair_bot.trading import PaperExecutionClient, TradingLogic

NOW = 10_000.0


class FailingClient:
    async def place(self, token_id, price, size, side):
        raise RuntimeError("rejected")


def _setup(anchor_price: float = 101.0, fair_up: float = 0.6, executor=None, **kwargs):
    grid = VenueStateGrid([Asset.BTC], [Venue.BINANCE, Venue.BYBIT])
    grid.apply_window(MarketWindow(asset=Asset.BTC, start_time=NOW - 60, start_price=100.0))
    grid.get(Asset.BTC, Venue.BINANCE).last_price = anchor_price
    book = OrderBook([Asset.BTC])
    book.update_token_ids(Asset.BTC, "up-tok", "down-tok")
    book.apply_quote("up-tok", 0.50, 0.52, now=NOW)
    book.apply_quote("down-tok", 0.47, 0.49, now=NOW)
    engine = CombinedFairEngine(grid, book)
    engine._published[Asset.BTC] = FairEstimate.from_up(fair_up)
    client = executor if executor is not None else PaperExecutionClient()
    logic = TradingLogic(engine, grid, book, executor=client, enabled=True, **kwargs)
    return logic, client


class TestEvaluate:
    def test_side_follows_anchor(self) -> None:
        assert _setup(anchor_price=101.0)[0].choose_side(Asset.BTC) is Side.UP
        assert _setup(anchor_price=99.0)[0].choose_side(Asset.BTC) is Side.DOWN
        assert _setup(anchor_price=100.0)[0].choose_side(Asset.BTC) is None

    def test_edge_above_threshold(self) -> None:
        logic, _ = _setup()
        signal = logic.evaluate(Asset.BTC, NOW)
        assert signal.side is Side.UP
        assert signal.edge == pytest.approx(0.09)

    def test_edge_below_threshold(self) -> None:
        logic, _ = _setup(fair_up=0.52)
        assert logic.evaluate(Asset.BTC, NOW) is None

    def test_disabled(self) -> None:
        logic, _ = _setup()
        logic.enabled = False
        assert logic.evaluate(Asset.BTC, NOW) is None

    def test_enabled_requires_executor(self) -> None:
        grid = VenueStateGrid([Asset.BTC], [Venue.BINANCE])
        book = OrderBook([Asset.BTC])
        with pytest.raises(ValueError):
            TradingLogic(CombinedFairEngine(grid, book), grid, book, enabled=True)


class TestExecute:
    def test_entry_and_exit_orders(self) -> None:
        logic, client = _setup()
        signal = asyncio.run(logic.check_for_trade(Asset.BTC, NOW))
        assert signal is not None
        assert [o[4] for o in client.orders] == ["BUY", "SELL", "SELL"]
        _, token, price, size, _ = client.orders[0]
        assert token == "up-tok"
        assert price == pytest.approx(0.51 * 1.005)
        assert size == pytest.approx(15.0 / 0.51)
        assert client.orders[1][2] == pytest.approx(0.522)
        assert client.orders[2][2] == pytest.approx(0.502)
        assert logic.trades_placed == 1

    def test_cooldown(self) -> None:
        logic, client = _setup(cooldown_seconds=20.0)

        async def _run() -> None:
            await logic.check_all(NOW, [Asset.BTC])
            await logic.check_all(NOW + 5, [Asset.BTC])
            await logic.check_all(NOW + 20, [Asset.BTC])

        asyncio.run(_run())
        assert [o[4] for o in client.orders].count("BUY") == 2

    def test_rejected_order_is_logged_not_raised(self) -> None:
        logic, _ = _setup(executor=FailingClient())
        assert asyncio.run(logic.check_for_trade(Asset.BTC, NOW)) is not None
        assert logic.trades_placed == 0
