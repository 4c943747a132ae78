"""Tests for the generic exchange feed and the shared (asset, venue) grid."""

from __future__ import annotations

import asyncio
import json

import pytest

from fair_bot.feeds.exchange import ExchangeFeed
from fair_bot.feeds.venues import BinanceAdapter, BybitAdapter
from fair_bot.models import Asset, MarketWindow, PriceTick, Venue
from fair_bot.state import VenueStateGrid


def _trade(symbol: str, price: float) -> str:
    return json.dumps({"stream": f"{symbol.lower()}@trade", "data": {"e": "trade", "s": symbol, "p": str(price)}})


def _grid() -> VenueStateGrid:
    return VenueStateGrid([Asset.BTC, Asset.ETH], [Venue.BINANCE, Venue.BYBIT])


class TestHandleRaw:
    def test_tick_updates_only_own_slice(self) -> None:
        grid = _grid()
        feed = ExchangeFeed(BinanceAdapter(), grid)
        assert feed.handle_raw(_trade("BTCUSDT", 64000.0), now=10.0) == 1
        assert grid.get(Asset.BTC, Venue.BINANCE).last_price == 64000.0
        assert grid.get(Asset.BTC, Venue.BINANCE).model.latest_price() == 64000.0
        assert grid.get(Asset.BTC, Venue.BYBIT).last_price == 0.0
        assert grid.get(Asset.ETH, Venue.BINANCE).last_price == 0.0

    def test_first_tick_after_window_start_sets_start_price(self) -> None:
        grid = _grid()
        grid.apply_window(MarketWindow(asset=Asset.BTC, start_time=1000.0))
        feed = ExchangeFeed(BinanceAdapter(), grid)
        feed.handle_raw(_trade("BTCUSDT", 63990.0), now=999.0)
        sl = grid.get(Asset.BTC, Venue.BINANCE)
        assert sl.start_price == 0.0
        feed.handle_raw(_trade("BTCUSDT", 64001.0), now=1000.5)
        feed.handle_raw(_trade("BTCUSDT", 64020.0), now=1001.0)
        assert sl.start_price == 64001.0

    def test_official_start_price_not_overwritten(self) -> None:
        grid = _grid()
        grid.apply_window(MarketWindow(asset=Asset.BTC, start_time=1000.0, start_price=63950.0))
        feed = ExchangeFeed(BinanceAdapter(), grid)
        feed.handle_raw(_trade("BTCUSDT", 64001.0), now=1001.0)
        assert grid.get(Asset.BTC, Venue.BINANCE).start_price == 63950.0

    def test_malformed_message_dropped_without_side_effects(self) -> None:
        grid = _grid()
        updates: "asyncio.Queue[PriceTick]" = asyncio.Queue()
        feed = ExchangeFeed(BinanceAdapter(), grid, updates=updates)
        assert feed.handle_raw("{garbage", now=1.0) == 0
        assert feed.handle_raw(json.dumps({"data": {"e": "trade", "s": "BTCUSDT"}}), now=1.0) == 0
        assert feed.dropped_messages == 2
        assert updates.empty()
        assert all(sl.last_price == 0.0 for sl in grid)

    def test_invalid_price_discarded(self) -> None:
        grid = _grid()
        feed = ExchangeFeed(BinanceAdapter(), grid)
        assert feed.handle_raw(_trade("BTCUSDT", 0.0), now=1.0) == 0
        assert feed.handle_raw(_trade("BTCUSDT", -3.0), now=1.0) == 0
        assert feed.handle_raw(_trade("BTCUSDT", float("nan")), now=1.0) == 0

    def test_untracked_asset_ignored(self) -> None:
        feed = ExchangeFeed(BinanceAdapter(), _grid())
        assert feed.handle_raw(_trade("SOLUSDT", 140.0), now=1.0) == 0


class TestUpdateChannel:
    def test_ticks_published(self) -> None:
        updates: "asyncio.Queue[PriceTick]" = asyncio.Queue()
        seen = []
        feed = ExchangeFeed(BinanceAdapter(), _grid(), updates=updates, on_tick=seen.append)
        feed.handle_raw(_trade("ETHUSDT", 3100.0), now=5.0)
        tick = updates.get_nowait()
        assert tick == PriceTick(asset=Asset.ETH, venue=Venue.BINANCE, timestamp=5.0, price=3100.0)
        assert seen == [tick]

    def test_full_queue_drops_notification_but_keeps_price(self) -> None:
        grid = _grid()
        updates: "asyncio.Queue[PriceTick]" = asyncio.Queue(maxsize=1)
        feed = ExchangeFeed(BinanceAdapter(), grid, updates=updates)
        feed.handle_raw(_trade("BTCUSDT", 1.0), now=1.0)
        feed.handle_raw(_trade("BTCUSDT", 2.0), now=2.0)
        assert feed.dropped_updates == 1
        assert grid.get(Asset.BTC, Venue.BINANCE).last_price == 2.0


def test_connect_subscribes_and_streams() -> None:
    class Sock:
        def __init__(self) -> None:
            self.sent = []
            self.frames = [json.dumps({"topic": "publicTrade.BTCUSDT", "data": [{"s": "BTCUSDT", "p": "64000"}]})]

        async def recv(self):
            if self.frames:
                return self.frames.pop(0)
            await asyncio.sleep(3600)

        async def send(self, msg):
            self.sent.append(msg)

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

    sock = Sock()
    grid = _grid()
    window = MarketWindow(asset=Asset.BTC, start_time=1.0)
    feed = ExchangeFeed(BybitAdapter(), grid, connector=lambda url: sock)

    async def _run() -> None:
        await feed.connect({Asset.BTC: window})
        await asyncio.sleep(0.05)
        await feed.stop()

    asyncio.run(_run())
    assert json.loads(sock.sent[0]) == {"op": "subscribe", "args": ["publicTrade.BTCUSDT", "publicTrade.ETHUSDT"]}
    sl = grid.get(Asset.BTC, Venue.BYBIT)
    assert sl.start_time == 1.0
    assert sl.last_price == 64000.0
    assert sl.start_price == 64000.0
    assert feed.ticks_received == 1


class TestGrid:
    def test_explicit_pairs(self) -> None:
        grid = _grid()
        assert len(list(grid)) == 4
        assert grid.find(Asset.SOL, Venue.BINANCE) is None
        with pytest.raises(KeyError):
            grid.get(Asset.SOL, Venue.BINANCE)

    def test_window_synced_to_every_venue(self) -> None:
        grid = _grid()
        grid.apply_window(MarketWindow(asset=Asset.ETH, start_time=900.0, start_price=3000.0))
        assert [(s.start_time, s.start_price) for s in grid.for_asset(Asset.ETH)] == [(900.0, 3000.0)] * 2
        assert grid.start_times() == {Asset.BTC: 0.0, Asset.ETH: 900.0}
