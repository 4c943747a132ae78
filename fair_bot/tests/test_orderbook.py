"""Tests for the prediction-market book and its feed parser."""

from __future__ import annotations

import asyncio
import json

import pytest

from fair_bot.feeds.orderbook import NO_CHANGE_DATA, OrderBook, OrderBookFeed
from fair_bot.models import Asset, Side


def _book() -> OrderBook:
    book = OrderBook([Asset.BTC, Asset.ETH])
    book.update_token_ids(Asset.BTC, "up-btc", "down-btc")
    book.update_token_ids(Asset.ETH, "up-eth", "down-eth")
    return book


class TestOrderBook:
    def test_mid_requires_both_sides(self) -> None:
        book = _book()
        assert not book.apply_quote("up-btc", 0.52, 0.0, now=1.0)
        assert book.get_mid(Asset.BTC, Side.UP) == 0.0
        assert book.apply_quote("up-btc", 0.52, 0.54, now=1.0)
        assert book.get_mid(Asset.BTC, Side.UP) == pytest.approx(0.53)

    def test_unknown_token_ignored(self) -> None:
        book = _book()
        assert not book.apply_quote("other", 0.4, 0.5)

    def test_token_change_clears_book(self) -> None:
        book = _book()
        book.apply_quote("up-btc", 0.5, 0.52, now=1.0)
        assert book.update_token_ids(Asset.BTC, "up-btc-2", "down-btc-2")
        assert book.get_mid(Asset.BTC, Side.UP) == 0.0
        assert book.lookup("up-btc") is None
        assert book.lookup("down-btc-2") == (Asset.BTC, Side.DOWN)
        assert not book.update_token_ids(Asset.BTC, "up-btc-2", "down-btc-2")

    def test_all_token_ids(self) -> None:
        assert sorted(_book().all_token_ids()) == ["down-btc", "down-eth", "up-btc", "up-eth"]

    def test_recent_change(self) -> None:
        book = _book()
        assert book.get_recent_change(Asset.BTC, 1.0) == NO_CHANGE_DATA
        book.apply_quote("up-btc", 0.50, 0.52, now=10.0)
        book.apply_quote("up-btc", 0.53, 0.55, now=10.5)
        assert book.get_recent_change(Asset.BTC, 1.0) == NO_CHANGE_DATA
        book.apply_quote("up-btc", 0.55, 0.57, now=11.2)
        assert book.get_recent_change(Asset.BTC, 1.0, Side.UP) == pytest.approx(0.05)
        assert book.get_recent_change(Asset.BTC, 1.0, Side.DOWN) == 0.0


class TestOrderBookFeedParsing:
    def test_price_changes_list(self) -> None:
        feed = OrderBookFeed(_book())
        raw = json.dumps({
            "event_type": "price_change",
            "price_changes": [
                {"asset_id": "up-btc", "best_bid": "0.61", "best_ask": "0.63"},
                {"asset_id": "down-btc", "best_bid": "0.37", "best_ask": "0.39"},
            ],
        })
        assert feed.handle_raw(raw, now=1.0) == 2
        assert feed.book.get_mid(Asset.BTC, Side.UP) == pytest.approx(0.62)
        assert feed.book.get_mid(Asset.BTC, Side.DOWN) == pytest.approx(0.38)

    def test_single_event(self) -> None:
        feed = OrderBookFeed(_book())
        raw = json.dumps({"asset_id": "up-eth", "bid": "0.44", "ask": "0.46"})
        assert feed.handle_raw(raw, now=1.0) == 1
        assert feed.book.get_mid(Asset.ETH, Side.UP) == pytest.approx(0.45)

    def test_book_snapshot_uses_best_levels(self) -> None:
        feed = OrderBookFeed(_book())
        raw = json.dumps([{
            "event_type": "book",
            "asset_id": "up-btc",
            "bids": [{"price": "0.48", "size": "10"}, {"price": "0.50", "size": "5"}],
            "asks": [{"price": "0.55", "size": "10"}, {"price": "0.53", "size": "2"}],
        }])
        assert feed.handle_raw(raw, now=1.0) == 1
        book = feed.book.get_book(Asset.BTC, Side.UP)
        assert (book.bid, book.ask) == (0.50, 0.53)

    def test_pong_and_garbage(self) -> None:
        feed = OrderBookFeed(_book())
        assert feed.handle_raw("PONG", now=1.0) == 0
        assert feed.handle_raw("{oops", now=1.0) == 0
        assert feed.handle_raw(json.dumps({"asset_id": "up-btc", "best_bid": "x"}), now=1.0) == 0

    def test_subscribe_message(self) -> None:
        feed = OrderBookFeed(OrderBook([Asset.BTC]))
        assert feed.subscribe_message() is None
        feed.update_token_ids(Asset.BTC, "u", "d")
        assert json.loads(feed.subscribe_message()) == {"type": "market", "assets_ids": ["u", "d"]}

    def test_ping_is_text(self) -> None:
        assert OrderBookFeed(_book()).ping_message(0.0) == "PING"


def test_token_change_resubscribes_on_open_socket() -> None:
    class Sock:
        def __init__(self) -> None:
            self.sent = []

        async def send(self, msg):
            self.sent.append(msg)

    feed = OrderBookFeed(_book())
    sock = Sock()
    feed._ws = sock
    feed.update_token_ids(Asset.BTC, "up-btc-2", "down-btc-2")
    feed.update_token_ids(Asset.BTC, "up-btc-2", "down-btc-2")

    asyncio.run(feed._on_idle(sock))
    asyncio.run(feed._on_idle(sock))

    assert len(sock.sent) == 1
    assert "up-btc-2" in json.loads(sock.sent[0])["assets_ids"]
