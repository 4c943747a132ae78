"""Streaming inputs: exchange trade feeds and the prediction-market book."""

from fair_bot.feeds.exchange import ExchangeFeed
from fair_bot.feeds.orderbook import OrderBook, OrderBookFeed
from fair_bot.feeds.stream import StreamFeed, reconnect_delay
from fair_bot.feeds.venues import ADAPTERS, VenueAdapter, build_adapter

__all__ = [
    "ADAPTERS",
    "ExchangeFeed",
    "OrderBook",
    "OrderBookFeed",
    "StreamFeed",
    "VenueAdapter",
    "build_adapter",
    "reconnect_delay",
]
