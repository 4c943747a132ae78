"""Prediction-market order book: mid store plus its WebSocket feed.

The store maps each tracked token id to ``(asset, side)`` and keeps the
latest best bid/ask per side.  A mid is published only when both sides
are positive; otherwise :meth:`OrderBook.get_mid` returns 0.
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple

from fair_bot.feeds.stream import StreamFeed
from fair_bot.models import Asset, BookSide, Side

LOGGER = logging.getLogger(__name__)

DEFAULT_ORDERBOOK_URL = "wss://ws-subscriptions-clob.polymarket.com/ws/market"

# Returned by get_recent_change when history cannot answer the question.
NO_CHANGE_DATA = 999.0

_HISTORY_POINTS = 600


def _as_price(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class OrderBook:
    """Latest top-of-book per (asset, side) and a short mid history."""

    def __init__(self, assets: Iterable[Asset], history_points: int = _HISTORY_POINTS) -> None:
        self._assets = tuple(assets)
        self._books: Dict[Tuple[Asset, Side], BookSide] = {
            (a, s): BookSide() for a in self._assets for s in Side
        }
        self._tokens: Dict[Asset, Tuple[Optional[str], Optional[str]]] = {
            a: (None, None) for a in self._assets
        }
        self._by_token: Dict[str, Tuple[Asset, Side]] = {}
        # (ts, up_mid, down_mid)
        self._history: Dict[Asset, Deque[Tuple[float, float, float]]] = {
            a: deque(maxlen=history_points) for a in self._assets
        }

    @property
    def assets(self) -> Tuple[Asset, ...]:
        return self._assets

    def get_book(self, asset: Asset, side: Side) -> BookSide:
        return self._books.get((asset, side), BookSide())

    def get_mid(self, asset: Asset, side: Side = Side.UP) -> float:
        return self.get_book(asset, side).mid

    def token_ids(self, asset: Asset) -> Tuple[Optional[str], Optional[str]]:
        return self._tokens.get(asset, (None, None))

    def token_id(self, asset: Asset, side: Side) -> Optional[str]:
        up, down = self.token_ids(asset)
        return up if side is Side.UP else down

    def all_token_ids(self) -> List[str]:
        return [t for pair in self._tokens.values() for t in pair if t]

    def update_token_ids(self, asset: Asset, up: Optional[str], down: Optional[str]) -> bool:
        """Track new token ids for *asset*.  Returns True if they changed.

        A change clears the asset's book so a mid from the previous market
        cannot leak into the new one.
        """
        if asset not in self._tokens:
            raise KeyError(f"untracked asset: {asset}")
        if self._tokens[asset] == (up, down):
            return False
        for tok in self._tokens[asset]:
            if tok:
                self._by_token.pop(tok, None)
        self._tokens[asset] = (up, down)
        if up:
            self._by_token[up] = (asset, Side.UP)
        if down:
            self._by_token[down] = (asset, Side.DOWN)
        self.reset_asset(asset)
        return True

    def reset_asset(self, asset: Asset) -> None:
        for side in Side:
            self._books[(asset, side)] = BookSide()
        self._history[asset].clear()

    def lookup(self, token_id: str) -> Optional[Tuple[Asset, Side]]:
        return self._by_token.get(token_id)

    def apply_quote(self, token_id: str, bid: float, ask: float, now: Optional[float] = None) -> bool:
        """Record a best bid/ask for *token_id*.  Ignored unless both are > 0."""
        key = self._by_token.get(token_id)
        if key is None or not (bid > 0 and ask > 0):
            return False
        ts = now if now is not None else time.time()
        asset, side = key
        self._books[key] = BookSide(bid=bid, ask=ask, mid=(bid + ask) / 2.0)
        self._history[asset].append(
            (ts, self._books[(asset, Side.UP)].mid, self._books[(asset, Side.DOWN)].mid)
        )
        return True

    def get_recent_change(self, asset: Asset, window_seconds: float, side: Side = Side.UP) -> float:
        """|mid change| over the trailing window, or ``NO_CHANGE_DATA``."""
        hist = self._history.get(asset)
        if not hist or len(hist) < 2:
            return NO_CHANGE_DATA
        latest = hist[-1]
        target = latest[0] - window_seconds
        idx = 1 if side is Side.UP else 2
        for point in reversed(hist):
            if point[0] <= target:
                return abs(latest[idx] - point[idx])
        return NO_CHANGE_DATA


class OrderBookFeed(StreamFeed):
    """Market-channel subscription for all tracked outcome tokens."""

    name = "ORDERBOOK"

    def __init__(
        self,
        book: OrderBook,
        url: str = DEFAULT_ORDERBOOK_URL,
        ping_interval_seconds: float = 5.0,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("stale_after_seconds", 15.0)
        kwargs.setdefault("reconnect_max_seconds", 8.0)
        super().__init__(url, ping_interval_seconds=ping_interval_seconds, **kwargs)
        self.book = book
        self._resubscribe_pending = False
        self.updates_applied = 0

    def subscribe_message(self) -> Optional[str]:
        ids = self.book.all_token_ids()
        if not ids:
            return None
        return json.dumps({"type": "market", "assets_ids": ids})

    def update_token_ids(self, asset: Asset, up: Optional[str], down: Optional[str]) -> None:
        if self.book.update_token_ids(asset, up, down) and self.connected:
            self._resubscribe_pending = True

    async def _on_open(self, ws: Any) -> None:
        self._resubscribe_pending = False
        msg = self.subscribe_message()
        if msg is not None:
            await ws.send(msg)
            LOGGER.info("%s: subscribed %d tokens", self.name, len(self.book.all_token_ids()))

    async def _on_idle(self, ws: Any) -> None:
        if not self._resubscribe_pending:
            return
        self._resubscribe_pending = False
        msg = self.subscribe_message()
        if msg is not None:
            await ws.send(msg)
            LOGGER.info("%s: resubscribed %d tokens", self.name, len(self.book.all_token_ids()))

    def ping_message(self, now: float) -> Optional[str]:
        return "PING"

    def handle_raw(self, raw: Any, now: float) -> int:
        if isinstance(raw, str) and raw.strip().upper() == "PONG":
            return 0
        try:
            msg = json.loads(raw)
            applied = sum(self._apply_event(ev, now) for ev in self._events(msg))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            LOGGER.debug("%s: dropped malformed message (%s)", self.name, exc)
            return 0
        self.updates_applied += applied
        return applied

    @staticmethod
    def _events(msg: Any) -> List[Any]:
        if isinstance(msg, list):
            return msg
        if isinstance(msg, dict) and isinstance(msg.get("price_changes"), list):
            return msg["price_changes"]
        return [msg]

    def _apply_event(self, ev: Any, now: float) -> int:
        if not isinstance(ev, dict):
            return 0
        token = ev.get("asset_id") or ev.get("assetId")
        if not token:
            return 0
        if ev.get("event_type") == "book":
            bids = [_as_price(level.get("price")) for level in ev.get("bids") or []]
            asks = [_as_price(level.get("price")) for level in ev.get("asks") or []]
            bid = max(bids, default=0.0)
            ask = min((a for a in asks if a > 0), default=0.0)
        else:
            bid = _as_price(ev.get("best_bid") or ev.get("bid"))
            ask = _as_price(ev.get("best_ask") or ev.get("ask"))
        return int(self.book.apply_quote(str(token), bid, ask, now))
