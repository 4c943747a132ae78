from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

# 15-minute settlement window.
WINDOW_SECONDS = 15 * 60.0


class Asset(str, Enum):
    BTC = "BTC"
    ETH = "ETH"
    SOL = "SOL"
    XRP = "XRP"


class Venue(str, Enum):
    BINANCE = "BINANCE"
    BYBIT = "BYBIT"
    GATE = "GATE"
    OKX = "OKX"
    MEXC = "MEXC"
    BITGET = "BITGET"
    DEEPCOIN = "DEEPCOIN"
    COINBASE = "COINBASE"
    BITFINEX = "BITFINEX"


class Side(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


def parse_asset(value: str) -> Asset:
    try:
        return Asset(value.strip().upper())
    except ValueError:
        raise ValueError(f"unknown asset: {value!r}") from None


def parse_venue(value: str) -> Venue:
    try:
        return Venue(value.strip().upper())
    except ValueError:
        raise ValueError(f"unknown venue: {value!r}") from None


@dataclass(frozen=True)
class PriceTick:
    """A single validated trade price from one venue."""

    asset: Asset
    venue: Venue
    timestamp: float  # unix seconds (local receive time)
    price: float

    @staticmethod
    def is_valid_price(price: float) -> bool:
        return math.isfinite(price) and price > 0


@dataclass(frozen=True)
class MarketWindow:
    """Descriptor of one 15-minute up/down market.

    ``start_time`` of 0 means the window is unknown.  ``start_price`` of 0
    means the official open is unavailable and the first live tick after
    ``start_time`` is used instead.
    """

    asset: Asset
    start_time: float
    start_price: float = 0.0
    up_token_id: Optional[str] = None
    down_token_id: Optional[str] = None
    question: str = ""

    @property
    def expiry_time(self) -> float:
        return self.start_time + WINDOW_SECONDS

    @property
    def is_known(self) -> bool:
        return self.start_time > 0

    def minutes_remaining(self, now: float) -> float:
        return (self.expiry_time - now) / 60.0


@dataclass(frozen=True)
class BookSide:
    bid: float = 0.0
    ask: float = 0.0
    mid: float = 0.0


@dataclass(frozen=True)
class UpDown:
    """Raw model output.  May be one-hot in degenerate cases."""

    up: float
    down: float


@dataclass(frozen=True)
class FairEstimate:
    """Published per-asset estimate: up + down == 1, up in [0.001, 0.999]."""

    up: float = 0.5
    down: float = 0.5

    @classmethod
    def from_up(cls, up: float) -> "FairEstimate":
        return cls(up=up, down=1.0 - up)

    def for_side(self, side: Side) -> float:
        return self.up if side is Side.UP else self.down


NEUTRAL_ESTIMATE = FairEstimate()


@dataclass(frozen=True)
class TradeSignal:
    asset: Asset
    side: Side
    fair: float
    market_mid: float
    edge: float  # fair[side] - market_mid[side]


class OrderExecutionClient(Protocol):
    """Consumer of trade signals.  Placement semantics live outside this package."""

    async def place(self, token_id: str, price: float, size: float, side: str) -> Any:
        ...


class TokenResolver(Protocol):
    async def get_window(self, asset: Asset) -> Optional[MarketWindow]:
        ...
