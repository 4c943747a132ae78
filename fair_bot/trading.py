"""Edge-gated order submission on top of the published fair estimate."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from fair_bot.fair_engine import CombinedFairEngine
from fair_bot.feeds.orderbook import OrderBook
from fair_bot.models import Asset, OrderExecutionClient, Side, TradeSignal, Venue
from fair_bot.state import VenueStateGrid

LOGGER = logging.getLogger(__name__)


class TradingLogic:
    """Buys the side the anchor price favours when fair exceeds the book.

    Parameters
    ----------
    executor:
        Order placement client; required when ``enabled``.
    price_difference_threshold:
        Minimum ``fair[side] - mid[side]`` to trade.
    trade_amount:
        Notional per trade; size is ``trade_amount / mid``.
    cooldown_seconds:
        Minimum spacing between trades on the same asset.
    entry_slippage:
        Limit price markup over the mid for the entry order.
    take_profit, stop_loss:
        Absolute offsets for the exit orders; 0 disables them.
    """

    def __init__(
        self,
        engine: CombinedFairEngine,
        grid: VenueStateGrid,
        order_book: OrderBook,
        executor: Optional[OrderExecutionClient] = None,
        anchor_venue: Venue = Venue.BINANCE,
        enabled: bool = False,
        price_difference_threshold: float = 0.018,
        trade_amount: float = 15.0,
        cooldown_seconds: float = 20.0,
        entry_slippage: float = 0.005,
        take_profit: float = 0.012,
        stop_loss: float = 0.008,
    ) -> None:
        if enabled and executor is None:
            raise ValueError("trading enabled without an execution client")
        self._engine = engine
        self._grid = grid
        self._book = order_book
        self._executor = executor
        self._anchor = anchor_venue
        self.enabled = enabled
        self._threshold = price_difference_threshold
        self._amount = trade_amount
        self._cooldown = cooldown_seconds
        self._slippage = entry_slippage
        self._take_profit = take_profit
        self._stop_loss = stop_loss
        self._last_trade: Dict[Asset, float] = {}
        self.trades_placed = 0

    def choose_side(self, asset: Asset) -> Optional[Side]:
        sl = self._grid.find(asset, self._anchor)
        if sl is None or sl.last_price <= 0 or sl.start_price <= 0:
            return None
        if sl.last_price > sl.start_price:
            return Side.UP
        if sl.last_price < sl.start_price:
            return Side.DOWN
        return None

    def evaluate(self, asset: Asset, now: float) -> Optional[TradeSignal]:
        """The signal that would be traded now, or None if gated out."""
        if not self.enabled:
            return None
        if now - self._last_trade.get(asset, 0.0) < self._cooldown:
            return None
        side = self.choose_side(asset)
        if side is None:
            return None
        signal = self._engine.trade_signal(asset, side)
        if signal is None or signal.edge <= self._threshold:
            return None
        if not self._book.token_id(asset, side):
            return None
        return signal

    async def check_for_trade(self, asset: Asset, now: float) -> Optional[TradeSignal]:
        signal = self.evaluate(asset, now)
        if signal is None:
            return None
        self._last_trade[asset] = now
        await self._execute(signal)
        return signal

    async def check_all(self, now: float, assets: Iterable[Asset]) -> None:
        for asset in assets:
            await self.check_for_trade(asset, now)

    async def _execute(self, signal: TradeSignal) -> None:
        token_id = self._book.token_id(signal.asset, signal.side)
        price = signal.market_mid
        size = self._amount / price
        LOGGER.info(
            "TradingLogic: %s %s edge=%.4f fair=%.4f mid=%.4f size=%.2f",
            signal.asset.value, signal.side.value, signal.edge, signal.fair, price, size,
        )
        try:
            await self._executor.place(token_id, price * (1.0 + self._slippage), size, "BUY")
            self.trades_placed += 1
            exits = []
            if self._take_profit > 0:
                exits.append(min(price + self._take_profit, 0.99))
            if self._stop_loss > 0:
                exits.append(max(price - self._stop_loss, 0.01))
            for exit_price in exits:
                await self._executor.place(token_id, exit_price, size, "SELL")
        except Exception as exc:
            LOGGER.error("TradingLogic: %s order failed: %s", signal.asset.value, exc)


class PaperExecutionClient:
    """Records orders instead of sending them."""

    def __init__(self) -> None:
        self.orders: list = []

    async def place(self, token_id: str, price: float, size: float, side: str) -> str:
        order_id = f"paper-{len(self.orders) + 1}"
        self.orders.append((order_id, token_id, price, size, side))
        LOGGER.info("PaperExecutionClient: %s %s %.2f @ %.4f (%s)", side, token_id, size, price, order_id)
        return order_id
