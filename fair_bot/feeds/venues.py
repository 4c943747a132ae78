"""Venue adapters: endpoint, subscribe payloads and trade parsing.

An adapter turns one venue's wire format into ``(Asset, price)`` pairs.
It never touches shared state; :class:`~fair_bot.feeds.exchange.ExchangeFeed`
owns the connection and applies the parsed prices.  ``parse`` may raise
``ValueError``/``KeyError``/``TypeError``/``IndexError`` on malformed input;
the feed drops such messages.
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from fair_bot.models import Asset, Venue

ParsedTrade = Tuple[Asset, float]


class VenueAdapter:
    """Base adapter.  Subclasses set ``venue``, ``url`` and ``symbols``."""

    venue: Venue
    url: str = ""
    symbols: Dict[Asset, str] = {}
    ping_interval_seconds: Optional[float] = None

    def __init__(self) -> None:
        self._by_symbol: Dict[str, Asset] = {sym: asset for asset, sym in self.symbols.items()}

    def endpoint(self, assets: Sequence[Asset]) -> str:
        return self.url

    def asset_for(self, symbol: Any) -> Optional[Asset]:
        return self._by_symbol.get(symbol)

    def subscribe_messages(self, assets: Sequence[Asset]) -> List[str]:
        raise NotImplementedError

    def parse(self, raw: str) -> List[ParsedTrade]:
        raise NotImplementedError

    def ping_message(self, now: float) -> Optional[str]:
        return None

    def on_connect(self) -> None:
        """Reset per-connection state (channel maps and the like)."""

    def _tracked(self, assets: Sequence[Asset]) -> List[str]:
        return [self.symbols[a] for a in assets if a in self.symbols]


def _is_pong(raw: str) -> bool:
    return raw.strip().lower() == "pong"


class BinanceAdapter(VenueAdapter):
    """USDT-margined perpetuals, combined ``<symbol>@trade`` streams in the URL."""

    venue = Venue.BINANCE
    url = "wss://fstream.binance.com/stream"
    symbols = {Asset.BTC: "BTCUSDT", Asset.ETH: "ETHUSDT", Asset.SOL: "SOLUSDT", Asset.XRP: "XRPUSDT"}

    def endpoint(self, assets: Sequence[Asset]) -> str:
        streams = "/".join(f"{sym.lower()}@trade" for sym in self._tracked(assets))
        return f"{self.url}?streams={streams}"

    def subscribe_messages(self, assets: Sequence[Asset]) -> List[str]:
        return []

    def parse(self, raw: str) -> List[ParsedTrade]:
        msg = json.loads(raw)
        trade = msg.get("data", msg)
        if trade.get("e") != "trade":
            return []
        asset = self.asset_for(trade["s"])
        return [(asset, float(trade["p"]))] if asset else []


class BybitAdapter(VenueAdapter):
    venue = Venue.BYBIT
    url = "wss://stream.bybit.com/v5/public/linear"
    symbols = {Asset.BTC: "BTCUSDT", Asset.ETH: "ETHUSDT", Asset.SOL: "SOLUSDT", Asset.XRP: "XRPUSDT"}
    ping_interval_seconds = 20.0

    def subscribe_messages(self, assets: Sequence[Asset]) -> List[str]:
        args = [f"publicTrade.{sym}" for sym in self._tracked(assets)]
        return [json.dumps({"op": "subscribe", "args": args})]

    def ping_message(self, now: float) -> Optional[str]:
        return json.dumps({"op": "ping"})

    def parse(self, raw: str) -> List[ParsedTrade]:
        msg = json.loads(raw)
        if not str(msg.get("topic", "")).startswith("publicTrade.") or not msg.get("data"):
            return []
        out: List[ParsedTrade] = []
        for trade in msg["data"]:
            asset = self.asset_for(trade["s"])
            if asset:
                out.append((asset, float(trade["p"])))
        return out


class GateAdapter(VenueAdapter):
    venue = Venue.GATE
    url = "wss://fx-ws.gateio.ws/v4/ws/usdt"
    symbols = {Asset.BTC: "BTC_USDT", Asset.ETH: "ETH_USDT", Asset.SOL: "SOL_USDT", Asset.XRP: "XRP_USDT"}
    ping_interval_seconds = 20.0

    def subscribe_messages(self, assets: Sequence[Asset]) -> List[str]:
        return [json.dumps({
            "time": int(time.time()),
            "channel": "futures.trades",
            "event": "subscribe",
            "payload": self._tracked(assets),
        })]

    def ping_message(self, now: float) -> Optional[str]:
        return json.dumps({"time": int(now), "channel": "futures.ping"})

    def parse(self, raw: str) -> List[ParsedTrade]:
        msg = json.loads(raw)
        if msg.get("channel") != "futures.trades" or msg.get("event") != "update":
            return []
        out: List[ParsedTrade] = []
        for trade in msg.get("result") or []:
            asset = self.asset_for(trade["contract"])
            if asset:
                out.append((asset, float(trade["price"])))
        return out


class OkxAdapter(VenueAdapter):
    venue = Venue.OKX
    url = "wss://ws.okx.com:8443/ws/v5/public"
    symbols = {
        Asset.BTC: "BTC-USDT-SWAP",
        Asset.ETH: "ETH-USDT-SWAP",
        Asset.SOL: "SOL-USDT-SWAP",
        Asset.XRP: "XRP-USDT-SWAP",
    }
    ping_interval_seconds = 20.0

    def subscribe_messages(self, assets: Sequence[Asset]) -> List[str]:
        args = [{"channel": "trades", "instId": sym} for sym in self._tracked(assets)]
        return [json.dumps({"op": "subscribe", "args": args})]

    def ping_message(self, now: float) -> Optional[str]:
        return "ping"

    def parse(self, raw: str) -> List[ParsedTrade]:
        if _is_pong(raw):
            return []
        msg = json.loads(raw)
        if (msg.get("arg") or {}).get("channel") != "trades" or not msg.get("data"):
            return []
        out: List[ParsedTrade] = []
        for trade in msg["data"]:
            asset = self.asset_for(trade["instId"])
            if asset:
                out.append((asset, float(trade["px"])))
        return out


class MexcAdapter(VenueAdapter):
    venue = Venue.MEXC
    url = "wss://contract.mexc.com/edge"
    symbols = {Asset.BTC: "BTC_USDT", Asset.ETH: "ETH_USDT", Asset.SOL: "SOL_USDT", Asset.XRP: "XRP_USDT"}
    ping_interval_seconds = 15.0

    def subscribe_messages(self, assets: Sequence[Asset]) -> List[str]:
        return [
            json.dumps({"method": "sub.deal", "param": {"symbol": sym}})
            for sym in self._tracked(assets)
        ]

    def ping_message(self, now: float) -> Optional[str]:
        return json.dumps({"method": "ping"})

    def parse(self, raw: str) -> List[ParsedTrade]:
        msg = json.loads(raw)
        data = msg.get("data")
        if msg.get("channel") != "push.deal" or not isinstance(data, list):
            return []
        asset = self.asset_for(msg.get("symbol"))
        if asset is None:
            return []
        return [(asset, float(trade["p"])) for trade in data]


class BitgetAdapter(VenueAdapter):
    venue = Venue.BITGET
    url = "wss://ws.bitget.com/v2/ws/public"
    symbols = {Asset.BTC: "BTCUSDT", Asset.ETH: "ETHUSDT", Asset.SOL: "SOLUSDT", Asset.XRP: "XRPUSDT"}
    ping_interval_seconds = 30.0

    def subscribe_messages(self, assets: Sequence[Asset]) -> List[str]:
        args = [
            {"instType": "USDT-FUTURES", "channel": "trade", "instId": sym}
            for sym in self._tracked(assets)
        ]
        return [json.dumps({"op": "subscribe", "args": args})]

    def ping_message(self, now: float) -> Optional[str]:
        return "ping"

    def parse(self, raw: str) -> List[ParsedTrade]:
        if _is_pong(raw):
            return []
        msg = json.loads(raw)
        arg = msg.get("arg") or {}
        data = msg.get("data")
        if arg.get("channel") != "trade" or not isinstance(data, list):
            return []
        out: List[ParsedTrade] = []
        for trade in data:
            asset = self.asset_for(trade.get("instId") or arg.get("instId"))
            if asset:
                out.append((asset, float(trade.get("px") or trade["price"])))
        return out


class DeepcoinAdapter(VenueAdapter):
    venue = Venue.DEEPCOIN
    url = "wss://stream.deepcoin.com/streamlet/trade/public/swap?platform=api"
    symbols = {Asset.BTC: "BTCUSDT", Asset.ETH: "ETHUSDT", Asset.SOL: "SOLUSDT", Asset.XRP: "XRPUSDT"}
    ping_interval_seconds = 20.0

    def subscribe_messages(self, assets: Sequence[Asset]) -> List[str]:
        # TopicID "2" is the per-trade channel; ResumeNo -1 starts from latest.
        return [
            json.dumps({
                "SendTopicAction": {
                    "Action": "1",
                    "FilterValue": f"DeepCoin_{sym}",
                    "LocalNo": idx + 1,
                    "ResumeNo": -1,
                    "TopicID": "2",
                }
            })
            for idx, sym in enumerate(self._tracked(assets))
        ]

    def ping_message(self, now: float) -> Optional[str]:
        return "ping"

    def parse(self, raw: str) -> List[ParsedTrade]:
        if _is_pong(raw):
            return []
        msg = json.loads(raw)
        items = msg.get("r")
        if not isinstance(items, list):
            return []
        out: List[ParsedTrade] = []
        for item in items:
            d = item.get("d") or {}
            if not d.get("I") or not d.get("N"):
                continue
            asset = self.asset_for(d["I"])
            if asset:
                out.append((asset, float(d["N"])))
        return out


class CoinbaseAdapter(VenueAdapter):
    """Spot USD books; quoted in a different basis than the USDT perps."""

    venue = Venue.COINBASE
    url = "wss://ws-feed.exchange.coinbase.com"
    symbols = {Asset.BTC: "BTC-USD", Asset.ETH: "ETH-USD", Asset.SOL: "SOL-USD", Asset.XRP: "XRP-USD"}

    def subscribe_messages(self, assets: Sequence[Asset]) -> List[str]:
        return [json.dumps({
            "type": "subscribe",
            "product_ids": self._tracked(assets),
            "channels": ["ticker", "heartbeat"],
        })]

    def parse(self, raw: str) -> List[ParsedTrade]:
        msg = json.loads(raw)
        if msg.get("type") != "ticker" or not msg.get("price"):
            return []
        asset = self.asset_for(msg.get("product_id"))
        return [(asset, float(msg["price"]))] if asset else []


class BitfinexAdapter(VenueAdapter):
    """Trades arrive on numeric channel ids announced by ``subscribed`` events."""

    venue = Venue.BITFINEX
    url = "wss://api-pub.bitfinex.com/ws/2"
    symbols = {Asset.BTC: "tBTCUSD", Asset.ETH: "tETHUSD", Asset.SOL: "tSOLUSD", Asset.XRP: "tXRPUSD"}

    def __init__(self) -> None:
        super().__init__()
        self._channels: Dict[int, Asset] = {}

    @property
    def channels(self) -> Dict[int, Asset]:
        return dict(self._channels)

    def on_connect(self) -> None:
        self._channels.clear()

    def subscribe_messages(self, assets: Sequence[Asset]) -> List[str]:
        return [
            json.dumps({"event": "subscribe", "channel": "trades", "symbol": sym})
            for sym in self._tracked(assets)
        ]

    def parse(self, raw: str) -> List[ParsedTrade]:
        msg = json.loads(raw)
        if isinstance(msg, dict):
            if msg.get("event") == "subscribed" and msg.get("channel") == "trades":
                asset = self.asset_for(msg.get("symbol"))
                if asset:
                    self._channels[int(msg["chanId"])] = asset
            return []
        if not isinstance(msg, list) or len(msg) < 3 or not isinstance(msg[2], list):
            return []
        asset = self._channels.get(msg[0])
        if asset is None:
            return []
        # [ID, MTS, AMOUNT, PRICE]; amount sign is the taker side.
        return [(asset, abs(float(msg[2][3])))]


ADAPTERS: Dict[Venue, Callable[[], VenueAdapter]] = {
    Venue.BINANCE: BinanceAdapter,
    Venue.BYBIT: BybitAdapter,
    Venue.GATE: GateAdapter,
    Venue.OKX: OkxAdapter,
    Venue.MEXC: MexcAdapter,
    Venue.BITGET: BitgetAdapter,
    Venue.DEEPCOIN: DeepcoinAdapter,
    Venue.COINBASE: CoinbaseAdapter,
    Venue.BITFINEX: BitfinexAdapter,
}


def build_adapter(venue: Venue) -> VenueAdapter:
    return ADAPTERS[venue]()
