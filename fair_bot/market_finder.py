"""15-minute up/down market discovery.

Markets are addressed by slug ``{asset}-updown-15m-{open_ts}``.  The
resolver tries the current 15-minute boundary first, then the next ones,
and returns the first active market with outcome token ids.  The official
open price comes from the 15m candle of the configured start-price source;
if that lookup fails the window is still returned with ``start_price=0``
and the feeds take the first live tick after the open instead.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

import httpx

from fair_bot.models import WINDOW_SECONDS, Asset, MarketWindow

LOGGER = logging.getLogger(__name__)

GAMMA_MARKETS_URL = "https://gamma-api.polymarket.com/markets"
BINANCE_KLINES_URL = "https://fapi.binance.com/fapi/v1/klines"
COINBASE_CANDLES_URL = "https://api.exchange.coinbase.com/products/{product}/candles"

BINANCE_SYMBOLS = {Asset.BTC: "BTCUSDT", Asset.ETH: "ETHUSDT", Asset.SOL: "SOLUSDT", Asset.XRP: "XRPUSDT"}
_COINBASE_PRODUCTS = {Asset.BTC: "BTC-USD", Asset.ETH: "ETH-USD", Asset.SOL: "SOL-USD", Asset.XRP: "XRP-USD"}


def window_open(now: float) -> float:
    """Start of the 15-minute window containing *now*."""
    return now - (now % WINDOW_SECONDS)


def market_slug(asset: Asset, open_ts: float) -> str:
    return f"{asset.value.lower()}-updown-15m-{int(open_ts)}"


def parse_token_ids(raw: Any) -> List[str]:
    """``clobTokenIds`` arrives either as a JSON-encoded string or a list."""
    ids = json.loads(raw) if isinstance(raw, str) else raw
    if not isinstance(ids, list):
        raise ValueError(f"unexpected clobTokenIds: {raw!r}")
    return [str(i) for i in ids]


def _first_market(body: Any) -> Optional[dict]:
    if isinstance(body, list):
        return body[0] if body else None
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, list) and data:
            return data[0]
    return None


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class GammaTokenResolver:
    """Resolves the current :class:`MarketWindow` per asset over HTTP.

    Parameters
    ----------
    client:
        Shared ``httpx.AsyncClient``; one is created per lookup when omitted.
    start_price_source:
        ``"BINANCE"`` (futures 15m kline open) or ``"COINBASE"`` (900 s
        candle open, falling back to Binance).
    lookahead_windows:
        How many consecutive 15-minute boundaries to try.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        gamma_url: str = GAMMA_MARKETS_URL,
        binance_klines_url: str = BINANCE_KLINES_URL,
        coinbase_candles_url: str = COINBASE_CANDLES_URL,
        start_price_source: str = "BINANCE",
        lookahead_windows: int = 10,
        timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._gamma_url = gamma_url
        self._binance_url = binance_klines_url
        self._coinbase_url = coinbase_candles_url
        self._start_source = start_price_source.upper()
        self._lookahead_windows = max(1, lookahead_windows)
        self._timeout = timeout_seconds
        self._clock = clock

    async def get_window(self, asset: Asset) -> Optional[MarketWindow]:
        if self._client is not None:
            return await self._resolve(self._client, asset)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._resolve(client, asset)

    async def _resolve(self, client: httpx.AsyncClient, asset: Asset) -> Optional[MarketWindow]:
        base = window_open(self._clock())
        for i in range(self._lookahead_windows):
            open_ts = base + i * WINDOW_SECONDS
            market = await self._find_market(client, asset, open_ts)
            if market is None:
                continue
            try:
                ids = parse_token_ids(market.get("clobTokenIds"))
            except (ValueError, TypeError) as exc:
                LOGGER.debug("GammaTokenResolver: bad token ids for %s: %s", asset.value, exc)
                continue
            if len(ids) < 2:
                continue

            start_price = await self.fetch_start_price(client, asset, open_ts)
            window = MarketWindow(
                asset=asset,
                start_time=open_ts,
                start_price=start_price,
                up_token_id=ids[0],
                down_token_id=ids[1],
                question=str(market.get("question") or ""),
            )
            LOGGER.info(
                "GammaTokenResolver: %s market %r (open=%d, start_price=%s)",
                asset.value, window.question, int(open_ts), start_price or "first tick",
            )
            return window

        LOGGER.warning("GammaTokenResolver: no active %s 15m market found", asset.value)
        return None

    async def _find_market(self, client: httpx.AsyncClient, asset: Asset, open_ts: float) -> Optional[dict]:
        params = {"slug": market_slug(asset, open_ts), "active": "true", "closed": "false"}
        try:
            resp = await client.get(self._gamma_url, params=params)
            if resp.status_code != 200:
                return None
            market = _first_market(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.debug("GammaTokenResolver: lookup %s failed: %s", params["slug"], exc)
            return None
        if not market or not market.get("clobTokenIds"):
            return None
        return market

    # ── official open ──────────────────────────────────────────────

    async def fetch_start_price(self, client: httpx.AsyncClient, asset: Asset, open_ts: float) -> float:
        """Official window open, or 0.0 when unavailable."""
        if self._start_source == "COINBASE":
            price = await self._coinbase_open(client, asset, open_ts)
            if price > 0:
                return price
        return await self._binance_open(client, asset, open_ts)

    async def _binance_open(self, client: httpx.AsyncClient, asset: Asset, open_ts: float) -> float:
        params = {
            "symbol": BINANCE_SYMBOLS[asset],
            "interval": "15m",
            "startTime": int(open_ts * 1000),
            "endTime": int((open_ts + WINDOW_SECONDS) * 1000),
            "limit": 1,
        }
        try:
            resp = await client.get(self._binance_url, params=params)
            resp.raise_for_status()
            data = resp.json()
            if isinstance(data, list) and data:
                return float(data[0][1])
        except (httpx.HTTPError, ValueError, TypeError, IndexError) as exc:
            LOGGER.warning("GammaTokenResolver: %s start price fetch failed: %s", asset.value, exc)
        return 0.0

    async def _coinbase_open(self, client: httpx.AsyncClient, asset: Asset, open_ts: float) -> float:
        url = self._coinbase_url.format(product=_COINBASE_PRODUCTS[asset])
        params = {"granularity": 900, "start": _iso(open_ts), "end": _iso(open_ts + WINDOW_SECONDS)}
        try:
            resp = await client.get(url, params=params)
            if resp.status_code != 200:
                return 0.0
            data = resp.json()
            if isinstance(data, list) and data:
                # [time, low, high, open, close, volume], newest first
                return float(data[-1][3])
        except (httpx.HTTPError, ValueError, TypeError, IndexError) as exc:
            LOGGER.debug("GammaTokenResolver: %s coinbase open failed: %s", asset.value, exc)
        return 0.0
