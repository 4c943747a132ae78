"""Bootstrap volatility models from recent 1-minute futures klines."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

import httpx

from fair_bot.market_finder import BINANCE_KLINES_URL, BINANCE_SYMBOLS
from fair_bot.models import Asset
from fair_bot.state import VenueStateGrid

LOGGER = logging.getLogger(__name__)


class VolatilityPreloader:
    """Seeds every venue's EWMA for an asset with the same minute closes.

    Without a preload the models start at the volatility floor and need
    about a minute of ticks before sigma is meaningful.
    """

    def __init__(
        self,
        grid: VenueStateGrid,
        client: Optional[httpx.AsyncClient] = None,
        klines_url: str = BINANCE_KLINES_URL,
        minutes: int = 60,
        timeout_seconds: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._grid = grid
        self._client = client
        self._url = klines_url
        self._minutes = max(2, min(minutes, 1000))
        self._timeout = timeout_seconds
        self._clock = clock

    async def fetch_closes(self, client: httpx.AsyncClient, asset: Asset) -> List[float]:
        end = self._clock()
        params = {
            "symbol": BINANCE_SYMBOLS[asset],
            "interval": "1m",
            "startTime": int((end - self._minutes * 60) * 1000),
            "endTime": int(end * 1000),
            "limit": self._minutes,
        }
        resp = await client.get(self._url, params=params)
        resp.raise_for_status()
        return [float(candle[4]) for candle in resp.json()]

    async def preload(self) -> Dict[Asset, int]:
        """Returns the number of closes loaded per asset (0 on failure)."""
        if self._client is not None:
            return await self._preload_all(self._client)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._preload_all(client)

    async def _preload_all(self, client: httpx.AsyncClient) -> Dict[Asset, int]:
        loaded: Dict[Asset, int] = {}
        for asset in self._grid.assets:
            try:
                closes = await self.fetch_closes(client, asset)
            except (httpx.HTTPError, ValueError, TypeError, IndexError) as exc:
                LOGGER.warning("VolatilityPreloader: %s preload failed: %s", asset.value, exc)
                loaded[asset] = 0
                continue
            for sl in self._grid.for_asset(asset):
                sl.model.preload_history(closes, interval_seconds=60.0, timestamp=self._clock())
            loaded[asset] = len(closes)
            LOGGER.info(
                "VolatilityPreloader: %s preloaded %d 1m closes (sigma/min=%.6f)",
                asset.value, len(closes),
                self._grid.for_asset(asset)[0].model.estimate_volatility_per_minute() if closes else 0.0,
            )
        return loaded
