"""Wires feeds, models, calibration, lifecycle and the scheduler together."""

from __future__ import annotations

import asyncio
import logging
import time
from functools import partial
from typing import List, Optional

from fair_bot.basis_calibrator import BasisCalibrator
from fair_bot.config import FairSettings
from fair_bot.fair_engine import CombinedFairEngine
from fair_bot.feeds.exchange import ExchangeFeed
from fair_bot.feeds.orderbook import OrderBook, OrderBookFeed
from fair_bot.feeds.stream import Connector
from fair_bot.feeds.venues import build_adapter
from fair_bot.lifecycle import MarketLifecycleManager
from fair_bot.market_finder import GammaTokenResolver
from fair_bot.models import OrderExecutionClient, PriceTick, Side, TokenResolver
from fair_bot.preloader import VolatilityPreloader
from fair_bot.scheduler import RecomputeScheduler
from fair_bot.state import VenueStateGrid
from fair_bot.trading import PaperExecutionClient, TradingLogic
from fair_bot.volatility_model import VolatilityModel

LOGGER = logging.getLogger(__name__)


class FairApp:
    """Parameters
    ----------
    settings:
        Fully resolved settings.
    resolver:
        Window discovery; defaults to :class:`GammaTokenResolver`.
    executor:
        Order client for trading; a paper client is used when trading is
        enabled without one.
    connector:
        WebSocket factory shared by all feeds (tests inject fakes).
    """

    def __init__(
        self,
        settings: FairSettings,
        resolver: Optional[TokenResolver] = None,
        executor: Optional[OrderExecutionClient] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self._settings = settings
        s = settings

        self.grid = VenueStateGrid(
            s.assets,
            s.active_venues,
            model_factory=partial(
                VolatilityModel,
                ewma_lambda=s.ewma_lambda,
                min_sigma_per_minute=s.min_sigma_per_minute,
                retention_seconds=s.history_retention_seconds,
                gap_risk_enabled=s.gap_risk_enabled,
            ),
        )
        self.updates: "asyncio.Queue[PriceTick]" = asyncio.Queue(maxsize=s.update_queue_size)

        self.order_book = OrderBook(s.assets)
        self.order_book_feed = OrderBookFeed(
            self.order_book,
            url=s.orderbook_url,
            reconnect_base_seconds=s.reconnect_base_seconds,
            reconnect_max_seconds=s.orderbook_reconnect_max_seconds,
            watchdog_interval_seconds=s.watchdog_interval_seconds,
            stale_after_seconds=s.orderbook_stale_seconds,
            connector=connector,
        )
        self.feeds: List[ExchangeFeed] = [
            ExchangeFeed(
                build_adapter(venue),
                self.grid,
                updates=self.updates,
                reconnect_base_seconds=s.reconnect_base_seconds,
                reconnect_max_seconds=s.reconnect_max_seconds,
                watchdog_interval_seconds=s.watchdog_interval_seconds,
                stale_after_seconds=s.feed_stale_seconds,
                connector=connector,
            )
            for venue in s.active_venues
        ]

        self.engine = CombinedFairEngine(
            self.grid,
            self.order_book,
            calibrator=BasisCalibrator(
                spike_window_seconds=s.spike_window_seconds,
                spike_threshold_pct=s.spike_threshold_pct,
                spike_threshold_overrides=s.spike_threshold_overrides,
                converge_tolerance=s.converge_tolerance,
                latch_timeout_seconds=s.latch_timeout_seconds,
            ),
            active_venues=s.active_venues,
            anchor_venue=s.anchor_venue,
            non_comparable_venues=s.non_comparable_venues,
            hybrid_moneyness_scale=s.hybrid_moneyness_scale,
            venue_stale_seconds=s.venue_stale_seconds,
        )
        self.resolver = resolver or GammaTokenResolver(
            gamma_url=s.gamma_url,
            binance_klines_url=s.binance_klines_url,
            start_price_source=s.start_price_source,
            timeout_seconds=s.http_timeout_seconds,
        )
        self.lifecycle = MarketLifecycleManager(
            self.resolver,
            self.grid,
            self.engine,
            order_book_feed=self.order_book_feed,
            grace_seconds=s.rollover_grace_seconds,
            retry_seconds=s.rediscovery_retry_seconds,
            discovery_timeout_seconds=s.discovery_timeout_seconds,
        )
        self.scheduler = RecomputeScheduler(
            self.engine,
            self.lifecycle,
            self.updates,
            recompute_interval_seconds=s.recompute_interval_seconds,
            idle_interval_seconds=s.idle_recompute_seconds,
            rollover_check_interval_seconds=s.rollover_check_seconds,
        )
        if s.trading_enabled and executor is None:
            executor = PaperExecutionClient()
        self.trading = TradingLogic(
            self.engine,
            self.grid,
            self.order_book,
            executor=executor,
            anchor_venue=s.anchor_venue,
            enabled=s.trading_enabled,
            price_difference_threshold=s.price_difference_threshold,
            trade_amount=s.trade_amount,
            cooldown_seconds=s.trade_cooldown_seconds,
        )
        self.scheduler.add_hook(self._after_recompute)

        self._running = False
        self._last_status = 0.0

    @property
    def settings(self) -> FairSettings:
        return self._settings

    async def _after_recompute(self, now: float) -> None:
        if self.trading.enabled:
            await self.trading.check_all(now, self.lifecycle.active_assets())
        if now - self._last_status >= self._settings.status_log_interval_seconds:
            self._last_status = now
            self.log_status(now)

    # ── status ─────────────────────────────────────────────────────

    def status_lines(self, now: float) -> List[str]:
        lines = []
        for asset in self.grid.assets:
            window = self.lifecycle.window(asset)
            mins = window.minutes_remaining(now) if window is not None else 0.0
            fair = self.engine.get_fair(asset)
            venues = self.engine.per_venue_snapshot(asset)
            live = sum(1 for v in venues.values() if v is not None)
            lines.append(
                f"{asset.value} [{self.lifecycle.phase(asset).value}] "
                f"fair={fair.up:.3f}/{fair.down:.3f} "
                f"mid={self.order_book.get_mid(asset, Side.UP):.3f}/{self.order_book.get_mid(asset, Side.DOWN):.3f} "
                f"venues={live}/{len(venues)} left={max(mins, 0.0):.1f}m"
            )
        return lines

    def log_status(self, now: float) -> None:
        for line in self.status_lines(now):
            LOGGER.info("FairApp: %s", line)
        stale = [f.name for f in self.feeds if f.is_stale(now)]
        if stale:
            LOGGER.info("FairApp: stale feeds: %s", ",".join(stale))

    # ── lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        if self._settings.preload_enabled:
            await VolatilityPreloader(
                self.grid,
                klines_url=self._settings.binance_klines_url,
                minutes=self._settings.preload_minutes,
                timeout_seconds=self._settings.http_timeout_seconds,
            ).preload()

        windows = await self.lifecycle.initialize()
        LOGGER.info("FairApp: initial windows for %s", ",".join(a.value for a in windows) or "none")

        for feed in self.feeds:
            await feed.connect(windows)
        await self.order_book_feed.start()
        await self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.lifecycle.cancel_retry()
        for feed in self.feeds:
            await feed.stop()
        await self.order_book_feed.stop()

    async def run(self, duration_minutes: float = 0) -> None:
        """Run until stopped, or for *duration_minutes* when positive."""
        self._running = True
        start = time.monotonic()
        s = self._settings
        LOGGER.info(
            "FairApp: starting (assets=%s, venues=%s, anchor=%s, trading=%s)",
            ",".join(a.value for a in s.assets),
            ",".join(v.value for v in s.active_venues),
            s.anchor_venue.value,
            s.trading_enabled,
        )

        try:
            await self.start()
            while self._running:
                if duration_minutes > 0:
                    elapsed = (time.monotonic() - start) / 60.0
                    if elapsed >= duration_minutes:
                        LOGGER.info("FairApp: duration limit reached (%.1f min)", elapsed)
                        break
                await asyncio.sleep(1.0)
        except asyncio.CancelledError:
            LOGGER.info("FairApp: cancelled")
        finally:
            await self.shutdown()
            self._running = False
            self.log_status(time.time())

    def stop(self) -> None:
        """Signal :meth:`run` to exit after the current second."""
        self._running = False
