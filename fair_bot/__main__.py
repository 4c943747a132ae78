"""CLI entry point for the fair-value engine.

Usage::

    python3 -m fair_bot --duration-minutes 60
    python3 -m fair_bot --assets BTC ETH --venues BINANCE BYBIT OKX GATE
    python3 -m fair_bot --trade --threshold 0.02 --verbose
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace

from fair_bot.app import FairApp
from fair_bot.config import FairSettings, load_fair_settings
from fair_bot.logging_setup import configure_logging
from fair_bot.models import parse_asset, parse_venue


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python3 -m fair_bot",
        description="Live fair probability for 15-minute crypto up/down markets",
    )
    parser.add_argument(
        "--assets", nargs="+", default=None,
        help="Assets to track (e.g. BTC ETH SOL XRP)",
    )
    parser.add_argument(
        "--venues", nargs="+", default=None,
        help="Exchange feeds to connect (e.g. BINANCE BYBIT OKX)",
    )
    parser.add_argument(
        "--anchor", type=str, default=None,
        help="Anchor venue for the hybrid estimate (default: BINANCE)",
    )
    parser.add_argument(
        "--duration-minutes", type=float, default=0,
        help="How long to run in minutes (0 = indefinitely)",
    )
    parser.add_argument(
        "--trade", action="store_true",
        help="Enable trade signals (paper execution)",
    )
    parser.add_argument(
        "--threshold", type=float, default=None,
        help="Minimum edge to trade (default: 0.018)",
    )
    parser.add_argument(
        "--no-preload", action="store_true",
        help="Skip the 1m kline volatility preload",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    return parser


def _apply_overrides(settings: FairSettings, args: argparse.Namespace) -> FairSettings:
    """Apply CLI argument overrides to settings."""
    overrides = {}

    if args.assets is not None:
        overrides["assets"] = [parse_asset(a) for a in args.assets]

    if args.venues is not None:
        overrides["active_venues"] = [parse_venue(v) for v in args.venues]

    if args.anchor is not None:
        overrides["anchor_venue"] = parse_venue(args.anchor)

    if args.trade:
        overrides["trading_enabled"] = True

    if args.threshold is not None:
        overrides["price_difference_threshold"] = args.threshold

    if args.no_preload:
        overrides["preload_enabled"] = False

    if args.verbose:
        overrides["log_level"] = "DEBUG"

    if overrides:
        settings = replace(settings, **overrides)

    return settings


async def _async_main(settings: FairSettings, args: argparse.Namespace) -> None:
    app = FairApp(settings)
    try:
        await app.run(duration_minutes=args.duration_minutes)
    except KeyboardInterrupt:
        app.stop()
    finally:
        print(f"\n{'='*60}")
        print("Fair Engine Session Summary")
        print(f"{'='*60}")
        print(f"Recomputes: {app.scheduler.recompute_count}")
        print(f"Rollovers:  {app.lifecycle.rollover_count}")
        print(f"Fallbacks:  {app.engine.fallback_count}")
        if settings.trading_enabled:
            print(f"Trades:     {app.trading.trades_placed}")
        print(f"{'='*60}")


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    try:
        settings = _apply_overrides(load_fair_settings(), args)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    configure_logging(settings.log_level)

    try:
        asyncio.run(_async_main(settings, args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
