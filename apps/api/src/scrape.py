#!/usr/bin/env python3
"""CLI entrypoint for a one-off weather scrape into PostgreSQL."""

from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from services.weather.config import load_weather_settings
from services.weather.governor import WeatherGovernor
from services.weather.job import ScrapeReport
from startup import initialize_server

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Sync the last 48 hours of weather for every location and backfill older history.",
    )
    parser.add_argument(
        "--migrate-only",
        action="store_true",
        help="Apply pending schema migrations and exit.",
    )
    parser.add_argument(
        "--backfill-limit",
        type=int,
        help="Maximum hours to backfill for the least covered location. Default: WEATHER_BACKFILL_LIMIT.",
    )
    parser.add_argument(
        "--skip-backfill",
        action="store_true",
        help="Only bring the rolling 48 hour window up to date.",
    )
    parser.add_argument(
        "--end-time",
        type=datetime.fromisoformat,
        help="ISO timestamp to sync up to (naive values are UTC). Default: now.",
    )
    return parser.parse_args(argv)


async def run_scrape(args: argparse.Namespace) -> Optional[ScrapeReport]:
    settings = load_weather_settings()
    if args.backfill_limit is not None:
        settings = replace(settings, backfill_limit=args.backfill_limit)
    governor = WeatherGovernor(settings)
    version = await governor.start()
    try:
        if args.migrate_only:
            logger.info("Weather schema is at version %s", version)
            return None
        return await governor.scrape_job.run(end_time=args.end_time, backfill=not args.skip_backfill)
    finally:
        await governor.close()


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    initialize_server()

    report = asyncio.run(run_scrape(args))
    if report is None:
        return
    logger.info(
        "Scrape up to %s stored %s history rows and backfilled %s hours",
        report.history.end_time.isoformat(),
        report.history.total_inserted,
        report.backfilled,
    )
    for location_key, message in report.history.failed.items():
        logger.warning("Location %s failed: %s", location_key, message)
    if report.backfill_error:
        logger.warning("Backfill failed: %s", report.backfill_error)


if __name__ == "__main__":
    main()
