"""Orchestrates scheduled weather scrape runs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .sync import HistorySynchronizer, SyncReport
from .utils import seconds_until_next_run, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ScrapeReport:
    history: SyncReport
    backfilled: int
    backfill_error: Optional[str] = None


class WeatherScrapeJob:
    """Brings every location's rolling history up to date, then backfills one location a little deeper."""

    def __init__(self, synchronizer: HistorySynchronizer, backfill_limit: int) -> None:
        self.synchronizer = synchronizer
        self.backfill_limit = backfill_limit

    async def run(self, end_time: Optional[datetime] = None, backfill: bool = True) -> ScrapeReport:
        history = await self.synchronizer.fetch_all_history(end_time)
        if not backfill or self.backfill_limit <= 0:
            return ScrapeReport(history=history, backfilled=0)
        try:
            backfilled = await self.synchronizer.backfill_history(self.backfill_limit)
        except Exception as exc:
            logger.exception("History backfill failed")
            return ScrapeReport(history=history, backfilled=0, backfill_error=str(exc) or exc.__class__.__name__)
        return ScrapeReport(history=history, backfilled=backfilled)

    async def run_forever(self, stop_event: asyncio.Event, minute: int) -> None:
        """Run once an hour at ``minute`` past the hour until ``stop_event`` is set."""
        while not stop_event.is_set():
            wait_seconds = seconds_until_next_run(utc_now(), minute)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=wait_seconds)
                break
            except asyncio.TimeoutError:
                pass

            logger.info("Starting scheduled weather scrape")
            try:
                report = await self.run()
                logger.info(
                    "Finished scheduled weather scrape: %s history rows, %s backfilled, %s failed locations",
                    report.history.total_inserted,
                    report.backfilled,
                    len(report.history.failed),
                )
            except Exception:
                logger.exception("Scheduled weather scrape failed")


__all__ = ["ScrapeReport", "WeatherScrapeJob"]
