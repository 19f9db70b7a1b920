"""Keeps stored hourly history and forecasts in step with the provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from core.openweather.exceptions import ProviderError
from core.openweather.provider import WeatherProvider

from .exceptions import HistoryConflictError
from .models import ForecastPoint, HistoryPoint, Location
from .persistence import WeatherStore
from .utils import ONE_HOUR, floor_to_hour, hourly_range, utc_now

logger = logging.getLogger(__name__)

HISTORY_WINDOW = timedelta(hours=48)
FORECAST_STALE_AFTER = timedelta(hours=2)


@dataclass
class SyncReport:
    """Outcome of a batch history sync: rows inserted per location and failures by location."""

    end_time: datetime
    inserted: Dict[str, int] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def total_inserted(self) -> int:
        return sum(self.inserted.values())


class HistorySynchronizer:
    """Fills in missing hours of history for locations.

    The state is recomputed from stored rows on every call, so concurrent or
    retried runs are safe: an hour another run already stored surfaces as a
    HistoryConflictError and is counted as done.
    """

    def __init__(
        self,
        store: WeatherStore,
        provider: WeatherProvider,
        window: timedelta = HISTORY_WINDOW,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.provider = provider
        self.window = window
        self.clock = clock

    async def sync_location(self, location: Location, end_time: Optional[datetime] = None) -> int:
        """Fetch every missing hour in ``[end_time - window, end_time)``. Returns rows inserted."""
        end = floor_to_hour(end_time if end_time is not None else self.clock())
        begin = end - self.window
        last_weather_time = await self.store.newest_history_time(location.location_id)
        start = begin if last_weather_time is None else max(begin, last_weather_time + ONE_HOUR)

        inserted = 0
        for weather_time in hourly_range(start, end):
            if await self._fetch_and_store(location, weather_time):
                inserted += 1
        if inserted:
            logger.info("Stored %s hours of history for %s up to %s", inserted, location.location_id, end.isoformat())
        return inserted

    async def fetch_all_history(self, end_time: Optional[datetime] = None) -> SyncReport:
        """Sync every registered location against one shared end time.

        A failure for one location is logged and recorded; the batch carries on.
        """
        end = floor_to_hour(end_time if end_time is not None else self.clock())
        report = SyncReport(end_time=end)
        async for location in self.store.list_locations():
            try:
                report.inserted[location.location_id] = await self.sync_location(location, end)
            except Exception as exc:
                logger.exception("History sync failed for %s (%s)", location.location_id, location.name)
                report.failed[location.location_id] = str(exc) or exc.__class__.__name__
        logger.info(
            "History sync to %s stored %s rows across %s locations (%s failed)",
            end.isoformat(),
            report.total_inserted,
            len(report.inserted),
            len(report.failed),
        )
        return report

    async def backfill_history(self, limit: int) -> int:
        """Walk backwards ``limit`` hours from the oldest row of the least-backfilled location."""
        if limit <= 0:
            return 0
        target = await self.store.least_backfilled_location()
        if target is None:
            logger.info("No stored history to backfill from yet.")
            return 0

        location = target.location
        weather_time = target.oldest_weather_time - ONE_HOUR
        inserted = 0
        for _ in range(limit):
            if await self._fetch_and_store(location, weather_time):
                inserted += 1
            weather_time -= ONE_HOUR
        logger.info(
            "Backfilled %s hours for %s, now reaching %s",
            inserted,
            location.location_id,
            (weather_time + ONE_HOUR).isoformat(),
        )
        return inserted

    async def _fetch_and_store(self, location: Location, weather_time: datetime) -> bool:
        observation = await self.provider.historical_at(location.lat, location.lon, weather_time)
        try:
            point = HistoryPoint.from_observation(location.location_id, weather_time, observation)
        except (KeyError, TypeError, ValueError) as error:
            raise ProviderError(
                f"Malformed observation for {location.location_id} at {weather_time.isoformat()}: {error}"
            ) from error
        try:
            await self.store.insert_history_point(point)
        except HistoryConflictError:
            logger.debug("History for %s at %s already stored", location.location_id, weather_time.isoformat())
            return False
        return True


class ForecastRefresher:
    """Replaces a location's stored forecast when it has gone stale."""

    def __init__(
        self,
        store: WeatherStore,
        provider: WeatherProvider,
        stale_after: timedelta = FORECAST_STALE_AFTER,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.provider = provider
        self.stale_after = stale_after
        self.clock = clock

    async def refresh_forecast(self, location: Location) -> bool:
        """Fetch and atomically store a new forecast unless the current one is fresh. Returns True on refresh."""
        oldest = await self.store.oldest_forecast_time(location.location_id)
        if oldest is not None and oldest > self.clock() - self.stale_after:
            return False

        document: Dict[str, Any] = await self.provider.forecast(location.lat, location.lon)
        hourly = document.get("hourly") or []
        if not hourly:
            logger.warning("Forecast for %s came back without hourly data", location.location_id)
            return False

        try:
            points = [ForecastPoint.from_hourly(location.location_id, hour) for hour in hourly]
        except (KeyError, TypeError, ValueError) as error:
            raise ProviderError(f"Malformed forecast hour for {location.location_id}: {error}") from error
        await self.store.replace_forecast(location.location_id, points)
        return True


__all__ = [
    "FORECAST_STALE_AFTER",
    "HISTORY_WINDOW",
    "ForecastRefresher",
    "HistorySynchronizer",
    "SyncReport",
]
