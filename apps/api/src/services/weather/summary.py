"""Rolling precipitation totals over stored history and forecast rows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .models import Location
from .persistence import WeatherStore
from .sync import ForecastRefresher, HistorySynchronizer
from .utils import utc_now

DAY = timedelta(days=1)
WEEK = timedelta(days=7)
MONTH = timedelta(weeks=4)
FORECAST_HORIZON = timedelta(hours=48)


@dataclass(frozen=True)
class PrecipitationTotals:
    day: float
    week: float
    month: float


@dataclass(frozen=True)
class HistorySummary:
    """Recent precipitation; a total is None when nothing fell in the last month."""

    rain: Optional[PrecipitationTotals] = None
    snow: Optional[PrecipitationTotals] = None


@dataclass(frozen=True)
class ForecastSummary:
    rain: float = 0.0
    snow: float = 0.0


class _RollingTotals:
    def __init__(self) -> None:
        self.day = 0.0
        self.week = 0.0
        self.month = 0.0

    def freeze(self) -> Optional[PrecipitationTotals]:
        if self.month == 0:
            return None
        return PrecipitationTotals(day=self.day, week=self.week, month=self.month)


class WeatherAggregator:
    """Reduces stored rows to summaries, refreshing the underlying data first."""

    def __init__(
        self,
        store: WeatherStore,
        synchronizer: HistorySynchronizer,
        refresher: ForecastRefresher,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.synchronizer = synchronizer
        self.refresher = refresher
        self.clock = clock

    async def summarize_history(self, location: Location) -> HistorySummary:
        """Sync recent history, then total rain and snow over the last day, week and four weeks in one pass."""
        await self.synchronizer.sync_location(location)

        now = self.clock()
        day_cutoff = now - DAY
        week_cutoff = now - WEEK
        month_cutoff = now - MONTH
        rain = _RollingTotals()
        snow = _RollingTotals()

        async for point in self.store.iter_history(location.location_id, since=month_cutoff):
            if point.weather_time >= day_cutoff:
                rain.day += point.rain_mm
                snow.day += point.snow_mm
            if point.weather_time >= week_cutoff:
                rain.week += point.rain_mm
                snow.week += point.snow_mm
            if point.weather_time >= month_cutoff:
                rain.month += point.rain_mm
                snow.month += point.snow_mm

        return HistorySummary(rain=rain.freeze(), snow=snow.freeze())

    async def summarize_forecast(self, location: Location) -> ForecastSummary:
        """Refresh a stale forecast, then total rain and snow over the next 48 hours."""
        await self.refresher.refresh_forecast(location)

        until = self.clock() + FORECAST_HORIZON
        rain = 0.0
        snow = 0.0
        async for point in self.store.iter_forecast(location.location_id, until=until):
            rain += point.rain_mm
            snow += point.snow_mm
        return ForecastSummary(rain=rain, snow=snow)


__all__ = [
    "ForecastSummary",
    "HistorySummary",
    "PrecipitationTotals",
    "WeatherAggregator",
]
