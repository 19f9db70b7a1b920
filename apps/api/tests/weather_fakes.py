"""In-memory stand-ins for the weather store and provider used across the weather tests."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any, AsyncIterator, Callable, Iterable

from core.openweather.exceptions import ProviderError
from core.openweather.models import GeocodedPlace
from services.weather.exceptions import (
    HistoryConflictError,
    LocationConflictError,
    LocationNotFoundError,
    StorageError,
)
from services.weather.models import (
    BackfillTarget,
    Coordinates,
    ForecastPoint,
    HistoryPoint,
    Location,
    is_location_id,
    location_id,
)
from services.weather.proximity import ProximitySearch
from services.weather.service import WeatherService
from services.weather.summary import WeatherAggregator
from services.weather.sync import ForecastRefresher, HistorySynchronizer

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def fixed_clock() -> datetime:
    return NOW


def hours_ago(hours: float) -> datetime:
    return NOW - timedelta(hours=hours)


def history_point(location_key: str, when: datetime, rain: float = 0.0, snow: float = 0.0) -> HistoryPoint:
    observation = {"dt": int(when.timestamp()), "temp": 12.5, "rain": {"1h": rain}, "snow": {"1h": snow}}
    return HistoryPoint.from_observation(location_key, when, observation)


def forecast_point(location_key: str, when: datetime, rain: float = 0.0, snow: float = 0.0) -> ForecastPoint:
    hour = {"dt": int(when.timestamp()), "temp": 9.0, "rain": {"1h": rain}, "snow": {"1h": snow}}
    return ForecastPoint.from_hourly(location_key, hour)


class InMemoryWeatherStore:
    """Mirrors WeatherStore's contract, including its uniqueness conflicts, without a database."""

    def __init__(self) -> None:
        self.locations: dict[str, Location] = {}
        self.history: dict[tuple[str, datetime], HistoryPoint] = {}
        self.forecasts: dict[str, list[ForecastPoint]] = {}
        self.fail_history_reads_for: set[str] = set()
        self.is_open = False

    async def open(self) -> int:
        self.is_open = True
        return 2

    async def close(self) -> None:
        self.is_open = False

    def _with_freshness(self, location: Location) -> Location:
        history_times = [when for (key, when) in self.history if key == location.location_id]
        forecast_times = [point.forecast_time for point in self.forecasts.get(location.location_id, [])]
        return Location(
            location_id=location.location_id,
            name=location.name,
            lat=location.lat,
            lon=location.lon,
            last_weather_time=max(history_times) if history_times else None,
            oldest_forecast_time=min(forecast_times) if forecast_times else None,
        )

    async def insert_location(self, name: str, lat: float, lon: float) -> Location:
        key = location_id(lat, lon)
        for existing in self.locations.values():
            if existing.location_id == key or existing.name == name or (existing.lat, existing.lon) == (lat, lon):
                raise LocationConflictError(self._with_freshness(existing))
        location = Location(location_id=key, name=name, lat=lat, lon=lon)
        self.locations[key] = location
        return location

    async def get_location(self, key: str) -> Location:
        cleaned = key.strip()
        for location in self.locations.values():
            matches = location.location_id == cleaned if is_location_id(cleaned) else location.name == cleaned
            if matches:
                return self._with_freshness(location)
        raise LocationNotFoundError(cleaned)

    async def list_locations(self) -> AsyncIterator[Location]:
        for location in list(self.locations.values()):
            await asyncio.sleep(0)
            yield self._with_freshness(location)

    async def list_locations_within(self, low: Coordinates, high: Coordinates) -> AsyncIterator[Location]:
        for location in list(self.locations.values()):
            if low.lat < location.lat < high.lat and low.lon < location.lon < high.lon:
                yield self._with_freshness(location)

    async def insert_history_point(self, point: HistoryPoint) -> None:
        await asyncio.sleep(0)
        key = (point.location_id, point.weather_time)
        if key in self.history:
            raise HistoryConflictError(point.location_id, point.weather_time)
        self.history[key] = point

    def add_history(self, points: Iterable[HistoryPoint]) -> None:
        for point in points:
            self.history[(point.location_id, point.weather_time)] = point

    def history_times(self, location_key: str) -> list[datetime]:
        return sorted(when for (key, when) in self.history if key == location_key)

    async def newest_history_time(self, location_key: str) -> datetime | None:
        times = self.history_times(location_key)
        return times[-1] if times else None

    async def least_backfilled_location(self) -> BackfillTarget | None:
        candidates = []
        for location in self.locations.values():
            times = self.history_times(location.location_id)
            if times:
                candidates.append((times[0], location))
        if not candidates:
            return None
        candidates.sort(key=lambda item: (-item[0].timestamp(), item[1].location_id))
        oldest, location = candidates[0]
        return BackfillTarget(location=location, oldest_weather_time=oldest)

    async def iter_history(self, location_key: str, since: datetime) -> AsyncIterator[HistoryPoint]:
        if location_key in self.fail_history_reads_for:
            raise StorageError(f"history read failed for {location_key}")
        for when in reversed(self.history_times(location_key)):
            if when >= since:
                yield self.history[(location_key, when)]

    async def oldest_forecast_time(self, location_key: str) -> datetime | None:
        points = self.forecasts.get(location_key)
        return min(point.forecast_time for point in points) if points else None

    async def replace_forecast(self, location_key: str, points: Iterable[ForecastPoint]) -> int:
        rows = list(points)
        if any(point.location_id != location_key for point in rows):
            raise ValueError("forecast point for another location")
        self.forecasts[location_key] = sorted(rows, key=lambda point: point.forecast_time)
        return len(rows)

    async def iter_forecast(self, location_key: str, until: datetime) -> AsyncIterator[ForecastPoint]:
        for point in self.forecasts.get(location_key, []):
            if point.forecast_time < until:
                yield point


class FakeProvider:
    """Scripted provider: history rain comes from ``rain_at`` and forecasts are 48 dry hours from NOW."""

    def __init__(
        self,
        rain_at: Callable[[float, float, datetime], float] | None = None,
        places: dict[str, list[GeocodedPlace]] | None = None,
    ) -> None:
        self.rain_at = rain_at or (lambda lat, lon, when: 0.0)
        self.places = places or {}
        self.failing_coordinates: set[tuple[float, float]] = set()
        self.forecast_hourly: list[dict[str, Any]] | None = None
        self.historical_calls: list[tuple[float, float, datetime]] = []
        self.forecast_calls: list[tuple[float, float]] = []

    async def historical_at(self, lat: float, lon: float, when: datetime) -> dict[str, Any]:
        await asyncio.sleep(0)
        if (lat, lon) in self.failing_coordinates:
            raise ProviderError("OpenWeather /data/3.0/onecall/timemachine returned 503", 503)
        self.historical_calls.append((lat, lon, when))
        return {"dt": int(when.timestamp()), "temp": 11.0, "rain": {"1h": self.rain_at(lat, lon, when)}}

    async def forecast(self, lat: float, lon: float) -> dict[str, Any]:
        self.forecast_calls.append((lat, lon))
        if self.forecast_hourly is not None:
            return {"hourly": self.forecast_hourly}
        hourly = [{"dt": int((NOW + timedelta(hours=offset)).timestamp()), "temp": 10.0} for offset in range(48)]
        return {"lat": lat, "lon": lon, "hourly": hourly}

    async def geocode(self, query: str) -> list[GeocodedPlace]:
        return list(self.places.get(query, []))


def build_service(store: InMemoryWeatherStore, provider: FakeProvider) -> WeatherService:
    synchronizer = HistorySynchronizer(store, provider, clock=fixed_clock)
    refresher = ForecastRefresher(store, provider, clock=fixed_clock)
    aggregator = WeatherAggregator(store, synchronizer, refresher, clock=fixed_clock)
    proximity = ProximitySearch(store, provider, aggregator)
    return WeatherService(store, aggregator, proximity)


async def collect(iterator: AsyncIterator[Any]) -> list[Any]:
    return [item async for item in iterator]
