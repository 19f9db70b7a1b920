"""Finds registered locations near a place that have had decent weather lately."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import AsyncIterator

from core.openweather.models import GeocodedPlace
from core.openweather.provider import WeatherProvider

from .exceptions import PlaceNotFoundError
from .models import Coordinates, Location
from .persistence import WeatherStore
from .summary import ForecastSummary, HistorySummary, WeatherAggregator

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_378_137.0
SEARCH_BOX_DEGREES = 2.5
MAX_DISTANCE_M = 300_000.0
MAX_DAY_RAIN_MM = 10.0
MAX_DAY_SNOW_MM = 10.0
MAX_WEEK_SNOW_MM = 100.0


@dataclass(frozen=True)
class BoundingBox:
    low: Coordinates
    high: Coordinates

    @staticmethod
    def around(point: Coordinates, degrees: float = SEARCH_BOX_DEGREES) -> "BoundingBox":
        return BoundingBox(
            low=Coordinates(point.lat - degrees, point.lon - degrees),
            high=Coordinates(point.lat + degrees, point.lon + degrees),
        )

    def contains(self, point: Coordinates) -> bool:
        """Strict containment, matching the store's range scan."""
        return self.low.lat < point.lat < self.high.lat and self.low.lon < point.lon < self.high.lon


@dataclass(frozen=True)
class NearbyLocation:
    location: Location
    distance_m: float
    history: HistorySummary
    forecast: ForecastSummary


def haversine_distance_m(origin: Coordinates, target: Coordinates) -> float:
    """Great-circle distance in metres."""
    lat1 = math.radians(origin.lat)
    lat2 = math.radians(target.lat)
    dlat = lat2 - lat1
    dlon = math.radians(target.lon - origin.lon)
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def has_bad_weather(summary: HistorySummary) -> bool:
    """Too much rain or snow in the last day, or too much snow over the week."""
    if summary.rain is not None and summary.rain.day > MAX_DAY_RAIN_MM:
        return True
    if summary.snow is not None:
        if summary.snow.day > MAX_DAY_SNOW_MM or summary.snow.week > MAX_WEEK_SNOW_MM:
            return True
    return False


class ProximitySearch:
    def __init__(self, store: WeatherStore, provider: WeatherProvider, aggregator: WeatherAggregator) -> None:
        self.store = store
        self.provider = provider
        self.aggregator = aggregator

    async def resolve_place(self, query: str) -> GeocodedPlace:
        candidates = await self.provider.geocode(query)
        if not candidates:
            raise PlaceNotFoundError(query)
        return candidates[0]

    async def search(self, query: str) -> AsyncIterator[NearbyLocation]:
        """Yield nearby locations with good recent weather, in scan order, as each one qualifies."""
        place = await self.resolve_place(query)
        origin = Coordinates(place.lat, place.lon)
        box = BoundingBox.around(origin)
        logger.info("Searching near %s (%s, %s)", place.display_name(), place.lat, place.lon)

        async for location in self.store.list_locations_within(box.low, box.high):
            distance = haversine_distance_m(origin, location.coordinates)
            if distance > MAX_DISTANCE_M:
                continue
            history = await self.aggregator.summarize_history(location)
            if has_bad_weather(history):
                logger.debug("Skipping %s: recent weather too wet", location.location_id)
                continue
            forecast = await self.aggregator.summarize_forecast(location)
            yield NearbyLocation(location=location, distance_m=distance, history=history, forecast=forecast)


__all__ = [
    "BoundingBox",
    "EARTH_RADIUS_M",
    "MAX_DISTANCE_M",
    "NearbyLocation",
    "ProximitySearch",
    "haversine_distance_m",
    "has_bad_weather",
]
