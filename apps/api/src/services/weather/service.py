"""Request-level operations shared by the chat bot and the HTTP API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

from core.openweather.exceptions import ProviderError

from .exceptions import LocationConflictError, NotFoundError, WeatherError
from .models import Location
from .persistence import WeatherStore
from .proximity import ProximitySearch
from .summary import ForecastSummary, HistorySummary, WeatherAggregator

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


class RequestFailed(Exception):
    """A request failure reduced to a user-facing error code."""

    def __init__(self, code: ErrorCode, location: Optional[Location] = None) -> None:
        super().__init__(code.value)
        self.code = code
        self.location = location


@dataclass(frozen=True)
class LocationSummary:
    location: Location
    history: HistorySummary
    forecast: Optional[ForecastSummary] = None
    distance_m: Optional[float] = None


class WeatherService:
    def __init__(self, store: WeatherStore, aggregator: WeatherAggregator, proximity: ProximitySearch) -> None:
        self.store = store
        self.aggregator = aggregator
        self.proximity = proximity

    async def add_location(self, name: str, lat: float, lon: float) -> Location:
        """Register a location; a collision fails with CONFLICT and the existing location."""
        cleaned = name.strip()
        if not cleaned:
            raise ValueError("Location name must be a non-empty string.")
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
            raise ValueError("Coordinates are out of range.")
        try:
            return await self.store.insert_location(cleaned, lat, lon)
        except LocationConflictError as exc:
            raise RequestFailed(ErrorCode.CONFLICT, exc.existing) from exc
        except (WeatherError, ProviderError) as exc:
            logger.exception("Failed to add location %s", cleaned)
            raise RequestFailed(ErrorCode.INTERNAL) from exc

    async def list_locations(self) -> AsyncIterator[LocationSummary]:
        """Stream every location with its recent precipitation."""
        try:
            async for location in self.store.list_locations():
                history = await self.aggregator.summarize_history(location)
                yield LocationSummary(location=location, history=history)
        except (WeatherError, ProviderError) as exc:
            logger.exception("Listing locations failed")
            raise RequestFailed(ErrorCode.INTERNAL) from exc

    async def describe_location(self, key: str) -> LocationSummary:
        """Summarize one location, looked up by id or name."""
        try:
            location = await self.store.get_location(key)
            history = await self.aggregator.summarize_history(location)
            forecast = await self.aggregator.summarize_forecast(location)
        except NotFoundError as exc:
            raise RequestFailed(ErrorCode.NOT_FOUND) from exc
        except (WeatherError, ProviderError) as exc:
            logger.exception("Describing location %s failed", key)
            raise RequestFailed(ErrorCode.INTERNAL) from exc
        return LocationSummary(location=location, history=history, forecast=forecast)

    async def where_to_go(self, query: str) -> AsyncIterator[LocationSummary]:
        """Stream nearby locations with good weather, each with its forecast."""
        try:
            async for nearby in self.proximity.search(query):
                yield LocationSummary(
                    location=nearby.location,
                    history=nearby.history,
                    forecast=nearby.forecast,
                    distance_m=nearby.distance_m,
                )
        except NotFoundError as exc:
            raise RequestFailed(ErrorCode.NOT_FOUND) from exc
        except (WeatherError, ProviderError) as exc:
            logger.exception("Where-to-go search for '%s' failed", query)
            raise RequestFailed(ErrorCode.INTERNAL) from exc


__all__ = ["ErrorCode", "LocationSummary", "RequestFailed", "WeatherService"]
