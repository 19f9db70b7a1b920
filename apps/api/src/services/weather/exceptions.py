"""Exceptions raised by the weather store and its consumers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Location


class WeatherError(Exception):
    """Base class for weather service failures."""


class ConflictError(WeatherError):
    """Raised when an insert collides with an existing unique key."""


class LocationConflictError(ConflictError):
    """Raised when a location with the same coordinates, id or name already exists."""

    def __init__(self, existing: Location | None) -> None:
        detail = f"Location already exists: {existing.location_id} ({existing.name})" if existing else "Location already exists"
        super().__init__(detail)
        self.existing = existing


class HistoryConflictError(ConflictError):
    """Raised when an hourly history row already exists for the key."""

    def __init__(self, location_id: str, weather_time: object) -> None:
        super().__init__(f"History row already stored for {location_id} at {weather_time}")
        self.location_id = location_id
        self.weather_time = weather_time


class NotFoundError(WeatherError):
    """Raised when a lookup yields nothing."""


class LocationNotFoundError(NotFoundError):
    def __init__(self, key: str) -> None:
        super().__init__(f"No location registered for '{key}'")
        self.key = key


class PlaceNotFoundError(NotFoundError):
    def __init__(self, query: str) -> None:
        super().__init__(f"Geocoding found no place matching '{query}'")
        self.query = query


class StorageError(WeatherError):
    """Raised for storage failures other than uniqueness conflicts."""


class SchemaError(StorageError):
    """Raised when the database schema cannot be brought to the current version."""


__all__ = [
    "WeatherError",
    "ConflictError",
    "LocationConflictError",
    "HistoryConflictError",
    "NotFoundError",
    "LocationNotFoundError",
    "PlaceNotFoundError",
    "StorageError",
    "SchemaError",
]
