"""Typed records passed between the weather store and its consumers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .payloads import WeatherPayload, payload_from_provider
from .utils import from_unix

LOCATION_ID_PATTERN = re.compile(r"-?\d+\.\d\d,-?\d+\.\d\d")


def location_id(lat: float, lon: float) -> str:
    """Derive the natural key of a location from its coordinates."""
    return f"{lat:.2f},{lon:.2f}"


def is_location_id(value: str) -> bool:
    """Return True when the lookup key looks like a location id rather than a name."""
    return LOCATION_ID_PATTERN.fullmatch(value.strip()) is not None


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lon: float


@dataclass(frozen=True)
class Location:
    """A registered location joined with the derived freshness of its weather rows."""

    location_id: str
    name: str
    lat: float
    lon: float
    last_weather_time: datetime | None = None
    oldest_forecast_time: datetime | None = None

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.lat, self.lon)


@dataclass(frozen=True)
class HistoryPoint:
    """One observed hour of weather at a location."""

    location_id: str
    weather_time: datetime
    weather: WeatherPayload
    temperature: float
    rain_mm: float
    snow_mm: float

    @staticmethod
    def from_observation(location_id: str, weather_time: datetime, observation: dict[str, Any]) -> "HistoryPoint":
        payload = payload_from_provider(observation)
        return HistoryPoint(
            location_id=location_id,
            weather_time=weather_time,
            weather=payload,
            temperature=payload.temperature,
            rain_mm=payload.rain_mm,
            snow_mm=payload.snow_mm,
        )


@dataclass(frozen=True)
class ForecastPoint:
    """One predicted hour of weather at a location."""

    location_id: str
    forecast_time: datetime
    forecast: WeatherPayload
    temperature: float
    rain_mm: float
    snow_mm: float

    @staticmethod
    def from_hourly(location_id: str, hour: dict[str, Any]) -> "ForecastPoint":
        """Build a point from one entry of the provider's hourly forecast array."""
        payload = payload_from_provider(hour)
        forecast_time = from_unix(int(hour["dt"])).replace(minute=0, second=0, microsecond=0)
        return ForecastPoint(
            location_id=location_id,
            forecast_time=forecast_time,
            forecast=payload,
            temperature=payload.temperature,
            rain_mm=payload.rain_mm,
            snow_mm=payload.snow_mm,
        )


@dataclass(frozen=True)
class BackfillTarget:
    """The location whose stored history reaches back the least, with its oldest row time."""

    location: Location
    oldest_weather_time: datetime


__all__ = [
    "LOCATION_ID_PATTERN",
    "BackfillTarget",
    "Coordinates",
    "ForecastPoint",
    "HistoryPoint",
    "Location",
    "is_location_id",
    "location_id",
]
