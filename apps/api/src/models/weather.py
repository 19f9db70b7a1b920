from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from services.weather.models import Location
from services.weather.service import LocationSummary
from services.weather.summary import PrecipitationTotals


class AddLocationRequest(BaseModel):
    """Register a location by name and coordinates"""

    name: str = Field(min_length=1, max_length=128)
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)


class LocationPayload(BaseModel):
    id: str
    name: str
    lat: float
    lon: float
    last_weather_time: datetime | None = None
    oldest_forecast_time: datetime | None = None

    @staticmethod
    def from_location(location: Location) -> "LocationPayload":
        return LocationPayload(
            id=location.location_id,
            name=location.name,
            lat=location.lat,
            lon=location.lon,
            last_weather_time=location.last_weather_time,
            oldest_forecast_time=location.oldest_forecast_time,
        )


class PrecipitationPayload(BaseModel):
    day: float
    week: float
    month: float

    @staticmethod
    def from_totals(totals: PrecipitationTotals | None) -> "PrecipitationPayload | None":
        if totals is None:
            return None
        return PrecipitationPayload(day=totals.day, week=totals.week, month=totals.month)


class ForecastPayload(BaseModel):
    rain: float
    snow: float


class LocationSummaryPayload(BaseModel):
    """A location with recent precipitation; rain/snow are omitted when nothing fell"""

    location: LocationPayload
    rain: PrecipitationPayload | None = None
    snow: PrecipitationPayload | None = None
    forecast: ForecastPayload | None = None
    distance_km: float | None = None

    @staticmethod
    def from_summary(summary: LocationSummary) -> "LocationSummaryPayload":
        forecast = (
            ForecastPayload(rain=summary.forecast.rain, snow=summary.forecast.snow)
            if summary.forecast is not None
            else None
        )
        return LocationSummaryPayload(
            location=LocationPayload.from_location(summary.location),
            rain=PrecipitationPayload.from_totals(summary.history.rain),
            snow=PrecipitationPayload.from_totals(summary.history.snow),
            forecast=forecast,
            distance_km=round(summary.distance_m / 1000, 1) if summary.distance_m is not None else None,
        )


class ErrorPayload(BaseModel):
    error: str
    location: LocationPayload | None = None
