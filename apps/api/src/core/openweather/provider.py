from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from core.openweather.models import GeocodedPlace


class WeatherProvider(Protocol):
    """Capabilities the weather core needs from a third-party provider."""

    async def historical_at(self, lat: float, lon: float, when: datetime) -> dict[str, Any]:
        """Return the observation for one instant: temp, feels_like, visibility, rain/snow {"1h": mm}, ..."""
        ...

    async def forecast(self, lat: float, lon: float) -> dict[str, Any]:
        """Return a document whose optional ``hourly`` list holds observation-shaped hours plus ``pop``."""
        ...

    async def geocode(self, query: str) -> list[GeocodedPlace]:
        """Return candidate places for free text, best match first."""
        ...
