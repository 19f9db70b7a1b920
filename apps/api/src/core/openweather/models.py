from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from core.secrets import SecretFileRepository


@dataclass(frozen=True)
class OpenWeatherCredentials:
    """Names the secret holding the API key and where to read it from."""

    api_key_name: str
    secrets: SecretFileRepository

    def api_key(self) -> str:
        return self.secrets.load(self.api_key_name)


@dataclass(frozen=True)
class GeocodedPlace:
    name: str
    lat: float
    lon: float
    country: str
    state: str | None = None

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "GeocodedPlace":
        return GeocodedPlace(
            name=str(raw["name"]),
            lat=float(raw["lat"]),
            lon=float(raw["lon"]),
            country=str(raw.get("country") or ""),
            state=str(raw["state"]) if raw.get("state") is not None else None,
        )

    def display_name(self) -> str:
        parts = [part for part in (self.name, self.state, self.country) if part]
        return ", ".join(parts)
