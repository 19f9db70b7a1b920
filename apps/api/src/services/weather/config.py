"""Configuration objects and defaults for the weather service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

import yaml

from core.secrets import SecretFileRepository

SERVICE_ROOT = Path(__file__).resolve().parents[3]

_DEFAULT_SECRETS_DIR = SERVICE_ROOT / "secrets"
_DEFAULT_DB_PASSWORD_SECRET = "postgres_password"
_DEFAULT_OPENWEATHER_KEY_NAME = "openweather_api_key"
_DEFAULT_BACKFILL_LIMIT = 24
_DEFAULT_SCRAPE_MINUTE = 5
_DEFAULT_STREAM_BATCH_SIZE = 500
_DEFAULT_MAX_CONNECTIONS = 8
_DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0


@dataclass(frozen=True)
class DatabaseConfig:
    host: str
    port: int
    dbname: str
    user: str
    password: str


@dataclass(frozen=True)
class LocationSeed:
    name: str
    lat: float
    lon: float


@dataclass(frozen=True)
class WeatherSettings:
    database: DatabaseConfig
    secrets_dir: Path
    openweather_key_name: str
    backfill_limit: int
    scrape_minute: int
    scrape_enabled: bool
    stream_batch_size: int
    max_connections: int
    shutdown_grace_seconds: float
    locations_manifest: Path | None


def load_database_config(secrets: SecretFileRepository) -> DatabaseConfig:
    """Resolve connection settings from the environment, falling back to the password secret file."""
    password = os.environ.get("WEATHER_DB_PASSWORD") or secrets.get(_DEFAULT_DB_PASSWORD_SECRET) or ""
    return DatabaseConfig(
        host=os.environ.get("WEATHER_DB_HOST", "localhost"),
        port=int(os.environ.get("WEATHER_DB_PORT", "5432")),
        dbname=os.environ.get("WEATHER_DB_NAME", "weather"),
        user=os.environ.get("WEATHER_DB_USER", "weather"),
        password=password,
    )


def load_weather_settings() -> WeatherSettings:
    """Build settings from environment variables (already loaded from .env at startup)."""
    secrets_dir = Path(os.environ.get("WEATHER_SECRETS_DIR", str(_DEFAULT_SECRETS_DIR)))
    manifest = os.environ.get("WEATHER_LOCATIONS_MANIFEST")
    scrape_minute = int(os.environ.get("WEATHER_SCRAPE_MINUTE", str(_DEFAULT_SCRAPE_MINUTE)))
    if not 0 <= scrape_minute < 60:
        raise ValueError("WEATHER_SCRAPE_MINUTE must be between 0 and 59")
    return WeatherSettings(
        database=load_database_config(SecretFileRepository(secrets_dir)),
        secrets_dir=secrets_dir,
        openweather_key_name=os.environ.get("OPENWEATHER_API_KEY_NAME", _DEFAULT_OPENWEATHER_KEY_NAME),
        backfill_limit=int(os.environ.get("WEATHER_BACKFILL_LIMIT", str(_DEFAULT_BACKFILL_LIMIT))),
        scrape_minute=scrape_minute,
        scrape_enabled=_is_truthy(os.environ.get("WEATHER_SCRAPE_ENABLED", "true")),
        stream_batch_size=int(os.environ.get("WEATHER_STREAM_BATCH_SIZE", str(_DEFAULT_STREAM_BATCH_SIZE))),
        max_connections=int(os.environ.get("WEATHER_DB_MAX_CONNECTIONS", str(_DEFAULT_MAX_CONNECTIONS))),
        shutdown_grace_seconds=float(
            os.environ.get("WEATHER_SHUTDOWN_GRACE_SECONDS", str(_DEFAULT_SHUTDOWN_GRACE_SECONDS))
        ),
        locations_manifest=Path(manifest) if manifest else None,
    )


def load_location_seeds(path: Path) -> List[LocationSeed]:
    """Parse a YAML list of ``{name, lat, lon}`` entries to register at startup."""
    with path.open("r", encoding="utf-8") as handle:
        try:
            parsed = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Failed to parse locations manifest {path}: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected mapping at root of {path}")
    entries = parsed.get("locations") or []
    if not isinstance(entries, list):
        raise ValueError("locations must be a list.")
    return [_parse_seed(entry, index) for index, entry in enumerate(entries)]


def _parse_seed(entry: Any, index: int) -> LocationSeed:
    if not isinstance(entry, dict):
        raise ValueError(f"locations[{index}] must be a mapping.")
    name = str(entry.get("name") or "").strip()
    if not name:
        raise ValueError(f"locations[{index}].name must be a non-empty string.")
    try:
        lat = float(entry["lat"])
        lon = float(entry["lon"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"locations[{index}] needs numeric lat and lon.") from exc
    return LocationSeed(name=name, lat=lat, lon=lon)


def _is_truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() in {"1", "true", "yes", "on"}


__all__ = [
    "DatabaseConfig",
    "LocationSeed",
    "SERVICE_ROOT",
    "WeatherSettings",
    "load_database_config",
    "load_location_seeds",
    "load_weather_settings",
]
