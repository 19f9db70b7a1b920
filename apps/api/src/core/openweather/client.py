from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from time import perf_counter
from typing import Any

import requests
from cachetools import TTLCache
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from core.openweather.exceptions import ProviderError
from core.openweather.models import GeocodedPlace, OpenWeatherCredentials
from core.secrets import SecretNotFoundError

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.openweathermap.org"
_DEFAULT_REQUEST_TIMEOUT_SECONDS = 15.0
_RETRYABLE_STATUS_CODES = (502, 503, 504)
_GEOCODE_RESULT_LIMIT = 5
_GEOCODE_CACHE_TTL_SECONDS = 24 * 3600
_FORECAST_EXCLUDE = "current,minutely,daily,alerts"


class OpenWeatherClient:
    """Thin HTTP client for the One Call 3.0 and Geocoding APIs.

    Requests are blocking and are pushed onto worker threads by the async methods.
    """

    def __init__(
        self,
        credentials: OpenWeatherCredentials,
        base_url: str = _DEFAULT_BASE_URL,
        request_timeout_seconds: float = _DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.request_timeout_seconds = request_timeout_seconds
        self.session = requests.Session()
        adapter = HTTPAdapter(max_retries=_build_retry_strategy())
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        self._api_keys: dict[str, str] = {}
        self._geocode_cache: TTLCache = TTLCache(maxsize=256, ttl=_GEOCODE_CACHE_TTL_SECONDS)

    async def historical_at(self, lat: float, lon: float, when: datetime) -> dict[str, Any]:
        return await asyncio.to_thread(self.get_historical, lat, lon, int(when.timestamp()))

    async def forecast(self, lat: float, lon: float) -> dict[str, Any]:
        return await asyncio.to_thread(self.get_forecast, lat, lon)

    async def geocode(self, query: str) -> list[GeocodedPlace]:
        return await asyncio.to_thread(self.get_geocode, query)

    def get_historical(self, lat: float, lon: float, timestamp: int) -> dict[str, Any]:
        """Fetch the observation closest to ``timestamp`` (Unix seconds)."""
        payload = self._request(
            "/data/3.0/onecall/timemachine",
            {"lat": lat, "lon": lon, "dt": timestamp, "units": "metric"},
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        if not data:
            raise ProviderError(f"No historical observation for {lat},{lon} at {timestamp}")
        observation = data[0]
        if not isinstance(observation, dict):
            raise ProviderError(f"Malformed historical observation for {lat},{lon} at {timestamp}")
        return observation

    def get_forecast(self, lat: float, lon: float) -> dict[str, Any]:
        """Fetch the hourly forecast for the next 48 hours."""
        payload = self._request(
            "/data/3.0/onecall",
            {"lat": lat, "lon": lon, "exclude": _FORECAST_EXCLUDE, "units": "metric"},
        )
        if not isinstance(payload, dict):
            raise ProviderError(f"Malformed forecast for {lat},{lon}")
        return payload

    def get_geocode(self, query: str) -> list[GeocodedPlace]:
        """Resolve free text to candidate places, memoized per normalized query."""
        cache_key = query.strip().lower()
        cached = self._geocode_cache.get(cache_key)
        if cached is not None:
            return list(cached)
        payload = self._request("/geo/1.0/direct", {"q": query.strip(), "limit": _GEOCODE_RESULT_LIMIT})
        if not isinstance(payload, list):
            raise ProviderError(f"Malformed geocoding response for '{query}'")
        try:
            places = [GeocodedPlace.from_dict(entry) for entry in payload if isinstance(entry, dict)]
        except (KeyError, TypeError, ValueError) as error:
            raise ProviderError(f"Malformed geocoding result for '{query}': {error}") from error
        self._geocode_cache[cache_key] = tuple(places)
        return places

    def _api_key(self) -> str:
        name = self.credentials.api_key_name
        if name not in self._api_keys:
            try:
                self._api_keys[name] = self.credentials.api_key()
            except SecretNotFoundError as error:
                raise ProviderError(f"OpenWeather API key unavailable: {error}") from error
        return self._api_keys[name]

    def _request(self, path: str, params: dict[str, Any]) -> dict[str, Any] | list[Any]:
        """Issue a GET and raise ProviderError with contextual details when OpenWeather rejects it."""
        url = f"{self.base_url}{path}"
        start = perf_counter()
        try:
            response = self.session.get(
                url,
                params={**params, "appid": self._api_key()},
                timeout=self.request_timeout_seconds,
            )
        except requests.RequestException as error:
            raise ProviderError(f"OpenWeather request to {path} failed: {error}") from error
        elapsed_ms = round((perf_counter() - start) * 1000, 2)
        if not response.ok:
            logger.warning(
                "openweather_request_error",
                extra={"path": path, "status_code": response.status_code, "elapsed_ms": elapsed_ms},
            )
            details = response.text.strip()
            message = f"OpenWeather {path} returned {response.status_code}"
            raise ProviderError(f"{message} - {details}" if details else message, response.status_code)
        logger.debug(
            "openweather_request",
            extra={"path": path, "status_code": response.status_code, "elapsed_ms": elapsed_ms},
        )
        try:
            return response.json()
        except ValueError as error:
            raise ProviderError(f"OpenWeather {path} returned invalid JSON") from error


def _build_retry_strategy() -> Retry:
    return Retry(
        total=3,
        status_forcelist=_RETRYABLE_STATUS_CODES,
        allowed_methods=frozenset({"GET"}),
        backoff_factor=0.5,
        raise_on_status=False,
    )
