"""Versioned provider payloads stored alongside each hourly row."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping

logger = logging.getLogger(__name__)

PAYLOAD_VERSION_KEY = "version"


@dataclass(frozen=True)
class WeatherPayloadV1:
    """One hour of provider weather, as returned by the One Call API."""

    version: ClassVar[int] = 1

    data: dict[str, Any] = field(default_factory=dict)

    @property
    def temperature(self) -> float:
        value = self.data.get("temp")
        if value is None:
            raise ValueError("Weather payload is missing 'temp'")
        return float(value)

    @property
    def rain_mm(self) -> float:
        return precipitation_mm(self.data.get("rain"))

    @property
    def snow_mm(self) -> float:
        return precipitation_mm(self.data.get("snow"))

    def to_document(self) -> dict[str, Any]:
        document = dict(self.data)
        document[PAYLOAD_VERSION_KEY] = self.version
        return document


WeatherPayload = WeatherPayloadV1


def precipitation_mm(value: Any) -> float:
    """Read rain or snow as either a ``{"1h": mm}`` rate or a plain accumulated value."""
    if value is None:
        return 0.0
    if isinstance(value, Mapping):
        hourly = value.get("1h")
        return 0.0 if hourly is None else float(hourly)
    return float(value)


def payload_from_provider(hour: Mapping[str, Any]) -> WeatherPayloadV1:
    data = {key: value for key, value in hour.items() if key != PAYLOAD_VERSION_KEY}
    return WeatherPayloadV1(data=data)


def decode_payload(raw: Any) -> WeatherPayload | None:
    """Decode a stored blob, returning None for versions this code does not understand."""
    if isinstance(raw, (str, bytes)):
        raw = json.loads(raw)
    if not isinstance(raw, Mapping):
        logger.debug("Ignoring weather payload that is not an object: %r", raw)
        return None
    version = raw.get(PAYLOAD_VERSION_KEY)
    if version == WeatherPayloadV1.version:
        return payload_from_provider(raw)
    logger.debug("Ignoring weather payload with unknown version %r", version)
    return None


__all__ = [
    "WeatherPayload",
    "WeatherPayloadV1",
    "decode_payload",
    "payload_from_provider",
    "precipitation_mm",
]
