"""Wires the weather store, provider and request services together and owns their lifecycle."""

from __future__ import annotations

import logging
from typing import Optional

from core.openweather import OpenWeatherClient, OpenWeatherCredentials, WeatherProvider
from core.secrets import SecretFileRepository

from .config import WeatherSettings, load_location_seeds
from .exceptions import LocationConflictError
from .job import WeatherScrapeJob
from .persistence import WeatherStore
from .proximity import ProximitySearch
from .service import WeatherService
from .summary import WeatherAggregator
from .sync import ForecastRefresher, HistorySynchronizer

logger = logging.getLogger(__name__)


class WeatherGovernor:
    """Governs the weather components for one process."""

    def __init__(
        self,
        settings: WeatherSettings,
        provider: Optional[WeatherProvider] = None,
        store: Optional[WeatherStore] = None,
    ) -> None:
        self.settings = settings
        self.store = store or WeatherStore(
            settings.database,
            max_connections=settings.max_connections,
            stream_batch_size=settings.stream_batch_size,
            shutdown_grace_seconds=settings.shutdown_grace_seconds,
        )
        if provider is None:
            credentials = OpenWeatherCredentials(
                api_key_name=settings.openweather_key_name,
                secrets=SecretFileRepository(settings.secrets_dir),
            )
            provider = OpenWeatherClient(credentials)
        self.provider = provider
        self.synchronizer = HistorySynchronizer(self.store, self.provider)
        self.refresher = ForecastRefresher(self.store, self.provider)
        self.aggregator = WeatherAggregator(self.store, self.synchronizer, self.refresher)
        self.proximity = ProximitySearch(self.store, self.provider, self.aggregator)
        self.service = WeatherService(self.store, self.aggregator, self.proximity)
        self.scrape_job = WeatherScrapeJob(self.synchronizer, settings.backfill_limit)

    async def start(self) -> int:
        """Open the store (applying migrations) and register seeded locations. Returns the schema version."""
        version = await self.store.open()
        if self.settings.locations_manifest is not None:
            await self.seed_locations()
        return version

    async def seed_locations(self) -> int:
        """Register manifest locations that are not stored yet. Returns how many were added."""
        manifest = self.settings.locations_manifest
        if manifest is None:
            return 0
        added = 0
        for seed in load_location_seeds(manifest):
            try:
                await self.store.insert_location(seed.name, seed.lat, seed.lon)
                added += 1
            except LocationConflictError:
                logger.debug("Seed location %s is already registered", seed.name)
        logger.info("Seeded %s new locations from %s", added, manifest)
        return added

    async def close(self) -> None:
        await self.store.close()


__all__ = ["WeatherGovernor"]
