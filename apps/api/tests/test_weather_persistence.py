import asyncio
import os
from datetime import timedelta

import psycopg2
import pytest
from psycopg2.extensions import parse_dsn

from services.weather.config import DatabaseConfig
from services.weather.exceptions import (
    HistoryConflictError,
    LocationConflictError,
    LocationNotFoundError,
    StorageError,
)
from services.weather.models import Coordinates
from services.weather.persistence import WeatherStore
from weather_fakes import NOW, forecast_point, history_point, hours_ago

pytestmark = pytest.mark.integration

_RESET_SQL = """
DROP TABLE IF EXISTS weather_hourly_forecast;
DROP TABLE IF EXISTS weather_hourly_history;
DROP TABLE IF EXISTS locations;
DROP TABLE IF EXISTS weather_schema;
"""


def _database_config() -> DatabaseConfig:
    dsn = os.getenv("WEATHER_TEST_DSN")
    if not dsn:
        pytest.skip("WEATHER_TEST_DSN is not set; skipping PostgreSQL integration tests")
    params = parse_dsn(dsn)
    return DatabaseConfig(
        host=params.get("host", "localhost"),
        port=int(params.get("port", 5432)),
        dbname=params["dbname"],
        user=params.get("user", "postgres"),
        password=params.get("password", ""),
    )


def _reset(config: DatabaseConfig) -> None:
    conn = psycopg2.connect(
        host=config.host, port=config.port, dbname=config.dbname, user=config.user, password=config.password
    )
    try:
        with conn, conn.cursor() as cur:
            cur.execute(_RESET_SQL)
    finally:
        conn.close()


def _run_with_store(scenario) -> None:
    config = _database_config()
    _reset(config)

    async def _main() -> None:
        store = WeatherStore(config, max_connections=4, stream_batch_size=7)
        assert await store.open() == 2
        try:
            await scenario(store)
        finally:
            await store.close()

    asyncio.run(_main())


def test_open_is_repeatable() -> None:
    async def scenario(store: WeatherStore) -> None:
        second = WeatherStore(store.db_config, max_connections=2)
        assert await second.open() == 2
        await second.close()

    _run_with_store(scenario)


def test_locations_conflict_on_id_name_or_coordinates() -> None:
    async def scenario(store: WeatherStore) -> None:
        seattle = await store.insert_location("Seattle", 47.6062, -122.3321)
        for name, lat, lon in (("Seattle", 1.0, 1.0), ("Other", 47.6062, -122.3321), ("Rounded", 47.61, -122.33)):
            with pytest.raises(LocationConflictError) as caught:
                await store.insert_location(name, lat, lon)
            assert caught.value.existing is not None
            assert caught.value.existing.location_id == seattle.location_id

        assert (await store.get_location("Seattle")).location_id == "47.61,-122.33"
        assert (await store.get_location("47.61,-122.33")).name == "Seattle"
        with pytest.raises(LocationNotFoundError):
            await store.get_location("Atlantis")

    _run_with_store(scenario)


def test_bounding_box_scan_is_strict() -> None:
    async def scenario(store: WeatherStore) -> None:
        await store.insert_location("Inside", 1.0, 1.0)
        await store.insert_location("Edge", 2.5, 0.0)
        within = store.list_locations_within(Coordinates(-2.5, -2.5), Coordinates(2.5, 2.5))
        names = [location.name async for location in within]
        assert names == ["Inside"]

    _run_with_store(scenario)


def test_history_rows_stream_newest_first_in_batches() -> None:
    async def scenario(store: WeatherStore) -> None:
        location = await store.insert_location("Seattle", 47.6062, -122.3321)
        key = location.location_id
        for hours in range(1, 21):
            await store.insert_history_point(history_point(key, hours_ago(hours), rain=0.5))
        with pytest.raises(HistoryConflictError):
            await store.insert_history_point(history_point(key, hours_ago(1)))

        rows = [point async for point in store.iter_history(key, since=hours_ago(15))]
        assert [point.weather_time for point in rows] == [hours_ago(hours) for hours in range(1, 16)]
        assert rows[0].weather.rain_mm == 0.5
        assert await store.newest_history_time(key) == hours_ago(1)

        described = await store.get_location(key)
        assert described.last_weather_time == hours_ago(1)

    _run_with_store(scenario)


def test_least_backfilled_location_has_the_most_recent_oldest_row() -> None:
    async def scenario(store: WeatherStore) -> None:
        shallow = await store.insert_location("Shallow", 10.0, 10.0)
        deep = await store.insert_location("Deep", 20.0, 20.0)
        await store.insert_history_point(history_point(shallow.location_id, hours_ago(3)))
        await store.insert_history_point(history_point(deep.location_id, hours_ago(30)))

        target = await store.least_backfilled_location()
        assert target is not None
        assert target.location.location_id == shallow.location_id
        assert target.oldest_weather_time == hours_ago(3)

    _run_with_store(scenario)


def test_forecast_replacement_is_complete() -> None:
    async def scenario(store: WeatherStore) -> None:
        location = await store.insert_location("Seattle", 47.6062, -122.3321)
        key = location.location_id
        await store.replace_forecast(key, [forecast_point(key, hours_ago(5), rain=9.0)])
        await store.replace_forecast(key, [forecast_point(key, NOW + timedelta(hours=hours)) for hours in range(48)])

        assert await store.oldest_forecast_time(key) == NOW
        rows = [point async for point in store.iter_forecast(key, until=NOW + timedelta(hours=10))]
        assert [point.forecast_time for point in rows] == [NOW + timedelta(hours=hours) for hours in range(10)]

    _run_with_store(scenario)


def test_failed_forecast_replacement_keeps_previous_rows() -> None:
    async def scenario(store: WeatherStore) -> None:
        location = await store.insert_location("Seattle", 47.6062, -122.3321)
        key = location.location_id
        previous = [forecast_point(key, NOW + timedelta(hours=hours), rain=1.0) for hours in range(3)]
        await store.replace_forecast(key, previous)

        duplicated = [forecast_point(key, NOW + timedelta(hours=6)), forecast_point(key, NOW + timedelta(hours=6))]
        with pytest.raises(StorageError):
            await store.replace_forecast(key, duplicated)

        assert await store.oldest_forecast_time(key) == NOW
        rows = [point async for point in store.iter_forecast(key, until=NOW + timedelta(hours=48))]
        assert [point.forecast_time for point in rows] == [point.forecast_time for point in previous]
        assert all(point.rain_mm == 1.0 for point in rows)

    _run_with_store(scenario)
