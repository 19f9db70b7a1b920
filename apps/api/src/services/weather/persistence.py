"""PostgreSQL storage for locations and their hourly weather history and forecasts."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, TypeVar

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extensions import connection as PgConnection
from psycopg2.extras import Json, RealDictCursor, execute_batch
from psycopg2.pool import ThreadedConnectionPool

from .config import DatabaseConfig
from .exceptions import (
    HistoryConflictError,
    LocationConflictError,
    LocationNotFoundError,
    StorageError,
    WeatherError,
)
from .models import BackfillTarget, Coordinates, ForecastPoint, HistoryPoint, Location, is_location_id, location_id
from .payloads import decode_payload
from .schema import SchemaMigrator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Queries that get a WHERE clause appended or run inside DECLARE ... CURSOR carry no trailing semicolon.
LOCATION_PROJECTION_SQL = """
SELECT
    l.location_id,
    l.name,
    l.lat,
    l.lon,
    (SELECT MAX(h.weather_time) FROM weather_hourly_history h WHERE h.location_id = l.location_id)
        AS last_weather_time,
    (SELECT MIN(f.forecast_time) FROM weather_hourly_forecast f WHERE f.location_id = l.location_id)
        AS oldest_forecast_time
FROM locations l
"""

SELECT_LOCATION_BY_ID_SQL = LOCATION_PROJECTION_SQL + "WHERE l.location_id = %(key)s"

SELECT_LOCATION_BY_NAME_SQL = LOCATION_PROJECTION_SQL + "WHERE l.name = %(key)s"

SELECT_LOCATIONS_WITHIN_SQL = (
    LOCATION_PROJECTION_SQL
    + """WHERE l.lat > %(low_lat)s AND l.lat < %(high_lat)s
  AND l.lon > %(low_lon)s AND l.lon < %(high_lon)s"""
)

SELECT_CONFLICTING_LOCATION_SQL = (
    LOCATION_PROJECTION_SQL
    + """WHERE l.location_id = %(location_id)s
   OR l.name = %(name)s
   OR (l.lat = %(lat)s AND l.lon = %(lon)s)
LIMIT 1"""
)

INSERT_LOCATION_SQL = """
INSERT INTO locations (location_id, name, lat, lon)
VALUES (%(location_id)s, %(name)s, %(lat)s, %(lon)s);
"""

INSERT_HISTORY_SQL = """
INSERT INTO weather_hourly_history (location_id, weather_time, weather, temperature, rain_mm, snow_mm)
VALUES (%(location_id)s, %(weather_time)s, %(weather)s, %(temperature)s, %(rain_mm)s, %(snow_mm)s);
"""

SELECT_NEWEST_HISTORY_TIME_SQL = """
SELECT MAX(weather_time) FROM weather_hourly_history WHERE location_id = %(location_id)s;
"""

SELECT_OLDEST_FORECAST_TIME_SQL = """
SELECT MIN(forecast_time) FROM weather_hourly_forecast WHERE location_id = %(location_id)s;
"""

SELECT_LEAST_BACKFILLED_SQL = """
SELECT l.location_id, l.name, l.lat, l.lon, h.oldest_weather_time
FROM locations l
JOIN (
    SELECT location_id, MIN(weather_time) AS oldest_weather_time
    FROM weather_hourly_history
    GROUP BY location_id
) h ON h.location_id = l.location_id
ORDER BY h.oldest_weather_time DESC, l.location_id
LIMIT 1;
"""

SELECT_HISTORY_SINCE_SQL = """
SELECT location_id, weather_time, weather, temperature, rain_mm, snow_mm
FROM weather_hourly_history
WHERE location_id = %(location_id)s AND weather_time >= %(since)s
ORDER BY weather_time DESC
"""

SELECT_FORECAST_BEFORE_SQL = """
SELECT location_id, forecast_time, forecast, temperature, rain_mm, snow_mm
FROM weather_hourly_forecast
WHERE location_id = %(location_id)s AND forecast_time < %(until)s
ORDER BY forecast_time ASC
"""

DELETE_FORECAST_SQL = """
DELETE FROM weather_hourly_forecast WHERE location_id = %(location_id)s;
"""

INSERT_FORECAST_SQL = """
INSERT INTO weather_hourly_forecast (location_id, forecast_time, forecast, temperature, rain_mm, snow_mm)
VALUES (%(location_id)s, %(forecast_time)s, %(forecast)s, %(temperature)s, %(rain_mm)s, %(snow_mm)s);
"""

_LOCATION_COLUMNS = frozenset({"location_id", "name", "lat", "lon", "last_weather_time", "oldest_forecast_time"})
_HISTORY_COLUMNS = frozenset({"location_id", "weather_time", "weather", "temperature", "rain_mm", "snow_mm"})
_FORECAST_COLUMNS = frozenset({"location_id", "forecast_time", "forecast", "temperature", "rain_mm", "snow_mm"})
_BACKFILL_COLUMNS = frozenset({"location_id", "name", "lat", "lon", "oldest_weather_time"})


class WeatherStore:
    """Async facade over a pooled PostgreSQL database.

    Every operation borrows one pooled connection on a worker thread. History and
    forecast scans are streamed through server-side cursors in batches of
    ``stream_batch_size`` rows so memory stays bounded regardless of table size.
    Location scans are small and are read whole, so no connection is held while
    a caller works through them.
    """

    def __init__(
        self,
        db_config: DatabaseConfig,
        *,
        migrator: Optional[SchemaMigrator] = None,
        max_connections: int = 8,
        stream_batch_size: int = 500,
        shutdown_grace_seconds: float = 10.0,
    ) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self.db_config = db_config
        self.migrator = migrator or SchemaMigrator()
        self.max_connections = max_connections
        self.stream_batch_size = stream_batch_size
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self._pool: Optional[ThreadedConnectionPool] = None
        self._slots = asyncio.Semaphore(max_connections)
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closing = False

    # Lifecycle

    async def open(self) -> int:
        """Connect and migrate the schema. Returns the schema version now in effect."""
        if self._pool is not None:
            raise StorageError("Weather store is already open")
        try:
            self._pool = await asyncio.to_thread(
                ThreadedConnectionPool,
                1,
                self.max_connections,
                host=self.db_config.host,
                port=self.db_config.port,
                dbname=self.db_config.dbname,
                user=self.db_config.user,
                password=self.db_config.password,
            )
        except psycopg2.Error as exc:
            raise StorageError(f"Failed to connect to PostgreSQL: {exc}") from exc
        self._closing = False
        try:
            version = await self._run(self.migrator.migrate)
        except WeatherError:
            await self.close(grace_seconds=0)
            raise
        logger.info(
            "Weather store connected to %s:%s/%s (schema v%s)",
            self.db_config.host,
            self.db_config.port,
            self.db_config.dbname,
            version,
        )
        return version

    async def close(self, grace_seconds: Optional[float] = None) -> None:
        """Stop accepting work, wait for in-flight operations, then release every connection."""
        if self._pool is None:
            return
        self._closing = True
        grace = self.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("Closing weather store with %s operations still in flight", self._in_flight)
        pool, self._pool = self._pool, None
        await asyncio.to_thread(pool.closeall)
        logger.info("Weather store closed.")

    @property
    def is_open(self) -> bool:
        return self._pool is not None and not self._closing

    # Locations

    async def insert_location(self, name: str, lat: float, lon: float) -> Location:
        """Register a location, raising LocationConflictError with the existing row on collision."""
        params = {"location_id": location_id(lat, lon), "name": name, "lat": lat, "lon": lon}

        def _insert(conn: PgConnection) -> None:
            try:
                with conn, conn.cursor() as cur:
                    cur.execute(INSERT_LOCATION_SQL, params)
            except pg_errors.UniqueViolation as exc:
                existing = _fetch_one(conn, SELECT_CONFLICTING_LOCATION_SQL, params, _location_from_row)
                raise LocationConflictError(existing) from exc

        await self._run(_insert)
        logger.info("Registered location %s (%s)", params["location_id"], name)
        return Location(location_id=params["location_id"], name=name, lat=lat, lon=lon)

    async def get_location(self, key: str) -> Location:
        """Look up a location by id (``"47.61,-122.33"``) or else by name."""
        cleaned = key.strip()
        sql = SELECT_LOCATION_BY_ID_SQL if is_location_id(cleaned) else SELECT_LOCATION_BY_NAME_SQL
        location = await self._run(_fetch_one, sql, {"key": cleaned}, _location_from_row)
        if location is None:
            raise LocationNotFoundError(cleaned)
        return location

    def list_locations(self) -> AsyncIterator[Location]:
        """Yield every location; order follows storage order.

        Location scans are read in full before the first yield, so callers may
        run other store operations while iterating without holding a connection.
        """
        return self._drained(LOCATION_PROJECTION_SQL, {}, _location_from_row)

    def list_locations_within(self, low: Coordinates, high: Coordinates) -> AsyncIterator[Location]:
        """Yield locations strictly inside the box spanned by the two corners."""
        params = {"low_lat": low.lat, "high_lat": high.lat, "low_lon": low.lon, "high_lon": high.lon}
        return self._drained(SELECT_LOCATIONS_WITHIN_SQL, params, _location_from_row)

    # History

    async def insert_history_point(self, point: HistoryPoint) -> None:
        """Insert one hour of history, raising HistoryConflictError when the hour is already stored."""
        params = {
            "location_id": point.location_id,
            "weather_time": point.weather_time,
            "weather": Json(point.weather.to_document()),
            "temperature": point.temperature,
            "rain_mm": point.rain_mm,
            "snow_mm": point.snow_mm,
        }

        def _insert(conn: PgConnection) -> None:
            try:
                with conn, conn.cursor() as cur:
                    cur.execute(INSERT_HISTORY_SQL, params)
            except pg_errors.UniqueViolation as exc:
                raise HistoryConflictError(point.location_id, point.weather_time) from exc

        await self._run(_insert)

    async def newest_history_time(self, location_key: str) -> Optional[datetime]:
        return await self._run(_fetch_scalar_time, SELECT_NEWEST_HISTORY_TIME_SQL, {"location_id": location_key})

    async def least_backfilled_location(self) -> Optional[BackfillTarget]:
        """Return the location whose oldest stored history row is the most recent."""
        return await self._run(_fetch_one, SELECT_LEAST_BACKFILLED_SQL, {}, _backfill_target_from_row)

    def iter_history(self, location_key: str, since: datetime) -> AsyncIterator[HistoryPoint]:
        """Stream history rows at or after ``since``, newest first.

        The stream holds a pooled connection until exhausted; do not await other
        store operations while iterating.
        """
        params = {"location_id": location_key, "since": since}
        return self._stream(SELECT_HISTORY_SINCE_SQL, params, _history_from_row)

    # Forecast

    async def oldest_forecast_time(self, location_key: str) -> Optional[datetime]:
        return await self._run(_fetch_scalar_time, SELECT_OLDEST_FORECAST_TIME_SQL, {"location_id": location_key})

    async def replace_forecast(self, location_key: str, points: Iterable[ForecastPoint]) -> int:
        """Swap the stored forecast for a location in a single transaction."""
        rows: List[Dict[str, Any]] = []
        for point in points:
            if point.location_id != location_key:
                raise ValueError(f"Forecast point for {point.location_id} cannot replace {location_key}")
            rows.append(
                {
                    "location_id": point.location_id,
                    "forecast_time": point.forecast_time,
                    "forecast": Json(point.forecast.to_document()),
                    "temperature": point.temperature,
                    "rain_mm": point.rain_mm,
                    "snow_mm": point.snow_mm,
                }
            )

        def _replace(conn: PgConnection) -> None:
            with conn, conn.cursor() as cur:
                cur.execute(DELETE_FORECAST_SQL, {"location_id": location_key})
                execute_batch(cur, INSERT_FORECAST_SQL, rows, page_size=100)

        await self._run(_replace)
        logger.info("Replaced forecast for %s with %s hourly points", location_key, len(rows))
        return len(rows)

    def iter_forecast(self, location_key: str, until: datetime) -> AsyncIterator[ForecastPoint]:
        """Stream forecast rows strictly before ``until``, earliest first. Same rule as ``iter_history``."""
        params = {"location_id": location_key, "until": until}
        return self._stream(SELECT_FORECAST_BEFORE_SQL, params, _forecast_from_row)

    # Plumbing

    @asynccontextmanager
    async def _tracked(self) -> AsyncIterator[ThreadedConnectionPool]:
        pool = self._pool
        if pool is None or self._closing:
            raise StorageError("Weather store is not open")
        self._in_flight += 1
        self._idle.clear()
        try:
            async with self._slots:
                yield pool
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def _run(self, operation: Callable[..., T], *args: Any) -> T:
        async with self._tracked() as pool:
            return await asyncio.to_thread(_call_with_connection, pool, operation, *args)

    async def _drained(
        self,
        sql: str,
        params: Dict[str, Any],
        mapper: Callable[[Dict[str, Any]], Optional[T]],
    ) -> AsyncIterator[T]:
        records = await self._run(_fetch_all, sql, params, mapper)
        for record in records:
            yield record

    async def _stream(
        self,
        sql: str,
        params: Dict[str, Any],
        mapper: Callable[[Dict[str, Any]], Optional[T]],
    ) -> AsyncIterator[T]:
        async with self._tracked() as pool:
            conn = await asyncio.to_thread(pool.getconn)
            cursor = None
            try:
                cursor = await asyncio.to_thread(_open_stream_cursor, conn, sql, params, self.stream_batch_size)
                while True:
                    rows = await asyncio.to_thread(cursor.fetchmany, self.stream_batch_size)
                    if not rows:
                        break
                    for row in rows:
                        record = mapper(row)
                        if record is not None:
                            yield record
            except psycopg2.Error as exc:
                raise StorageError(f"Streaming query failed: {exc}") from exc
            finally:
                await asyncio.to_thread(_release_stream, pool, conn, cursor)


def _call_with_connection(pool: ThreadedConnectionPool, operation: Callable[..., T], *args: Any) -> T:
    conn = pool.getconn()
    try:
        return operation(conn, *args)
    except WeatherError:
        raise
    except psycopg2.Error as exc:
        if not conn.closed:
            conn.rollback()
        raise StorageError(str(exc).strip() or exc.__class__.__name__) from exc
    finally:
        pool.putconn(conn, close=bool(conn.closed))


def _open_stream_cursor(conn: PgConnection, sql: str, params: Dict[str, Any], batch_size: int) -> RealDictCursor:
    cursor = conn.cursor(name=f"weather_stream_{uuid.uuid4().hex}", cursor_factory=RealDictCursor)
    cursor.itersize = batch_size
    cursor.execute(sql, params)
    return cursor


def _release_stream(pool: ThreadedConnectionPool, conn: PgConnection, cursor: Optional[RealDictCursor]) -> None:
    try:
        if cursor is not None and not cursor.closed:
            cursor.close()
        if not conn.closed:
            conn.rollback()
    except psycopg2.Error:
        logger.warning("Discarding connection after failed stream cleanup", exc_info=True)
        pool.putconn(conn, close=True)
        return
    pool.putconn(conn, close=bool(conn.closed))


def _fetch_one(
    conn: PgConnection,
    sql: str,
    params: Dict[str, Any],
    mapper: Callable[[Dict[str, Any]], Optional[T]],
) -> Optional[T]:
    with conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, params)
        row = cur.fetchone()
    return None if row is None else mapper(row)


def _fetch_all(
    conn: PgConnection,
    sql: str,
    params: Dict[str, Any],
    mapper: Callable[[Dict[str, Any]], Optional[T]],
) -> List[T]:
    with conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, params)
        rows = cur.fetchall()
    records = [mapper(row) for row in rows]
    return [record for record in records if record is not None]


def _fetch_scalar_time(conn: PgConnection, sql: str, params: Dict[str, Any]) -> Optional[datetime]:
    with conn, conn.cursor() as cur:
        cur.execute(sql, params)
        row = cur.fetchone()
    return None if row is None else _as_utc(row[0])


def _require_columns(row: Dict[str, Any], expected: frozenset[str], kind: str) -> None:
    columns = set(row.keys())
    if columns != expected:
        missing = sorted(expected - columns)
        extra = sorted(columns - expected)
        raise StorageError(f"Unexpected {kind} row shape: missing={missing} extra={extra}")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _location_from_row(row: Dict[str, Any]) -> Location:
    _require_columns(row, _LOCATION_COLUMNS, "location")
    return Location(
        location_id=str(row["location_id"]),
        name=str(row["name"]),
        lat=float(row["lat"]),
        lon=float(row["lon"]),
        last_weather_time=_as_utc(row["last_weather_time"]),
        oldest_forecast_time=_as_utc(row["oldest_forecast_time"]),
    )


def _backfill_target_from_row(row: Dict[str, Any]) -> BackfillTarget:
    _require_columns(row, _BACKFILL_COLUMNS, "backfill")
    location = Location(
        location_id=str(row["location_id"]),
        name=str(row["name"]),
        lat=float(row["lat"]),
        lon=float(row["lon"]),
    )
    return BackfillTarget(location=location, oldest_weather_time=_as_utc(row["oldest_weather_time"]))


def _history_from_row(row: Dict[str, Any]) -> Optional[HistoryPoint]:
    _require_columns(row, _HISTORY_COLUMNS, "history")
    payload = decode_payload(row["weather"])
    if payload is None:
        return None
    return HistoryPoint(
        location_id=str(row["location_id"]),
        weather_time=_as_utc(row["weather_time"]),
        weather=payload,
        temperature=float(row["temperature"]),
        rain_mm=float(row["rain_mm"]),
        snow_mm=float(row["snow_mm"]),
    )


def _forecast_from_row(row: Dict[str, Any]) -> Optional[ForecastPoint]:
    _require_columns(row, _FORECAST_COLUMNS, "forecast")
    payload = decode_payload(row["forecast"])
    if payload is None:
        return None
    return ForecastPoint(
        location_id=str(row["location_id"]),
        forecast_time=_as_utc(row["forecast_time"]),
        forecast=payload,
        temperature=float(row["temperature"]),
        rain_mm=float(row["rain_mm"]),
        snow_mm=float(row["snow_mm"]),
    )


__all__ = ["WeatherStore"]
