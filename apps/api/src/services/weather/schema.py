"""Ordered schema migrations for the weather database."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection

from .exceptions import SchemaError

logger = logging.getLogger(__name__)

CREATE_SCHEMA_VERSION_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS weather_schema (
    singleton BOOLEAN PRIMARY KEY DEFAULT TRUE CHECK (singleton),
    version   INTEGER NOT NULL
);
"""

CREATE_LOCATIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS locations (
    location_id VARCHAR(32) NOT NULL PRIMARY KEY,
    name        VARCHAR(128) NOT NULL UNIQUE,
    lat         DOUBLE PRECISION NOT NULL,
    lon         DOUBLE PRECISION NOT NULL,
    UNIQUE (lat, lon)
);
"""

CREATE_HISTORY_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS weather_hourly_history (
    location_id  VARCHAR(32) NOT NULL REFERENCES locations (location_id),
    weather_time TIMESTAMPTZ NOT NULL,
    weather      JSONB NOT NULL,
    temperature  DOUBLE PRECISION NOT NULL,
    rain_mm      DOUBLE PRECISION NOT NULL,
    snow_mm      DOUBLE PRECISION NOT NULL,
    PRIMARY KEY (location_id, weather_time)
);
"""

CREATE_HISTORY_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS ordered_weather_hourly_history
ON weather_hourly_history (location_id, weather_time DESC);
"""

CREATE_FORECAST_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS weather_hourly_forecast (
    location_id   VARCHAR(32) NOT NULL REFERENCES locations (location_id),
    forecast_time TIMESTAMPTZ NOT NULL,
    forecast      JSONB NOT NULL,
    temperature   DOUBLE PRECISION NOT NULL,
    rain_mm       DOUBLE PRECISION NOT NULL,
    snow_mm       DOUBLE PRECISION NOT NULL,
    PRIMARY KEY (location_id, forecast_time)
);
"""

CREATE_FORECAST_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS ordered_weather_hourly_forecast
ON weather_hourly_forecast (location_id, forecast_time ASC);
"""

SELECT_SCHEMA_TABLE_SQL = "SELECT to_regclass('weather_schema');"

SELECT_SCHEMA_VERSION_SQL = "SELECT version FROM weather_schema;"

RECORD_SCHEMA_VERSION_SQL = """
INSERT INTO weather_schema (singleton, version) VALUES (TRUE, %(version)s)
ON CONFLICT (singleton) DO UPDATE SET version = EXCLUDED.version;
"""


@dataclass(frozen=True)
class Migration:
    version: int
    statements: tuple[str, ...]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        statements=(
            CREATE_SCHEMA_VERSION_TABLE_SQL,
            CREATE_LOCATIONS_TABLE_SQL,
            CREATE_HISTORY_TABLE_SQL,
            CREATE_HISTORY_INDEX_SQL,
        ),
    ),
    Migration(
        version=2,
        statements=(
            CREATE_FORECAST_TABLE_SQL,
            CREATE_FORECAST_INDEX_SQL,
        ),
    ),
)


class SchemaMigrator:
    """Brings a database from its recorded schema version up to the latest known one."""

    def __init__(self, migrations: Sequence[Migration] = MIGRATIONS) -> None:
        versions = [migration.version for migration in migrations]
        if versions != sorted(set(versions)) or (versions and versions[0] < 1):
            raise ValueError("Migrations must have unique, positive, increasing versions")
        self.migrations = tuple(migrations)

    @property
    def latest_version(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    def current_version(self, conn: PgConnection) -> int:
        """Return the recorded version, treating a missing version table as 0."""
        with conn.cursor() as cur:
            cur.execute(SELECT_SCHEMA_TABLE_SQL)
            (table,) = cur.fetchone()
            if table is None:
                version = 0
            else:
                cur.execute(SELECT_SCHEMA_VERSION_SQL)
                row = cur.fetchone()
                version = 0 if row is None else int(row[0])
        conn.commit()
        return version

    def migrate(self, conn: PgConnection) -> int:
        """Apply every pending migration, each in its own transaction. Returns the final version."""
        try:
            version = self.current_version(conn)
        except psycopg2.Error as exc:
            conn.rollback()
            raise SchemaError(f"Unable to read schema version: {exc}") from exc

        if version > self.latest_version:
            raise SchemaError(
                f"Database schema version {version} is newer than the latest known version {self.latest_version}"
            )

        for migration in self.migrations:
            if migration.version <= version:
                continue
            logger.info("Applying weather schema migration %s", migration.version)
            try:
                with conn.cursor() as cur:
                    for statement in migration.statements:
                        cur.execute(statement)
                    cur.execute(RECORD_SCHEMA_VERSION_SQL, {"version": migration.version})
                conn.commit()
            except psycopg2.Error as exc:
                conn.rollback()
                raise SchemaError(f"Schema migration {migration.version} failed: {exc}") from exc
            version = migration.version

        logger.info("Weather schema is at version %s", version)
        return version


__all__ = ["MIGRATIONS", "Migration", "SchemaMigrator"]
