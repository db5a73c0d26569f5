"""Schema creation and version tracking for the detection store."""

from __future__ import annotations

import logging
from typing import cast

from sqlalchemy import Table, select, update
from sqlalchemy.engine import Connection, Engine

from .base import Base
from .models import SchemaState

SCHEMA_VERSION_KEY = "schema_version"
CURRENT_SCHEMA_VERSION = 1

logger = logging.getLogger(__name__)


def _get_schema_version(connection: Connection) -> int:
    result = connection.execute(
        select(SchemaState.value).where(SchemaState.key == SCHEMA_VERSION_KEY)
    ).scalar_one_or_none()
    if result is None:
        return 0
    try:
        return int(result)
    except (TypeError, ValueError):
        return 0


def _set_schema_version(connection: Connection, version: int) -> None:
    stmt = update(SchemaState).where(SchemaState.key == SCHEMA_VERSION_KEY).values(value=str(version))
    result = connection.execute(stmt)
    if result.rowcount == 0:
        schema_table = cast(Table, SchemaState.__table__)
        connection.execute(schema_table.insert().values(key=SCHEMA_VERSION_KEY, value=str(version)))


def apply_migrations(engine: Engine) -> int:
    """Create or upgrade the database schema and return the resulting version."""
    with engine.begin() as connection:
        Base.metadata.create_all(bind=connection)
        version = _get_schema_version(connection)

        if version < 1:
            _set_schema_version(connection, 1)
            version = 1

    if version != CURRENT_SCHEMA_VERSION:
        logger.warning(f"Database schema version {version} differs from expected {CURRENT_SCHEMA_VERSION}")
    return version


__all__ = ["CURRENT_SCHEMA_VERSION", "SCHEMA_VERSION_KEY", "apply_migrations"]
