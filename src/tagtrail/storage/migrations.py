"""
Idempotent telemetry schema migration and validation

ensure_columns() brings an older database up to the current models: it
creates missing tables, adds missing telemetry columns with ALTER TABLE and
creates missing indexes. validate_schema() reports what is still missing.
Both are safe to run repeatedly and while the application is serving.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

from tagtrail.logger import get_logger
from tagtrail.storage.database import get_default_engine
from tagtrail.storage.models import EVENT_MODELS, TELEMETRY_COLUMNS, Base, Tag

logger = get_logger(__name__)

# Serializes concurrent migrations on PostgreSQL
_ADVISORY_LOCK_KEY = 42424242


@dataclass
class SchemaReport:
    """Result of a schema validation run"""

    missing_columns: List[str] = field(default_factory=list)
    missing_indexes: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing_columns and not self.missing_indexes


def _ensure_columns_sync(conn) -> List[str]:
    if conn.dialect.name == "postgresql":
        conn.execute(text(f"SELECT pg_advisory_xact_lock({_ADVISORY_LOCK_KEY})"))

    Base.metadata.create_all(conn, checkfirst=True)

    inspector = inspect(conn)
    preparer = conn.dialect.identifier_preparer
    applied: List[str] = []

    for model in EVENT_MODELS:
        table = model.__table__
        existing_columns = {column["name"] for column in inspector.get_columns(table.name)}

        for name in TELEMETRY_COLUMNS[table.name]:
            if name in existing_columns:
                continue
            column_type = table.c[name].type.compile(dialect=conn.dialect)
            conn.execute(text(
                f"ALTER TABLE {preparer.quote(table.name)} "
                f"ADD COLUMN {preparer.quote(name)} {column_type}"
            ))
            applied.append(f"{table.name}.{name}")
            logger.info(f"Added column {table.name}.{name}")

        existing_indexes = {index["name"] for index in inspector.get_indexes(table.name)}
        for index in table.indexes:
            if index.name in existing_indexes:
                continue
            index.create(conn)
            applied.append(f"index {index.name}")
            logger.info(f"Created index {index.name}")

    return applied


def _validate_schema_sync(conn) -> SchemaReport:
    inspector = inspect(conn)
    report = SchemaReport()
    existing_tables = set(inspector.get_table_names())

    for model in (Tag,) + EVENT_MODELS:
        table = model.__table__
        if table.name not in existing_tables:
            report.missing_columns.extend(f"{table.name}.{column.name}" for column in table.columns)
            report.missing_indexes.extend(index.name for index in table.indexes)
            continue

        existing_columns = {column["name"] for column in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name not in existing_columns:
                report.missing_columns.append(f"{table.name}.{column.name}")

        existing_indexes = {index["name"] for index in inspector.get_indexes(table.name)}
        for index in table.indexes:
            if index.name not in existing_indexes:
                report.missing_indexes.append(index.name)

    return report


async def ensure_columns(engine: Optional[AsyncEngine] = None) -> List[str]:
    """
    Apply the telemetry migration in a single transaction

    Returns:
        Descriptions of every column/index that was added
    """
    engine = engine or get_default_engine()
    async with engine.begin() as conn:
        applied = await conn.run_sync(_ensure_columns_sync)
    logger.info(f"Schema migration complete ({len(applied)} changes)")
    return applied


async def validate_schema(engine: Optional[AsyncEngine] = None) -> SchemaReport:
    """
    Check that every expected column and index exists
    """
    engine = engine or get_default_engine()
    async with engine.connect() as conn:
        return await conn.run_sync(_validate_schema_sync)
