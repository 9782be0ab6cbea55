"""
Storage module for tags and tracked events

Works with any SQLAlchemy async backend (SQLite via aiosqlite, PostgreSQL
via asyncpg).
"""

from tagtrail.storage.models import (
    Tag,
    Scan,
    LinkClick,
    VideoEvent,
)
from tagtrail.storage.event_repository import EventRepository
from tagtrail.storage.schema_guard import is_schema_mismatch_error

__all__ = [
    "Tag",
    "Scan",
    "LinkClick",
    "VideoEvent",
    "EventRepository",
    "is_schema_mismatch_error",
]
