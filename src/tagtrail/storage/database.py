"""
Async engine and session management

One engine per process, created lazily from settings. Tests and the CLI can
swap it with configure_engine().
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tagtrail.config.settings import settings
from tagtrail.logger import get_logger
from tagtrail.storage.models import Base

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def _ensure_sqlite_directory(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database"""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite" or not parsed.database or parsed.database == ":memory:":
        return
    Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def configure_engine(database_url: Optional[str] = None, **engine_kwargs) -> AsyncEngine:
    """
    Create (or replace) the process-wide engine

    Args:
        database_url: SQLAlchemy async URL; defaults to settings
        **engine_kwargs: Passed through to create_async_engine

    Returns:
        The new engine
    """
    global _engine, _session_factory

    url = database_url or settings.get_database_url()
    _ensure_sqlite_directory(url)
    _engine = create_async_engine(url, **engine_kwargs)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    logger.debug(f"Configured database engine for {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_default_engine() -> AsyncEngine:
    if _engine is None:
        configure_engine()
    return _engine


@asynccontextmanager
async def create_pooled_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session bound to the process-wide engine"""
    if _session_factory is None:
        configure_engine()
    async with _session_factory() as session:
        yield session


async def create_all_tables(engine: Optional[AsyncEngine] = None) -> None:
    """Create every table that does not exist yet (full current schema)"""
    engine = engine or get_default_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connection pool closed")
    _engine = None
    _session_factory = None
