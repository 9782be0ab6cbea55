"""
Pytest configuration and shared fixtures

Every test that touches storage gets its own SQLite file under tmp_path,
bound to the process-wide engine so the default session factory sees it.
"""

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from tagtrail.config.settings import settings
from tagtrail.services.event_recorder import EventRecorder
from tagtrail.storage.database import configure_engine, create_all_tables, create_pooled_session, dispose_engine
from tagtrail.storage.models import Tag
from tagtrail.telemetry import ip as ip_module
from tagtrail.telemetry.geo import GeoResolver

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
ANDROID_UA = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@pytest.fixture(autouse=True)
def telemetry_settings(monkeypatch):
    """Deterministic settings: keyed hashing on, geo off, default windows"""
    monkeypatch.setattr(settings, "ip_hash_secret", "test-secret")
    monkeypatch.setattr(settings, "ip_hash_salt", None)
    monkeypatch.setattr(settings, "geo_enabled", False)
    monkeypatch.setattr(settings, "session_ttl_minutes", 30)
    monkeypatch.setattr(settings, "dedup_window_seconds", 30)
    monkeypatch.setattr(settings, "cookie_secure", False)
    monkeypatch.setattr(ip_module, "_warned_no_secret", False)
    return settings


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = configure_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_all_tables(engine)
    yield engine
    await dispose_engine()


@pytest_asyncio.fixture
async def tags(engine):
    """One tag of each kind"""
    rows = [
        Tag(id="T", name="Promo", tag_type="url", target_url="https://example.com/promo"),
        Tag(id="rel", name="Relative", tag_type="url", target_url="/landing"),
        Tag(
            id="multi",
            name="Links",
            tag_type="multilink",
            target_url="/link/multi",
            links=[
                {"label": "Instagram", "url": "https://instagram.com/shop", "icon": "instagram"},
                {"label": "Website", "url": "https://example.com", "icon": "website"},
            ],
        ),
        Tag(id="vid", name="Clip", tag_type="video", target_url="/watch/vid", video_file="/videos/clip.mp4"),
        Tag(
            id="card",
            name="Card",
            tag_type="vcard",
            links={"firstName": "Jan", "lastName": "Kowalski", "phone": "+48123456789"},
        ),
        Tag(id="off", name="Disabled", tag_type="url", target_url="https://example.com", is_active=False),
    ]
    async with create_pooled_session() as session:
        session.add_all(rows)
        await session.commit()
    return {tag.id: tag for tag in rows}


@pytest.fixture
def recorder(engine):
    return EventRecorder(geo_resolver=GeoResolver(enabled=False))


LEGACY_DDL = (
    """
    CREATE TABLE scans (
        id VARCHAR(36) PRIMARY KEY,
        tag_id VARCHAR(255) NOT NULL,
        timestamp DATETIME NOT NULL,
        ip_hash VARCHAR(64),
        device_type VARCHAR(32),
        user_agent TEXT,
        browser_lang VARCHAR(500),
        city VARCHAR(255),
        country VARCHAR(255),
        region VARCHAR(255),
        is_returning BOOLEAN NOT NULL DEFAULT 0,
        referrer TEXT,
        event_source VARCHAR(64)
    )
    """,
    """
    CREATE TABLE link_clicks (
        id VARCHAR(36) PRIMARY KEY,
        tag_id VARCHAR(255) NOT NULL,
        link_url TEXT NOT NULL,
        link_label TEXT,
        link_icon VARCHAR(64),
        timestamp DATETIME NOT NULL,
        ip_hash VARCHAR(64)
    )
    """,
    """
    CREATE TABLE video_events (
        id VARCHAR(36) PRIMARY KEY,
        tag_id VARCHAR(255) NOT NULL,
        event VARCHAR(32) NOT NULL,
        timestamp DATETIME NOT NULL,
        ip_hash VARCHAR(64),
        watch_time FLOAT
    )
    """,
)


@pytest_asyncio.fixture
async def legacy_engine(tmp_path):
    """A database deployed before the telemetry columns existed"""
    legacy = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'legacy.db'}")
    async with legacy.begin() as conn:
        await conn.run_sync(Tag.__table__.create)
        for statement in LEGACY_DDL:
            await conn.execute(text(statement))
    yield legacy
    await legacy.dispose()


@pytest.fixture
def legacy_recorder(legacy_engine):
    return EventRecorder(
        session_factory=async_sessionmaker(legacy_engine, expire_on_commit=False),
        geo_resolver=GeoResolver(enabled=False),
    )
