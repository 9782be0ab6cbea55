"""
SQLAlchemy models for tags and tracked events

Each event table has core columns (the schema every deployment has) and
telemetry columns added later by SchemaMigrator. Code may run ahead of the
migration, so inserts must be able to fall back to the core columns only.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, Tuple

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TelemetryColumnsMixin:
    """Telemetry columns shared by every event table"""

    visitor_id = Column(String(64), nullable=True)
    session_id = Column(String(64), nullable=True)
    utm_source = Column(Text, nullable=True)
    utm_medium = Column(Text, nullable=True)
    utm_campaign = Column(Text, nullable=True)
    utm_content = Column(Text, nullable=True)
    utm_term = Column(Text, nullable=True)
    gclid = Column(Text, nullable=True)
    fbclid = Column(Text, nullable=True)
    accept_language = Column(Text, nullable=True)
    path = Column(Text, nullable=True)
    query = Column(Text, nullable=True)
    raw_meta = Column(Text, nullable=True)
    ip_prefix = Column(String(64), nullable=True)
    ip_version = Column(Integer, nullable=True)
    ip_hmac = Column(String(64), nullable=True)


class Tag(Base):
    """
    A physical tag (NFC chip / QR code) or tracked page

    Managed by the admin side; the pipeline only reads it.
    tag_type: 'url', 'vcard', 'video' or 'multilink'
    """
    __tablename__ = "tags"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    tag_type = Column(String(32), nullable=False, default="url")
    target_url = Column(Text, nullable=False, default="/")
    links = Column(JSON, nullable=True)
    video_file = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Scan(TelemetryColumnsMixin, Base):
    """A tag scan, recorded by the redirect endpoint or a direct page view"""
    __tablename__ = "scans"

    id = Column(String(36), primary_key=True, default=_new_id)
    tag_id = Column(String(255), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    ip_hash = Column(String(64), nullable=True, index=True)
    device_type = Column(String(32), nullable=True)
    user_agent = Column(Text, nullable=True)
    browser_lang = Column(String(500), nullable=True)
    city = Column(String(255), nullable=True)
    country = Column(String(255), nullable=True)
    region = Column(String(255), nullable=True)
    is_returning = Column(Boolean, nullable=False, default=False)
    referrer = Column(Text, nullable=True)
    event_source = Column(String(64), nullable=True)

    # Telemetry
    nfc_id = Column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_scans_tag_timestamp", "tag_id", "timestamp"),
        Index("idx_scans_visitor_timestamp", "visitor_id", "timestamp"),
        Index("idx_scans_nfc_id", "nfc_id"),
    )


class LinkClick(TelemetryColumnsMixin, Base):
    """A click on one of the links of a multi-link page"""
    __tablename__ = "link_clicks"

    id = Column(String(36), primary_key=True, default=_new_id)
    tag_id = Column(String(255), nullable=False, index=True)
    link_url = Column(Text, nullable=False)
    link_label = Column(Text, nullable=True)
    link_icon = Column(String(64), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    ip_hash = Column(String(64), nullable=True)

    # Telemetry
    user_agent = Column(Text, nullable=True)
    device_type = Column(String(32), nullable=True)
    referrer = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_link_clicks_tag_url", "tag_id", "link_url"),
        Index("idx_link_clicks_tag_timestamp", "tag_id", "timestamp"),
        Index("idx_link_clicks_visitor_timestamp", "visitor_id", "timestamp"),
    )


class VideoEvent(TelemetryColumnsMixin, Base):
    """A video playback milestone (play, pause, ended, progress_N)"""
    __tablename__ = "video_events"

    id = Column(String(36), primary_key=True, default=_new_id)
    tag_id = Column(String(255), nullable=False, index=True)
    event = Column(String(32), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    ip_hash = Column(String(64), nullable=True)
    watch_time = Column(Float, nullable=True)

    # Telemetry
    user_agent = Column(Text, nullable=True)
    device_type = Column(String(32), nullable=True)
    referrer = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_video_events_tag_event", "tag_id", "event"),
        Index("idx_video_events_tag_timestamp", "tag_id", "timestamp"),
        Index("idx_video_events_visitor_timestamp", "visitor_id", "timestamp"),
    )


SHARED_TELEMETRY_COLUMNS: Tuple[str, ...] = (
    "visitor_id", "session_id",
    "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
    "gclid", "fbclid",
    "accept_language", "path", "query", "raw_meta",
    "ip_prefix", "ip_version", "ip_hmac",
)

# Per table: columns that exist only after the telemetry migration
TELEMETRY_COLUMNS: Dict[str, Tuple[str, ...]] = {
    Scan.__tablename__: SHARED_TELEMETRY_COLUMNS + ("nfc_id",),
    LinkClick.__tablename__: SHARED_TELEMETRY_COLUMNS + ("user_agent", "device_type", "referrer"),
    VideoEvent.__tablename__: SHARED_TELEMETRY_COLUMNS + ("user_agent", "device_type", "referrer"),
}

EVENT_MODELS = (Scan, LinkClick, VideoEvent)
