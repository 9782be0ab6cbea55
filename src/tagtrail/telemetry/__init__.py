"""
Telemetry pipeline: identity cookies, IP processing, geo lookup and
request metadata
"""

from tagtrail.telemetry.collector import CollectedTelemetry, collect_telemetry
from tagtrail.telemetry.events import EventKind, TelemetryEvent
from tagtrail.telemetry.geo import GeoLocation, GeoResolver
from tagtrail.telemetry.identity import (
    apply_telemetry_cookies,
    resolve_visitor_session,
    resolve_visitor_session_readonly,
)
from tagtrail.telemetry.ip import extract_clean_ip, hmac_ip_hash, legacy_ip_hash, normalize_ip
from tagtrail.telemetry.metadata import extract_metadata

__all__ = [
    "CollectedTelemetry",
    "collect_telemetry",
    "EventKind",
    "TelemetryEvent",
    "GeoLocation",
    "GeoResolver",
    "apply_telemetry_cookies",
    "resolve_visitor_session",
    "resolve_visitor_session_readonly",
    "extract_clean_ip",
    "hmac_ip_hash",
    "legacy_ip_hash",
    "normalize_ip",
    "extract_metadata",
]
