"""
Telemetry event model

A TelemetryEvent is built per request, enriched, handed to the EventRecorder
and then discarded; the stored row is its only trace.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from tagtrail.telemetry.geo import EMPTY_GEO, GeoLocation
from tagtrail.telemetry.ip import NormalizedIp
from tagtrail.telemetry.metadata import TelemetryMetadata


class EventKind(str, Enum):
    SCAN = "scan"
    LINK_CLICK = "link_click"
    VIDEO_EVENT = "video_event"


@dataclass
class TelemetryEvent:
    """One observed touch event with all derived metadata"""

    kind: EventKind
    tag_id: str
    visitor_id: str
    session_id: str
    metadata: TelemetryMetadata
    ip: NormalizedIp
    geo: GeoLocation = EMPTY_GEO
    is_returning: bool = False
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Table-specific values: event_source/nfc_id, link_url/..., event/watch_time
    domain: Dict[str, Any] = field(default_factory=dict)

    def core_fields(self) -> Dict[str, Any]:
        """Columns every deployed schema has, regardless of migrations"""
        fields: Dict[str, Any] = {
            "tag_id": self.tag_id,
            "timestamp": self.occurred_at,
            "ip_hash": self.ip.legacy_hash,
        }
        if self.kind == EventKind.SCAN:
            fields.update({
                "device_type": self.metadata.device_type,
                "user_agent": self.metadata.user_agent,
                "browser_lang": self.metadata.browser_lang,
                "city": self.geo.city,
                "country": self.geo.country,
                "region": self.geo.region,
                "is_returning": self.is_returning,
                "referrer": self.metadata.referrer,
                "event_source": self.domain.get("event_source"),
            })
        elif self.kind == EventKind.LINK_CLICK:
            fields.update({
                "link_url": self.domain.get("link_url"),
                "link_label": self.domain.get("link_label"),
                "link_icon": self.domain.get("link_icon"),
            })
        elif self.kind == EventKind.VIDEO_EVENT:
            fields.update({
                "event": self.domain.get("event"),
                "watch_time": self.domain.get("watch_time"),
            })
        return fields

    def telemetry_fields(self) -> Dict[str, Any]:
        """Columns added by the telemetry migrations"""
        utm = self.metadata.utm
        fields: Dict[str, Any] = {
            "visitor_id": self.visitor_id,
            "session_id": self.session_id,
            "utm_source": utm.utm_source,
            "utm_medium": utm.utm_medium,
            "utm_campaign": utm.utm_campaign,
            "utm_content": utm.utm_content,
            "utm_term": utm.utm_term,
            "gclid": utm.gclid,
            "fbclid": utm.fbclid,
            "accept_language": self.metadata.accept_language,
            "path": self.metadata.path,
            "query": self.metadata.query,
            "raw_meta": self.metadata.raw_meta,
            "ip_prefix": self.ip.prefix,
            "ip_version": self.ip.version,
            "ip_hmac": self.ip.hmac_hash,
        }
        if self.kind == EventKind.SCAN:
            nfc_id: Optional[str] = self.domain.get("nfc_id")
            if nfc_id:
                fields["nfc_id"] = nfc_id
        else:
            fields.update({
                "user_agent": self.metadata.user_agent,
                "device_type": self.metadata.device_type,
                "referrer": self.metadata.referrer,
            })
        return fields

    def full_row(self) -> Dict[str, Any]:
        return {**self.core_fields(), **self.telemetry_fields()}
