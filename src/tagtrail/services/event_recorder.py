"""
Event recorder: the write path for scans, link clicks and video events

Two producers write scans into the same table:

- the redirect endpoint (/s/{tag}) always records, and flags the scan as
  returning when the IP hash has scanned *any* tag before;
- direct page views (/link, /watch, /vcard) skip the insert when a scan for
  the same tag and IP hash landed within the dedup window (the redirect
  already counted that visit), and flag returning per tag.

The asymmetry is deliberate and kept explicit through ReturningScope and the
dedup_window argument.

Inserts carry the full column set first. When the database lacks telemetry
columns the insert is retried once with core columns only; every other
failure is logged and reported as FAILED, never raised to the HTTP layer.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from tagtrail.config.settings import settings
from tagtrail.logger import get_logger
from tagtrail.storage.database import create_pooled_session
from tagtrail.storage.event_repository import EventRepository
from tagtrail.storage.models import LinkClick, Scan, VideoEvent
from tagtrail.storage.schema_guard import is_schema_mismatch_error
from tagtrail.telemetry.events import EventKind, TelemetryEvent
from tagtrail.telemetry.geo import EMPTY_GEO, GeoLocation, GeoResolver
from tagtrail.telemetry.ip import UNKNOWN_IP

logger = get_logger(__name__)

EVENT_TABLES = {
    EventKind.SCAN: Scan,
    EventKind.LINK_CLICK: LinkClick,
    EventKind.VIDEO_EVENT: VideoEvent,
}


class RecordOutcome(str, Enum):
    OK = "ok"
    PERSISTED_WITHOUT_TELEMETRY = "persisted_without_telemetry"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


class ReturningScope(str, Enum):
    """Which prior scans make a visitor 'returning'"""

    TAG = "tag"        # same IP hash scanned this tag before
    GLOBAL = "global"  # same IP hash scanned any tag before


@dataclass
class RecordResult:
    outcome: RecordOutcome
    row_id: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def persisted(self) -> bool:
        return self.outcome in (RecordOutcome.OK, RecordOutcome.PERSISTED_WITHOUT_TELEMETRY)


class EventRecorder:
    """Persists TelemetryEvents with schema fallback and scan dedup"""

    def __init__(
        self,
        session_factory: Callable = create_pooled_session,
        geo_resolver: Optional[GeoResolver] = None,
        dedup_window_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.geo_resolver = geo_resolver
        self.dedup_window_seconds = (
            dedup_window_seconds if dedup_window_seconds is not None else settings.dedup_window_seconds
        )

    async def record_redirect_scan(self, event: TelemetryEvent) -> RecordResult:
        """Scan recorded by the redirect endpoint: no dedup, global returning"""
        return await self.record(event, returning_scope=ReturningScope.GLOBAL)

    async def record_direct_scan(self, event: TelemetryEvent) -> RecordResult:
        """Scan recorded by a direct page view: dedup window, per-tag returning"""
        return await self.record(
            event,
            dedup_window=self.dedup_window_seconds,
            returning_scope=ReturningScope.TAG,
        )

    async def record_link_click(self, event: TelemetryEvent) -> RecordResult:
        return await self.record(event)

    async def record_video_event(self, event: TelemetryEvent) -> RecordResult:
        return await self.record(event)

    async def record(
        self,
        event: TelemetryEvent,
        dedup_window: Optional[int] = None,
        returning_scope: ReturningScope = ReturningScope.TAG,
    ) -> RecordResult:
        """
        Persist one event

        Args:
            event: Enriched event; scans get geo and is_returning filled in here
            dedup_window: Seconds; scans only. None disables the dedup check
            returning_scope: Scope of the returning-visitor lookup (scans only)

        Returns:
            RecordResult; FAILED results carry the error that was logged
        """
        try:
            async with self.session_factory() as session:
                repo = EventRepository(session)

                if event.kind == EventKind.SCAN:
                    if dedup_window is not None and await self.is_duplicate_scan(repo, event, dedup_window):
                        logger.debug(f"Scan for tag {event.tag_id} suppressed (within {dedup_window}s window)")
                        return RecordResult(RecordOutcome.SUPPRESSED)

                    # Geo is the only network call; run it alongside the returning lookup
                    geo_task = asyncio.ensure_future(self.resolve_geo(event))
                    try:
                        event.is_returning = await self.is_returning_visitor(repo, event, returning_scope)
                    except BaseException:
                        geo_task.cancel()
                        raise
                    event.geo = await geo_task

                outcome, row_id = await self.insert_with_fallback(repo, event)
                return RecordResult(outcome, row_id=row_id)
        except Exception as e:
            logger.error(f"Failed to record {event.kind.value} for tag {event.tag_id}: {e}", exc_info=True)
            return RecordResult(RecordOutcome.FAILED, error=e)

    async def insert_with_fallback(
        self,
        repo: EventRepository,
        event: TelemetryEvent,
    ) -> Tuple[RecordOutcome, str]:
        """
        Insert with the full column set, retrying once without telemetry columns

        Only schema mismatches are retried. Any other error, and any error of
        the retry itself, propagates unchanged.
        """
        table = EVENT_TABLES[event.kind]
        row_id = str(uuid.uuid4())

        try:
            await repo.insert(table, {"id": row_id, **event.full_row()})
            return RecordOutcome.OK, row_id
        except Exception as e:
            if not is_schema_mismatch_error(e):
                raise
            logger.warning(
                f"{table.__tablename__} insert: schema mismatch, retrying without telemetry columns: {e}"
            )

        await repo.insert(table, {"id": row_id, **event.core_fields()})
        return RecordOutcome.PERSISTED_WITHOUT_TELEMETRY, row_id

    async def is_duplicate_scan(self, repo: EventRepository, event: TelemetryEvent, window_seconds: int) -> bool:
        """Whether a scan for the same tag and IP hash exists inside the trailing window"""
        if event.ip.address == UNKNOWN_IP:
            return False
        since = event.occurred_at - timedelta(seconds=window_seconds)
        count = await repo.count_matching(
            Scan,
            Scan.tag_id == event.tag_id,
            Scan.ip_hash == event.ip.legacy_hash,
            Scan.timestamp >= since,
        )
        return count > 0

    async def is_returning_visitor(
        self,
        repo: EventRepository,
        event: TelemetryEvent,
        scope: ReturningScope,
    ) -> bool:
        """Whether the IP hash has prior scans within the given scope"""
        # Unresolved addresses all share one hash
        if event.ip.address == UNKNOWN_IP:
            return False
        criteria: list[Any] = [Scan.ip_hash == event.ip.legacy_hash]
        if scope == ReturningScope.TAG:
            criteria.append(Scan.tag_id == event.tag_id)
        return await repo.count_matching(Scan, *criteria) > 0

    async def resolve_geo(self, event: TelemetryEvent) -> GeoLocation:
        if self.geo_resolver is None:
            return EMPTY_GEO
        return await self.geo_resolver.resolve(event.ip.address)
