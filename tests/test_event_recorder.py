"""
Tests for EventRecorder: dedup, returning visitors, schema fallback
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.datastructures import URL, Headers

from tagtrail.api.routes import common
from tagtrail.services.event_recorder import EventRecorder, RecordOutcome
from tagtrail.storage.database import create_pooled_session
from tagtrail.storage.event_repository import EventRepository
from tagtrail.storage.models import LinkClick, Scan, VideoEvent
from tagtrail.telemetry.events import EventKind, TelemetryEvent
from tagtrail.telemetry.geo import EMPTY_GEO, GeoResolver
from tagtrail.telemetry.ip import UNKNOWN_IP, legacy_ip_hash, normalize_ip
from tagtrail.telemetry.metadata import extract_metadata

from conftest import IPHONE_UA


def make_event(kind=EventKind.SCAN, tag_id="T", ip="203.0.113.9", occurred_at=None, **domain):
    event = TelemetryEvent(
        kind=kind,
        tag_id=tag_id,
        visitor_id="visitor-1",
        session_id="session-1",
        metadata=extract_metadata(
            Headers(headers={"user-agent": IPHONE_UA, "accept-language": "pl-PL,pl;q=0.9"}),
            URL(f"https://twojenfc.pl/s/{tag_id}?utm_source=newsletter"),
        ),
        ip=normalize_ip(ip),
        domain=dict(domain),
    )
    if occurred_at is not None:
        event.occurred_at = occurred_at
    return event


async def load_rows(model):
    async with create_pooled_session() as session:
        result = await session.execute(select(model).order_by(model.timestamp))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_redirect_scan_stores_full_row(recorder):
    result = await recorder.record_redirect_scan(make_event(event_source="poster", nfc_id="04:A1:B2"))

    assert result.outcome == RecordOutcome.OK
    assert result.persisted

    [scan] = await load_rows(Scan)
    assert scan.id == result.row_id
    assert scan.tag_id == "T"
    assert scan.device_type == "iOS"
    assert scan.browser_lang == "pl-PL"
    assert scan.utm_source == "newsletter"
    assert scan.ip_hash == legacy_ip_hash("203.0.113.9")
    assert scan.ip_hmac is not None
    assert scan.ip_version == 4
    assert scan.ip_prefix == "203.0.113.0"
    assert scan.visitor_id == "visitor-1"
    assert scan.session_id == "session-1"
    assert scan.event_source == "poster"
    assert scan.nfc_id == "04:A1:B2"
    assert scan.is_returning is False


@pytest.mark.asyncio
async def test_redirect_returning_is_global_and_never_deduped(recorder):
    first = await recorder.record_redirect_scan(make_event(tag_id="T"))
    second = await recorder.record_redirect_scan(make_event(tag_id="T"))
    other_tag = await recorder.record_redirect_scan(make_event(tag_id="other"))

    assert [r.outcome for r in (first, second, other_tag)] == [RecordOutcome.OK] * 3

    scans = await load_rows(Scan)
    assert [s.is_returning for s in scans] == [False, True, True]


@pytest.mark.asyncio
async def test_direct_scan_within_window_is_suppressed(recorder):
    now = datetime.now(timezone.utc)
    await recorder.record_redirect_scan(make_event(occurred_at=now - timedelta(seconds=10)))

    result = await recorder.record_direct_scan(make_event(occurred_at=now, event_source="direct"))

    assert result.outcome == RecordOutcome.SUPPRESSED
    assert not result.persisted
    assert len(await load_rows(Scan)) == 1


@pytest.mark.asyncio
async def test_direct_scan_after_window_is_recorded(recorder):
    now = datetime.now(timezone.utc)
    await recorder.record_redirect_scan(make_event(occurred_at=now - timedelta(seconds=31)))

    result = await recorder.record_direct_scan(make_event(occurred_at=now, event_source="direct"))

    assert result.outcome == RecordOutcome.OK
    scans = await load_rows(Scan)
    assert len(scans) == 2
    assert scans[1].event_source == "direct"
    assert scans[1].is_returning is True


@pytest.mark.asyncio
async def test_direct_scan_dedup_is_per_tag_and_ip(recorder):
    now = datetime.now(timezone.utc)
    await recorder.record_redirect_scan(make_event(tag_id="other", occurred_at=now - timedelta(seconds=5)))
    await recorder.record_redirect_scan(make_event(ip="198.51.100.4", occurred_at=now - timedelta(seconds=5)))

    result = await recorder.record_direct_scan(make_event(tag_id="T", occurred_at=now))

    assert result.outcome == RecordOutcome.OK
    scans = await load_rows(Scan)
    # Returning is scoped to the tag for direct views
    assert scans[-1].tag_id == "T"
    assert scans[-1].is_returning is False


@pytest.mark.asyncio
async def test_link_click_and_video_event(recorder):
    click = await recorder.record_link_click(make_event(
        EventKind.LINK_CLICK,
        tag_id="multi",
        link_url="https://instagram.com/shop",
        link_label="Instagram",
        link_icon="instagram",
    ))
    video = await recorder.record_video_event(make_event(
        EventKind.VIDEO_EVENT,
        tag_id="vid",
        event="progress_50",
        watch_time=42.0,
    ))

    assert click.outcome == RecordOutcome.OK
    assert video.outcome == RecordOutcome.OK

    [link_row] = await load_rows(LinkClick)
    assert link_row.link_url == "https://instagram.com/shop"
    assert link_row.link_icon == "instagram"
    assert link_row.device_type == "iOS"
    assert link_row.user_agent == IPHONE_UA
    assert link_row.utm_source == "newsletter"

    [video_row] = await load_rows(VideoEvent)
    assert video_row.event == "progress_50"
    assert video_row.watch_time == 42.0
    assert video_row.ip_prefix == "203.0.113.0"


@pytest.mark.asyncio
async def test_scan_geo_is_resolved(engine):
    def handler(request):
        return httpx.Response(
            200,
            json={"status": "success", "city": "Warsaw", "country": "Poland", "regionName": "Mazovia"},
        )

    recorder = EventRecorder(
        geo_resolver=GeoResolver(base_url="http://geo.test/json", enabled=True, transport=httpx.MockTransport(handler)),
    )
    await recorder.record_redirect_scan(make_event())

    [scan] = await load_rows(Scan)
    assert (scan.city, scan.country, scan.region) == ("Warsaw", "Poland", "Mazovia")


@pytest.mark.asyncio
async def test_legacy_schema_falls_back_to_core_columns(legacy_recorder, legacy_engine):
    first = await legacy_recorder.record_redirect_scan(make_event())
    second = await legacy_recorder.record_redirect_scan(make_event())
    click = await legacy_recorder.record_link_click(make_event(
        EventKind.LINK_CLICK, tag_id="multi", link_url="https://example.com",
    ))
    video = await legacy_recorder.record_video_event(make_event(
        EventKind.VIDEO_EVENT, tag_id="vid", event="play",
    ))

    assert first.outcome == RecordOutcome.PERSISTED_WITHOUT_TELEMETRY
    assert second.outcome == RecordOutcome.PERSISTED_WITHOUT_TELEMETRY
    assert click.outcome == RecordOutcome.PERSISTED_WITHOUT_TELEMETRY
    assert video.outcome == RecordOutcome.PERSISTED_WITHOUT_TELEMETRY

    async with legacy_engine.connect() as conn:
        rows = (await conn.execute(text(
            "SELECT tag_id, ip_hash, device_type, is_returning FROM scans ORDER BY timestamp"
        ))).all()
        clicks = (await conn.execute(text("SELECT COUNT(*) FROM link_clicks"))).scalar_one()
        videos = (await conn.execute(text("SELECT COUNT(*) FROM video_events"))).scalar_one()

    assert [(r[0], r[1], r[2]) for r in rows] == [("T", legacy_ip_hash("203.0.113.9"), "iOS")] * 2
    # Returning is computed before the insert and survives the fallback
    assert [bool(r[3]) for r in rows] == [False, True]
    assert clicks == 1
    assert videos == 1


@pytest.mark.asyncio
async def test_unknown_column_error_is_retried_once_without_telemetry(recorder, monkeypatch):
    calls = []
    original_insert = EventRepository.insert

    async def flaky_insert(self, table, row):
        calls.append(set(row))
        if len(calls) == 1:
            raise OperationalError("INSERT INTO scans ...", {}, Exception("table scans has no column named visitor_id"))
        return await original_insert(self, table, row)

    monkeypatch.setattr(EventRepository, "insert", flaky_insert)

    result = await recorder.record_redirect_scan(make_event())

    assert result.outcome == RecordOutcome.PERSISTED_WITHOUT_TELEMETRY
    assert len(calls) == 2
    assert "visitor_id" in calls[0]
    assert "visitor_id" not in calls[1]
    assert {"tag_id", "timestamp", "ip_hash", "device_type"} <= calls[1]


@pytest.mark.asyncio
async def test_constraint_violation_is_not_retried(recorder, monkeypatch):
    calls = []
    original_insert = EventRepository.insert

    async def counting_insert(self, table, row):
        calls.append(row)
        return await original_insert(self, table, row)

    monkeypatch.setattr(EventRepository, "insert", counting_insert)

    # tag_id is NOT NULL
    result = await recorder.record_link_click(make_event(EventKind.LINK_CLICK, tag_id=None, link_url="https://x"))

    assert result.outcome == RecordOutcome.FAILED
    assert isinstance(result.error, IntegrityError)
    assert len(calls) == 1
    assert await load_rows(LinkClick) == []


@pytest.mark.asyncio
async def test_storage_outage_is_reported_not_raised(engine):
    class _BrokenSession:
        async def __aenter__(self):
            raise OperationalError("connect", {}, Exception("could not connect to server"))

        async def __aexit__(self, *exc_info):
            return False

    recorder = EventRecorder(session_factory=_BrokenSession, geo_resolver=GeoResolver(enabled=False))

    result = await recorder.record_redirect_scan(make_event())

    assert result.outcome == RecordOutcome.FAILED
    assert isinstance(result.error, OperationalError)


@pytest.mark.asyncio
async def test_unresolved_addresses_are_not_merged(recorder):
    first = make_event(tag_id="multi", ip=UNKNOWN_IP)
    second = make_event(tag_id="multi", ip=UNKNOWN_IP)
    second.visitor_id = "visitor-2"

    results = [
        await recorder.record_direct_scan(first),
        await recorder.record_direct_scan(second),
        await recorder.record_redirect_scan(make_event(tag_id="multi", ip=UNKNOWN_IP)),
    ]

    assert [r.outcome for r in results] == [RecordOutcome.OK] * 3
    scans = await load_rows(Scan)
    assert [s.is_returning for s in scans] == [False, False, False]


class _SlowGeo:
    def __init__(self):
        self.cancelled = False

    async def resolve(self, ip):
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return EMPTY_GEO


@pytest.mark.asyncio
async def test_geo_lookup_is_cancelled_when_returning_lookup_fails(engine, monkeypatch):
    geo = _SlowGeo()
    recorder = EventRecorder(geo_resolver=geo)

    async def failing_lookup(repo, event, scope):
        await asyncio.sleep(0.01)
        raise OperationalError("SELECT count(*) ...", {}, Exception("connection reset"))

    monkeypatch.setattr(recorder, "is_returning_visitor", failing_lookup)

    result = await recorder.record_redirect_scan(make_event())
    await asyncio.sleep(0)

    assert result.outcome == RecordOutcome.FAILED
    assert geo.cancelled
    assert await load_rows(Scan) == []


@pytest.mark.asyncio
async def test_recording_finishes_after_handler_is_cancelled(recorder, monkeypatch):
    real_insert = EventRepository.insert

    async def slow_insert(self, table, row):
        await asyncio.sleep(0.05)
        return await real_insert(self, table, row)

    monkeypatch.setattr(EventRepository, "insert", slow_insert)

    handler = asyncio.ensure_future(common.record_shielded(recorder.record_redirect_scan(make_event())))
    await asyncio.sleep(0.01)
    handler.cancel()

    with pytest.raises(asyncio.CancelledError):
        await handler

    pending = list(common._inflight)
    assert len(pending) == 1
    [result] = await asyncio.gather(*pending)

    assert result.outcome == RecordOutcome.OK
    [scan] = await load_rows(Scan)
    assert scan.id == result.row_id
