"""
Telemetry collection for Starlette requests

Runs the pure, synchronous parts of the pipeline (identity, IP, metadata)
against one request. Geo lookup and persistence happen later, in the
EventRecorder's caller.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from starlette.requests import Request

from tagtrail.telemetry.events import EventKind, TelemetryEvent
from tagtrail.telemetry.identity import (
    CookieInstruction,
    ReadOnlyIdentity,
    resolve_visitor_session,
    resolve_visitor_session_readonly,
)
from tagtrail.telemetry.ip import UNKNOWN_IP, clean_ip, extract_clean_ip, normalize_ip
from tagtrail.telemetry.metadata import extract_metadata


@dataclass
class CollectedTelemetry:
    """A request's TelemetryEvent plus what the response must carry"""

    event: TelemetryEvent
    cookies_to_set: List[CookieInstruction] = field(default_factory=list)
    pending_identity: Optional[ReadOnlyIdentity] = None


def client_ip_from_request(request: Request) -> str:
    """
    Cleaned client address from the proxy headers of a request

    Without proxy headers the socket peer is used; uvicorn runs with
    proxy_headers enabled, so request.client already reflects the edge hop.
    """
    headers = request.headers
    address = extract_clean_ip(
        headers.get("x-forwarded-for"),
        headers.get("x-real-ip"),
        headers.get("cf-connecting-ip"),
    )
    if address == UNKNOWN_IP and request.client and request.client.host:
        address = clean_ip(request.client.host)
    return address


def collect_telemetry(
    request: Request,
    kind: EventKind,
    tag_id: str,
    readonly: bool = False,
    now: Optional[float] = None,
    **domain,
) -> CollectedTelemetry:
    """
    Build a TelemetryEvent for a request

    Args:
        request: Incoming request
        kind: Target event table
        tag_id: Tag the event belongs to
        readonly: Resolve identity without cookie instructions (render paths)
        now: Epoch seconds override for identity resolution
        **domain: Table-specific values (event_source, link_url, watch_time...)

    Returns:
        CollectedTelemetry with cookie instructions, or a pending identity
        when readonly is set
    """
    now = time.time() if now is None else now
    cookies_to_set: List[CookieInstruction] = []
    pending_identity: Optional[ReadOnlyIdentity] = None

    if readonly:
        pending_identity = resolve_visitor_session_readonly(request.cookies, now=now)
        visitor_id = pending_identity.visitor_id
        session_id = pending_identity.session_id
    else:
        resolution = resolve_visitor_session(request.cookies, now=now)
        visitor_id = resolution.visitor_id
        session_id = resolution.session_id
        cookies_to_set = resolution.cookies_to_set

    event = TelemetryEvent(
        kind=kind,
        tag_id=tag_id,
        visitor_id=visitor_id,
        session_id=session_id,
        metadata=extract_metadata(request.headers, request.url),
        ip=normalize_ip(client_ip_from_request(request)),
        domain=dict(domain),
    )
    return CollectedTelemetry(
        event=event,
        cookies_to_set=cookies_to_set,
        pending_identity=pending_identity,
    )
