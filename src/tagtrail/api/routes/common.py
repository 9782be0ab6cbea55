"""
Helpers shared by the route classes
"""

import asyncio
from typing import Awaitable, Optional, Set

from starlette.requests import Request

from tagtrail.config.settings import settings
from tagtrail.services.event_recorder import EventRecorder, RecordResult
from tagtrail.storage.event_repository import EventRepository
from tagtrail.storage.models import Tag

# Recording tasks still running after their request was cancelled
_inflight: Set[asyncio.Task] = set()


async def record_shielded(coro: Awaitable[RecordResult]) -> RecordResult:
    """
    Await a recording coroutine so that a client disconnect cannot cancel it

    The task is held in a module-level set until it finishes, so the insert
    completes even when the awaiting handler is cancelled.
    """
    task = asyncio.ensure_future(coro)
    _inflight.add(task)
    task.add_done_callback(_inflight.discard)
    return await asyncio.shield(task)


async def find_active_tag(recorder: EventRecorder, tag_id: str) -> Optional[Tag]:
    async with recorder.session_factory() as session:
        return await EventRepository(session).find_active_tag(tag_id)


def request_base_url(request: Request) -> str:
    """
    Public scheme://host of a request as seen by the visitor

    Proxies terminate TLS, so the scheme comes from x-forwarded-proto and
    defaults to https.
    """
    headers = request.headers
    proto = headers.get("x-forwarded-proto") or "https"
    host = headers.get("host") or headers.get("x-forwarded-host") or settings.default_host
    return f"{proto.split(',')[0].strip()}://{host}"
