"""
Beacon and stats routes

Provides endpoints for link-click and video-event beacons sent from the
direct-access pages, plus per-tag aggregates of both.
"""

import json

from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from tagtrail.api.routes.common import find_active_tag, record_shielded
from tagtrail.api.schemas import LinkClickPayload, VideoEventPayload
from tagtrail.logger import get_logger
from tagtrail.services.event_recorder import EventRecorder
from tagtrail.storage.event_repository import EventRepository
from tagtrail.telemetry.collector import collect_telemetry
from tagtrail.telemetry.events import EventKind
from tagtrail.telemetry.identity import apply_telemetry_cookies

logger = get_logger(__name__)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": message})


class EventRoutes:
    """Routes for tracked link clicks and video events"""

    def __init__(self, recorder: EventRecorder):
        self.recorder = recorder

    async def _read_json(self, request: Request):
        try:
            return await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None

    async def handle_link_click(self, request: Request) -> JSONResponse:
        """
        Handle a link click beacon

        POST /api/link-click
        Body: {"tagId": ..., "linkUrl": ..., "linkLabel"?: ..., "linkIcon"?: ...}

        Returns 400 for malformed bodies and 404 for unknown tags. Recording
        failures are logged and reported as {"success": false} with status 200.
        """
        try:
            body = await self._read_json(request)
            if body is None:
                return _bad_request("Invalid JSON body")
            try:
                payload = LinkClickPayload.model_validate(body)
            except ValidationError as e:
                logger.debug(f"Rejected link click payload: {e.error_count()} errors")
                return _bad_request("tagId and linkUrl required")

            tag = await find_active_tag(self.recorder, payload.tag_id)
            if tag is None:
                return JSONResponse(status_code=404, content={"success": False, "error": "Tag not found"})

            collected = collect_telemetry(
                request,
                EventKind.LINK_CLICK,
                tag.id,
                link_url=payload.link_url,
                link_label=payload.link_label,
                link_icon=payload.link_icon,
            )
            result = await record_shielded(self.recorder.record_link_click(collected.event))

            response = JSONResponse(status_code=200, content={"success": result.persisted})
            apply_telemetry_cookies(response, collected.cookies_to_set)
            return response

        except Exception as e:
            logger.error(f"Error handling link click: {e}", exc_info=True)
            return JSONResponse(status_code=200, content={"success": False})

    async def handle_video_event(self, request: Request) -> JSONResponse:
        """
        Handle a video player beacon

        POST /api/video-event
        Body: {"tagId": ..., "event": "play"|"pause"|"ended"|"progress_NN", "watchTime"?: seconds}
        """
        try:
            body = await self._read_json(request)
            if body is None:
                return _bad_request("Invalid JSON body")
            try:
                payload = VideoEventPayload.model_validate(body)
            except ValidationError as e:
                logger.debug(f"Rejected video event payload: {e.error_count()} errors")
                return _bad_request("tagId and a valid event required")

            tag = await find_active_tag(self.recorder, payload.tag_id)
            if tag is None:
                return JSONResponse(status_code=404, content={"success": False, "error": "Tag not found"})

            collected = collect_telemetry(
                request,
                EventKind.VIDEO_EVENT,
                tag.id,
                event=payload.event,
                watch_time=payload.watch_time,
            )
            result = await record_shielded(self.recorder.record_video_event(collected.event))

            response = JSONResponse(status_code=200, content={"success": result.persisted})
            apply_telemetry_cookies(response, collected.cookies_to_set)
            return response

        except Exception as e:
            logger.error(f"Error handling video event: {e}", exc_info=True)
            return JSONResponse(status_code=200, content={"success": False})

    async def handle_link_click_stats(self, request: Request) -> JSONResponse:
        """
        Per-link click counts

        GET /api/link-click?tagId=...

        Unauthenticated here; deployments expose it only behind the admin
        proxy that guards dashboard routes.
        """
        tag_id = request.query_params.get("tagId")
        if not tag_id:
            return _bad_request("tagId required")

        try:
            async with self.recorder.session_factory() as session:
                stats = await EventRepository(session).link_click_stats(tag_id)
            return JSONResponse(status_code=200, content=stats)
        except Exception as e:
            logger.error(f"Error loading link click stats for {tag_id}: {e}", exc_info=True)
            return JSONResponse(status_code=500, content={"success": False, "error": "Failed to load stats"})

    async def handle_video_event_stats(self, request: Request) -> JSONResponse:
        """
        Playback milestone counts and watch time

        GET /api/video-event?tagId=...

        Same access model as the link-click stats: admin proxy only.
        """
        tag_id = request.query_params.get("tagId")
        if not tag_id:
            return _bad_request("tagId required")

        try:
            async with self.recorder.session_factory() as session:
                stats = await EventRepository(session).video_event_stats(tag_id)
            return JSONResponse(status_code=200, content=stats)
        except Exception as e:
            logger.error(f"Error loading video stats for {tag_id}: {e}", exc_info=True)
            return JSONResponse(status_code=500, content={"success": False, "error": "Failed to load stats"})
