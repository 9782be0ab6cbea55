"""
Scan routes

GET /s/{tag_id} is the URL written to NFC chips and QR codes. It records a
scan and redirects the visitor to the tag's target.
"""

from urllib.parse import urlsplit

from starlette.requests import Request
from starlette.responses import RedirectResponse

from tagtrail.api.routes.common import find_active_tag, record_shielded, request_base_url
from tagtrail.logger import get_logger
from tagtrail.services.event_recorder import EventRecorder
from tagtrail.storage.models import Tag
from tagtrail.telemetry.collector import collect_telemetry
from tagtrail.telemetry.events import EventKind
from tagtrail.telemetry.identity import apply_telemetry_cookies

logger = get_logger(__name__)

CHIP_SEPARATOR = "::"


def split_tag_param(raw: str):
    """
    Split 'tagId::chipId' into (tag_id, chip_id)

    Chips programmed per unit carry their hardware id after the separator;
    plain tag ids yield chip_id None.
    """
    tag_id, separator, chip_id = raw.partition(CHIP_SEPARATOR)
    return tag_id, (chip_id or None) if separator else None


def resolve_target_url(tag: Tag, base_url: str) -> str:
    """Absolute redirect target for a tag"""
    if tag.tag_type == "vcard":
        return f"{base_url}/vcard/{tag.id}"

    target = tag.target_url or "/"
    if urlsplit(target).scheme:
        return target
    if not target.startswith("/"):
        target = f"/{target}"
    return f"{base_url}{target}"


class ScanRoutes:
    """Routes for the tag redirect entry point"""

    def __init__(self, recorder: EventRecorder):
        self.recorder = recorder

    async def handle_redirect(self, request: Request) -> RedirectResponse:
        """
        Handle a tag scan

        GET /s/{tag_id}[?source=...][&nfc=...]

        This endpoint:
        1. Looks up the active tag (unknown tags go to the site root)
        2. Resolves visitor/session identity and request metadata
        3. Records the scan (no dedup, returning across all tags)
        4. Redirects with the identity cookies attached

        Recording failures never change the redirect.
        """
        base_url = request_base_url(request)
        tag_id, chip_id = split_tag_param(request.path_params["tag_id"])

        try:
            tag = await find_active_tag(self.recorder, tag_id)
        except Exception as e:
            logger.error(f"Error looking up tag {tag_id}: {e}", exc_info=True)
            return RedirectResponse(f"{base_url}/", status_code=302)

        if tag is None:
            logger.info(f"Scan for unknown or inactive tag {tag_id}")
            return RedirectResponse(f"{base_url}/", status_code=302)

        query = request.query_params
        collected = collect_telemetry(
            request,
            EventKind.SCAN,
            tag.id,
            event_source=query.get("source") or query.get("event") or None,
            nfc_id=chip_id or query.get("nfc") or None,
        )

        result = await record_shielded(self.recorder.record_redirect_scan(collected.event))
        if not result.persisted:
            logger.warning(f"Scan for tag {tag.id} not persisted ({result.outcome.value})")

        response = RedirectResponse(resolve_target_url(tag, base_url), status_code=302)
        apply_telemetry_cookies(response, collected.cookies_to_set)
        return response
