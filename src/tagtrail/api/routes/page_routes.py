"""
Direct-access page routes

GET /link/{tag_id}, /watch/{tag_id} and /vcard/{tag_id} are usually reached
through the /s/ redirect, but people also bookmark and share them. Each view
records a scan with the direct producer: suppressed when the redirect already
counted the visit, and flagged returning per tag.

Identity is resolved read-only here; freshly minted ids are left on
request.state for TelemetryCookieMiddleware to persist.
"""

import json
from html import escape
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from starlette.requests import Request
from starlette.responses import HTMLResponse

from tagtrail.api.routes.common import find_active_tag, record_shielded
from tagtrail.logger import get_logger
from tagtrail.services.event_recorder import EventRecorder
from tagtrail.storage.models import Tag
from tagtrail.telemetry.collector import collect_telemetry
from tagtrail.telemetry.events import EventKind

logger = get_logger(__name__)

DIRECT_EVENT_SOURCE = "direct"

VIDEO_MILESTONES = (25, 50, 75, 100)

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="pl">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
</head>
<body>
<main>
{body}
</main>
{script}
</body>
</html>
"""

_LINK_CLICK_SCRIPT = """<script>
document.querySelectorAll("a[data-tracked]").forEach(function (a) {
  a.addEventListener("click", function () {
    navigator.sendBeacon("/api/link-click", JSON.stringify({
      tagId: a.dataset.tag, linkUrl: a.href, linkLabel: a.dataset.label, linkIcon: a.dataset.icon
    }));
  });
});
</script>"""

_VIDEO_SCRIPT = """<script>
(function () {
  var v = document.getElementById("player"), tagId = v.dataset.tag, sent = {};
  function send(event) {
    navigator.sendBeacon("/api/video-event", JSON.stringify({
      tagId: tagId, event: event, watchTime: Math.round(v.currentTime)
    }));
  }
  v.addEventListener("play", function () { send("play"); });
  v.addEventListener("pause", function () { if (!v.ended) send("pause"); });
  v.addEventListener("ended", function () { send("ended"); });
  v.addEventListener("timeupdate", function () {
    if (!v.duration) return;
    var pct = v.currentTime / v.duration * 100;
    %s.forEach(function (m) {
      if (pct >= m && !sent[m]) { sent[m] = true; send("progress_" + m); }
    });
  });
})();
</script>""" % json.dumps(list(VIDEO_MILESTONES))


def render_page(title: str, body: str, script: str = "") -> HTMLResponse:
    return HTMLResponse(_PAGE_TEMPLATE.format(title=escape(title), body=body, script=script))


def build_vcf(vcard: Dict[str, Any]) -> str:
    """
    vCard 3.0 text for a tag's contact data
    """
    first = vcard.get("firstName") or ""
    last = vcard.get("lastName") or ""
    lines: List[Optional[str]] = [
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"N:{last};{first};;;",
        f"FN:{' '.join(p for p in (first, last) if p)}",
        vcard.get("company") and f"ORG:{vcard['company']}",
        vcard.get("jobTitle") and f"TITLE:{vcard['jobTitle']}",
        vcard.get("phone") and f"TEL;TYPE=CELL:{vcard['phone']}",
        vcard.get("email") and f"EMAIL:{vcard['email']}",
        vcard.get("website") and f"URL:{vcard['website']}",
        vcard.get("address") and f"ADR;TYPE=WORK:;;{vcard['address']};;;;",
        vcard.get("note") and f"NOTE:{vcard['note']}",
        "END:VCARD",
    ]
    return "\n".join(line for line in lines if line)


class PageRoutes:
    """Routes for pages a visitor can open without the redirect"""

    def __init__(self, recorder: EventRecorder):
        self.recorder = recorder

    async def _record_view(self, request: Request, tag: Tag) -> None:
        collected = collect_telemetry(
            request,
            EventKind.SCAN,
            tag.id,
            readonly=True,
            event_source=DIRECT_EVENT_SOURCE,
        )
        request.state.pending_identity = collected.pending_identity

        result = await record_shielded(self.recorder.record_direct_scan(collected.event))
        logger.debug(f"Direct view of tag {tag.id}: {result.outcome.value}")

    async def _load_tag(self, request: Request) -> Optional[Tag]:
        tag_id = request.path_params["tag_id"]
        try:
            return await find_active_tag(self.recorder, tag_id)
        except Exception as e:
            logger.error(f"Error looking up tag {tag_id}: {e}", exc_info=True)
            return None

    async def handle_link_page(self, request: Request) -> HTMLResponse:
        """
        Multi-link page

        GET /link/{tag_id}
        """
        tag = await self._load_tag(request)
        if tag is None or not isinstance(tag.links, list):
            return not_found_page()

        await self._record_view(request, tag)

        items = []
        for link in tag.links:
            if not isinstance(link, dict) or not link.get("url"):
                continue
            label = link.get("label") or link["url"]
            items.append(
                f'<li><a href="{escape(link["url"])}" data-tracked data-tag="{escape(tag.id)}" '
                f'data-label="{escape(label)}" data-icon="{escape(link.get("icon") or "link")}">'
                f"{escape(label)}</a></li>"
            )
        body = f"<h1>{escape(tag.name)}</h1>"
        if tag.description:
            body += f"<p>{escape(tag.description)}</p>"
        body += f"<ul>{''.join(items)}</ul>"
        return render_page(tag.name, body, _LINK_CLICK_SCRIPT)

    async def handle_watch_page(self, request: Request) -> HTMLResponse:
        """
        Video page

        GET /watch/{tag_id}
        """
        tag = await self._load_tag(request)
        if tag is None or not tag.video_file:
            return not_found_page()

        await self._record_view(request, tag)

        src = escape(tag.video_file)
        body = (
            f'<video id="player" data-tag="{escape(tag.id)}" controls autoplay playsinline preload="metadata">'
            f'<source src="{src}" type="video/mp4"><source src="{src}" type="video/webm"></video>'
            f"<h1>{escape(tag.name)}</h1>"
        )
        if tag.description:
            body += f"<p>{escape(tag.description)}</p>"
        return render_page(tag.name, body, _VIDEO_SCRIPT)

    async def handle_vcard_page(self, request: Request) -> HTMLResponse:
        """
        Business card page

        GET /vcard/{tag_id}

        The contact data lives in the tag's links field as a mapping.
        """
        tag = await self._load_tag(request)
        if tag is None or tag.tag_type != "vcard" or not isinstance(tag.links, dict):
            return not_found_page()

        await self._record_view(request, tag)

        vcard = tag.links
        full_name = " ".join(p for p in (vcard.get("firstName"), vcard.get("lastName")) if p) or tag.name
        body = f"<h1>{escape(full_name)}</h1>"
        for key in ("jobTitle", "company", "phone", "email", "website", "address"):
            if vcard.get(key):
                body += f"<p>{escape(str(vcard[key]))}</p>"
        vcf = quote(build_vcf(vcard))
        body += f'<a download="{escape(tag.id)}.vcf" href="data:text/vcard;charset=utf-8,{vcf}">vCard</a>'
        return render_page(full_name, body)


def not_found_page() -> HTMLResponse:
    return HTMLResponse(
        _PAGE_TEMPLATE.format(title="Not found", body="<h1>404</h1>", script=""),
        status_code=404,
    )
