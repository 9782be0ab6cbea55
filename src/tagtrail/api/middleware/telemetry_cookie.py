"""
Telemetry cookie middleware

Persists identities that were resolved in read-only render paths.

Page handlers resolve visitor/session ids without writing cookies and leave
the result in request.state.pending_identity. When that identity was freshly
minted, this middleware writes tn_visitor / tn_sess / tn_sess_ts on the
outgoing response so the new ids survive to the next request.

Cookie properties:
- httponly=True: Prevents JavaScript access
- samesite=lax
- path=/
- secure: from settings.cookie_secure
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from tagtrail.logger import get_logger
from tagtrail.telemetry.identity import apply_telemetry_cookies, identity_cookies

logger = get_logger(__name__)


class TelemetryCookieMiddleware(BaseHTTPMiddleware):
    """Apply pending identity cookies left by read-only handlers"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        pending = getattr(request.state, "pending_identity", None)
        if pending is not None and pending.is_new:
            apply_telemetry_cookies(response, identity_cookies(pending))
            logger.debug(f"Set identity cookies for visitor {pending.visitor_id[:8]}...")

        return response
