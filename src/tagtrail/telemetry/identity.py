"""
Visitor and session identity cookies

Resolution is pure: it reads a cookie mapping and returns the ids plus the
cookies that should be written. Writing them to a response is a separate
step (apply_telemetry_cookies) that only mutable contexts perform.

Cookies:
- tn_visitor: visitor id, max_age=1 year
- tn_sess: session id, max_age=24h (hard ceiling)
- tn_sess_ts: last activity in epoch milliseconds, max_age=24h

The session slides: every resolution rewrites tn_sess and tn_sess_ts, and a
session idle for longer than the inactivity window gets a fresh id while the
visitor id is kept.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from starlette.responses import Response

from tagtrail.config.settings import settings

VISITOR_COOKIE = "tn_visitor"
SESSION_COOKIE = "tn_sess"
SESSION_TS_COOKIE = "tn_sess_ts"

VISITOR_MAX_AGE = 365 * 24 * 60 * 60
SESSION_MAX_AGE = 24 * 60 * 60
ONE_DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class CookieInstruction:
    """A cookie the caller should set on its response"""

    name: str
    value: str
    max_age: int
    httponly: bool = True
    samesite: str = "lax"
    path: str = "/"
    secure: bool = False


@dataclass
class IdentityResolution:
    """Resolved ids plus the cookies needed to persist them"""

    visitor_id: str
    session_id: str
    cookies_to_set: List[CookieInstruction] = field(default_factory=list)
    is_new: bool = False


@dataclass(frozen=True)
class ReadOnlyIdentity:
    """Resolved ids for contexts that cannot write cookies"""

    visitor_id: str
    session_id: str
    is_new: bool


def _now_ms(now: Optional[float]) -> int:
    # now is epoch seconds, as returned by time.time()
    return int((time.time() if now is None else now) * 1000)


def _generate_id() -> str:
    return str(uuid.uuid4())


def _cookie(name: str, value: str, max_age: int) -> CookieInstruction:
    return CookieInstruction(
        name=name,
        value=value,
        max_age=max_age,
        secure=settings.cookie_secure,
    )


def is_session_expired(
    session_id: str,
    session_ts: str,
    now_ms: int,
    ttl_minutes: Optional[int] = None,
) -> bool:
    """
    Whether the session cookie pair must be replaced

    Expired when either cookie is missing, or the timestamp is unparseable,
    negative, more than one day in the future, or older than the
    inactivity window.
    """
    if not session_id or not session_ts:
        return True
    try:
        ts = int(session_ts)
    except ValueError:
        return True

    ttl_ms = (ttl_minutes if ttl_minutes is not None else settings.session_ttl_minutes) * 60 * 1000
    if ts < 0 or ts > now_ms + ONE_DAY_MS or now_ms - ts > ttl_ms:
        return True
    return False


def resolve_visitor_session(
    cookies: Mapping[str, str],
    now: Optional[float] = None,
    ttl_minutes: Optional[int] = None,
) -> IdentityResolution:
    """
    Resolve visitor/session ids and the cookies to write

    Args:
        cookies: Incoming request cookies
        now: Current time in epoch seconds (defaults to time.time())
        ttl_minutes: Session inactivity window override

    Returns:
        IdentityResolution with sliding session cookies always scheduled
    """
    now_ms = _now_ms(now)
    cookies_to_set: List[CookieInstruction] = []
    is_new = False

    visitor_id = cookies.get(VISITOR_COOKIE) or ""
    if not visitor_id:
        visitor_id = _generate_id()
        is_new = True
        cookies_to_set.append(_cookie(VISITOR_COOKIE, visitor_id, VISITOR_MAX_AGE))

    session_id = cookies.get(SESSION_COOKIE) or ""
    session_ts = cookies.get(SESSION_TS_COOKIE) or ""
    if is_session_expired(session_id, session_ts, now_ms, ttl_minutes):
        session_id = _generate_id()
        is_new = True

    # Always refresh the session pair so the inactivity clock restarts
    cookies_to_set.append(_cookie(SESSION_COOKIE, session_id, SESSION_MAX_AGE))
    cookies_to_set.append(_cookie(SESSION_TS_COOKIE, str(now_ms), SESSION_MAX_AGE))

    return IdentityResolution(
        visitor_id=visitor_id,
        session_id=session_id,
        cookies_to_set=cookies_to_set,
        is_new=is_new,
    )


def resolve_visitor_session_readonly(
    cookies: Mapping[str, str],
    now: Optional[float] = None,
    ttl_minutes: Optional[int] = None,
) -> ReadOnlyIdentity:
    """
    Resolve ids without producing cookie instructions

    Used by render paths that cannot write cookies themselves. When is_new is
    set the caller must hand the identity to a mutable context (see
    identity_cookies and TelemetryCookieMiddleware) so the minted ids are not
    lost.
    """
    now_ms = _now_ms(now)
    is_new = False

    visitor_id = cookies.get(VISITOR_COOKIE) or ""
    if not visitor_id:
        visitor_id = _generate_id()
        is_new = True

    session_id = cookies.get(SESSION_COOKIE) or ""
    session_ts = cookies.get(SESSION_TS_COOKIE) or ""
    if is_session_expired(session_id, session_ts, now_ms, ttl_minutes):
        session_id = _generate_id()
        is_new = True

    return ReadOnlyIdentity(visitor_id=visitor_id, session_id=session_id, is_new=is_new)


def identity_cookies(
    identity: ReadOnlyIdentity,
    now: Optional[float] = None,
) -> List[CookieInstruction]:
    """Cookie instructions that persist a read-only resolved identity"""
    now_ms = _now_ms(now)
    return [
        _cookie(VISITOR_COOKIE, identity.visitor_id, VISITOR_MAX_AGE),
        _cookie(SESSION_COOKIE, identity.session_id, SESSION_MAX_AGE),
        _cookie(SESSION_TS_COOKIE, str(now_ms), SESSION_MAX_AGE),
    ]


def apply_telemetry_cookies(response: Response, cookies_to_set: List[CookieInstruction]) -> None:
    """Write cookie instructions onto an outgoing response"""
    for cookie in cookies_to_set:
        response.set_cookie(
            key=cookie.name,
            value=cookie.value,
            max_age=cookie.max_age,
            httponly=cookie.httponly,
            samesite=cookie.samesite,
            secure=cookie.secure,
            path=cookie.path,
        )
