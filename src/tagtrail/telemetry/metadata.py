"""
Request metadata extraction

UTM/click ids, device class, referrer and language, and the bounded
raw-metadata snapshot stored alongside every event.
"""

import json
import re
from dataclasses import dataclass
from typing import Dict, Literal, Mapping, Optional

from starlette.datastructures import URL, QueryParams

MAX_FIELD_LENGTH = 4000
MAX_LANGUAGE_LENGTH = 500
MAX_PATH_LENGTH = 2000

DeviceType = Literal["iOS", "Android", "Desktop", "Bot", "Unknown"]

# Only these headers are ever copied into raw_meta
HEADER_WHITELIST = (
    "user-agent",
    "accept-language",
    "referer",
    "sec-ch-ua",
    "sec-ch-ua-mobile",
    "sec-ch-ua-platform",
)

UTM_PARAMS = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "gclid",
    "fbclid",
)

_BOT_RE = re.compile(
    r"bot|crawl|spider|slurp|facebookexternalhit|whatsapp|telegram|preview|fetch"
    r"|curl|wget|python|httpx|axios|node-fetch|go-http-client",
    re.IGNORECASE,
)
_IOS_RE = re.compile(r"iphone|ipad|ipod")
_ANDROID_RE = re.compile(r"android")
_DESKTOP_RE = re.compile(r"windows|macintosh|mac os x|linux|x11|cros")

# Matched against parameter names only; values are never inspected
PII_PARAM_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"email", r"phone", r"token", r"key", r"password",
        r"secret", r"ssn", r"\bcc\b", r"credit", r"card",
        r"auth", r"session", r"csrf",
    )
]


@dataclass(frozen=True)
class UtmParams:
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_term: Optional[str] = None
    gclid: Optional[str] = None
    fbclid: Optional[str] = None


@dataclass(frozen=True)
class TelemetryMetadata:
    """Everything derived from headers and URL, already length-capped"""

    utm: UtmParams
    referrer: Optional[str]
    accept_language: Optional[str]
    browser_lang: Optional[str]
    user_agent: Optional[str]
    device_type: DeviceType
    path: Optional[str]
    query: Optional[str]
    raw_meta: str


def truncate_field(value: Optional[str], max_len: int = MAX_FIELD_LENGTH) -> Optional[str]:
    """Hard truncation; None and empty strings pass through unchanged"""
    if not value:
        return value
    return value[:max_len] if len(value) > max_len else value


def first_query_values(query: str) -> Dict[str, str]:
    """Query parameters keyed by name; the first occurrence of a repeated name wins"""
    values: Dict[str, str] = {}
    for key, value in QueryParams(query).multi_items():
        values.setdefault(key, value)
    return values


def extract_utm(query_params: Mapping[str, str]) -> UtmParams:

    """Read the seven campaign parameters; absent or empty values become None"""
    values = {param: (query_params.get(param) or None) for param in UTM_PARAMS}
    return UtmParams(**values)


def detect_device_type(user_agent: Optional[str]) -> DeviceType:
    """
    Classify a user agent

    Bot signatures win over platform matches, then iOS, Android and desktop
    operating systems.
    """
    if not user_agent:
        return "Unknown"
    lower = user_agent.lower()

    if _BOT_RE.search(lower):
        return "Bot"
    if _IOS_RE.search(lower):
        return "iOS"
    if _ANDROID_RE.search(lower):
        return "Android"
    if _DESKTOP_RE.search(lower):
        return "Desktop"
    return "Unknown"


def is_pii_param(name: str) -> bool:
    return any(pattern.search(name) for pattern in PII_PARAM_PATTERNS)


def filter_pii_params(params: Mapping[str, str]) -> Dict[str, str]:
    """Drop query parameters whose name looks like PII"""
    return {key: value for key, value in params.items() if not is_pii_param(key)}


def primary_browser_lang(accept_language: Optional[str]) -> Optional[str]:
    """First language tag of an Accept-Language header, without its q-value"""
    if not accept_language:
        return None
    first = accept_language.split(",")[0].split(";")[0].strip()
    return first or None


def build_raw_meta(headers: Mapping[str, str], url: URL) -> str:
    """
    JSON snapshot of whitelisted headers, PII-filtered query and path

    Headers outside HEADER_WHITELIST are never read.
    """
    headers_obj: Dict[str, str] = {}
    for name in HEADER_WHITELIST:
        value = headers.get(name)
        if value:
            headers_obj[name] = value

    # Last value wins for repeated parameters
    query_params = dict(QueryParams(url.query))
    meta = {
        "headers": headers_obj,
        "query": filter_pii_params(query_params),
        "path": url.path,
    }
    return truncate_field(json.dumps(meta, ensure_ascii=False)) or ""


def extract_metadata(headers: Mapping[str, str], url: URL) -> TelemetryMetadata:
    """
    Extract all request metadata

    Args:
        headers: Request headers (case-insensitive mapping)
        url: Request URL

    Returns:
        TelemetryMetadata with every string field length-capped
    """
    user_agent = headers.get("user-agent") or ""
    accept_language = headers.get("accept-language") or None

    return TelemetryMetadata(
        utm=extract_utm(first_query_values(url.query)),
        referrer=truncate_field(headers.get("referer") or None),
        accept_language=truncate_field(accept_language, MAX_LANGUAGE_LENGTH),
        browser_lang=truncate_field(primary_browser_lang(accept_language), MAX_LANGUAGE_LENGTH),
        user_agent=truncate_field(user_agent or None),
        device_type=detect_device_type(user_agent),
        path=truncate_field(url.path or None, MAX_PATH_LENGTH),
        query=truncate_field(f"?{url.query}" if url.query else None, MAX_PATH_LENGTH),
        raw_meta=build_raw_meta(headers, url),
    )
