"""
IP address helpers

Extracts the originating client address from proxy headers, cleans it,
classifies it and derives the values that are safe to persist (coarse
prefix, keyed hash, legacy hash). The cleaned address itself never leaves
process memory.
"""

import hashlib
import hmac
import re
from dataclasses import dataclass
from typing import Optional

from tagtrail.config.settings import settings
from tagtrail.logger import get_logger

logger = get_logger(__name__)

UNKNOWN_IP = "unknown"

# Historical salt of the legacy hash. Existing rows were written with it, so
# changing it breaks returning-visitor and dedup lookups.
DEFAULT_LEGACY_SALT = "nfc-tracker-salt-2024"

_IPV4_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
_PORT_RE = re.compile(r"^\d{1,5}$")

# Set once when IP_HASH_SECRET is missing. Concurrent first callers may both
# warn; that is acceptable.
_warned_no_secret = False


@dataclass(frozen=True)
class NormalizedIp:
    """Derived view of a client address"""

    address: str
    version: Optional[int]
    prefix: Optional[str]
    is_private: bool
    hmac_hash: Optional[str]
    legacy_hash: str

    def __repr__(self) -> str:
        # Keep the raw address out of logs and tracebacks
        return (
            f"NormalizedIp(version={self.version!r}, prefix={self.prefix!r}, "
            f"is_private={self.is_private!r})"
        )


def clean_ip(raw: str) -> str:
    """
    Clean a raw address taken from a header

    Order matters: brackets first, then the ::ffff: mapped prefix, then an
    IPv4 port. Bare IPv6 addresses are never port-stripped.

    Args:
        raw: Header value such as "[2001:db8::1]:443" or "1.2.3.4:5678"

    Returns:
        Cleaned address string
    """
    ip = raw.strip()

    if ip.startswith("["):
        bracket_end = ip.find("]")
        if bracket_end > 0:
            ip = ip[1:bracket_end]

    if ip.lower().startswith("::ffff:"):
        ip = ip[7:]

    if "." in ip and "::" not in ip and ":" in ip:
        last_colon = ip.rfind(":")
        possible_port = ip[last_colon + 1:]
        if _PORT_RE.match(possible_port):
            ip = ip[:last_colon]

    return ip


def ip_version(ip: str) -> Optional[int]:
    """Syntactic version detection: 4, 6 or None"""
    if ":" in ip:
        return 6
    if _IPV4_RE.match(ip):
        return 4
    return None


def ip_prefix(ip: str) -> Optional[str]:
    """
    Coarse network prefix

    IPv4 keeps the /24 (a.b.c.0). IPv6 keeps the first three colon groups
    followed by "::", roughly a /48 without expanding "::" shorthand.
    """
    version = ip_version(ip)
    if version == 4:
        parts = ip.split(".")
        if len(parts) == 4:
            return f"{parts[0]}.{parts[1]}.{parts[2]}.0"
        return None
    if version == 6:
        groups = ip.split(":")
        first3 = [group or "0" for group in groups[:3]]
        return f"{':'.join(first3)}::"
    return None


def _second_octet(ip: str) -> Optional[int]:
    parts = ip.split(".")
    if len(parts) < 2:
        return None
    try:
        return int(parts[1])
    except ValueError:
        return None


def is_private_ip(ip: str) -> bool:
    """
    Whether the address is private, loopback, link-local, CGNAT or ULA
    """
    lower = ip.lower()

    if lower.startswith("127.") or lower == "::1":
        return True
    if lower.startswith("10.") or lower.startswith("192.168."):
        return True
    if lower.startswith("172."):
        second = _second_octet(lower)
        if second is not None and 16 <= second <= 31:
            return True
    if lower.startswith("169.254."):
        return True
    # CGNAT 100.64.0.0/10
    if lower.startswith("100."):
        second = _second_octet(lower)
        if second is not None and 64 <= second <= 127:
            return True
    # IPv6 ULA fc00::/7 and link-local fe80::/10
    if lower.startswith("fc") or lower.startswith("fd"):
        return True
    if lower.startswith("fe80"):
        return True
    return False


def extract_clean_ip(
    forwarded: Optional[str],
    real_ip: Optional[str],
    platform_ip: Optional[str],
) -> str:
    """
    Resolve the client address from proxy headers

    Priority:
    1. Edge platform header (cf-connecting-ip) - trusted outright
    2. First public entry of the x-forwarded-for chain, falling back to the
       first entry when every hop is private
    3. x-real-ip

    Args:
        forwarded: x-forwarded-for header value
        real_ip: x-real-ip header value
        platform_ip: cf-connecting-ip header value

    Returns:
        Cleaned address, or "unknown"
    """
    raw = UNKNOWN_IP
    if platform_ip:
        raw = platform_ip
    elif forwarded:
        parts = [part.strip() for part in forwarded.split(",")]
        for part in parts:
            cleaned = clean_ip(part)
            if cleaned and cleaned != UNKNOWN_IP and not is_private_ip(cleaned):
                raw = cleaned
                break
        if raw == UNKNOWN_IP and parts[0]:
            raw = parts[0]
    elif real_ip and real_ip != UNKNOWN_IP:
        raw = real_ip
    return clean_ip(raw)


def hmac_ip_hash(ip: str, secret: Optional[str] = None) -> Optional[str]:
    """
    HMAC-SHA256 of the address keyed with IP_HASH_SECRET

    A missing secret degrades to None with a single warning per process
    instead of raising.
    """
    global _warned_no_secret

    key = secret if secret is not None else settings.ip_hash_secret
    if not key:
        if not _warned_no_secret:
            logger.warning(
                "IP_HASH_SECRET not set - ip_hmac will be null. Set it in .env for production."
            )
            _warned_no_secret = True
        return None
    return hmac.new(key.encode(), ip.encode(), hashlib.sha256).hexdigest()


def legacy_ip_hash(ip: str, salt: Optional[str] = None) -> str:
    """
    Legacy salted SHA-256 of the address

    Stored in the ip_hash column and used by dedup and returning-visitor
    lookups, so it must stay stable across deployments.
    """
    salt_value = salt if salt is not None else (settings.ip_hash_salt or DEFAULT_LEGACY_SALT)
    return hashlib.sha256(f"{ip}{salt_value}".encode()).hexdigest()


def normalize_ip(
    address: str,
    secret: Optional[str] = None,
    salt: Optional[str] = None,
) -> NormalizedIp:
    """Build the NormalizedIp for an already cleaned address"""
    return NormalizedIp(
        address=address,
        version=ip_version(address),
        prefix=ip_prefix(address),
        is_private=is_private_ip(address),
        hmac_hash=hmac_ip_hash(address, secret),
        legacy_hash=legacy_ip_hash(address, salt),
    )
