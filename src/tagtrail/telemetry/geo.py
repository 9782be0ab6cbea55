"""
Best-effort IP geolocation

One lookup per event against an ip-api.com compatible endpoint. Never raises
and never retries: any failure yields an all-null location.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import httpx

from tagtrail.config.settings import settings
from tagtrail.logger import get_logger
from tagtrail.telemetry.ip import UNKNOWN_IP, is_private_ip

logger = get_logger(__name__)


@dataclass(frozen=True)
class GeoLocation:
    city: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None


EMPTY_GEO = GeoLocation()


class GeoResolver:
    """Reverse lookup of city/country/region bounded by a hard timeout"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        enabled: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.geo_lookup_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.geo_timeout_seconds
        self.enabled = enabled if enabled is not None else settings.geo_enabled
        self.transport = transport

    async def resolve(self, ip: Optional[str]) -> GeoLocation:
        """
        Resolve a public address

        Args:
            ip: Cleaned client address

        Returns:
            GeoLocation, all-null for private/unknown addresses or on failure
        """
        if not self.enabled or not ip or ip == UNKNOWN_IP or is_private_ip(ip):
            return EMPTY_GEO

        try:
            return await asyncio.wait_for(self._lookup(ip), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Geo lookup timed out after {self.timeout}s")
        except Exception as e:
            logger.debug(f"Geo lookup failed: {e}")
        return EMPTY_GEO

    async def _lookup(self, ip: str) -> GeoLocation:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.get(
                f"{self.base_url}/{ip}",
                params={"fields": "status,city,country,regionName"},
            )

        if r.status_code != 200:
            return EMPTY_GEO
        data = r.json()
        if not isinstance(data, dict) or data.get("status") == "fail":
            return EMPTY_GEO

        return GeoLocation(
            city=data.get("city") or None,
            country=data.get("country") or None,
            region=data.get("regionName") or None,
        )
