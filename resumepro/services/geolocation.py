"""
ResumeCustomizer Pro - IP Geolocation

Looks up city/region/country for login IPs via the ip-api.com JSON API.

- Private, loopback and unparsable addresses resolve to "Local" without
  a network call
- Results are cached in-process (24h by default)
- Any lookup failure degrades to an empty location; login never waits
  longer than the request timeout (5s)
"""

import ipaddress
import time
from typing import Dict, Optional, Tuple

import httpx
from pydantic import BaseModel

from resumepro.config import settings
from resumepro.logging import get_logger

logger = get_logger(__name__)

_FIELDS = "status,message,country,countryCode,regionName,city,timezone,isp,lat,lon"


class GeoLocation(BaseModel):
    """Resolved location of an IP address (all fields optional)."""
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    timezone: Optional[str] = None
    isp: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def location_key(self) -> str:
        """city-region-country key used to recognise known locations."""
        return f"{self.city or ''}-{self.region or ''}-{self.country or ''}"

    @property
    def is_known(self) -> bool:
        return bool(self.country)


LOCAL_NETWORK = GeoLocation(
    city="Local",
    region="Local",
    country="Local Network",
    country_code="LOCAL",
)


def is_local_address(ip: Optional[str]) -> bool:
    """True for private, loopback, link-local and unparsable addresses."""
    if not ip or ip == "unknown":
        return True
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return address.is_private or address.is_loopback or address.is_link_local


class GeoLocationService:
    """
    ip-api.com client with a TTL cache.

    Usage:
        geo = GeoLocationService()
        location = await geo.lookup("8.8.8.8")
    """

    def __init__(
        self,
        enabled: bool = True,
        base_url: str = "http://ip-api.com/json",
        timeout: float = 5.0,
        cache_ttl_seconds: int = 24 * 3600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.enabled = enabled
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache_ttl_seconds = cache_ttl_seconds
        self._transport = transport
        self._cache: Dict[str, Tuple[float, GeoLocation]] = {}

    @classmethod
    def from_settings(cls) -> "GeoLocationService":
        return cls(
            enabled=settings.GEOLOCATION_ENABLED,
            base_url=settings.GEOLOCATION_URL,
            timeout=settings.GEOLOCATION_TIMEOUT_SECONDS,
            cache_ttl_seconds=settings.GEOLOCATION_CACHE_HOURS * 3600,
        )

    def _cached(self, ip: str) -> Optional[GeoLocation]:
        hit = self._cache.get(ip)
        if hit is None:
            return None
        stored_at, location = hit
        if time.monotonic() - stored_at > self.cache_ttl_seconds:
            del self._cache[ip]
            return None
        return location

    async def lookup(self, ip: Optional[str]) -> GeoLocation:
        """
        Resolve an IP address.

        Returns:
            GeoLocation; empty when disabled or the lookup failed
        """
        if is_local_address(ip):
            return LOCAL_NETWORK.model_copy()
        if not self.enabled:
            return GeoLocation()

        cached = self._cached(ip)
        if cached is not None:
            return cached

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/{ip}", params={"fields": _FIELDS})
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("geolocation_lookup_failed", ip=ip, error=str(e))
            return GeoLocation()

        if data.get("status") != "success":
            logger.warning("geolocation_lookup_rejected", ip=ip, message=data.get("message"))
            return GeoLocation()

        location = GeoLocation(
            city=data.get("city"),
            region=data.get("regionName"),
            country=data.get("country"),
            country_code=data.get("countryCode"),
            timezone=data.get("timezone"),
            isp=data.get("isp"),
            latitude=data.get("lat"),
            longitude=data.get("lon"),
        )
        self._cache[ip] = (time.monotonic(), location)
        return location
