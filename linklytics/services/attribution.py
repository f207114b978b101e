"""
Click attribution.

Derives device, browser and OS from a user agent and looks up an
approximate location for an IP address.
"""
import asyncio
import ipaddress
from dataclasses import dataclass, asdict

import httpx

from linklytics.config import settings
from linklytics.logging_config import get_logger
from linklytics.routes.metrics import track_geo_lookup_failed

log = get_logger(component="attribution")


@dataclass(frozen=True)
class DeviceInfo:
    device: str
    browser: str
    os: str


@dataclass(frozen=True)
class GeoLocation:
    """Location for an IP; every field is None when the lookup failed."""
    country: str | None = None
    city: str | None = None
    region: str | None = None
    latitude: str | None = None
    longitude: str | None = None

    @classmethod
    def absent(cls) -> "GeoLocation":
        return cls()

    @property
    def found(self) -> bool:
        return any(value is not None for value in asdict(self).values())

    def as_dict(self) -> dict:
        return asdict(self)


def _detect_device(ua: str) -> str:
    if "tablet" in ua or "ipad" in ua:
        return "tablet"
    if any(token in ua for token in ("mobile", "android", "iphone", "ipod")):
        return "mobile"
    return "desktop"


def _detect_browser(ua: str) -> str:
    if "firefox" in ua:
        return "Firefox"
    # Chromium Edge also advertises "chrome"
    if "edg" in ua:
        return "Edge"
    if "chrome" in ua:
        return "Chrome"
    if "safari" in ua:
        return "Safari"
    if "opera" in ua or "opr" in ua:
        return "Opera"
    return "unknown"


def _detect_os(ua: str) -> str:
    if "windows" in ua:
        return "Windows"
    if "mac" in ua:
        return "macOS"
    if "linux" in ua:
        return "Linux"
    if "android" in ua:
        return "Android"
    if "ios" in ua or "iphone" in ua or "ipad" in ua:
        return "iOS"
    return "unknown"


def extract_device_info(user_agent: str | None) -> DeviceInfo:
    """Classify a user-agent string by case-insensitive substring match."""
    ua = (user_agent or "").lower()
    return DeviceInfo(
        device=_detect_device(ua),
        browser=_detect_browser(ua),
        os=_detect_os(ua),
    )


def _normalize_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def client_ip(headers, peer: str | None = None) -> str:
    """
    First X-Forwarded-For hop, falling back to the socket peer.

    Only a literal IPv4 or IPv6 address is returned, normalized; otherwise
    an empty string.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = _normalize_ip(forwarded.split(",")[0])
        if first:
            return first
    return _normalize_ip(peer) or ""


def _coordinate(value) -> str | None:
    if value is None:
        return None
    return str(value)


async def _fetch_geo(ip_address: str, client: httpx.AsyncClient) -> GeoLocation:
    url = settings.GEO_LOOKUP_URL.format(ip=ip_address)
    try:
        # Per-phase httpx timeouts do not cap a slowly trickled body
        response = await asyncio.wait_for(
            client.get(url, timeout=settings.GEO_LOOKUP_TIMEOUT),
            settings.GEO_LOOKUP_TIMEOUT
        )
    except Exception as e:
        log.warning("geo_lookup_failed", ip=ip_address, error=str(e) or type(e).__name__)
        track_geo_lookup_failed("transport")
        return GeoLocation.absent()

    if response.status_code < 200 or response.status_code >= 300:
        log.warning("geo_lookup_failed", ip=ip_address, status_code=response.status_code)
        track_geo_lookup_failed("http_status")
        return GeoLocation.absent()

    try:
        data = response.json()
    except ValueError:
        log.warning("geo_lookup_failed", ip=ip_address, error="invalid json")
        track_geo_lookup_failed("invalid_body")
        return GeoLocation.absent()

    if not isinstance(data, dict) or data.get("status") != "success":
        track_geo_lookup_failed("lookup_status")
        return GeoLocation.absent()

    return GeoLocation(
        country=data.get("country"),
        city=data.get("city"),
        region=data.get("regionName"),
        latitude=_coordinate(data.get("lat")),
        longitude=_coordinate(data.get("lon")),
    )


async def resolve_geo(ip_address: str | None, client: httpx.AsyncClient | None = None) -> GeoLocation:
    """
    Best-effort geo lookup for an IP address.

    Single attempt bounded by GEO_LOOKUP_TIMEOUT. Never raises: any failure
    returns GeoLocation.absent().
    """
    ip_address = _normalize_ip(ip_address)
    if not ip_address or not settings.GEO_LOOKUP_ENABLED:
        return GeoLocation.absent()

    if client is not None:
        return await _fetch_geo(ip_address, client)

    async with httpx.AsyncClient() as own_client:
        return await _fetch_geo(ip_address, own_client)
