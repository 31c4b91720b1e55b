"""
Resolve raw coordinates into a LocationContext.

Reverse geocoding (Nominatim) and the timezone lookup are independent; a
failure in either leaves its fields as "unknown" and the other still applies.
"""

import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from mira_assistant import __version__
from mira_assistant.assistant.context import UNKNOWN, LocationContext, TimezoneInfo

logger = logging.getLogger(__name__)

NOMINATIM_URL = "https://nominatim.openstreetmap.org/reverse"
TIMEZONE_URL = "https://timeapi.io/api/TimeZone/coordinate"


class LocationResolver:
    """Look up place names and timezone for a coordinate pair."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": f"mira-assistant/{__version__}"},
        )
        self._owns_client = client is None

    async def resolve(self, lat: float, lng: float) -> LocationContext:
        """Return a LocationContext with whatever could be resolved."""
        location = LocationContext()

        try:
            location.merge(await self._reverse_geocode(lat, lng))
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning("Reverse geocoding failed for %.4f,%.4f: %s", lat, lng, e)

        try:
            location.timezone = await self._lookup_timezone(lat, lng)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning("Timezone lookup failed for %.4f,%.4f: %s", lat, lng, e)

        return location

    async def _reverse_geocode(self, lat: float, lng: float) -> LocationContext:
        response = await self._client.get(
            NOMINATIM_URL,
            params={"format": "json", "lat": lat, "lon": lng, "zoom": 18, "addressdetails": 1},
        )
        response.raise_for_status()
        address = response.json()["address"]
        return LocationContext(
            city=address.get("city") or address.get("town") or address.get("village") or UNKNOWN,
            state=address.get("state") or UNKNOWN,
            country=address.get("country") or UNKNOWN,
        )

    async def _lookup_timezone(self, lat: float, lng: float) -> TimezoneInfo:
        response = await self._client.get(TIMEZONE_URL, params={"latitude": lat, "longitude": lng})
        response.raise_for_status()
        data = response.json()

        name = data["timeZone"]
        offset = data.get("currentUtcOffset", {}).get("seconds", UNKNOWN)
        is_dst = data.get("isDayLightSavingActive", UNKNOWN)
        return TimezoneInfo(
            name=name,
            short_name=short_timezone_name(name),
            full_name=name.replace("_", " "),
            offset_secs=offset,
            is_dst=is_dst,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def short_timezone_name(name: str) -> str:
    """Abbreviation such as "PST" for an IANA zone name, or "unknown"."""
    try:
        return datetime.now(ZoneInfo(name)).tzname() or UNKNOWN
    except (ZoneInfoNotFoundError, ValueError):
        return UNKNOWN
