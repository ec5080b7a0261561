"""Reverse geocoding (coordinates -> structured address) via Nominatim.

The lookup is non-critical: any HTTP or payload problem falls back to a
placeholder location built from the raw coordinates.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from app.models.issue import Location, ReverseGeocodeResponse

logger = logging.getLogger(__name__)

MAPS_URL = "https://www.google.com/maps?q={lat},{lon}"


def _first(address: dict, *keys: str) -> str:
    for key in keys:
        value = address.get(key)
        if value:
            return str(value)
    return ""


def location_from_address(address: dict) -> Location:
    """Map a Nominatim ``address`` block onto the report's location fields."""
    return Location(
        street_name=_first(address, "road", "pedestrian", "cycleway"),
        area=_first(address, "neighbourhood", "suburb", "city_district"),
        city=_first(address, "city", "town", "village"),
        district=_first(address, "county", "state_district"),
        state=_first(address, "state"),
        municipality=_first(address, "city", "town", "village", "county"),
    )


def fallback_location(latitude: float) -> Location:
    return Location(street_name="GPS Location", city=f"Lat: {latitude:.5f}")


def directions_url(latitude: float, longitude: float) -> str:
    return MAPS_URL.format(lat=latitude, lon=longitude)


def municipality_mailto(
    municipality: str, subject: str, latitude: float | None, longitude: float | None
) -> str:
    """Build a ``mailto:`` link asking the municipality to follow up."""
    body = (
        f"Please contact the municipality ({municipality}) regarding an issue "
        f"at coordinates: {latitude}, {longitude}"
    )
    return (
        f"mailto:?subject={quote('Civic Issue: ' + subject)}&body={quote(body)}"
    )


class ReverseGeocoder:
    """Unauthenticated Nominatim reverse lookup with coordinate fallback."""

    def __init__(
        self,
        url: str,
        user_agent: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json", "User-Agent": user_agent},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def reverse(self, latitude: float, longitude: float) -> ReverseGeocodeResponse:
        try:
            response = await self._client.get(
                self._url,
                params={"format": "jsonv2", "lat": latitude, "lon": longitude},
            )
            response.raise_for_status()
            data = response.json()
            address = data.get("address") if isinstance(data, dict) else None
            if not address or not isinstance(address, dict):
                raise ValueError("No address data")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Reverse geocode failed for (%s, %s): %s", latitude, longitude, exc
            )
            return ReverseGeocodeResponse(
                latitude=latitude,
                longitude=longitude,
                location=fallback_location(latitude),
                resolved=False,
                directions_url=directions_url(latitude, longitude),
                message="Location coordinates obtained (address lookup limited)",
            )

        return ReverseGeocodeResponse(
            latitude=latitude,
            longitude=longitude,
            location=location_from_address(address),
            resolved=True,
            directions_url=directions_url(latitude, longitude),
            message="Location obtained successfully",
        )
