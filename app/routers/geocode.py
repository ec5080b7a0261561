"""Location helpers API router.

Endpoints:
- GET /geocode/reverse  -- coordinates to structured address (with fallback)
- GET /geocode/contact  -- mailto link for contacting the municipality
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies import get_geocoder
from app.models.issue import ReverseGeocodeResponse
from app.services.geocoding import ReverseGeocoder, municipality_mailto

router = APIRouter(prefix="/geocode", tags=["geocode"])


@router.get("/reverse", response_model=ReverseGeocodeResponse)
async def reverse_geocode(
    lat: float = Query(..., ge=-90.0, le=90.0),
    lon: float = Query(..., ge=-180.0, le=180.0),
    geocoder: ReverseGeocoder = Depends(get_geocoder),
) -> ReverseGeocodeResponse:
    """Resolve browser-supplied coordinates into address fields.

    Never fails on provider errors: the response falls back to a
    placeholder built from the coordinates and ``resolved`` is false.
    """
    return await geocoder.reverse(lat, lon)


@router.get("/contact")
def contact_municipality(
    municipality: str = Query(""),
    subject: str = Query(""),
    lat: float | None = Query(None),
    lon: float | None = Query(None),
) -> dict[str, str]:
    if not municipality:
        raise HTTPException(status_code=400, detail="No municipality to contact")
    return {"mailto": municipality_mailto(municipality, subject, lat, lon)}
