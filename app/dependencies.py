"""FastAPI dependency injection for application services."""

from fastapi import Depends, Header, HTTPException, Request

from app.services.backend_client import BackendClient
from app.services.geocoding import ReverseGeocoder
from app.services.predictor import PredictorAdapter
from app.services.taxonomy import KeywordTaxonomy
from app.services.validation_session import SessionManager, ValidationSession


def get_session_manager(request: Request) -> SessionManager:
    """Return the application-wide SessionManager stored on app.state."""
    return request.app.state.session_manager


def get_predictor(request: Request) -> PredictorAdapter:
    """Return the process-wide PredictorAdapter stored on app.state."""
    return request.app.state.predictor


def get_taxonomy(request: Request) -> KeywordTaxonomy:
    """Return the keyword taxonomy stored on app.state."""
    return request.app.state.taxonomy


def get_backend_client(request: Request) -> BackendClient:
    """Return the application-wide BackendClient stored on app.state."""
    return request.app.state.backend_client


def get_geocoder(request: Request) -> ReverseGeocoder:
    """Return the application-wide ReverseGeocoder stored on app.state."""
    return request.app.state.geocoder


def get_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> ValidationSession:
    """Resolve the ``session_id`` path parameter to a live session, or 404."""
    session = manager.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Validation session not found")
    return session


def get_bearer_token(authorization: str | None = Header(default=None)) -> str:
    """Extract the bearer token the browser keeps in local storage."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Please login first")
    token = authorization[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Please login first")
    return token
