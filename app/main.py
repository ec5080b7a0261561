"""CivicSense FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import Settings, get_settings
from app.services.backend_client import BackendClient
from app.services.classifier import TransformersClassifier
from app.services.geocoding import ReverseGeocoder
from app.services.predictor import PredictorAdapter
from app.services.taxonomy import KeywordTaxonomy
from app.services.validation_session import SessionManager

logger = logging.getLogger(__name__)


def build_predictor(settings: Settings) -> PredictorAdapter:
    """Create the process-wide predictor (weights are loaded lazily)."""
    loader = partial(
        TransformersClassifier,
        settings.classifier_model,
        settings.classifier_device,
    )
    return PredictorAdapter(
        loader,
        top_k=settings.classifier_top_k,
        load_timeout=settings.model_load_timeout,
        classify_timeout=settings.classify_timeout,
    )


def build_taxonomy(settings: Settings) -> KeywordTaxonomy:
    if settings.taxonomy_path is not None:
        return KeywordTaxonomy.from_file(settings.taxonomy_path)
    return KeywordTaxonomy()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown.

    On startup:
    - Configure logging from settings.
    - Create the keyword taxonomy and the shared PredictorAdapter.
      The classifier itself loads on the first validation session.
    - Create SessionManager, BackendClient, ReverseGeocoder.
    - Store all services on app.state for dependency injection.

    On shutdown:
    - Discard live sessions, release the classifier, close HTTP clients.
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    taxonomy = build_taxonomy(settings)
    app.state.taxonomy = taxonomy

    predictor = build_predictor(settings)
    app.state.predictor = predictor

    session_manager = SessionManager(
        predictor,
        taxonomy,
        dedupe_matched_labels=settings.dedupe_matched_labels,
        block_when_model_unavailable=settings.block_when_model_unavailable,
        session_ttl=settings.session_ttl,
    )
    app.state.session_manager = session_manager

    backend_client = BackendClient(settings.backend_url, settings.backend_timeout)
    app.state.backend_client = backend_client

    geocoder = ReverseGeocoder(
        settings.geocoder_url,
        settings.geocoder_user_agent,
        settings.geocoder_timeout,
    )
    app.state.geocoder = geocoder

    logger.info(
        "CivicSense started (classifier=%s, backend=%s)",
        settings.classifier_model,
        settings.backend_url,
    )

    yield

    # Shutdown
    session_manager.shutdown()
    predictor.release()
    await backend_client.close()
    await geocoder.close()


app = FastAPI(
    title="CivicSense",
    description="Citizen issue reporting with on-device image plausibility checks",
    version="0.1.0",
    lifespan=lifespan,
)

# In Docker with a reverse proxy (same origin): no CORS needed.
# In local dev: allow the React dev server origin.
settings = get_settings()
if not settings.behind_proxy:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Router includes
from app.routers import auth, geocode, issues, sessions, taxonomy  # noqa: E402

app.include_router(sessions.router)
app.include_router(issues.router)
app.include_router(auth.router)
app.include_router(geocode.router)
app.include_router(taxonomy.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "ok"}
