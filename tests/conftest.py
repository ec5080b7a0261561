"""Shared pytest fixtures for CivicSense tests."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from io import BytesIO

import httpx
import pytest
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from PIL import Image

from app.models.validation import Prediction
from app.routers import auth, geocode, issues, sessions
from app.routers import taxonomy as taxonomy_router
from app.services.backend_client import BackendClient
from app.services.classifier import BaseClassifier
from app.services.geocoding import ReverseGeocoder
from app.services.predictor import PredictorAdapter
from app.services.taxonomy import KeywordTaxonomy
from app.services.validation_session import SessionManager

RED = (255, 0, 0)
GREEN = (0, 128, 0)
BLUE = (0, 0, 255)

POTHOLE_PREDICTIONS = [Prediction(label="pothole", probability=0.91)]
CAT_PREDICTIONS = [Prediction(label="cat", probability=0.7)]


# ------------------------------------------------------------------
# Fake classifier and loader
# ------------------------------------------------------------------


class FakeClassifier(BaseClassifier):
    """Returns canned predictions keyed by the colour of the top-left pixel."""

    def __init__(
        self,
        by_color: dict[tuple[int, int, int], list[Prediction]] | None = None,
        default: list[Prediction] | None = None,
        delays: dict[tuple[int, int, int], float] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.by_color = by_color or {}
        self.default = default if default is not None else CAT_PREDICTIONS
        self.delays = delays or {}
        self.error = error
        self.calls: list[tuple[int, int, int]] = []
        self.closed = False
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def predict(self, image: Image.Image, top_k: int) -> list[Prediction]:
        color = image.getpixel((0, 0))
        self.calls.append(color)
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delays.get(color, 0.0))
        finally:
            with self._guard:
                self.active -= 1
        if self.error is not None:
            raise self.error
        return list(self.by_color.get(color, self.default))[:top_k]

    def close(self) -> None:
        self.closed = True


class FakeLoader:
    """Loader callable that counts calls and fails the first *failures* times."""

    def __init__(
        self,
        classifier: BaseClassifier,
        failures: int = 0,
        delay: float = 0.0,
    ) -> None:
        self.classifier = classifier
        self.failures = failures
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def __call__(self) -> BaseClassifier:
        with self._guard:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay)
        finally:
            with self._guard:
                self.active -= 1
        if self.calls <= self.failures:
            raise RuntimeError("model weights could not be fetched")
        return self.classifier


def make_image_bytes(
    color: tuple[int, int, int] = RED, size: tuple[int, int] = (32, 32)
) -> bytes:
    """Encode a solid-colour PNG (lossless, so the pixel colour survives)."""
    buf = BytesIO()
    Image.new("RGB", size, color=color).save(buf, "PNG")
    return buf.getvalue()


# ------------------------------------------------------------------
# Service fixtures
# ------------------------------------------------------------------


@pytest.fixture()
def taxonomy() -> KeywordTaxonomy:
    return KeywordTaxonomy()


@pytest.fixture()
def classifier() -> FakeClassifier:
    return FakeClassifier(by_color={RED: POTHOLE_PREDICTIONS, GREEN: CAT_PREDICTIONS})


@pytest.fixture()
def loader(classifier: FakeClassifier) -> FakeLoader:
    return FakeLoader(classifier)


@pytest.fixture()
def predictor(loader: FakeLoader) -> PredictorAdapter:
    return PredictorAdapter(loader, top_k=5, load_timeout=5.0, classify_timeout=5.0)


# ------------------------------------------------------------------
# Backend mock
# ------------------------------------------------------------------


ISSUES = [
    {
        "_id": "iss-1",
        "issueType": "pothole",
        "title": "Deep pothole",
        "description": "Near the school gate",
        "status": "reported",
        "location": {"streetName": "MG Road", "city": "Kochi"},
        "reportedBy": {"name": "Asha", "email": "asha@example.com"},
        "createdAt": "2026-10-01T09:30:00Z",
    },
    {
        "_id": "iss-2",
        "issueType": "garbage",
        "title": "Overflowing bin",
        "description": "Market corner",
        "status": "resolved",
        "location": {"streetName": "Market Rd", "city": "Kochi"},
        "createdAt": "2026-10-02T10:00:00Z",
        "resolutionDate": "2026-10-05T10:00:00Z",
    },
]


class BackendRecorder:
    """httpx.MockTransport handler emulating the issue backend."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        auth_header = request.headers.get("Authorization", "")

        if path in ("/api/auth/login", "/api/auth/admin-login", "/api/auth/signup"):
            body = json.loads(request.content)
            if body.get("password") != "secret":
                return httpx.Response(
                    401, json={"success": False, "message": "Invalid credentials"}
                )
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "token": "tok-123",
                    "user": {"name": "Asha", "email": body["email"]},
                },
            )

        if auth_header != "Bearer tok-123":
            return httpx.Response(401, json={"success": False, "message": "Not authorized"})

        if path == "/api/issues" and request.method == "POST":
            return httpx.Response(
                201, json={"success": True, "data": {**ISSUES[0], "_id": "iss-new"}}
            )
        if path == "/api/issues" and request.method == "GET":
            return httpx.Response(200, json={"success": True, "data": ISSUES})
        if path == "/api/issues/user/my-issues":
            return httpx.Response(200, json={"success": True, "data": ISSUES[:1]})
        if path == "/api/issues/stats/dashboard":
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "totalIssues": 2,
                        "resolvedIssues": 1,
                        "inProgressIssues": 0,
                        "reportedIssues": 1,
                    },
                },
            )
        if path.startswith("/api/issues/") and request.method == "PUT":
            issue_id = path.rsplit("/", 1)[-1]
            if issue_id == "missing":
                return httpx.Response(
                    404, json={"success": False, "message": "Issue not found"}
                )
            update = json.loads(request.content)
            return httpx.Response(
                200,
                json={"success": True, "data": {**ISSUES[0], "_id": issue_id, **update}},
            )
        return httpx.Response(404, json={"success": False, "message": "Not found"})


@pytest.fixture()
def backend_recorder() -> BackendRecorder:
    return BackendRecorder()


@pytest.fixture()
def backend_client(backend_recorder: BackendRecorder) -> BackendClient:
    return BackendClient(
        "http://backend.test", transport=httpx.MockTransport(backend_recorder)
    )


# ------------------------------------------------------------------
# App fixtures
# ------------------------------------------------------------------


NOMINATIM_OK = {
    "address": {
        "road": "MG Road",
        "suburb": "Ernakulam",
        "city": "Kochi",
        "county": "Ernakulam",
        "state": "Kerala",
    }
}


@pytest.fixture()
def geocoder() -> ReverseGeocoder:
    return ReverseGeocoder(
        "https://geo.test/reverse",
        "civicsense-tests",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=NOMINATIM_OK)),
    )


@pytest.fixture()
def make_app(
    taxonomy: KeywordTaxonomy,
    backend_client: BackendClient,
    geocoder: ReverseGeocoder,
) -> Callable[..., FastAPI]:
    """Factory for a fully wired test app around a given predictor."""

    def _make(predictor: PredictorAdapter, **manager_kwargs) -> FastAPI:
        test_app = FastAPI()
        test_app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        test_app.state.taxonomy = taxonomy
        test_app.state.predictor = predictor
        test_app.state.session_manager = SessionManager(
            predictor, taxonomy, **manager_kwargs
        )
        test_app.state.backend_client = backend_client
        test_app.state.geocoder = geocoder

        test_app.include_router(sessions.router)
        test_app.include_router(issues.router)
        test_app.include_router(auth.router)
        test_app.include_router(geocode.router)
        test_app.include_router(taxonomy_router.router)

        @test_app.get("/health")
        async def health_check() -> dict[str, str]:
            return {"status": "ok"}

        return test_app

    return _make


@pytest.fixture()
async def app_client(
    make_app: Callable[..., FastAPI], predictor: PredictorAdapter
) -> httpx.AsyncClient:
    """Async HTTP client over a test app backed by the fake classifier."""
    test_app = make_app(predictor)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=test_app),
        base_url="http://testserver",
    ) as client:
        yield client
