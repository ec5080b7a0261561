"""Tests for the validation sessions API and report submission.

The app under test is wired to the fake classifier (red images look like
potholes, green ones like a cat) and to a mock issue backend.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

import httpx
from fastapi import FastAPI

from app.services.predictor import PredictorAdapter
from conftest import (
    GREEN,
    RED,
    BackendRecorder,
    FakeClassifier,
    FakeLoader,
    make_image_bytes,
)

AUTH = {"Authorization": "Bearer tok-123"}

REPORT_FORM = {
    "title": "Deep pothole",
    "description": "Near the school gate",
    "latitude": "9.9312",
    "longitude": "76.2673",
    "location": json.dumps({"streetName": "MG Road", "city": "Kochi"}),
}


async def _ready_session(client: httpx.AsyncClient) -> str:
    """Create a session and wait until its classifier readiness settles."""
    response = await client.post("/sessions")
    assert response.status_code == 201
    session_id = response.json()["session_id"]
    for _ in range(100):
        status = (await client.get(f"/sessions/{session_id}")).json()
        if status["loading_state"] == "ready":
            return session_id
        await asyncio.sleep(0.01)
    raise AssertionError("session never became ready")


async def _attach(
    client: httpx.AsyncClient, session_id: str, data: bytes
) -> httpx.Response:
    return await client.post(
        f"/sessions/{session_id}/image",
        files={"image": ("photo.png", data, "image/png")},
    )


# ------------------------------------------------------------------ #
# Session lifecycle
# ------------------------------------------------------------------ #


class TestSessionLifecycle:
    """Mount, inspect and unmount validation sessions."""

    async def test_create_session_starts_loading(
        self, app_client: httpx.AsyncClient
    ) -> None:
        """POST /sessions returns 201 and the session is loading or ready."""
        response = await app_client.post("/sessions")
        assert response.status_code == 201
        body = response.json()
        assert body["loading_state"] in ("model_loading", "ready")
        assert body["validation_state"] == "not_validating"
        assert body["model_available"] is True
        assert body["has_image"] is False

    async def test_unknown_session_is_404(self, app_client: httpx.AsyncClient) -> None:
        response = await app_client.get("/sessions/nope")
        assert response.status_code == 404
        assert response.json()["detail"] == "Validation session not found"

    async def test_delete_session(self, app_client: httpx.AsyncClient) -> None:
        """DELETE /sessions/{id} unmounts once; afterwards it is gone."""
        session_id = await _ready_session(app_client)

        assert (await app_client.delete(f"/sessions/{session_id}")).status_code == 204
        assert (await app_client.get(f"/sessions/{session_id}")).status_code == 404
        assert (await app_client.delete(f"/sessions/{session_id}")).status_code == 404

    async def test_events_stream_until_ready(
        self, app_client: httpx.AsyncClient
    ) -> None:
        """GET /sessions/{id}/events streams status events and ends when settled."""
        response = await app_client.post("/sessions")
        session_id = response.json()["session_id"]

        response = await app_client.get(f"/sessions/{session_id}/events")
        assert response.status_code == 200
        assert "event: status" in response.text

        payloads = [
            json.loads(line[len("data:"):].strip())
            for line in response.text.splitlines()
            if line.startswith("data:")
        ]
        assert payloads
        assert payloads[-1]["session_id"] == session_id
        assert payloads[-1]["loading_state"] == "ready"


# ------------------------------------------------------------------ #
# Category and image validation
# ------------------------------------------------------------------ #


class TestValidationAPI:
    """Category selection and image upload drive validation."""

    async def test_matching_upload_passes(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _ready_session(app_client)
        response = await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "pothole"}
        )
        assert response.status_code == 200
        assert response.json()["category"] == "pothole"

        response = await _attach(app_client, session_id, make_image_bytes(RED))
        assert response.status_code == 200
        body = response.json()
        assert body["validation_state"] == "passed"
        assert body["has_image"] is True
        assert body["match_result"]["matched_labels"][0]["display"] == "pothole (91.0%)"
        assert body["message"] == "Image matches issue type"

    async def test_mismatching_upload_fails(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _ready_session(app_client)
        await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "pothole"}
        )

        body = (await _attach(app_client, session_id, make_image_bytes(GREEN))).json()

        assert body["validation_state"] == "failed"
        assert body["match_result"]["is_valid"] is False
        assert [p["display"] for p in body["match_result"]["top_predictions"]] == [
            "cat (70.0%)"
        ]

    async def test_undecodable_upload_is_skipped(
        self, app_client: httpx.AsyncClient
    ) -> None:
        """A file that is not an image never fails the request."""
        session_id = await _ready_session(app_client)
        await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "garbage"}
        )

        response = await _attach(app_client, session_id, b"this is not a jpeg")

        assert response.status_code == 200
        body = response.json()
        assert body["validation_state"] == "skipped"
        assert body["match_result"]["is_valid"] is True

    async def test_legacy_category_key_accepted(
        self, app_client: httpx.AsyncClient
    ) -> None:
        session_id = await _ready_session(app_client)
        response = await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "drainageissue"}
        )
        assert response.status_code == 200
        assert response.json()["category"] == "drainage_issue"

    async def test_unknown_category_rejected(
        self, app_client: httpx.AsyncClient
    ) -> None:
        session_id = await _ready_session(app_client)
        response = await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "volcano"}
        )
        assert response.status_code == 422

    async def test_detach_image_clears_result(
        self, app_client: httpx.AsyncClient
    ) -> None:
        session_id = await _ready_session(app_client)
        await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "pothole"}
        )
        await _attach(app_client, session_id, make_image_bytes(GREEN))

        body = (await app_client.delete(f"/sessions/{session_id}/image")).json()

        assert body["validation_state"] == "not_validating"
        assert body["match_result"] is None
        assert body["has_image"] is False


# ------------------------------------------------------------------ #
# Submission gate
# ------------------------------------------------------------------ #


class TestSubmission:
    """POST /sessions/{id}/submit gates the report, then forwards it."""

    async def test_valid_report_is_forwarded(
        self,
        app_client: httpx.AsyncClient,
        backend_recorder: BackendRecorder,
    ) -> None:
        session_id = await _ready_session(app_client)
        await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "pothole"}
        )
        image = make_image_bytes(RED)
        await _attach(app_client, session_id, image)

        response = await app_client.post(
            f"/sessions/{session_id}/submit", data=REPORT_FORM, headers=AUTH
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Issue reported successfully!"
        assert body["issue"]["_id"] == "iss-new"

        [sent] = backend_recorder.requests
        assert sent.method == "POST"
        assert sent.url.path == "/api/issues"
        assert sent.headers["Authorization"] == "Bearer tok-123"
        assert b'name="issueType"' in sent.content
        assert b"pothole" in sent.content
        assert b'"streetName": "MG Road"' in sent.content
        assert image in sent.content

        # Submitted sessions are discarded
        assert (await app_client.get(f"/sessions/{session_id}")).status_code == 404

    async def test_failed_validation_blocks_without_backend_call(
        self,
        app_client: httpx.AsyncClient,
        backend_recorder: BackendRecorder,
    ) -> None:
        session_id = await _ready_session(app_client)
        await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "pothole"}
        )
        await _attach(app_client, session_id, make_image_bytes(GREEN))

        response = await app_client.post(
            f"/sessions/{session_id}/submit", data=REPORT_FORM, headers=AUTH
        )

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["reason"] == "validation_failed"
        assert detail["message"].startswith("AI validation failed.")
        assert detail["top_predictions"] == ["cat (70.0%)"]
        assert backend_recorder.requests == []

    async def test_other_category_submits_without_validation(
        self,
        app_client: httpx.AsyncClient,
        backend_recorder: BackendRecorder,
    ) -> None:
        session_id = await _ready_session(app_client)
        await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "other"}
        )
        await _attach(app_client, session_id, make_image_bytes(GREEN))

        response = await app_client.post(
            f"/sessions/{session_id}/submit", data=REPORT_FORM, headers=AUTH
        )

        assert response.status_code == 200
        assert len(backend_recorder.requests) == 1

    async def test_submit_requires_login(self, app_client: httpx.AsyncClient) -> None:
        session_id = await _ready_session(app_client)
        response = await app_client.post(
            f"/sessions/{session_id}/submit", data=REPORT_FORM
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Please login first"

    async def test_submit_requires_category(
        self,
        app_client: httpx.AsyncClient,
        backend_recorder: BackendRecorder,
    ) -> None:
        session_id = await _ready_session(app_client)
        response = await app_client.post(
            f"/sessions/{session_id}/submit", data=REPORT_FORM, headers=AUTH
        )
        assert response.status_code == 422
        assert response.json()["detail"] == "Please select an issue type"
        assert backend_recorder.requests == []

    async def test_submit_rejects_bad_coordinates(
        self, app_client: httpx.AsyncClient
    ) -> None:
        session_id = await _ready_session(app_client)
        await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "other"}
        )
        response = await app_client.post(
            f"/sessions/{session_id}/submit",
            data={**REPORT_FORM, "latitude": "north"},
            headers=AUTH,
        )
        assert response.status_code == 422
        assert response.json()["detail"] == "latitude must be a number"

    async def test_backend_rejection_is_propagated(
        self, app_client: httpx.AsyncClient
    ) -> None:
        session_id = await _ready_session(app_client)
        await app_client.put(
            f"/sessions/{session_id}/category", json={"category": "other"}
        )
        response = await app_client.post(
            f"/sessions/{session_id}/submit",
            data=REPORT_FORM,
            headers={"Authorization": "Bearer expired"},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authorized"
        # Session survives a failed submission so the citizen can retry
        assert (await app_client.get(f"/sessions/{session_id}")).status_code == 200

    async def test_submit_blocked_while_validating(
        self,
        make_app: Callable[..., FastAPI],
        backend_recorder: BackendRecorder,
    ) -> None:
        classifier = FakeClassifier(by_color={RED: []}, delays={RED: 0.3})
        predictor = PredictorAdapter(FakeLoader(classifier), classify_timeout=5.0)
        transport = httpx.ASGITransport(app=make_app(predictor))
        async with httpx.AsyncClient(
            transport=transport, base_url="http://testserver"
        ) as client:
            session_id = await _ready_session(client)
            await client.put(
                f"/sessions/{session_id}/category", json={"category": "pothole"}
            )
            upload = asyncio.create_task(
                _attach(client, session_id, make_image_bytes(RED))
            )
            await asyncio.sleep(0.1)

            response = await client.post(
                f"/sessions/{session_id}/submit", data=REPORT_FORM, headers=AUTH
            )
            await upload

        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "validating"
        assert backend_recorder.requests == []

    async def test_unavailable_model_degrades_to_submittable(
        self,
        make_app: Callable[..., FastAPI],
        backend_recorder: BackendRecorder,
    ) -> None:
        loader = FakeLoader(FakeClassifier(), failures=100)
        predictor = PredictorAdapter(loader, load_timeout=5.0)
        transport = httpx.ASGITransport(app=make_app(predictor))
        async with httpx.AsyncClient(
            transport=transport, base_url="http://testserver"
        ) as client:
            session_id = await _ready_session(client)
            status = (await client.get(f"/sessions/{session_id}")).json()
            assert status["model_available"] is False
            assert "validation will be skipped" in status["message"]

            await client.put(
                f"/sessions/{session_id}/category", json={"category": "pothole"}
            )
            body = (await _attach(client, session_id, make_image_bytes(GREEN))).json()
            assert body["validation_state"] == "skipped"

            response = await client.post(
                f"/sessions/{session_id}/submit", data=REPORT_FORM, headers=AUTH
            )

        assert response.status_code == 200
        assert len(backend_recorder.requests) == 1


# ------------------------------------------------------------------ #
# Taxonomy
# ------------------------------------------------------------------ #


async def test_taxonomy_endpoint(app_client: httpx.AsyncClient) -> None:
    """GET /taxonomy exposes the keyword phrases per category."""
    response = await app_client.get("/taxonomy")
    assert response.status_code == 200
    keywords = response.json()["keywords"]
    assert "pothole" in keywords["pothole"]
    assert keywords["other"] == []
