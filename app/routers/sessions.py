"""Validation sessions API router (one session per report being composed).

Endpoints:
- POST   /sessions                   -- mount a reporting form, start model loading
- GET    /sessions/{id}              -- current loading/validation state
- GET    /sessions/{id}/events       -- SSE stream of state until it settles
- PUT    /sessions/{id}/category     -- select the issue category
- POST   /sessions/{id}/image        -- attach an uploaded or captured photo
- DELETE /sessions/{id}/image        -- detach the photo
- POST   /sessions/{id}/submit       -- gate, then forward the report to the backend
- DELETE /sessions/{id}              -- unmount the form
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from app.dependencies import (
    get_backend_client,
    get_bearer_token,
    get_session,
    get_session_manager,
)
from app.models.issue import IssueReport, Location, SubmissionResponse
from app.models.validation import (
    CategoryUpdate,
    LoadingState,
    ValidationState,
    ValidationStatus,
)
from app.services.backend_client import BackendClient, BackendError
from app.services.validation_session import (
    ImageUpload,
    SessionManager,
    SubmissionBlocked,
    ValidationSession,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])

EVENT_INTERVAL = 0.5


def _optional_float(value: str, field: str) -> float | None:
    if value is None or value.strip() == "":
        return None
    try:
        return float(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"{field} must be a number")


@router.post("", response_model=ValidationStatus, status_code=201)
async def create_session(
    manager: SessionManager = Depends(get_session_manager),
) -> ValidationStatus:
    """Mount a reporting form.  Classifier loading starts in the background."""
    session = manager.create()
    # Let the session enter model_loading (or ready, if already loaded)
    await asyncio.sleep(0)
    return session.status()


@router.get("/{session_id}", response_model=ValidationStatus)
async def get_session_status(
    session: ValidationSession = Depends(get_session),
) -> ValidationStatus:
    return session.status()


@router.get("/{session_id}/events")
async def session_events(
    session: ValidationSession = Depends(get_session),
) -> EventSourceResponse:
    """Stream session state via Server-Sent Events.

    Yields a ``status`` event every 0.5s until the model is ready and no
    validation is in progress, then closes the connection.
    """

    async def event_generator():
        while True:
            status = session.status()
            yield {"event": "status", "data": json.dumps(status.model_dump(mode="json"))}
            if session.closed or (
                status.loading_state is LoadingState.READY
                and status.validation_state is not ValidationState.VALIDATING
            ):
                break
            await asyncio.sleep(EVENT_INTERVAL)

    return EventSourceResponse(event_generator())


@router.put("/{session_id}/category", response_model=ValidationStatus)
async def select_category(
    body: CategoryUpdate,
    session: ValidationSession = Depends(get_session),
) -> ValidationStatus:
    """Select the issue category; an attached image is re-validated."""
    return await session.select_category(body.category)


@router.post("/{session_id}/image", response_model=ValidationStatus)
async def attach_image(
    image: UploadFile = File(...),
    session: ValidationSession = Depends(get_session),
) -> ValidationStatus:
    """Attach a photo (file upload or camera capture) and validate it.

    Returns once validation has finished.  An undecodable image does not
    fail the request; the session records a skipped validation instead.
    """
    data = await image.read()
    upload = ImageUpload(
        data=data,
        filename=image.filename or "image.jpg",
        content_type=image.content_type or "image/jpeg",
    )
    return await session.select_image(upload)


@router.delete("/{session_id}/image", response_model=ValidationStatus)
async def detach_image(
    session: ValidationSession = Depends(get_session),
) -> ValidationStatus:
    return session.clear_image()


@router.post("/{session_id}/submit", response_model=SubmissionResponse)
async def submit_report(
    title: str = Form(...),
    description: str = Form(...),
    latitude: str = Form(""),
    longitude: str = Form(""),
    location: str = Form("{}"),
    token: str = Depends(get_bearer_token),
    session: ValidationSession = Depends(get_session),
    manager: SessionManager = Depends(get_session_manager),
    backend: BackendClient = Depends(get_backend_client),
) -> SubmissionResponse:
    """Submit the report if the validation gate allows it.

    Refused locally (409, no backend call) while the model is loading,
    while validation is running, or when the image failed validation.
    The validated image held by the session is the one that is sent.
    """
    try:
        session.check_submission()
    except SubmissionBlocked as exc:
        detail: dict = {"reason": exc.reason.value, "message": exc.message}
        if exc.match_result is not None and exc.match_result.top_predictions:
            detail["top_predictions"] = [
                p.display for p in exc.match_result.top_predictions
            ]
        raise HTTPException(status_code=409, detail=detail)

    if session.category is None:
        raise HTTPException(status_code=422, detail="Please select an issue type")

    try:
        report = IssueReport(
            issue_type=session.category,
            title=title,
            description=description,
            latitude=_optional_float(latitude, "latitude"),
            longitude=_optional_float(longitude, "longitude"),
            location=Location.model_validate_json(location or "{}"),
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=exc.errors(include_url=False, include_context=False),
        )

    image = session.image
    image_part = (
        (image.filename, image.data, image.content_type) if image is not None else None
    )

    try:
        issue = await backend.submit_issue(token, report, image_part)
    except BackendError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)

    manager.discard(session.session_id)
    logger.info("Report submitted (%s)", report.issue_type.value)
    return SubmissionResponse(
        success=True, message="Issue reported successfully!", issue=issue
    )


@router.delete("/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> Response:
    """Unmount the reporting form and discard its validation state."""
    if not manager.discard(session_id):
        raise HTTPException(status_code=404, detail="Validation session not found")
    return Response(status_code=204)
