"""Issues API router (citizen tracking and admin management).

Endpoints:
- GET /issues/mine                 -- issues reported by the logged-in citizen
- GET /issues                      -- all issues (admin), optional status filter
- GET /issues/stats                -- dashboard statistics (admin)
- PUT /issues/{issue_id}/status    -- transition issue status (admin)
- PUT /issues/{issue_id}/priority  -- set issue priority (admin)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies import get_backend_client, get_bearer_token
from app.models.issue import (
    DashboardStatistics,
    Issue,
    IssueListResponse,
    IssueStatus,
    PriorityUpdate,
    StatusUpdate,
)
from app.services.backend_client import BackendClient, BackendError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/issues", tags=["issues"])


def filter_by_status(issues: list[Issue], status: str) -> list[Issue]:
    """Return *issues* with the given status; ``all`` keeps everything."""
    if status == "all":
        return issues
    return [issue for issue in issues if issue.status.value == status]


@router.get("/mine", response_model=IssueListResponse)
async def list_my_issues(
    token: str = Depends(get_bearer_token),
    backend: BackendClient = Depends(get_backend_client),
) -> IssueListResponse:
    try:
        issues = await backend.list_my_issues(token)
    except BackendError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    return IssueListResponse(issues=issues)


@router.get("", response_model=IssueListResponse)
async def list_issues(
    status: str = Query(default="all", description="Issue status or 'all'"),
    token: str = Depends(get_bearer_token),
    backend: BackendClient = Depends(get_backend_client),
) -> IssueListResponse:
    """List all issues for the admin dashboard, filtered locally by status."""
    valid = {"all"} | {s.value for s in IssueStatus}
    if status not in valid:
        raise HTTPException(
            status_code=400,
            detail=f"status must be one of: {', '.join(sorted(valid))}",
        )
    try:
        issues = await backend.list_issues(token)
    except BackendError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    return IssueListResponse(issues=filter_by_status(issues, status), status_filter=status)


@router.get("/stats", response_model=DashboardStatistics)
async def get_statistics(
    token: str = Depends(get_bearer_token),
    backend: BackendClient = Depends(get_backend_client),
) -> DashboardStatistics:
    try:
        return await backend.get_statistics(token)
    except BackendError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)


@router.put("/{issue_id}/status", response_model=Issue)
async def update_status(
    issue_id: str,
    body: StatusUpdate,
    token: str = Depends(get_bearer_token),
    backend: BackendClient = Depends(get_backend_client),
) -> Issue:
    try:
        issue = await backend.update_status(token, issue_id, body.status)
    except BackendError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail=f"Failed to update issue: {exc.message}",
        )
    logger.info("Issue %s moved to %s", issue_id, body.status.value)
    return issue


@router.put("/{issue_id}/priority", response_model=Issue)
async def update_priority(
    issue_id: str,
    body: PriorityUpdate,
    token: str = Depends(get_bearer_token),
    backend: BackendClient = Depends(get_backend_client),
) -> Issue:
    try:
        return await backend.update_issue(
            token, issue_id, {"priority": body.priority.value}
        )
    except BackendError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail=f"Failed to update issue: {exc.message}",
        )
