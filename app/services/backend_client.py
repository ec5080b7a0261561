"""Async client for the civic issue backend REST API.

All calls are bearer-token authenticated except login/signup.  Backend
responses are envelopes of the form ``{"success": bool, "data": ...,
"message": str}``; non-2xx responses and ``success: false`` envelopes are
raised as :class:`BackendError` carrying the backend's message.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from app.models.issue import (
    AuthResponse,
    DashboardStatistics,
    Issue,
    IssueReport,
    IssueStatus,
    LoginRequest,
    SignupRequest,
)

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """The backend rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int = 502) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class BackendClient:
    """Thin typed wrapper over the issue backend endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _auth(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self, method: str, url: str, fallback_message: str, **kwargs: Any
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Backend %s %s failed: %s", method, url, exc)
            raise BackendError(f"{fallback_message}: backend unreachable") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}

        if response.is_error or body.get("success") is False:
            message = body.get("message") or fallback_message
            status_code = response.status_code if response.is_error else 400
            logger.info(
                "Backend %s %s rejected (%d): %s", method, url, status_code, message
            )
            raise BackendError(message, status_code=status_code)

        return body

    @staticmethod
    def _require(body: dict[str, Any], key: str, fallback_message: str) -> Any:
        value = body.get(key)
        if not value:
            logger.warning("Backend response is missing %r", key)
            raise BackendError(f"{fallback_message}: unexpected backend response")
        return value

    @staticmethod
    def _issue(payload: Any, fallback_message: str) -> Issue:
        try:
            return Issue.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Backend returned a malformed issue: %s", exc)
            raise BackendError(
                f"{fallback_message}: unexpected backend response"
            ) from exc

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def login(self, credentials: LoginRequest) -> AuthResponse:
        body = await self._request(
            "POST", "/api/auth/login", "Login failed", json=credentials.model_dump()
        )
        token = self._require(body, "token", "Login failed")
        return AuthResponse(token=token, user=body.get("user") or {})

    async def admin_login(self, credentials: LoginRequest) -> AuthResponse:
        body = await self._request(
            "POST",
            "/api/auth/admin-login",
            "Admin login failed",
            json=credentials.model_dump(),
        )
        token = self._require(body, "token", "Admin login failed")
        return AuthResponse(token=token, user=body.get("user") or {})

    async def signup(self, details: SignupRequest) -> AuthResponse:
        body = await self._request(
            "POST",
            "/api/auth/signup",
            "Signup failed",
            json=details.model_dump(exclude_none=True),
        )
        return AuthResponse(token=body.get("token", ""), user=body.get("user") or {})

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def submit_issue(
        self,
        token: str,
        report: IssueReport,
        image: tuple[str, bytes, str] | None = None,
    ) -> Issue | None:
        """POST a report as multipart form data; *image* is (filename, bytes, type)."""
        data = {
            "issueType": report.issue_type.value,
            "title": report.title,
            "description": report.description,
            "latitude": "" if report.latitude is None else str(report.latitude),
            "longitude": "" if report.longitude is None else str(report.longitude),
            "location": json.dumps(report.location.model_dump(by_alias=True)),
        }
        files = {"image": image} if image is not None else None
        body = await self._request(
            "POST",
            "/api/issues",
            "Failed to report issue",
            data=data,
            files=files,
            headers=self._auth(token),
        )
        payload = body.get("data")
        return self._issue(payload, "Failed to report issue") if payload else None

    async def list_issues(self, token: str) -> list[Issue]:
        body = await self._request(
            "GET", "/api/issues", "Failed to fetch issues", headers=self._auth(token)
        )
        return [
            self._issue(item, "Failed to fetch issues")
            for item in body.get("data") or []
        ]

    async def list_my_issues(self, token: str) -> list[Issue]:
        body = await self._request(
            "GET",
            "/api/issues/user/my-issues",
            "Failed to fetch issues",
            headers=self._auth(token),
        )
        return [
            self._issue(item, "Failed to fetch issues")
            for item in body.get("data") or []
        ]

    async def update_issue(
        self, token: str, issue_id: str, update: dict[str, Any]
    ) -> Issue:
        body = await self._request(
            "PUT",
            f"/api/issues/{issue_id}",
            "Failed to update issue",
            json=update,
            headers=self._auth(token),
        )
        return self._issue(
            self._require(body, "data", "Failed to update issue"),
            "Failed to update issue",
        )

    async def update_status(
        self, token: str, issue_id: str, status: IssueStatus
    ) -> Issue:
        return await self.update_issue(token, issue_id, {"status": status.value})

    async def get_statistics(self, token: str) -> DashboardStatistics:
        body = await self._request(
            "GET",
            "/api/issues/stats/dashboard",
            "Failed to fetch statistics",
            headers=self._auth(token),
        )
        try:
            return DashboardStatistics.model_validate(body.get("data") or {})
        except ValidationError as exc:
            raise BackendError(
                "Failed to fetch statistics: unexpected backend response"
            ) from exc
