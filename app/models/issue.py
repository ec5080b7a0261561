"""Pydantic models for civic issues, statistics and authentication.

Wire payloads of the issue backend use camelCase; the models accept both
camelCase (by alias) and snake_case field names.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Category(str, Enum):
    """Civic issue type selected by the citizen."""

    POTHOLE = "pothole"
    GARBAGE = "garbage"
    STREETLIGHT = "streetlight"
    DRAINAGE_ISSUE = "drainage_issue"
    DAMAGED_ROAD = "damaged_road"
    OTHER = "other"

    @classmethod
    def _missing_(cls, value: object) -> Category | None:
        # Older reporting forms sent "drainageissue" and mixed case keys
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_")
            if normalized == "drainageissue":
                return cls.DRAINAGE_ISSUE
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class IssueStatus(str, Enum):
    """Lifecycle status an administrator can assign to an issue."""

    REPORTED = "reported"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class IssuePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Location(_CamelModel):
    """Structured address of a reported issue."""

    street_name: str = ""
    area: str = ""
    city: str = ""
    district: str = ""
    state: str = ""
    municipality: str = ""


class IssueReport(_CamelModel):
    """Form fields of a citizen report (image travels separately)."""

    issue_type: Category
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    latitude: float | None = None
    longitude: float | None = None
    location: Location = Field(default_factory=Location)


class Reporter(_CamelModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class Issue(_CamelModel):
    """Issue record as returned by the backend."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    id: str = Field(alias="_id")
    issue_type: str
    title: str = ""
    description: str = ""
    status: IssueStatus = IssueStatus.REPORTED
    priority: str | None = None
    location: Location = Field(default_factory=Location)
    latitude: float | None = None
    longitude: float | None = None
    image: str | None = None
    comments: str | None = None
    reported_by: Reporter | None = None
    created_at: datetime | None = None
    resolution_date: datetime | None = None


class IssueListResponse(BaseModel):
    """List of issues, optionally filtered by status."""

    issues: list[Issue]
    status_filter: str = "all"


class StatusUpdate(BaseModel):
    """Request body for PUT /issues/{id}/status."""

    status: IssueStatus


class PriorityUpdate(BaseModel):
    """Request body for PUT /issues/{id}/priority."""

    priority: IssuePriority


class DashboardStatistics(_CamelModel):
    """Aggregated counts shown on the admin dashboard."""

    total_issues: int = 0
    resolved_issues: int = 0
    in_progress_issues: int = 0
    reported_issues: int = 0
    rejected_issues: int = 0


class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    name: str
    email: str
    password: str
    phone: str | None = None


class AuthResponse(BaseModel):
    """Bearer token and user profile returned by a successful login."""

    token: str
    user: dict[str, Any] = Field(default_factory=dict)


class SubmissionResponse(BaseModel):
    """Result of forwarding a validated report to the backend."""

    success: bool
    message: str
    issue: Issue | None = None


class ReverseGeocodeResponse(BaseModel):
    """Address resolved for a coordinate pair."""

    latitude: float
    longitude: float
    location: Location
    resolved: bool
    directions_url: str
    message: str
