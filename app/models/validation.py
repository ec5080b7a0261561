"""Pydantic models for image plausibility validation.

- Prediction: one classifier output (label + probability)
- LabelConfidence: a label with its confidence rendered as a percentage
- MatchResult: verdict of the plausibility matcher for one validation call
- ValidationStatus: snapshot of a validation session exposed to the form
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, computed_field

from app.models.issue import Category


class Prediction(BaseModel):
    """A single classifier prediction, highest confidence first in a list."""

    label: str
    probability: float = Field(ge=0.0, le=1.0)


class LabelConfidence(BaseModel):
    """Classifier label with its confidence as a one-decimal percentage string."""

    label: str
    confidence: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display(self) -> str:
        return f"{self.label} ({self.confidence}%)"


class MatchResult(BaseModel):
    """Verdict for one (image, category) pair.

    ``top_predictions`` is only populated when the image was rejected, so
    the citizen can see what the classifier actually recognised.
    ``skipped`` marks a degraded result produced without a usable
    classification (model unavailable or classification failed).
    """

    is_valid: bool
    matched_labels: list[LabelConfidence] = Field(default_factory=list)
    top_predictions: list[LabelConfidence] | None = None
    skipped: bool = False


class LoadingState(str, Enum):
    """Classifier readiness as seen by a validation session."""

    IDLE = "idle"
    MODEL_LOADING = "model_loading"
    READY = "ready"


class ValidationState(str, Enum):
    """Per-image validation progress.

    ``skipped`` is the degraded outcome: the image could not be checked
    and submission is allowed.
    """

    NOT_VALIDATING = "not_validating"
    VALIDATING = "validating"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ValidationStatus(BaseModel):
    """Current state of a validation session, as exposed to the reporting form."""

    session_id: str
    loading_state: LoadingState
    validation_state: ValidationState
    model_available: bool
    category: Category | None = None
    has_image: bool = False
    match_result: MatchResult | None = None
    message: str = ""


class CategoryUpdate(BaseModel):
    """Request body for PUT /sessions/{id}/category."""

    category: Category | None = None


class TaxonomyResponse(BaseModel):
    """Configured keyword phrases per category."""

    keywords: dict[str, list[str]]
