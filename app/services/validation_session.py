"""Validation session controller: one per report being composed.

A session tracks classifier readiness (``idle -> model_loading -> ready``)
and, orthogonally, the validation of the currently attached image
(``not_validating -> validating -> passed | failed | skipped``).

Every change of image or category bumps a generation counter; a
validation that completes under an older generation is discarded, so the
submission gate only ever sees the result for the current image and
category.

Classifier problems never block a citizen: a model that fails to load or
a classification that errors produces a ``skipped`` (valid, no matches)
result.  Only a genuine keyword mismatch blocks submission.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum

from app.models.issue import Category
from app.models.validation import (
    LoadingState,
    MatchResult,
    ValidationState,
    ValidationStatus,
)
from app.services.matcher import match
from app.services.predictor import (
    ClassificationFailed,
    ModelUnavailable,
    PredictorAdapter,
    decode_image,
)
from app.services.taxonomy import KeywordTaxonomy

logger = logging.getLogger(__name__)


class BlockReason(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    MODEL_LOADING = "model_loading"
    VALIDATING = "validating"
    MODEL_UNAVAILABLE = "model_unavailable"


BLOCK_MESSAGES: dict[BlockReason, str] = {
    BlockReason.VALIDATION_FAILED: (
        "AI validation failed. The uploaded image does not match the selected "
        "issue type. Please upload a relevant image."
    ),
    BlockReason.MODEL_LOADING: (
        "AI model is still loading. Please wait a moment and try again."
    ),
    BlockReason.VALIDATING: "Image validation in progress. Please wait...",
    BlockReason.MODEL_UNAVAILABLE: (
        "AI model is unavailable, so the image cannot be checked. "
        "Please try again later."
    ),
}

MSG_MODEL_LOAD_FAILED = "AI model failed to load. Image validation will be skipped."
MSG_CLASSIFICATION_FAILED = (
    "The image could not be checked. You can still submit, or reselect the image "
    "to try again."
)
MSG_PASSED = "Image matches issue type"
MSG_FAILED = "Image does not match issue type"


class SubmissionBlocked(Exception):
    """The report cannot be submitted in the session's current state."""

    def __init__(
        self, reason: BlockReason, match_result: MatchResult | None = None
    ) -> None:
        self.reason = reason
        self.message = BLOCK_MESSAGES[reason]
        self.match_result = match_result
        super().__init__(self.message)


@dataclass(frozen=True)
class ImageUpload:
    """Raw image attached to a report (file upload or camera capture)."""

    data: bytes
    filename: str = "image.jpg"
    content_type: str = "image/jpeg"


class ValidationSession:
    """Orchestrates model readiness and per-image validation for one report."""

    def __init__(
        self,
        session_id: str,
        predictor: PredictorAdapter,
        taxonomy: KeywordTaxonomy,
        *,
        dedupe_matched_labels: bool = False,
        block_when_model_unavailable: bool = False,
    ) -> None:
        self.session_id = session_id
        self._predictor = predictor
        self._taxonomy = taxonomy
        self._dedupe = dedupe_matched_labels
        self._block_when_model_unavailable = block_when_model_unavailable

        self._loading_state = LoadingState.IDLE
        self._validation_state = ValidationState.NOT_VALIDATING
        self._model_available = True
        self._category: Category | None = None
        self._image: ImageUpload | None = None
        self._match_result: MatchResult | None = None
        self._message = ""
        self._generation = 0
        self._ready = asyncio.Event()
        self._closed = False
        self.last_activity = time.monotonic()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def loading_state(self) -> LoadingState:
        return self._loading_state

    @property
    def validation_state(self) -> ValidationState:
        return self._validation_state

    @property
    def match_result(self) -> MatchResult | None:
        return self._match_result

    @property
    def category(self) -> Category | None:
        return self._category

    @property
    def image(self) -> ImageUpload | None:
        return self._image

    @property
    def model_available(self) -> bool:
        return self._model_available

    @property
    def closed(self) -> bool:
        return self._closed

    def status(self) -> ValidationStatus:
        """Snapshot exposed to the reporting form."""
        return ValidationStatus(
            session_id=self.session_id,
            loading_state=self._loading_state,
            validation_state=self._validation_state,
            model_available=self._model_available,
            category=self._category,
            has_image=self._image is not None,
            match_result=self._match_result,
            message=self._message,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Mount: load the shared classifier, then become ``ready``.

        A load failure still ends in ``ready``, flagged as unavailable.
        """
        if self._loading_state is not LoadingState.IDLE:
            await self._ready.wait()
            return

        self._loading_state = LoadingState.MODEL_LOADING
        try:
            await self._predictor.ensure_ready()
            self._model_available = True
        except ModelUnavailable as exc:
            logger.error(
                "Session %s: image validation unavailable: %s", self.session_id, exc
            )
            self._model_available = False
            self._message = MSG_MODEL_LOAD_FAILED
        finally:
            self._loading_state = LoadingState.READY
            self._ready.set()

    def close(self) -> None:
        """Unmount or submitted: drop all state and ignore pending results."""
        self._closed = True
        self._image = None
        self._reset()
        self._ready.set()

    # ------------------------------------------------------------------
    # Form events
    # ------------------------------------------------------------------

    async def select_category(self, category: Category | None) -> ValidationStatus:
        """Change the category; re-validates an attached image if constrained."""
        self._touch()
        self._category = category
        self._reset()
        if self._should_validate():
            await self._validate()
        return self.status()

    async def select_image(self, image: ImageUpload) -> ValidationStatus:
        """Attach (or replace) the image and validate it against the category."""
        self._touch()
        self._image = image
        self._reset()
        if self._should_validate():
            await self._validate()
        return self.status()

    def clear_image(self) -> ValidationStatus:
        self._touch()
        self._image = None
        self._reset()
        return self.status()

    async def validate(
        self, image: ImageUpload, category: Category | None
    ) -> MatchResult | None:
        """Imperative entry point: set category and image, return the verdict.

        Returns ``None`` when no check applies (no or unconstrained
        category) or when a newer selection superseded this one.
        """
        self._category = category
        await self.select_image(image)
        return self._match_result

    # ------------------------------------------------------------------
    # Submission gate
    # ------------------------------------------------------------------

    def check_submission(self) -> None:
        """Raise :class:`SubmissionBlocked` unless the report may be sent."""
        if self._closed:
            raise RuntimeError(f"Session {self.session_id} is closed")

        if (
            self._image is not None
            and self._validation_state is ValidationState.FAILED
        ):
            raise SubmissionBlocked(BlockReason.VALIDATION_FAILED, self._match_result)

        if self._loading_state is not LoadingState.READY:
            raise SubmissionBlocked(BlockReason.MODEL_LOADING)

        if self._validation_state is ValidationState.VALIDATING:
            raise SubmissionBlocked(BlockReason.VALIDATING)

        if (
            self._block_when_model_unavailable
            and not self._model_available
            and self._taxonomy.is_constrained(self._category)
        ):
            raise SubmissionBlocked(BlockReason.MODEL_UNAVAILABLE)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _touch(self) -> None:
        if self._closed:
            raise RuntimeError(f"Session {self.session_id} is closed")
        self.last_activity = time.monotonic()

    def _reset(self) -> None:
        self._generation += 1
        self._validation_state = ValidationState.NOT_VALIDATING
        self._match_result = None
        if self._model_available:
            self._message = ""

    def _should_validate(self) -> bool:
        return self._image is not None and self._taxonomy.is_constrained(
            self._category
        )

    async def _validate(self) -> None:
        generation = self._generation
        image = self._image
        category = self._category
        if image is None:
            raise RuntimeError(f"Session {self.session_id} has no image to validate")

        self._validation_state = ValidationState.VALIDATING
        if not self._ready.is_set():
            await self.start()

        if generation != self._generation:
            return

        try:
            decoded = await asyncio.to_thread(decode_image, image.data)
            predictions = await self._predictor.classify(decoded)
        except ModelUnavailable as exc:
            logger.error(
                "Session %s: classifier unavailable, skipping validation: %s",
                self.session_id,
                exc,
            )
            self._model_available = False
            result = MatchResult(is_valid=True, skipped=True)
            message = MSG_MODEL_LOAD_FAILED
        except ClassificationFailed as exc:
            logger.warning(
                "Session %s: classification failed, skipping validation: %s",
                self.session_id,
                exc,
            )
            result = MatchResult(is_valid=True, skipped=True)
            message = MSG_CLASSIFICATION_FAILED
        else:
            self._model_available = True
            result = match(predictions, category, self._taxonomy, dedupe=self._dedupe)
            message = MSG_PASSED if result.is_valid else MSG_FAILED
            logger.info(
                "Session %s: %s image for %s (%d matched labels)",
                self.session_id,
                "accepted" if result.is_valid else "rejected",
                category.value if category else None,
                len(result.matched_labels),
            )

        if generation != self._generation:
            logger.debug(
                "Session %s: discarding stale validation result", self.session_id
            )
            return

        self._match_result = result
        self._message = message
        if result.skipped:
            self._validation_state = ValidationState.SKIPPED
        elif result.is_valid:
            self._validation_state = ValidationState.PASSED
        else:
            self._validation_state = ValidationState.FAILED


class SessionManager:
    """In-memory registry of live validation sessions.

    Creating a session schedules its :meth:`ValidationSession.start` in the
    background so the caller can observe the ``model_loading`` phase.
    Sessions idle for longer than *session_ttl* seconds are pruned.
    """

    def __init__(
        self,
        predictor: PredictorAdapter,
        taxonomy: KeywordTaxonomy,
        *,
        dedupe_matched_labels: bool = False,
        block_when_model_unavailable: bool = False,
        session_ttl: float = 3600.0,
    ) -> None:
        self.predictor = predictor
        self.taxonomy = taxonomy
        self._dedupe = dedupe_matched_labels
        self._block_when_model_unavailable = block_when_model_unavailable
        self._session_ttl = session_ttl
        self._sessions: dict[str, ValidationSession] = {}
        self._start_tasks: dict[str, asyncio.Task[None]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> ValidationSession:
        """Create and mount a new session (must run inside the event loop)."""
        self.prune()
        session = ValidationSession(
            str(uuid.uuid4()),
            self.predictor,
            self.taxonomy,
            dedupe_matched_labels=self._dedupe,
            block_when_model_unavailable=self._block_when_model_unavailable,
        )
        self._sessions[session.session_id] = session
        self._start_tasks[session.session_id] = asyncio.create_task(session.start())
        logger.debug("Created validation session %s", session.session_id)
        return session

    def get(self, session_id: str) -> ValidationSession | None:
        return self._sessions.get(session_id)

    def discard(self, session_id: str) -> bool:
        """Close and forget a session.  Returns ``False`` if it did not exist."""
        session = self._sessions.pop(session_id, None)
        task = self._start_tasks.pop(session_id, None)
        if session is None:
            return False
        if task is not None and not task.done():
            task.cancel()
        session.close()
        logger.debug("Discarded validation session %s", session_id)
        return True

    def prune(self) -> int:
        """Discard sessions idle for longer than the configured TTL."""
        cutoff = time.monotonic() - self._session_ttl
        expired = [
            sid for sid, s in self._sessions.items() if s.last_activity < cutoff
        ]
        for sid in expired:
            self.discard(sid)
        if expired:
            logger.info("Pruned %d idle validation sessions", len(expired))
        return len(expired)

    def shutdown(self) -> None:
        for session_id in list(self._sessions):
            self.discard(session_id)
