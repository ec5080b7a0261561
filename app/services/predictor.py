"""Predictor adapter: process-wide, lazily loaded image classifier.

One classifier instance is shared by every validation session.  The
adapter owns its lifecycle:

- :meth:`PredictorAdapter.ensure_ready` loads it at most once at a time;
  concurrent callers await the same in-flight load and observe the same
  outcome.  A failed load is not cached, so a later call retries.
- :meth:`PredictorAdapter.classify` runs inference in a worker thread, one
  call at a time, and re-triggers loading after :meth:`release`.
- All model errors surface as :class:`ModelUnavailable` or
  :class:`ClassificationFailed`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from io import BytesIO

from PIL import Image

from app.models.validation import Prediction
from app.services.classifier import BaseClassifier

logger = logging.getLogger(__name__)


class PredictorError(Exception):
    """Base class for classifier failures."""


class ModelUnavailable(PredictorError):
    """The classifier could not be loaded."""


class ClassificationFailed(PredictorError):
    """A single classification call failed (bad image, model error, timeout)."""


class PredictorPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


def decode_image(data: bytes) -> Image.Image:
    """Decode uploaded bytes into a fully loaded RGB image.

    Raises :class:`ClassificationFailed` if the bytes are not a readable
    image or have no pixels.
    """
    if not data:
        raise ClassificationFailed("Empty image payload")
    try:
        img = Image.open(BytesIO(data))
        img = img.convert("RGB")
    except Exception as exc:
        raise ClassificationFailed(f"Image could not be decoded: {exc}") from exc

    width, height = img.size
    if width == 0 or height == 0:
        raise ClassificationFailed("Image has no dimensions")
    return img


class PredictorAdapter:
    """Lazily initialised wrapper around a :class:`BaseClassifier`.

    *loader* is called in a worker thread and must return a ready
    classifier; it is the only place that touches model weights.

    Timeouts only bound how long a caller waits.  A load or inference
    thread that outlives its caller keeps the load slot (or the classify
    lock) until it actually returns.
    """

    def __init__(
        self,
        loader: Callable[[], BaseClassifier],
        *,
        top_k: int = 5,
        load_timeout: float | None = 120.0,
        classify_timeout: float | None = 20.0,
    ) -> None:
        self._loader = loader
        self.top_k = top_k
        self._load_timeout = load_timeout
        self._classify_timeout = classify_timeout
        self._classifier: BaseClassifier | None = None
        self._load_task: asyncio.Future[BaseClassifier] | None = None
        self._classify_lock = asyncio.Lock()
        self._phase = PredictorPhase.IDLE
        self.last_error: str | None = None

    @property
    def phase(self) -> PredictorPhase:
        return self._phase

    @property
    def is_ready(self) -> bool:
        return self._classifier is not None

    def _on_load_done(self, task: asyncio.Future[BaseClassifier]) -> None:
        if task.cancelled():
            self._phase = PredictorPhase.IDLE
            return
        exc = task.exception()
        if exc is not None:
            self._phase = PredictorPhase.FAILED
            self.last_error = str(exc) or exc.__class__.__name__
            logger.error("Image classifier failed to load", exc_info=exc)
            return
        self._classifier = task.result()
        self._phase = PredictorPhase.READY
        self.last_error = None

    async def ensure_ready(self) -> None:
        """Load the classifier if needed; raise :class:`ModelUnavailable` on failure.

        A load is only started when none is in flight, so callers that
        time out and retry wait on the same loader thread.
        """
        if self._classifier is not None:
            return

        # No await between the check and task creation, so concurrent
        # callers always share the same load.
        if self._load_task is None or self._load_task.done():
            self._phase = PredictorPhase.LOADING
            self._load_task = asyncio.ensure_future(asyncio.to_thread(self._loader))
            self._load_task.add_done_callback(self._on_load_done)

        try:
            classifier = await asyncio.wait_for(
                asyncio.shield(self._load_task), timeout=self._load_timeout
            )
        except asyncio.TimeoutError as exc:
            self.last_error = f"Model load timed out after {self._load_timeout}s"
            logger.error(self.last_error)
            raise ModelUnavailable(self.last_error) from exc
        except Exception as exc:
            raise ModelUnavailable(str(exc) or exc.__class__.__name__) from exc

        self._classifier = classifier

    def _on_predict_done(self, task: asyncio.Future[list[Prediction]]) -> None:
        self._classify_lock.release()
        if not task.cancelled():
            task.exception()

    async def classify(self, image: Image.Image) -> list[Prediction]:
        """Classify a decoded image; predictions are highest confidence first."""
        width, height = image.size
        if width == 0 or height == 0:
            raise ClassificationFailed("Image has no dimensions")

        await self._classify_lock.acquire()
        try:
            await self.ensure_ready()
            classifier = self._classifier
            if classifier is None:
                raise ModelUnavailable("Classifier was released during loading")
            task = asyncio.ensure_future(
                asyncio.to_thread(classifier.predict, image, self.top_k)
            )
        except BaseException:
            self._classify_lock.release()
            raise
        # The lock is held until the inference thread returns
        task.add_done_callback(self._on_predict_done)

        try:
            predictions = await asyncio.wait_for(
                asyncio.shield(task), timeout=self._classify_timeout
            )
        except asyncio.TimeoutError as exc:
            raise ClassificationFailed(
                f"Classification timed out after {self._classify_timeout}s"
            ) from exc
        except Exception as exc:
            raise ClassificationFailed(f"Classifier error: {exc}") from exc

        return sorted(predictions, key=lambda p: p.probability, reverse=True)

    def release(self) -> None:
        """Drop the loaded classifier.  Safe to call repeatedly."""
        classifier, self._classifier = self._classifier, None
        if classifier is None:
            return
        try:
            classifier.close()
        except Exception:
            logger.warning("Error while releasing classifier", exc_info=True)
        self._phase = PredictorPhase.IDLE
        logger.info("Image classifier released")
