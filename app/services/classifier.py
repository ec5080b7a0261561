"""On-device image classifier backed by Hugging Face Transformers.

The default checkpoint is MobileNet v2 (ImageNet-1k labels).  Loading
downloads weights on first use, which is why the predictor adapter runs
it off the event loop and reports it as a distinct loading phase.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import torch
from PIL import Image
from transformers import AutoImageProcessor, AutoModelForImageClassification

from app.models.validation import Prediction

logger = logging.getLogger(__name__)


class BaseClassifier(ABC):
    """Black-box predictor contract: image in, ranked predictions out."""

    @abstractmethod
    def predict(self, image: Image.Image, top_k: int) -> list[Prediction]:
        """Return up to *top_k* predictions, highest probability first."""
        ...

    def close(self) -> None:
        """Release model memory.  Default is a no-op."""


class TransformersClassifier(BaseClassifier):
    """Image classification with AutoModelForImageClassification.

    Preprocessing is delegated entirely to the checkpoint's image
    processor (resize, crop, normalise); nothing else is done to the image.
    """

    def __init__(self, model_id: str, device: str = "cpu") -> None:
        logger.info("Loading image classifier: %s on %s", model_id, device)
        self._model_id = model_id
        self._processor = AutoImageProcessor.from_pretrained(model_id)
        self._model = AutoModelForImageClassification.from_pretrained(model_id)
        self._model.eval()
        self._device = torch.device(device)
        self._model.to(self._device)
        self._id2label: dict[int, str] = dict(self._model.config.id2label)
        logger.info(
            "Image classifier loaded: %s (%d labels)", model_id, len(self._id2label)
        )

    def predict(self, image: Image.Image, top_k: int) -> list[Prediction]:
        if self._model is None:
            raise RuntimeError(f"Classifier {self._model_id} has been closed")

        inputs = self._processor(images=image, return_tensors="pt").to(self._device)
        with torch.no_grad():
            logits = self._model(**inputs).logits

        probs = torch.softmax(logits, dim=-1)[0]
        k = min(top_k, probs.shape[-1])
        values, indices = torch.topk(probs, k)

        return [
            Prediction(
                label=self._id2label.get(int(idx), str(idx)),
                probability=min(max(float(value), 0.0), 1.0),
            )
            for value, idx in zip(values.cpu().tolist(), indices.cpu().tolist())
        ]

    def close(self) -> None:
        self._model = None
        self._processor = None
        if self._device.type == "cuda":
            torch.cuda.empty_cache()
        logger.info("Image classifier released: %s", self._model_id)
