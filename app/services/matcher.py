"""Plausibility matcher: do classifier predictions support the chosen category?

Every prediction (not just the top one) is compared with every keyword
phrase of the category.  A pair matches when, after lowercasing, either
string contains the other -- classifier labels and taxonomy phrases both
vary between single words and multi-word phrases.

Each matching (prediction, phrase) pair yields one matched-label entry, so
a prediction hit by several phrases appears several times unless
``dedupe`` is requested.
"""

from __future__ import annotations

from collections.abc import Sequence

from app.models.issue import Category
from app.models.validation import LabelConfidence, MatchResult, Prediction
from app.services.taxonomy import KeywordTaxonomy

TOP_PREDICTIONS_FEEDBACK = 5


def format_confidence(probability: float) -> str:
    """Render a probability as a one-decimal percentage (0.8234 -> "82.3")."""
    return f"{probability * 100:.1f}"


def _label_confidence(prediction: Prediction) -> LabelConfidence:
    return LabelConfidence(
        label=prediction.label,
        confidence=format_confidence(prediction.probability),
    )


def _overlaps(label: str, phrase: str) -> bool:
    # An empty label would be a substring of every phrase
    if not label or not phrase:
        return False
    return phrase in label or label in phrase


def match(
    predictions: Sequence[Prediction],
    category: Category | str | None,
    taxonomy: KeywordTaxonomy,
    *,
    dedupe: bool = False,
    top_n: int = TOP_PREDICTIONS_FEEDBACK,
) -> MatchResult:
    """Decide whether *predictions* plausibly depict *category*.

    Unconstrained categories (absent, ``other`` or without phrases) are
    always valid and the predictions are not inspected.  When nothing
    matches, the first *top_n* predictions are returned as feedback in
    their original (highest confidence first) order.
    """
    if not taxonomy.is_constrained(category):
        return MatchResult(is_valid=True)

    phrases = taxonomy.keywords_for(category)
    matched: list[LabelConfidence] = []
    seen: set[tuple[str, str]] = set()

    for prediction in predictions:
        label = prediction.label.lower()
        for phrase in phrases:
            if not _overlaps(label, phrase):
                continue
            entry = _label_confidence(prediction)
            if dedupe:
                key = (entry.label, entry.confidence)
                if key in seen:
                    continue
                seen.add(key)
            matched.append(entry)

    if matched:
        return MatchResult(is_valid=True, matched_labels=matched)

    return MatchResult(
        is_valid=False,
        matched_labels=[],
        top_predictions=[_label_confidence(p) for p in predictions[:top_n]],
    )
