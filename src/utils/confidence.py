"""Confidence scoring utilities for phase results and validated fields.

Confidence scores (0.0--1.0) are produced at every phase of the extraction
pipeline and again when extracted fields are checked against reference
sources.  This module collects the pure scoring functions:

1. **calculate_confidence** -- Weighted average of several score signals.
2. **calculate_completeness_confidence** -- Score a parsed vision response
   by which required (weight 2) and optional (weight 1) fields it filled.
3. **confidence_to_level** -- Maps a score to a human-readable tier.
4. **merge_confidence** -- Blends an existing score with new evidence.
5. **calculate_overall_score** / **determine_overall_status** -- Field-
   weighted 0-100 score and verdict over a poster's validator results.
6. **calculate_batch_statistics** -- Aggregate verdicts for a batch.

The Phase Manager's overall confidence is a plain mean across phases and
lives in :mod:`src.pipeline.phase_manager`; the field-weighted score here
is reported alongside it and the two are never merged.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from src.models.validation import (
    OverallStatus,
    ValidationStatus,
    ValidationSummary,
    ValidatorResult,
)


class ConfidenceLevel(Enum):
    """Human-readable confidence tiers used in CLI output and logs."""

    VERY_LOW = "very_low"    # < 0.2
    LOW = "low"              # 0.2 - 0.4
    MEDIUM = "medium"        # 0.4 - 0.6
    HIGH = "high"            # 0.6 - 0.8
    VERY_HIGH = "very_high"  # >= 0.8


# Relative importance of each poster field in the overall validation score.
DEFAULT_FIELD_WEIGHTS: dict[str, float] = {
    "headliner": 0.20,
    "title": 0.10,
    "supporting_acts": 0.10,
    "venue_name": 0.15,
    "event_date": 0.10,
    "year": 0.05,
    "city": 0.05,
    "state": 0.05,
    "country": 0.05,
    "record_label": 0.05,
    "tour_name": 0.03,
    "promoter": 0.03,
    "door_time": 0.02,
    "show_time": 0.02,
}

_UNLISTED_FIELD_WEIGHT = 0.05
_UNVERIFIED_PENALTY = 0.1
_MISMATCH_PENALTY = 0.3


def calculate_confidence(
    scores: list[float],
    weights: list[float] | None = None,
) -> float:
    """Compute a weighted average confidence score.

    Args:
        scores: Individual confidence scores, each in [0.0, 1.0].
        weights: Optional weights for each score. Defaults to equal weighting.

    Returns:
        Weighted average clamped to [0.0, 1.0].

    Raises:
        ValueError: If scores is empty or lengths of scores and weights differ.
    """
    if not scores:
        raise ValueError("scores must not be empty")

    if weights is None:
        weights = [1.0] * len(scores)

    if len(scores) != len(weights):
        raise ValueError("scores and weights must have the same length")

    total_weight = sum(weights)
    if total_weight == 0:
        return 0.0

    weighted_sum = sum(s * w for s, w in zip(scores, weights, strict=True))
    return max(0.0, min(1.0, weighted_sum / total_weight))


def is_present(value: Any) -> bool:
    """Return whether a parsed field counts as filled in.

    Non-empty strings (after stripping) and non-empty lists count; any
    number or boolean counts, including ``0`` and ``False``.
    """
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return isinstance(value, (bool, int, float))


def calculate_completeness_confidence(
    fields: Mapping[str, Any],
    required: Sequence[str],
    optional: Sequence[str] = (),
) -> float:
    """Score a parsed response by the fields it filled.

    Required fields weigh 2 and optional fields weigh 1.  With required
    ``[a, b]`` and optional ``[c]`` where only ``a`` is present the score
    is 2 / 5 = 0.4.

    Returns:
        ``earned / maximum``, or 0.0 when no fields were named.
    """
    maximum = 2 * len(required) + len(optional)
    if maximum == 0:
        return 0.0

    earned = sum(2 for name in required if is_present(fields.get(name)))
    earned += sum(1 for name in optional if is_present(fields.get(name)))
    return earned / maximum


def confidence_to_level(score: float) -> ConfidenceLevel:
    """Map a numeric confidence score to a human-readable level.

    Args:
        score: Confidence score in [0.0, 1.0].

    Returns:
        Corresponding ConfidenceLevel enum member.
    """
    if score < 0.2:
        return ConfidenceLevel.VERY_LOW
    if score < 0.4:
        return ConfidenceLevel.LOW
    if score < 0.6:
        return ConfidenceLevel.MEDIUM
    if score < 0.8:
        return ConfidenceLevel.HIGH
    return ConfidenceLevel.VERY_HIGH


def merge_confidence(existing: float, new: float, new_weight: float = 0.5) -> float:
    """Blend an existing confidence score with new evidence.

    Args:
        existing: Current confidence score in [0.0, 1.0].
        new: New evidence confidence score in [0.0, 1.0].
        new_weight: Weight given to the new evidence (0.0--1.0).

    Returns:
        Updated confidence score clamped to [0.0, 1.0].
    """
    new_weight = max(0.0, min(1.0, new_weight))
    merged = existing * (1.0 - new_weight) + new * new_weight
    return max(0.0, min(1.0, merged))


# ---------------------------------------------------------------------------
# Field-weighted validation scoring
# ---------------------------------------------------------------------------


def calculate_overall_score(
    results: Sequence[ValidatorResult],
    field_weights: Mapping[str, float] | None = None,
    penalize_unverified: bool = False,
) -> int:
    """Compute a 0-100 score over a poster's validator results.

    Each result contributes ``confidence * weight`` where the weight comes
    from *field_weights* (0.05 for unlisted fields).  Unverified results
    are skipped unless *penalize_unverified* is set, in which case their
    confidence is reduced by 0.1.  Mismatches lose 0.3.

    Returns:
        The rounded percentage, or 0 when nothing was scored.
    """
    weights = field_weights if field_weights is not None else DEFAULT_FIELD_WEIGHTS
    weighted_total = 0.0
    total_weight = 0.0

    for result in results:
        if result.status == ValidationStatus.UNVERIFIED and not penalize_unverified:
            continue

        weight = weights.get(result.field, _UNLISTED_FIELD_WEIGHT)
        score = result.confidence
        if result.status == ValidationStatus.UNVERIFIED:
            score = max(0.0, score - _UNVERIFIED_PENALTY)
        elif result.status == ValidationStatus.MISMATCH:
            score = max(0.0, score - _MISMATCH_PENALTY)

        weighted_total += score * weight
        total_weight += weight

    if total_weight == 0:
        return 0
    return round(100 * weighted_total / total_weight)


def determine_overall_status(results: Sequence[ValidatorResult]) -> OverallStatus:
    """Reduce a set of validator results to a single verdict.

    Any mismatch wins; partials outnumbering matches is a warning; a set
    with no checked fields at all is unverified.
    """
    if not results:
        return OverallStatus.UNVERIFIED

    counts = {status: 0 for status in ValidationStatus}
    for result in results:
        counts[result.status] += 1

    if counts[ValidationStatus.MISMATCH] > 0:
        return OverallStatus.MISMATCH
    if counts[ValidationStatus.PARTIAL] > counts[ValidationStatus.MATCH]:
        return OverallStatus.WARNING
    if counts[ValidationStatus.UNVERIFIED] == len(results):
        return OverallStatus.UNVERIFIED
    if counts[ValidationStatus.MATCH] > 0:
        return OverallStatus.VALIDATED
    if counts[ValidationStatus.PARTIAL] > 0:
        return OverallStatus.WARNING
    return OverallStatus.UNVERIFIED


def summarize_validation(
    results: Sequence[ValidatorResult],
    field_weights: Mapping[str, float] | None = None,
) -> ValidationSummary:
    """Bundle :func:`calculate_overall_score` and :func:`determine_overall_status`."""
    return ValidationSummary(
        overall_score=calculate_overall_score(results, field_weights),
        status=determine_overall_status(results),
    )


def calculate_batch_statistics(summaries: Sequence[ValidationSummary]) -> dict[str, Any]:
    """Aggregate per-poster validation summaries for a batch report.

    Returns a dict with ``total``, one count per :class:`OverallStatus`
    value, ``average_score`` (rounded) and a ``score_distribution`` of
    excellent (>= 90), good (>= 70), fair (>= 50) and poor buckets.
    """
    stats: dict[str, Any] = {
        "total": len(summaries),
        **{status.value: 0 for status in OverallStatus},
        "average_score": 0,
        "score_distribution": {"excellent": 0, "good": 0, "fair": 0, "poor": 0},
    }
    if not summaries:
        return stats

    distribution = stats["score_distribution"]
    for summary in summaries:
        stats[summary.status.value] += 1
        if summary.overall_score >= 90:
            distribution["excellent"] += 1
        elif summary.overall_score >= 70:
            distribution["good"] += 1
        elif summary.overall_score >= 50:
            distribution["fair"] += 1
        else:
            distribution["poor"] += 1

    stats["average_score"] = round(sum(s.overall_score for s in summaries) / len(summaries))
    return stats
