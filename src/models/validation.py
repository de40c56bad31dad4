"""Validation records produced when extracted values are checked externally.

Every phase that cross-checks a name against a reference source (MusicBrainz,
Discogs, the internal knowledge base) can attach :class:`ValidatorResult`
records to its phase result.  The Phase Manager accumulates them on the
processing context, and they feed two downstream consumers:

    - ``PhaseManager.get_fields_needing_review`` (partial / mismatch fields)
    - ``src.utils.confidence.calculate_overall_score`` (field-weighted score)
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ValidationSource(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Where a validated value came from.

    ``INTERNAL`` marks values that were never confirmed externally, either
    because no reference client was configured or because it failed.
    """

    MUSICBRAINZ = "musicbrainz"
    DISCOGS = "discogs"
    TMDB = "tmdb"
    WIKIDATA = "wikidata"
    INTERNAL = "internal"


class ValidationStatus(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Outcome of comparing one extracted field against a reference value."""

    MATCH = "match"
    PARTIAL = "partial"
    MISMATCH = "mismatch"
    UNVERIFIED = "unverified"


class OverallStatus(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Aggregate verdict over all validator results for one poster."""

    VALIDATED = "validated"
    WARNING = "warning"
    MISMATCH = "mismatch"
    UNVERIFIED = "unverified"


class ValidatorResult(BaseModel):
    """A single field validation against one external source."""

    model_config = ConfigDict(frozen=True)

    validator_name: str
    field: str
    original_value: str | None = None
    validated_value: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    status: ValidationStatus = ValidationStatus.UNVERIFIED
    source: ValidationSource = ValidationSource.INTERNAL
    external_id: str | None = None
    external_url: str | None = None
    message: str | None = None
    alternatives: list[str] = Field(default_factory=list)


class QASuggestion(BaseModel):
    """A proposed correction for a field, surfaced for human review."""

    model_config = ConfigDict(frozen=True)

    field: str
    current_value: str | None = None
    suggested_value: str
    reason: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: ValidationSource = ValidationSource.INTERNAL
    external_id: str | None = None


class ValidationSummary(BaseModel):
    """Field-weighted score (0-100) and verdict for one poster's validations."""

    model_config = ConfigDict(frozen=True)

    overall_score: int = Field(default=0, ge=0, le=100)
    status: OverallStatus = OverallStatus.UNVERIFIED
