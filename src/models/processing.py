"""Session, job and configuration models for iterative processing.

``ProcessingContext`` is the single source of truth for one image moving
through the five phases.  The Phase Manager (src/pipeline/phase_manager.py)
holds one per session and replaces it with ``model_copy(update={...})`` on
every mutation, so any intermediate state can be exported to a plain dict
and persisted (see src/providers/session/).

``IterativeJobStatus`` tracks a batch of images the same way.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.models.phases import PhaseName, PhaseResult, PhaseStatus
from src.models.poster import PosterEntity
from src.models.validation import (
    QASuggestion,
    ValidationSource,
    ValidationSummary,
    ValidatorResult,
)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class LowConfidencePolicy(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """What the driver does when a phase is not ready to hand off.

    FLAG keeps going and reports the weak fields for review; PAUSE stops
    the image at the phase that failed its gate; SKIP keeps going without
    retrying or refining low-confidence phases.
    """

    FLAG = "flag"
    PAUSE = "pause"
    SKIP = "skip"


class PhaseConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    retry_on_low_confidence: bool = False
    max_retries: int = Field(default=1, ge=0)
    validation_sources: list[ValidationSource] = Field(default_factory=list)


DEFAULT_PHASE_CONFIG: dict[PhaseName, PhaseConfig] = {
    PhaseName.TYPE: PhaseConfig(
        confidence_threshold=0.7,
        retry_on_low_confidence=True,
        max_retries=2,
    ),
    PhaseName.ARTIST: PhaseConfig(
        confidence_threshold=0.6,
        retry_on_low_confidence=True,
        max_retries=2,
        validation_sources=[
            ValidationSource.MUSICBRAINZ,
            ValidationSource.DISCOGS,
            ValidationSource.INTERNAL,
        ],
    ),
    PhaseName.VENUE: PhaseConfig(
        confidence_threshold=0.6,
        retry_on_low_confidence=False,
        max_retries=1,
        validation_sources=[ValidationSource.INTERNAL],
    ),
    PhaseName.EVENT: PhaseConfig(
        confidence_threshold=0.5,
        retry_on_low_confidence=False,
        max_retries=1,
    ),
}


class IterativeProcessingConfig(BaseModel):
    """Per-phase gates plus the global low-confidence policy.

    Loaded once from the ``iterative`` section of config/config.yaml and
    read-only for the rest of the run.  Assembly has no entry: it gates
    nothing.
    """

    model_config = ConfigDict(frozen=True)

    phases: dict[PhaseName, PhaseConfig] = Field(
        default_factory=lambda: dict(DEFAULT_PHASE_CONFIG)
    )
    on_low_confidence: LowConfidencePolicy = LowConfidencePolicy.FLAG
    batch_size: int = Field(default=10, ge=1)

    def for_phase(self, phase: PhaseName) -> PhaseConfig | None:
        return self.phases.get(phase)


class IterativeProcessingOptions(BaseModel):
    """Per-run switches passed down to every phase."""

    model_config = ConfigDict(frozen=True)

    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    on_low_confidence: LowConfidencePolicy = LowConfidencePolicy.FLAG
    max_retries: int = Field(default=2, ge=0)
    validate_types: bool = True
    validate_artists: bool = True
    validate_venues: bool = True
    validate_events: bool = True
    skip_storage: bool = False
    validation_sources: list[ValidationSource] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class ProcessingContext(BaseModel):
    """Processing state for one image across all phases.

    Immutable -- the Phase Manager replaces it on every change::

        updated = context.model_copy(update={"current_phase": PhaseName.ARTIST})
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    image_path: str
    poster_id: str
    started_at: datetime = Field(default_factory=_utcnow)
    current_phase: PhaseName = PhaseName.TYPE
    phase_results: dict[PhaseName, PhaseResult] = Field(default_factory=dict)
    validation_results: list[ValidatorResult] = Field(default_factory=list)
    suggestions: list[QASuggestion] = Field(default_factory=list)


class PhaseInput(BaseModel):
    """Everything a phase needs for one execution."""

    model_config = ConfigDict(frozen=True)

    image_path: str
    poster_id: str
    context: ProcessingContext
    options: IterativeProcessingOptions = Field(default_factory=IterativeProcessingOptions)

    @property
    def session_id(self) -> str:
        return self.context.session_id


class PhaseOverride(BaseModel):
    """A manual correction applied to one field of a stored phase result."""

    model_config = ConfigDict(frozen=True)

    phase: PhaseName
    field: str
    value: Any
    reason: str | None = None


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class JobState(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})


class JobProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_images: int = 0
    processed_images: int = 0
    current_image_index: int = 0
    current_image_path: str | None = None


class PhaseProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    completed: int = 0
    total: int = 0


class JobStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    success_count: int = 0
    failure_count: int = 0
    low_confidence_count: int = 0
    needs_review_count: int = 0
    average_confidence: float = 0.0


class IterativeJobStatus(BaseModel):
    """Progress and aggregate statistics for one batch of images."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    status: JobState = JobState.PENDING
    current_phase: PhaseName = PhaseName.TYPE
    progress: JobProgress = Field(default_factory=JobProgress)
    phase_progress: dict[PhaseName, PhaseProgress] = Field(default_factory=dict)
    stats: JobStats = Field(default_factory=JobStats)
    started_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATES


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class IterativeProcessingResult(BaseModel):
    """Outcome of running one image through the pipeline."""

    model_config = ConfigDict(frozen=True)

    poster_id: str
    image_path: str
    session_id: str | None = None
    success: bool = False
    status: PhaseStatus = PhaseStatus.PENDING
    entity: PosterEntity | None = None
    phase_results: dict[PhaseName, PhaseResult] = Field(default_factory=dict)
    overall_confidence: float = 0.0
    fields_needing_review: list[str] = Field(default_factory=list)
    validation: ValidationSummary | None = None
    paused_at: PhaseName | None = None
    processing_time_ms: int = 0
    error: str | None = None


class BatchSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    successful: int = 0
    failed: int = 0
    needs_review: int = 0
    average_confidence: float = 0.0
    by_type: dict[str, int] = Field(default_factory=dict)


class IterativeBatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    results: list[IterativeProcessingResult] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)
    validation_statistics: dict[str, Any] = Field(default_factory=dict)
