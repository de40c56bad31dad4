"""posterExtract domain models -- re-exports all public model classes.

Other parts of the codebase import from ``src.models`` rather than from the
individual submodules.  The models are organized by concern:
    - poster.py      -- Poster types and the assembled poster entity
    - phases.py      -- Phase names/statuses and the five phase results
    - processing.py  -- Sessions, jobs, configuration and run results
    - validation.py  -- Validator results, suggestions and summaries
"""

from __future__ import annotations

from src.models.phases import (
    PHASE_ORDER,
    TERMINAL_PHASE_STATUSES,
    ArtistMatch,
    ArtistPhaseResult,
    AssemblyPhaseResult,
    BasePhaseResult,
    DateInfo,
    EventPhaseResult,
    ExistingEntityMatch,
    MatchAlternative,
    PhaseContext,
    PhaseName,
    PhaseResult,
    PhaseStatus,
    PlausibilityCheck,
    PrimaryType,
    ShowInfo,
    TimeDetails,
    TypePhaseResult,
    VenueDateSplit,
    VenueMatch,
    VenuePhaseResult,
)
from src.models.poster import (
    CreatedEntity,
    CreatedRelationship,
    PosterEntity,
    PosterType,
    TypeInference,
    VisualCues,
    VisualStyle,
)
from src.models.processing import (
    DEFAULT_PHASE_CONFIG,
    TERMINAL_JOB_STATES,
    BatchSummary,
    IterativeBatchResult,
    IterativeJobStatus,
    IterativeProcessingConfig,
    IterativeProcessingOptions,
    IterativeProcessingResult,
    JobProgress,
    JobState,
    JobStats,
    LowConfidencePolicy,
    PhaseConfig,
    PhaseInput,
    PhaseOverride,
    PhaseProgress,
    ProcessingContext,
)
from src.models.validation import (
    OverallStatus,
    QASuggestion,
    ValidationSource,
    ValidationStatus,
    ValidationSummary,
    ValidatorResult,
)

__all__ = [
    "ArtistMatch",
    "ArtistPhaseResult",
    "AssemblyPhaseResult",
    "BasePhaseResult",
    "BatchSummary",
    "CreatedEntity",
    "CreatedRelationship",
    "DEFAULT_PHASE_CONFIG",
    "DateInfo",
    "EventPhaseResult",
    "ExistingEntityMatch",
    "IterativeBatchResult",
    "IterativeJobStatus",
    "IterativeProcessingConfig",
    "IterativeProcessingOptions",
    "IterativeProcessingResult",
    "JobProgress",
    "JobState",
    "JobStats",
    "LowConfidencePolicy",
    "MatchAlternative",
    "OverallStatus",
    "PHASE_ORDER",
    "PhaseConfig",
    "PhaseContext",
    "PhaseInput",
    "PhaseName",
    "PhaseOverride",
    "PhaseProgress",
    "PhaseResult",
    "PhaseStatus",
    "PlausibilityCheck",
    "PosterEntity",
    "PosterType",
    "PrimaryType",
    "ProcessingContext",
    "QASuggestion",
    "ShowInfo",
    "TERMINAL_JOB_STATES",
    "TERMINAL_PHASE_STATUSES",
    "TimeDetails",
    "TypeInference",
    "TypePhaseResult",
    "ValidationSource",
    "ValidationStatus",
    "ValidationSummary",
    "ValidatorResult",
    "VenueDateSplit",
    "VenueMatch",
    "VenuePhaseResult",
    "VisualCues",
    "VisualStyle",
]
