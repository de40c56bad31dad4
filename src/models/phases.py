"""Phase result models for the iterative extraction pipeline.

Each of the five phases (type -> artist -> venue -> event -> assembly)
produces one result model.  They share the :class:`BasePhaseResult` fields
and differ in their phase-specific payload and readiness flag.  The
:data:`PhaseResult` alias is a pydantic discriminated union on the
``phase`` literal, so a stored or re-imported result always comes back as
the right variant::

    match result.phase:
        case "artist":
            headliner = result.headliner

All models are frozen.  A phase never edits a stored result; it builds a
new one (``model_copy(update={...})``) and stores that instead.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from src.models.poster import (
    CreatedEntity,
    CreatedRelationship,
    PosterEntity,
    PosterType,
    TypeInference,
    VisualCues,
)
from src.models.validation import ValidationSource, ValidatorResult


class PhaseName(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """The five fixed phases, in execution order."""

    TYPE = "type"
    ARTIST = "artist"
    VENUE = "venue"
    EVENT = "event"
    ASSEMBLY = "assembly"


PHASE_ORDER: list[PhaseName] = [
    PhaseName.TYPE,
    PhaseName.ARTIST,
    PhaseName.VENUE,
    PhaseName.EVENT,
    PhaseName.ASSEMBLY,
]


class PhaseStatus(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Lifecycle status of a single phase result.

    ``NEEDS_REVIEW`` is the low-confidence outcome: the result is usable
    and stored, but a human should look at it.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    NEEDS_REVIEW = "needs_review"


TERMINAL_PHASE_STATUSES = frozenset({PhaseStatus.COMPLETED, PhaseStatus.FAILED})


# ---------------------------------------------------------------------------
# Match records
# ---------------------------------------------------------------------------


class MatchAlternative(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    external_id: str | None = None
    confidence: float = 0.0


class ArtistMatch(BaseModel):
    """An extracted person/act name and what validation made of it.

    ``confidence`` is the validator's own score for the match; callers
    never re-normalize it.
    """

    model_config = ConfigDict(frozen=True)

    extracted_name: str
    validated_name: str | None = None
    external_id: str | None = None
    external_url: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: ValidationSource = ValidationSource.INTERNAL
    alternatives: list[MatchAlternative] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.validated_name or self.extracted_name


class VenueMatch(BaseModel):
    """An extracted venue and its location, as confirmed by the knowledge base."""

    model_config = ConfigDict(frozen=True)

    extracted_name: str
    validated_name: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    existing_venue_id: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: ValidationSource = ValidationSource.INTERNAL

    @property
    def display_name(self) -> str:
        return self.validated_name or self.extracted_name


class ExistingEntityMatch(BaseModel):
    """A knowledge-base entity that already matches an extracted name."""

    model_config = ConfigDict(frozen=True)

    name: str
    entity_id: str
    city: str | None = None


class PrimaryType(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: PosterType = PosterType.UNKNOWN
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    evidence: list[str] = Field(default_factory=list)


class DateInfo(BaseModel):
    """A raw date string and whatever could be parsed out of it."""

    model_config = ConfigDict(frozen=True)

    raw_value: str
    parsed: date | None = None
    year: int | None = None
    month: int | None = None
    day: int | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    format: str | None = None


class ShowInfo(BaseModel):
    """One dated performance on a (possibly multi-date) poster."""

    model_config = ConfigDict(frozen=True)

    date: DateInfo
    day_of_week: str | None = None
    door_time: str | None = None
    show_time: str | None = None
    ticket_price: str | None = None
    age_restriction: str | None = None
    show_number: int = 1


class TimeDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    door_time: str | None = None
    show_time: str | None = None


class PlausibilityCheck(BaseModel):
    """Outcome of a temporal sanity check (artist active, venue existed)."""

    model_config = ConfigDict(frozen=True)

    valid: bool = True
    message: str | None = None


class VenueDateSplit(BaseModel):
    """Result of separating a date that leaked into a venue field."""

    model_config = ConfigDict(frozen=True)

    original_text: str
    venue: str | None = None
    date: str | None = None
    year: int | None = None
    was_mixed: bool = False
    confidence: float = 0.0
    notes: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Phase results
# ---------------------------------------------------------------------------


class BasePhaseResult(BaseModel):
    """Fields shared by every phase result."""

    model_config = ConfigDict(frozen=True)

    poster_id: str
    image_path: str
    status: PhaseStatus = PhaseStatus.PENDING
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    processing_time_ms: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    validation_results: list[ValidatorResult] = Field(default_factory=list)


class TypePhaseResult(BasePhaseResult):
    phase: Literal["type"] = "type"
    primary_type: PrimaryType = Field(default_factory=PrimaryType)
    secondary_types: list[TypeInference] = Field(default_factory=list)
    visual_cues: VisualCues = Field(default_factory=VisualCues)
    extracted_text: str | None = None
    ready_for_phase2: bool = False

    @property
    def ready(self) -> bool:
        return self.ready_for_phase2


class ArtistPhaseResult(BasePhaseResult):
    phase: Literal["artist"] = "artist"
    poster_type: PosterType = PosterType.UNKNOWN
    headliner: ArtistMatch | None = None
    supporting_acts: list[ArtistMatch] = Field(default_factory=list)
    tour_name: str | None = None
    record_label: str | None = None
    director: ArtistMatch | None = None
    cast: list[ArtistMatch] = Field(default_factory=list)
    existing_artist_matches: list[ExistingEntityMatch] = Field(default_factory=list)
    ready_for_phase3: bool = False

    @property
    def ready(self) -> bool:
        return self.ready_for_phase3


class VenuePhaseResult(BasePhaseResult):
    phase: Literal["venue"] = "venue"
    poster_type: PosterType = PosterType.UNKNOWN
    venue: VenueMatch | None = None
    theater: VenueMatch | None = None
    existing_venue_matches: list[ExistingEntityMatch] = Field(default_factory=list)
    venue_date_split: VenueDateSplit | None = None
    ready_for_phase4: bool = False

    @property
    def ready(self) -> bool:
        return self.ready_for_phase4


class EventPhaseResult(BasePhaseResult):
    phase: Literal["event"] = "event"
    poster_type: PosterType = PosterType.UNKNOWN
    event_date: DateInfo | None = None
    shows: list[ShowInfo] = Field(default_factory=list)
    year: int | None = None
    decade: str | None = None
    time_details: TimeDetails | None = None
    ticket_price: str | None = None
    age_restriction: str | None = None
    promoter: str | None = None
    artist_active_validation: PlausibilityCheck | None = None
    venue_exists_validation: PlausibilityCheck | None = None
    ready_for_assembly: bool = False

    @property
    def ready(self) -> bool:
        return self.ready_for_assembly


class AssemblyPhaseResult(BasePhaseResult):
    phase: Literal["assembly"] = "assembly"
    entity: PosterEntity | None = None
    entities_created: list[CreatedEntity] = Field(default_factory=list)
    relationships_created: list[CreatedRelationship] = Field(default_factory=list)
    overall_confidence: float = 0.0
    fields_needing_review: list[str] = Field(default_factory=list)

    @property
    def ready(self) -> bool:
        # Terminal phase: nothing downstream to gate.
        return True


PhaseResult = Annotated[
    Union[
        TypePhaseResult,
        ArtistPhaseResult,
        VenuePhaseResult,
        EventPhaseResult,
        AssemblyPhaseResult,
    ],
    Field(discriminator="phase"),
]


class PhaseContext(BaseModel):
    """What earlier phases decided, projected for use by later phases."""

    model_config = ConfigDict(frozen=True)

    poster_type: PosterType | None = None
    headliner: str | None = None
    venue: str | None = None
    city: str | None = None
    year: int | None = None
