"""Poster-level domain models: poster types and the assembled poster entity.

``PosterType`` is decided by the Type phase and steers every later phase
(film posters are asked for a director instead of a headliner, album posters
may legitimately have no venue, and so on).  ``PosterEntity`` is the merged
record the Assembly phase emits, together with the entity and relationship
plan written to the knowledge base.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PosterType(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Fixed classification of what a poster advertises."""

    CONCERT = "concert"
    FESTIVAL = "festival"
    COMEDY = "comedy"
    THEATER = "theater"
    FILM = "film"
    ALBUM = "album"
    PROMO = "promo"
    EXHIBITION = "exhibition"
    HYBRID = "hybrid"
    UNKNOWN = "unknown"


class VisualStyle(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    PHOTOGRAPHIC = "photographic"
    ILLUSTRATED = "illustrated"
    TYPOGRAPHIC = "typographic"
    MIXED = "mixed"
    OTHER = "other"


class TypeInference(BaseModel):
    """One candidate poster type with the evidence behind it.

    A hybrid poster (e.g. an album release show) carries several of these;
    each becomes a ``HAS_TYPE`` relationship at assembly time.
    """

    model_config = ConfigDict(frozen=True)

    type_key: PosterType
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: str = "vision"
    evidence: str | None = None
    is_primary: bool = False


class VisualCues(BaseModel):
    """Layout hints the vision model reports alongside the poster type."""

    model_config = ConfigDict(frozen=True)

    has_artist_photo: bool | None = None
    has_album_artwork: bool | None = None
    has_logo: bool | None = None
    dominant_colors: list[str] = Field(default_factory=list)
    style: VisualStyle | None = None


class PosterEntity(BaseModel):
    """The merged metadata record for one poster image."""

    model_config = ConfigDict(frozen=True)

    name: str
    entity_type: str = "Poster"
    poster_type: PosterType = PosterType.UNKNOWN
    inferred_types: list[TypeInference] = Field(default_factory=list)
    title: str | None = None
    headliner: str | None = None
    supporting_acts: list[str] = Field(default_factory=list)
    venue_name: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    event_date: str | None = None
    event_dates: list[str] = Field(default_factory=list)
    year: int | None = None
    decade: str | None = None
    door_time: str | None = None
    show_time: str | None = None
    ticket_price: str | None = None
    age_restriction: str | None = None
    promoter: str | None = None
    tour_name: str | None = None
    record_label: str | None = None
    extracted_text: str | None = None
    visual_elements: VisualCues = Field(default_factory=VisualCues)
    observations: list[str] = Field(default_factory=list)
    source_image_path: str | None = None
    source_image_hash: str | None = None
    vision_model: str | None = None
    processing_time_ms: int = 0


class CreatedEntity(BaseModel):
    """A knowledge-base entity planned (and possibly written) by assembly."""

    model_config = ConfigDict(frozen=True)

    type: str
    name: str
    is_new: bool = True
    observations: list[str] = Field(default_factory=list)


class CreatedRelationship(BaseModel):
    """A directed, typed edge between two planned entities."""

    model_config = ConfigDict(frozen=True)

    type: str
    from_name: str
    to_name: str
    confidence: float | None = None
    metadata: dict[str, str | int | float | bool] = Field(default_factory=dict)
