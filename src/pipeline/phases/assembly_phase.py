"""Phase 5: merge the phase results into a poster entity and a graph plan.

Assembly makes no model calls.  It reads the four stored phase results,
builds a :class:`~src.models.poster.PosterEntity` whose observations use
the ``"key: value"`` form the other phases search for, and plans the
related entities and relationships for the poster's type:

    album        Album + CREATED_BY / RELEASED_BY / ADVERTISES_ALBUM + a year Show
    hybrid       the album plan plus the event plan
    film         DIRECTED_BY / STARS / ADVERTISES_SHOW
    concert, festival, comedy, theater
                 Event, Venue and Show entities with HELD_AT, HEADLINED,
                 PERFORMED_AT, PROMOTED_BY ...
    others       HEADLINED_ON / PERFORMED_ON / ADVERTISES_VENUE

Every poster also gets one HAS_TYPE relationship per inferred type.
Entity ids are slugs, so re-processing a poster merges into the same
graph nodes.  The plan is written to the knowledge base only when one is
configured and ``skip_storage`` is off.
"""

from __future__ import annotations

import re
from typing import TypeVar

from src.interfaces.knowledge_base_provider import (
    IKnowledgeBaseProvider,
    KnowledgeEntity,
    KnowledgeRelation,
)
from src.models.phases import (
    ArtistMatch,
    ArtistPhaseResult,
    AssemblyPhaseResult,
    BasePhaseResult,
    CreatedEntity,
    CreatedRelationship,
    DateInfo,
    EventPhaseResult,
    PhaseName,
    PhaseStatus,
    ShowInfo,
    TypePhaseResult,
    VenueMatch,
    VenuePhaseResult,
)
from src.models.poster import PosterEntity, PosterType, TypeInference
from src.models.processing import PhaseInput, ProcessingContext
from src.pipeline.phases.base import BasePhase
from src.utils.hashing import compute_file_hash

_SLUG_RE = re.compile(r"[^a-z0-9]+")

_EVENT_TYPES = frozenset(
    {PosterType.CONCERT, PosterType.FESTIVAL, PosterType.COMEDY, PosterType.THEATER}
)

# Phase statuses that put a field on the review list.
_REVIEW_FIELDS: dict[PhaseName, str] = {
    PhaseName.TYPE: "poster_type",
    PhaseName.ARTIST: "headliner",
    PhaseName.VENUE: "venue",
    PhaseName.EVENT: "event_date",
}

_R = TypeVar("_R", bound=BasePhaseResult)


def slugify(text: str) -> str:
    return _SLUG_RE.sub("_", text.lower()).strip("_") or "unknown"


def date_slug(info: DateInfo) -> str:
    """``YYYY-MM-DD`` for full dates, ``YYYY`` for year-only, else the raw text."""
    if info.year and info.month and info.day:
        return f"{info.year}-{info.month:02d}-{info.day:02d}"
    if info.year:
        return str(info.year)
    return slugify(info.raw_value)


def _observations(*pairs: tuple[str, object]) -> list[str]:
    return [f"{key}: {value}" for key, value in pairs if value not in (None, "", [])]


class GraphPlan:
    """Entities and relationships to write for one poster, de-duplicated by id."""

    def __init__(self, poster: PosterEntity) -> None:
        self.poster = poster
        self._entities: dict[str, CreatedEntity] = {}
        self._relationships: list[CreatedRelationship] = []

    @property
    def entities(self) -> list[CreatedEntity]:
        return list(self._entities.values())

    @property
    def relationships(self) -> list[CreatedRelationship]:
        return list(self._relationships)

    def add_entity(self, entity_type: str, name: str, observations: list[str]) -> str:
        existing = self._entities.get(name)
        if existing is None:
            self._entities[name] = CreatedEntity(
                type=entity_type, name=name, observations=observations
            )
        else:
            merged = existing.observations + [o for o in observations if o not in existing.observations]
            self._entities[name] = existing.model_copy(update={"observations": merged})
        return name

    def relate(
        self,
        relation_type: str,
        from_name: str,
        to_name: str,
        confidence: float | None = None,
        **metadata: str | int | float | bool,
    ) -> None:
        key = (relation_type, from_name, to_name)
        if any((r.type, r.from_name, r.to_name) == key for r in self._relationships):
            return
        self._relationships.append(
            CreatedRelationship(
                type=relation_type,
                from_name=from_name,
                to_name=to_name,
                confidence=confidence,
                metadata=metadata,
            )
        )

    # ------------------------------------------------------------------
    # Entity helpers
    # ------------------------------------------------------------------

    def add_artist(self, artist: ArtistMatch, role: str | None = None) -> str:
        name = artist.display_name
        return self.add_entity(
            "Artist",
            f"artist_{slugify(name)}",
            _observations(("name", name), ("external_id", artist.external_id), ("role", role)),
        )

    def add_venue(self, venue: VenueMatch) -> str:
        name = venue.display_name
        return self.add_entity(
            "Venue",
            venue.existing_venue_id or f"venue_{slugify(name)}",
            _observations(
                ("name", name),
                ("city", venue.city),
                ("state", venue.state),
                ("country", venue.country),
            ),
        )

    def add_organization(self, name: str, role: str) -> str:
        return self.add_entity(
            "Organization",
            f"org_{slugify(name)}",
            _observations(("name", name), ("type", role)),
        )


class AssemblyPhase(BasePhase):
    """Build the poster entity and its graph plan from the stored results."""

    phase_name = PhaseName.ASSEMBLY
    result_model = AssemblyPhaseResult

    async def run(self, phase_input: PhaseInput, start: float) -> AssemblyPhaseResult:
        context = phase_input.context
        type_result = self._stored(context, PhaseName.TYPE, TypePhaseResult)
        artist_result = self._stored(context, PhaseName.ARTIST, ArtistPhaseResult)
        venue_result = self._stored(context, PhaseName.VENUE, VenuePhaseResult)
        event_result = self._stored(context, PhaseName.EVENT, EventPhaseResult)

        entity = self.build_entity(
            phase_input, type_result, artist_result, venue_result, event_result
        )
        plan = self.plan_graph(entity, artist_result, venue_result, event_result)

        entities_created: list[CreatedEntity] = []
        relationships_created: list[CreatedRelationship] = []
        if self._knowledge_base is not None and not phase_input.options.skip_storage:
            entities_created, relationships_created = await self._persist(self._knowledge_base, plan)

        fields = [
            field
            for phase, field in _REVIEW_FIELDS.items()
            if (result := context.phase_results.get(phase)) is not None
            and result.status == PhaseStatus.NEEDS_REVIEW
        ]
        fields.extend(self._manager.get_fields_needing_review(phase_input.session_id))
        fields = list(dict.fromkeys(fields))

        overall = self._manager.calculate_overall_confidence(phase_input.session_id)
        status = PhaseStatus.COMPLETED if not fields else PhaseStatus.NEEDS_REVIEW

        return AssemblyPhaseResult(
            **self.create_base_result(phase_input, status, overall, start),
            entity=entity,
            entities_created=entities_created,
            relationships_created=relationships_created,
            overall_confidence=overall,
            fields_needing_review=fields,
        )

    @staticmethod
    def _stored(context: ProcessingContext, phase: PhaseName, model: type[_R]) -> _R:
        result = context.phase_results.get(phase)
        if isinstance(result, model):
            return result
        return model(poster_id=context.poster_id, image_path=context.image_path)

    # ------------------------------------------------------------------
    # Poster entity
    # ------------------------------------------------------------------

    def build_entity(
        self,
        phase_input: PhaseInput,
        type_result: TypePhaseResult,
        artist_result: ArtistPhaseResult,
        venue_result: VenuePhaseResult,
        event_result: EventPhaseResult,
    ) -> PosterEntity:
        inferred = type_result.secondary_types or [
            TypeInference(
                type_key=type_result.primary_type.type,
                confidence=type_result.primary_type.confidence,
                evidence="; ".join(type_result.primary_type.evidence) or None,
                is_primary=True,
            )
        ]
        venue = venue_result.venue
        times = event_result.time_details
        return PosterEntity(
            name=phase_input.poster_id,
            poster_type=type_result.primary_type.type,
            inferred_types=inferred,
            headliner=artist_result.headliner.display_name if artist_result.headliner else None,
            supporting_acts=[act.display_name for act in artist_result.supporting_acts],
            venue_name=venue.display_name if venue else None,
            city=venue.city if venue else None,
            state=venue.state if venue else None,
            country=venue.country if venue else None,
            event_date=event_result.event_date.raw_value if event_result.event_date else None,
            event_dates=[show.date.raw_value for show in event_result.shows],
            year=event_result.year,
            decade=event_result.decade,
            door_time=times.door_time if times else None,
            show_time=times.show_time if times else None,
            ticket_price=event_result.ticket_price,
            age_restriction=event_result.age_restriction,
            promoter=event_result.promoter,
            tour_name=artist_result.tour_name,
            record_label=artist_result.record_label,
            extracted_text=type_result.extracted_text,
            visual_elements=type_result.visual_cues,
            observations=self.build_observations(
                type_result, artist_result, venue_result, event_result
            ),
            source_image_path=phase_input.image_path,
            source_image_hash=compute_file_hash(phase_input.image_path),
            vision_model=self._vision.get_model_info().model,
            processing_time_ms=sum(
                r.processing_time_ms for r in (type_result, artist_result, venue_result, event_result)
            ),
        )

    @staticmethod
    def build_observations(
        type_result: TypePhaseResult,
        artist_result: ArtistPhaseResult,
        venue_result: VenuePhaseResult,
        event_result: EventPhaseResult,
    ) -> list[str]:
        headliner = artist_result.headliner
        venue = venue_result.venue
        style = type_result.visual_cues.style
        observations = _observations(
            ("poster_type", type_result.primary_type.type.value),
            ("visual_style", style.value if style else None),
            ("headliner", headliner.display_name if headliner else None),
            ("headliner_external_id", headliner.external_id if headliner else None),
            ("supporting_acts", ", ".join(a.display_name for a in artist_result.supporting_acts)),
            ("director", artist_result.director.display_name if artist_result.director else None),
            ("cast", ", ".join(a.display_name for a in artist_result.cast)),
            ("tour_name", artist_result.tour_name),
            ("record_label", artist_result.record_label),
            ("venue", venue.display_name if venue else None),
            ("city", venue.city if venue else None),
            ("state", venue.state if venue else None),
            ("country", venue.country if venue else None),
        )

        if len(event_result.shows) > 1:
            observations.append(f"show_count: {len(event_result.shows)}")
            for show in event_result.shows:
                day = f" ({show.day_of_week})" if show.day_of_week else ""
                observations.append(f"show_{show.show_number}: {show.date.raw_value}{day}")
        elif event_result.event_date is not None:
            observations.append(f"event_date: {event_result.event_date.raw_value}")

        times = event_result.time_details
        observations.extend(
            _observations(
                ("year", event_result.year),
                ("decade", event_result.decade),
                ("door_time", times.door_time if times else None),
                ("show_time", times.show_time if times else None),
                ("ticket_price", event_result.ticket_price),
                ("age_restriction", event_result.age_restriction),
                ("promoter", event_result.promoter),
            )
        )
        return observations

    # ------------------------------------------------------------------
    # Graph plan
    # ------------------------------------------------------------------

    def plan_graph(
        self,
        poster: PosterEntity,
        artist_result: ArtistPhaseResult,
        venue_result: VenuePhaseResult,
        event_result: EventPhaseResult,
    ) -> GraphPlan:
        plan = GraphPlan(poster)
        poster_type = poster.poster_type

        if poster_type in (PosterType.ALBUM, PosterType.HYBRID):
            self._plan_album(plan, artist_result, event_result)
        if poster_type in _EVENT_TYPES or poster_type == PosterType.HYBRID:
            self._plan_event(plan, artist_result, venue_result, event_result)
        elif poster_type == PosterType.FILM:
            self._plan_film(plan, artist_result, event_result)
        elif poster_type != PosterType.ALBUM:
            self._plan_basic(plan, artist_result, venue_result)

        for inference in poster.inferred_types:
            type_id = plan.add_entity(
                "PosterType",
                f"PosterType_{inference.type_key.value}",
                [f"type: {inference.type_key.value}"],
            )
            metadata: dict[str, str | int | float | bool] = {
                "source": inference.source,
                "is_primary": inference.is_primary,
            }
            if inference.evidence:
                metadata["evidence"] = inference.evidence
            plan.relate("HAS_TYPE", poster.name, type_id, inference.confidence, **metadata)
        return plan

    @staticmethod
    def _plan_album(
        plan: GraphPlan, artist_result: ArtistPhaseResult, event_result: EventPhaseResult
    ) -> None:
        poster = plan.poster
        headliner = artist_result.headliner
        headliner_id = plan.add_artist(headliner) if headliner else None
        album_title = poster.title or (headliner.display_name if headliner else poster.name)

        album_id = plan.add_entity(
            "Album",
            f"album_{slugify(album_title)}_{poster.name.removeprefix('poster_')}",
            _observations(
                ("title", album_title),
                ("release_year", poster.year),
                ("record_label", artist_result.record_label),
                ("release_date", poster.event_date),
            ),
        )
        plan.relate("ADVERTISES_ALBUM", poster.name, album_id)

        if headliner_id:
            plan.relate("CREATED_BY", album_id, headliner_id)
            plan.relate("HEADLINED_ON", headliner_id, poster.name)
        if artist_result.record_label:
            label_id = plan.add_organization(artist_result.record_label, "record_label")
            plan.relate("RELEASED_BY", album_id, label_id)
        for featured in artist_result.supporting_acts:
            plan.relate("CREATED_BY", album_id, plan.add_artist(featured), role="featured")

        year = event_result.year or poster.year
        if year and headliner_id and headliner:
            date = event_result.event_date
            show_id = plan.add_entity(
                "Show",
                f"show_{slugify(headliner.display_name)}_none_{date_slug(date) if date else year}",
                _observations(
                    ("year", year),
                    ("release_date", date.raw_value if date else None),
                    ("artist", headliner.display_name),
                    ("type", "album release"),
                ),
            )
            plan.relate("ADVERTISES_SHOW", poster.name, show_id)
            plan.relate("PERFORMS_IN", headliner_id, show_id, is_headliner=True, billing_order=1)

    def _plan_event(
        self,
        plan: GraphPlan,
        artist_result: ArtistPhaseResult,
        venue_result: VenuePhaseResult,
        event_result: EventPhaseResult,
    ) -> None:
        poster = plan.poster
        venue_id = plan.add_venue(venue_result.venue) if venue_result.venue else None
        if venue_id:
            plan.relate("ADVERTISES_VENUE", poster.name, venue_id)

        headliner = artist_result.headliner
        headliner_id = plan.add_artist(headliner) if headliner else None
        if headliner_id:
            plan.relate("HEADLINED_ON", headliner_id, poster.name)

        event_name = artist_result.tour_name or (
            f"{headliner.display_name} Live" if headliner else poster.name
        )
        times = event_result.time_details
        event_id = plan.add_entity(
            "Event",
            f"event_{slugify(event_name)}_{poster.name.removeprefix('poster_')}",
            _observations(
                ("event_name", event_name),
                ("event_type", poster.poster_type.value),
                ("date", poster.event_date),
                ("year", event_result.year),
                ("door_time", times.door_time if times else None),
                ("show_time", times.show_time if times else None),
                ("ticket_price", event_result.ticket_price),
                ("age_restriction", event_result.age_restriction),
                ("tour", artist_result.tour_name),
            ),
        )
        plan.relate("ADVERTISES_EVENT", poster.name, event_id)
        if venue_id:
            plan.relate("HELD_AT", event_id, venue_id)
        if headliner_id:
            plan.relate("HEADLINED", headliner_id, event_id)

        support_ids: list[str] = []
        for act in artist_result.supporting_acts:
            act_id = plan.add_artist(act)
            support_ids.append(act_id)
            plan.relate("PERFORMED_ON", act_id, poster.name)
            plan.relate("PERFORMED_AT", act_id, event_id)

        self._plan_shows(
            plan, headliner, venue_result.venue, event_result, headliner_id, support_ids, venue_id, event_id
        )

        if event_result.promoter:
            promoter_id = plan.add_organization(event_result.promoter, "promoter")
            plan.relate("PROMOTED_BY", event_id, promoter_id)

    @staticmethod
    def _plan_shows(
        plan: GraphPlan,
        headliner: ArtistMatch | None,
        venue: VenueMatch | None,
        event_result: EventPhaseResult,
        headliner_id: str | None,
        support_ids: list[str],
        venue_id: str | None,
        event_id: str,
    ) -> None:
        """One Show per date; a year-only Show when only the year is known."""
        shows = list(event_result.shows)
        if not shows and event_result.year:
            shows = [
                ShowInfo(
                    date=DateInfo(
                        raw_value=str(event_result.year),
                        year=event_result.year,
                        confidence=0.6,
                        format="year_only",
                    )
                )
            ]
        if not shows:
            return

        artist_slug = slugify(headliner.display_name) if headliner else "unknown"
        venue_slug = slugify(venue.display_name) if venue else "none"
        for index, show in enumerate(shows, start=1):
            show_id = plan.add_entity(
                "Show",
                f"show_{artist_slug}_{venue_slug}_{date_slug(show.date)}",
                _observations(
                    ("date", show.date.raw_value),
                    ("day", show.day_of_week),
                    ("year", show.date.year),
                    ("door_time", show.door_time),
                    ("show_time", show.show_time),
                    ("ticket_price", show.ticket_price),
                    ("age_restriction", show.age_restriction),
                    ("show", f"{index} of {len(shows)}" if len(shows) > 1 else None),
                    ("headliner", headliner.display_name if headliner else None),
                    ("venue", venue.display_name if venue else None),
                    ("city", venue.city if venue else None),
                ),
            )
            plan.relate("ADVERTISES_SHOW", plan.poster.name, show_id)
            if venue_id:
                plan.relate("HELD_AT", show_id, venue_id)
            if headliner_id:
                plan.relate("PERFORMS_IN", headliner_id, show_id, is_headliner=True, billing_order=1)
            for order, act_id in enumerate(support_ids, start=2):
                plan.relate("PERFORMS_IN", act_id, show_id, is_headliner=False, billing_order=order)
            plan.relate("PART_OF_EVENT", show_id, event_id)

    @staticmethod
    def _plan_film(
        plan: GraphPlan, artist_result: ArtistPhaseResult, event_result: EventPhaseResult
    ) -> None:
        poster = plan.poster
        director = artist_result.director
        director_id = plan.add_artist(director, role="director") if director else None
        if director_id:
            plan.relate("DIRECTED_BY", poster.name, director_id)

        for order, actor in enumerate(artist_result.cast, start=1):
            plan.relate(
                "STARS", poster.name, plan.add_artist(actor, role="actor"), billing_order=order
            )
        if not artist_result.cast and artist_result.headliner and not director:
            star_id = plan.add_artist(artist_result.headliner)
            plan.relate("STARS", poster.name, star_id, billing_order=1)

        primary = director or artist_result.headliner
        year = event_result.year or poster.year
        if year and primary:
            show_id = plan.add_entity(
                "Show",
                f"show_{slugify(primary.display_name)}_none_{year}",
                _observations(
                    ("year", year),
                    ("release_date", poster.event_date),
                    ("director", primary.display_name),
                    ("type", "film release"),
                    ("film", poster.title),
                ),
            )
            plan.relate("ADVERTISES_SHOW", poster.name, show_id)
            primary_id = director_id or plan.add_artist(primary)
            plan.relate("PERFORMS_IN", primary_id, show_id, is_headliner=True, billing_order=1)

    @staticmethod
    def _plan_basic(
        plan: GraphPlan, artist_result: ArtistPhaseResult, venue_result: VenuePhaseResult
    ) -> None:
        poster = plan.poster
        if artist_result.headliner:
            plan.relate("HEADLINED_ON", plan.add_artist(artist_result.headliner), poster.name)
        for act in artist_result.supporting_acts:
            plan.relate("PERFORMED_ON", plan.add_artist(act), poster.name)
        if venue_result.venue:
            plan.relate("ADVERTISES_VENUE", poster.name, plan.add_venue(venue_result.venue))

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def _persist(
        self, knowledge_base: IKnowledgeBaseProvider, plan: GraphPlan
    ) -> tuple[list[CreatedEntity], list[CreatedRelationship]]:
        """Write the poster and its plan; ``is_new`` is false for merged nodes."""
        poster = plan.poster
        planned = [
            KnowledgeEntity(name=poster.name, entity_type="Poster", observations=poster.observations),
            *(
                KnowledgeEntity(name=e.name, entity_type=e.type, observations=e.observations)
                for e in plan.entities
            ),
        ]
        created = await knowledge_base.create_entities(planned)
        new_names = {entity.name for entity in created}

        relation_count = await knowledge_base.create_relations(
            [
                KnowledgeRelation(from_name=r.from_name, to_name=r.to_name, relation_type=r.type)
                for r in plan.relationships
            ]
        )
        self._logger.info(
            "assembly_persisted",
            poster_id=poster.name,
            entities=len(planned),
            new_entities=len(new_names),
            new_relations=relation_count,
        )

        entities = [
            CreatedEntity(
                type="Poster",
                name=poster.name,
                is_new=poster.name in new_names,
                observations=poster.observations,
            ),
            *(e.model_copy(update={"is_new": e.name in new_names}) for e in plan.entities),
        ]
        return entities, plan.relationships
