"""Unit tests for the assembly phase: poster entity, graph plan and storage."""

from __future__ import annotations

import pytest

from src.models.phases import (
    ArtistMatch,
    ArtistPhaseResult,
    DateInfo,
    EventPhaseResult,
    PhaseStatus,
    PrimaryType,
    ShowInfo,
    TimeDetails,
    TypePhaseResult,
    VenueMatch,
    VenuePhaseResult,
)
from src.models.poster import PosterType
from src.models.processing import IterativeProcessingOptions, PhaseInput
from src.models.validation import ValidationSource
from src.pipeline.phase_manager import PhaseManager
from src.pipeline.phases.assembly_phase import AssemblyPhase, date_slug, slugify
from src.pipeline.phases.event_phase import parse_date
from src.utils.hashing import compute_file_hash

POSTER_ID = "poster_abc123"


def _store_results(
    manager: PhaseManager,
    image_path: str,
    poster_type: PosterType = PosterType.CONCERT,
    artist: dict | None = None,
    venue: VenueMatch | None = None,
    event: dict | None = None,
    artist_status: PhaseStatus = PhaseStatus.COMPLETED,
) -> PhaseInput:
    context = manager.create_context(image_path, POSTER_ID)
    session_id = context.session_id
    base = {"poster_id": POSTER_ID, "image_path": image_path, "status": PhaseStatus.COMPLETED}

    manager.store_phase_result(
        session_id,
        TypePhaseResult(
            **base,
            confidence=0.9,
            primary_type=PrimaryType(type=poster_type, confidence=0.9, evidence=["doors"]),
            extracted_text="Radiohead with Blur",
            ready_for_phase2=True,
        ),
    )
    artist_fields = artist if artist is not None else {}
    manager.store_phase_result(
        session_id,
        ArtistPhaseResult(
            **{**base, "status": artist_status},
            confidence=artist_fields.pop("confidence", 1.0),
            poster_type=poster_type,
            ready_for_phase3=artist_status == PhaseStatus.COMPLETED,
            **artist_fields,
        ),
    )
    manager.store_phase_result(
        session_id,
        VenuePhaseResult(
            **base, confidence=1.0, poster_type=poster_type, venue=venue, ready_for_phase4=True
        ),
    )
    context = manager.store_phase_result(
        session_id,
        EventPhaseResult(
            **base,
            confidence=1.0,
            poster_type=poster_type,
            ready_for_assembly=True,
            **(event or {}),
        ),
    )
    return PhaseInput(image_path=image_path, poster_id=POSTER_ID, context=context)


def _radiohead() -> ArtistMatch:
    return ArtistMatch(
        extracted_name="Radiohead",
        validated_name="Radiohead",
        external_id="mb-radiohead",
        confidence=1.0,
        source=ValidationSource.MUSICBRAINZ,
    )


def _metro() -> VenueMatch:
    return VenueMatch(
        extracted_name="The Metro",
        validated_name="The Metro",
        city="Chicago",
        state="IL",
        existing_venue_id="venue_the_metro",
        confidence=1.0,
    )


def _concert_event() -> dict:
    info = parse_date("15/03/1997")
    return {
        "event_date": info,
        "shows": [ShowInfo(date=info, door_time="20:00", show_time="21:00")],
        "year": 1997,
        "decade": "1990s",
        "time_details": TimeDetails(door_time="20:00", show_time="21:00"),
        "ticket_price": "$15",
        "promoter": "Jam Productions",
    }


def _edges(result) -> set[tuple[str, str, str]]:
    return {(r.type, r.from_name, r.to_name) for r in result.relationships_created}


# ======================================================================
# Helpers
# ======================================================================


class TestSlugs:
    def test_slugify(self) -> None:
        assert slugify("The Metro") == "the_metro"
        assert slugify("  AC/DC!! ") == "ac_dc"
        assert slugify("!!!") == "unknown"

    def test_date_slug(self) -> None:
        assert date_slug(DateInfo(raw_value="x", year=1997, month=3, day=5)) == "1997-03-05"
        assert date_slug(DateInfo(raw_value="1997", year=1997)) == "1997"
        assert date_slug(DateInfo(raw_value="Next Friday")) == "next_friday"


# ======================================================================
# Concert posters
# ======================================================================


class TestConcertAssembly:
    @pytest.mark.asyncio
    async def test_entity_and_plan_written_to_knowledge_base(
        self, mock_vision_provider, knowledge_base, poster_image
    ) -> None:
        manager = PhaseManager()
        phase_input = _store_results(
            manager,
            str(poster_image),
            artist={
                "headliner": _radiohead(),
                "supporting_acts": [ArtistMatch(extracted_name="Blur", confidence=1.0)],
            },
            venue=_metro(),
            event=_concert_event(),
        )
        phase = AssemblyPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            knowledge_base=knowledge_base,
        )

        result = await phase.execute(phase_input)

        assert result.status == PhaseStatus.COMPLETED
        assert result.fields_needing_review == []
        assert result.overall_confidence == pytest.approx((0.9 + 1.0 + 1.0 + 1.0) / 4)

        entity = result.entity
        assert entity.name == POSTER_ID
        assert entity.poster_type == PosterType.CONCERT
        assert entity.headliner == "Radiohead"
        assert entity.supporting_acts == ["Blur"]
        assert entity.venue_name == "The Metro"
        assert entity.city == "Chicago"
        assert entity.event_date == "15/03/1997"
        assert entity.year == 1997
        assert entity.door_time == "20:00"
        assert entity.source_image_hash == compute_file_hash(poster_image)
        assert entity.vision_model == "test-model"
        assert [t.type_key for t in entity.inferred_types] == [PosterType.CONCERT]
        assert "poster_type: concert" in entity.observations
        assert "headliner_external_id: mb-radiohead" in entity.observations
        assert "event_date: 15/03/1997" in entity.observations
        assert "promoter: Jam Productions" in entity.observations

        created = {e.name: e for e in result.entities_created}
        assert set(created) == {
            POSTER_ID,
            "artist_radiohead",
            "artist_blur",
            "venue_the_metro",
            "event_radiohead_live_abc123",
            "show_radiohead_the_metro_1997-03-15",
            "org_jam_productions",
            "PosterType_concert",
        }
        assert created["venue_the_metro"].is_new is False
        assert created[POSTER_ID].is_new is True
        assert created["artist_radiohead"].is_new is True

        edges = _edges(result)
        event_id = "event_radiohead_live_abc123"
        show_id = "show_radiohead_the_metro_1997-03-15"
        assert {
            ("ADVERTISES_VENUE", POSTER_ID, "venue_the_metro"),
            ("HEADLINED_ON", "artist_radiohead", POSTER_ID),
            ("ADVERTISES_EVENT", POSTER_ID, event_id),
            ("HELD_AT", event_id, "venue_the_metro"),
            ("HEADLINED", "artist_radiohead", event_id),
            ("PERFORMED_ON", "artist_blur", POSTER_ID),
            ("PERFORMED_AT", "artist_blur", event_id),
            ("ADVERTISES_SHOW", POSTER_ID, show_id),
            ("HELD_AT", show_id, "venue_the_metro"),
            ("PERFORMS_IN", "artist_radiohead", show_id),
            ("PERFORMS_IN", "artist_blur", show_id),
            ("PART_OF_EVENT", show_id, event_id),
            ("PROMOTED_BY", event_id, "org_jam_productions"),
            ("HAS_TYPE", POSTER_ID, "PosterType_concert"),
        } <= edges

        billing = {
            r.from_name: r.metadata
            for r in result.relationships_created
            if r.type == "PERFORMS_IN"
        }
        assert billing["artist_radiohead"] == {"is_headliner": True, "billing_order": 1}
        assert billing["artist_blur"] == {"is_headliner": False, "billing_order": 2}

        stored_poster = await knowledge_base.get_entity(POSTER_ID)
        assert stored_poster is not None
        assert "headliner: Radiohead" in stored_poster.observations
        merged_venue = await knowledge_base.get_entity("venue_the_metro")
        assert "year: 1995" in merged_venue.observations
        assert "name: The Metro" in merged_venue.observations

    @pytest.mark.asyncio
    async def test_skip_storage(self, mock_vision_provider, knowledge_base, poster_image) -> None:
        manager = PhaseManager()
        phase_input = _store_results(
            manager, str(poster_image), artist={"headliner": _radiohead()}, venue=_metro()
        )
        phase_input = phase_input.model_copy(
            update={"options": IterativeProcessingOptions(skip_storage=True)}
        )
        phase = AssemblyPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            knowledge_base=knowledge_base,
        )

        result = await phase.execute(phase_input)

        assert result.entity is not None
        assert result.entities_created == []
        assert result.relationships_created == []
        assert await knowledge_base.get_entity(POSTER_ID) is None

    @pytest.mark.asyncio
    async def test_multiple_shows(self, mock_vision_provider, poster_image) -> None:
        manager = PhaseManager()
        first, second = parse_date("12/10/1997"), parse_date("13/10/1997")
        phase_input = _store_results(
            manager,
            str(poster_image),
            artist={"headliner": _radiohead()},
            venue=_metro(),
            event={
                "event_date": first,
                "year": 1997,
                "shows": [
                    ShowInfo(date=first, day_of_week="Sunday", show_number=1),
                    ShowInfo(date=second, show_number=2),
                ],
            },
        )
        phase = AssemblyPhase(vision_provider=mock_vision_provider, phase_manager=manager)

        result = await phase.execute(phase_input)

        assert result.entity.event_dates == ["12/10/1997", "13/10/1997"]
        assert "show_count: 2" in result.entity.observations
        assert "show_1: 12/10/1997 (Sunday)" in result.entity.observations
        assert "show_2: 13/10/1997" in result.entity.observations
        # No knowledge base configured: nothing is written.
        assert result.entities_created == []

    @pytest.mark.asyncio
    async def test_low_confidence_phase_is_flagged(
        self, mock_vision_provider, poster_image
    ) -> None:
        manager = PhaseManager()
        phase_input = _store_results(
            manager,
            str(poster_image),
            artist={"headliner": ArtistMatch(extracted_name="Radiohead", confidence=0.5), "confidence": 0.45},
            artist_status=PhaseStatus.NEEDS_REVIEW,
            venue=_metro(),
        )
        phase = AssemblyPhase(vision_provider=mock_vision_provider, phase_manager=manager)

        result = await phase.execute(phase_input)

        assert result.status == PhaseStatus.NEEDS_REVIEW
        assert "headliner" in result.fields_needing_review
        assert "artist_phase" in result.fields_needing_review


# ======================================================================
# Other poster types
# ======================================================================


class TestOtherPosterTypes:
    @pytest.mark.asyncio
    async def test_album(self, mock_vision_provider, knowledge_base, poster_image) -> None:
        manager = PhaseManager()
        phase_input = _store_results(
            manager,
            str(poster_image),
            poster_type=PosterType.ALBUM,
            artist={"headliner": _radiohead(), "record_label": "XL Recordings"},
            event={"year": 2007},
        )
        phase = AssemblyPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            knowledge_base=knowledge_base,
        )

        result = await phase.execute(phase_input)

        album_id = "album_radiohead_abc123"
        edges = _edges(result)
        assert ("ADVERTISES_ALBUM", POSTER_ID, album_id) in edges
        assert ("CREATED_BY", album_id, "artist_radiohead") in edges
        assert ("RELEASED_BY", album_id, "org_xl_recordings") in edges
        assert ("ADVERTISES_SHOW", POSTER_ID, "show_radiohead_none_2007") in edges
        assert not any(e[0] == "ADVERTISES_EVENT" for e in edges)

    @pytest.mark.asyncio
    async def test_hybrid_gets_album_and_event(
        self, mock_vision_provider, knowledge_base, poster_image
    ) -> None:
        manager = PhaseManager()
        phase_input = _store_results(
            manager,
            str(poster_image),
            poster_type=PosterType.HYBRID,
            artist={"headliner": _radiohead()},
            venue=_metro(),
            event=_concert_event(),
        )
        phase = AssemblyPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            knowledge_base=knowledge_base,
        )

        result = await phase.execute(phase_input)

        kinds = {e[0] for e in _edges(result)}
        assert {"ADVERTISES_ALBUM", "ADVERTISES_EVENT", "HELD_AT"} <= kinds

    @pytest.mark.asyncio
    async def test_film(self, mock_vision_provider, knowledge_base, poster_image) -> None:
        manager = PhaseManager()
        director = ArtistMatch(extracted_name="Agnes Varda", confidence=0.5)
        phase_input = _store_results(
            manager,
            str(poster_image),
            poster_type=PosterType.FILM,
            artist={
                "headliner": director,
                "director": director,
                "cast": [
                    ArtistMatch(extracted_name="Corinne Marchand", confidence=0.5),
                    ArtistMatch(extracted_name="Antoine Bourseiller", confidence=0.5),
                ],
            },
            event={"year": 1962},
        )
        phase = AssemblyPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            knowledge_base=knowledge_base,
        )

        result = await phase.execute(phase_input)

        edges = _edges(result)
        assert ("DIRECTED_BY", POSTER_ID, "artist_agnes_varda") in edges
        assert ("STARS", POSTER_ID, "artist_corinne_marchand") in edges
        assert ("STARS", POSTER_ID, "artist_antoine_bourseiller") in edges
        assert ("ADVERTISES_SHOW", POSTER_ID, "show_agnes_varda_none_1962") in edges
        created = {e.name: e for e in result.entities_created}
        assert "role: director" in created["artist_agnes_varda"].observations

    @pytest.mark.asyncio
    async def test_exhibition_uses_basic_plan(
        self, mock_vision_provider, knowledge_base, poster_image
    ) -> None:
        manager = PhaseManager()
        phase_input = _store_results(
            manager,
            str(poster_image),
            poster_type=PosterType.EXHIBITION,
            artist={"headliner": ArtistMatch(extracted_name="Yayoi Kusama", confidence=0.5)},
            venue=VenueMatch(extracted_name="Tate Modern", city="London", confidence=0.6),
        )
        phase = AssemblyPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            knowledge_base=knowledge_base,
        )

        result = await phase.execute(phase_input)

        assert _edges(result) == {
            ("HEADLINED_ON", "artist_yayoi_kusama", POSTER_ID),
            ("ADVERTISES_VENUE", POSTER_ID, "venue_tate_modern"),
            ("HAS_TYPE", POSTER_ID, "PosterType_exhibition"),
        }
