"""Unit tests for the event (date and time) phase."""

from __future__ import annotations

from datetime import date

import pytest

from src.interfaces.knowledge_base_provider import KnowledgeEntity
from src.models.phases import (
    ArtistMatch,
    ArtistPhaseResult,
    PhaseName,
    PhaseStatus,
    PrimaryType,
    TimeDetails,
    TypePhaseResult,
    VenueDateSplit,
    VenueMatch,
    VenuePhaseResult,
)
from src.models.poster import PosterType
from src.models.processing import PhaseInput
from src.pipeline.phase_manager import PhaseManager
from src.pipeline.phases.event_phase import (
    EventPhase,
    calculate_event_confidence,
    decade_for,
    expand_year,
    extract_year,
    normalize_time,
    parse_date,
    year_window_check,
)
from src.providers.knowledge_base.memory_knowledge_base import InMemoryKnowledgeBase

IMAGE = "/tmp/poster.png"


def _input(
    manager: PhaseManager,
    poster_type: PosterType = PosterType.CONCERT,
    headliner: str | None = None,
    venue: str | None = None,
    venue_split: VenueDateSplit | None = None,
) -> PhaseInput:
    context = manager.create_context(IMAGE, "poster_1")
    session_id = context.session_id
    base = {"poster_id": "poster_1", "image_path": IMAGE, "status": PhaseStatus.COMPLETED}
    context = manager.store_phase_result(
        session_id,
        TypePhaseResult(
            **base,
            confidence=0.9,
            primary_type=PrimaryType(type=poster_type, confidence=0.9),
            ready_for_phase2=True,
        ),
    )
    if headliner:
        context = manager.store_phase_result(
            session_id,
            ArtistPhaseResult(
                **base,
                confidence=0.8,
                headliner=ArtistMatch(extracted_name=headliner, confidence=0.8),
                ready_for_phase3=True,
            ),
        )
    if venue or venue_split:
        context = manager.store_phase_result(
            session_id,
            VenuePhaseResult(
                **base,
                confidence=0.8,
                venue=VenueMatch(extracted_name=venue, confidence=0.8) if venue else None,
                venue_date_split=venue_split,
                ready_for_phase4=True,
            ),
        )
    return PhaseInput(image_path=IMAGE, poster_id="poster_1", context=context)


# ======================================================================
# Pure helpers
# ======================================================================


class TestDateParsing:
    def test_numeric_day_first(self) -> None:
        info = parse_date("15/03/1997")
        assert info is not None
        assert info.parsed == date(1997, 3, 15)
        assert info.confidence == pytest.approx(0.9)

    def test_month_day_swap(self) -> None:
        info = parse_date("12/31/1999")
        assert info.parsed == date(1999, 12, 31)

    def test_month_name(self) -> None:
        info = parse_date("March 3rd, 1995")
        assert (info.year, info.month, info.day) == (1995, 3, 3)

    def test_dotted_short_year(self) -> None:
        info = parse_date("5.6.97")
        assert info.parsed == date(1997, 6, 5)

    def test_no_year(self) -> None:
        info = parse_date("12/10")
        assert info.year is None
        assert info.parsed is None
        assert info.confidence == pytest.approx(0.7)

    def test_impossible_calendar_date(self) -> None:
        info = parse_date("31/02/1999")
        assert info.parsed is None
        assert info.confidence == pytest.approx(0.7)

    def test_year_only_pattern(self) -> None:
        info = parse_date("Summer 1994")
        assert info.year == 1994
        assert info.month is None

    def test_unparseable(self) -> None:
        assert parse_date("next friday") is None


class TestHelpers:
    def test_expand_year_pivot(self) -> None:
        assert expand_year(31) == 1931
        assert expand_year(30) == 2030
        assert expand_year(1997) == 1997

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(1997, 1997), (1950, None), ("circa 1975", 1975), ("no year", None), (True, None), (None, None)],
    )
    def test_extract_year(self, value, expected) -> None:
        assert extract_year(value) == expected

    def test_decade(self) -> None:
        assert decade_for(1997) == "1990s"
        assert decade_for(None) is None

    def test_normalize_time(self) -> None:
        assert normalize_time(["7pm", " 9pm "]) == "7pm, 9pm"
        assert normalize_time(" 20:00 ") == "20:00"
        assert normalize_time("") is None
        assert normalize_time(None) is None

    def test_year_window(self) -> None:
        assert year_window_check(1997, [], (5, 10), "Artist").message == "No year data to validate"
        assert year_window_check(1997, [1995], (0, 20), "Venue").valid is True
        outside = year_window_check(2025, [1994], (5, 10), "Artist")
        assert outside.valid is False
        assert outside.message == "Year 2025 outside known artist activity (1994-1994)"

    def test_confidence_optional_date(self) -> None:
        assert calculate_event_confidence(None, None, PosterType.PROMO) == pytest.approx(0.5)
        assert calculate_event_confidence(None, None, PosterType.CONCERT) == 0.0

    def test_confidence_capped(self) -> None:
        info = parse_date("15/03/1997")
        assert calculate_event_confidence(info, TimeDetails(door_time="20:00"), PosterType.CONCERT) == 1.0


# ======================================================================
# Phase execution
# ======================================================================


class TestEventPhase:
    @pytest.mark.asyncio
    async def test_full_concert_answer(self, mock_vision_provider) -> None:
        manager = PhaseManager()
        phase = EventPhase(vision_provider=mock_vision_provider, phase_manager=manager)

        result = await phase.execute(_input(manager))

        assert result.status == PhaseStatus.COMPLETED
        assert result.ready_for_assembly is True
        assert result.event_date.parsed == date(1997, 3, 15)
        assert result.year == 1997
        assert result.decade == "1990s"
        assert result.time_details == TimeDetails(door_time="20:00", show_time="21:00")
        assert result.ticket_price == "$15"
        assert result.age_restriction == "18+"
        assert result.promoter == "Jam Productions"
        assert len(result.shows) == 1
        assert result.confidence == 1.0
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_plausibility_against_knowledge_base(
        self, mock_vision_provider, knowledge_base
    ) -> None:
        manager = PhaseManager()
        phase = EventPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            knowledge_base=knowledge_base,
        )

        result = await phase.execute(_input(manager, headliner="Radiohead", venue="The Metro"))

        assert result.artist_active_validation.valid is True
        assert result.artist_active_validation.message == "No year data to validate"
        assert result.venue_exists_validation.valid is True
        assert result.venue_exists_validation.message == "Venue active from 1995 to 1995"
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_implausible_artist_year_penalised(self, vision_provider_factory) -> None:
        manager = PhaseManager()
        knowledge_base = InMemoryKnowledgeBase(
            entities=[
                KnowledgeEntity("poster_a", "Poster", ["headliner: Pavement", "year: 1994"]),
            ]
        )
        vision = vision_provider_factory({PhaseName.EVENT: {"event_date": "15/03/2025"}})
        phase = EventPhase(vision_provider=vision, phase_manager=manager, knowledge_base=knowledge_base)

        result = await phase.execute(_input(manager, headliner="Pavement"))

        assert result.artist_active_validation.valid is False
        # 0.9 - 0.15 + 0.1 full-date bonus
        assert result.confidence == pytest.approx(0.85)
        assert (
            "Artist activity validation: Year 2025 outside known artist activity (1994-1994)"
            in result.warnings
        )

    @pytest.mark.asyncio
    async def test_without_knowledge_base_checks_are_skipped(self, mock_vision_provider) -> None:
        manager = PhaseManager()
        phase = EventPhase(vision_provider=mock_vision_provider, phase_manager=manager)

        result = await phase.execute(_input(manager, headliner="Radiohead", venue="The Metro"))

        assert result.artist_active_validation.message == "Validation skipped - no knowledge base"
        assert result.venue_exists_validation.valid is True

    @pytest.mark.asyncio
    async def test_multiple_shows_share_the_year(self, vision_provider_factory) -> None:
        manager = PhaseManager()
        vision = vision_provider_factory(
            {
                PhaseName.EVENT: {
                    "year": 1997,
                    "shows": [
                        {"date": "12/10", "door_time": "20:00"},
                        {"date": "13/10", "show_time": ["19:00", "22:00"]},
                        {"date": "sometime"},
                    ],
                }
            }
        )
        phase = EventPhase(vision_provider=vision, phase_manager=manager)

        result = await phase.execute(_input(manager))

        assert [show.date.parsed for show in result.shows] == [
            date(1997, 10, 12),
            date(1997, 10, 13),
        ]
        assert [show.show_number for show in result.shows] == [1, 2]
        assert result.shows[1].show_time == "19:00, 22:00"
        assert result.event_date == result.shows[0].date

    @pytest.mark.asyncio
    async def test_year_only(self, vision_provider_factory) -> None:
        manager = PhaseManager()
        vision = vision_provider_factory({PhaseName.EVENT: {"year": "Summer 1994"}})
        phase = EventPhase(vision_provider=vision, phase_manager=manager)

        result = await phase.execute(_input(manager))

        assert result.year == 1994
        assert result.event_date.format == "year_only"
        assert result.confidence == pytest.approx(0.6)
        assert result.ready_for_assembly is True

    @pytest.mark.asyncio
    async def test_numeric_price_and_age_kept(self, vision_provider_factory) -> None:
        manager = PhaseManager()
        vision = vision_provider_factory(
            {PhaseName.EVENT: {"event_date": "23/04/2024", "ticket_price": 25, "age_restriction": 18}}
        )
        phase = EventPhase(vision_provider=vision, phase_manager=manager)

        result = await phase.execute(_input(manager))

        assert result.ticket_price == "25"
        assert result.age_restriction == "18"
        assert result.shows[0].ticket_price == "25"
        assert result.shows[0].age_restriction == "18"

    @pytest.mark.asyncio
    async def test_date_recovered_from_venue_split(self, vision_provider_factory) -> None:
        manager = PhaseManager()
        split = VenueDateSplit(
            original_text="Rod Laver Arena 23/04/2024",
            venue="Rod Laver Arena",
            date="23/04/2024",
            year=2024,
            was_mixed=True,
            confidence=0.9,
        )
        phase = EventPhase(vision_provider=vision_provider_factory({}), phase_manager=manager)

        result = await phase.execute(_input(manager, venue="Rod Laver Arena", venue_split=split))

        assert result.event_date.parsed == date(2024, 4, 23)
        assert result.year == 2024

    @pytest.mark.asyncio
    async def test_no_date_on_concert(self, vision_provider_factory) -> None:
        manager = PhaseManager()
        phase = EventPhase(vision_provider=vision_provider_factory({}), phase_manager=manager)

        result = await phase.execute(_input(manager))

        assert result.event_date is None
        assert result.confidence == 0.0
        assert result.status == PhaseStatus.NEEDS_REVIEW
        assert result.ready_for_assembly is False
        assert result.warnings == ["No date information extracted"]

    @pytest.mark.asyncio
    async def test_no_date_on_promo_is_ready(self, vision_provider_factory) -> None:
        manager = PhaseManager()
        phase = EventPhase(vision_provider=vision_provider_factory({}), phase_manager=manager)

        result = await phase.execute(_input(manager, poster_type=PosterType.PROMO))

        assert result.confidence == pytest.approx(0.5)
        assert result.ready_for_assembly is True
        assert result.status == PhaseStatus.COMPLETED
