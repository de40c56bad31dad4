"""Unit tests for the artist extraction phase."""

from __future__ import annotations

import pytest

from src.interfaces.knowledge_base_provider import KnowledgeEntity
from src.models.phases import (
    ArtistMatch,
    PhaseName,
    PhaseStatus,
    PrimaryType,
    TypePhaseResult,
)
from src.models.poster import PosterType
from src.models.processing import IterativeProcessingOptions, PhaseInput
from src.models.validation import ValidationSource, ValidationStatus
from src.pipeline.phase_manager import PhaseManager
from src.pipeline.phases.artist_phase import (
    ArtistPhase,
    calculate_artist_confidence,
    extract_artist_fields,
)
from src.providers.knowledge_base.memory_knowledge_base import InMemoryKnowledgeBase
from src.services.artist_splitter import ArtistSplitter
from src.utils.errors import ValidationUnavailableError

IMAGE = "/tmp/poster.png"


def _typed_input(
    manager: PhaseManager,
    poster_type: PosterType,
    options: IterativeProcessingOptions | None = None,
) -> PhaseInput:
    context = manager.create_context(IMAGE, "poster_1")
    context = manager.store_phase_result(
        context.session_id,
        TypePhaseResult(
            poster_id="poster_1",
            image_path=IMAGE,
            status=PhaseStatus.COMPLETED,
            confidence=0.9,
            primary_type=PrimaryType(type=poster_type, confidence=0.9),
            ready_for_phase2=True,
        ),
    )
    return PhaseInput(
        image_path=IMAGE,
        poster_id="poster_1",
        context=context,
        options=options or IterativeProcessingOptions(),
    )


# ======================================================================
# Pure helpers
# ======================================================================


class TestExtractArtistFields:
    def test_concert(self) -> None:
        fields = extract_artist_fields(
            {"headliner": " Radiohead ", "supporting_acts": "Blur, Pulp", "tour_name": "OK"},
            PosterType.CONCERT,
        )
        assert fields["headliner"] == "Radiohead"
        assert fields["supporting_acts"] == ["Blur", "Pulp"]
        assert fields["tour_name"] == "OK"

    def test_film_director_heads_the_bill(self) -> None:
        fields = extract_artist_fields(
            {"director": "Agnes Varda", "lead_actors": ["A"], "supporting_cast": ["B"]},
            PosterType.FILM,
        )
        assert fields["headliner"] == "Agnes Varda"
        assert fields["director"] == "Agnes Varda"
        assert fields["cast"] == ["A", "B"]
        assert fields["supporting_acts"] == []

    def test_theater_playwright_heads_the_bill(self) -> None:
        fields = extract_artist_fields(
            {"playwright": "Caryl Churchill", "performers": ["X", "Y"]},
            PosterType.THEATER,
        )
        assert fields["headliner"] == "Caryl Churchill"
        assert fields["supporting_acts"] == ["X", "Y"]

    def test_theater_without_playwright(self) -> None:
        fields = extract_artist_fields({"performers": ["X", "Y"]}, PosterType.THEATER)
        assert fields["headliner"] == "X"
        assert fields["supporting_acts"] == ["Y"]

    def test_unknown(self) -> None:
        fields = extract_artist_fields(
            {"primary_name": "Someone", "other_names": ["Else"]}, PosterType.UNKNOWN
        )
        assert fields["headliner"] == "Someone"
        assert fields["supporting_acts"] == ["Else"]


class TestCalculateArtistConfidence:
    def test_validated_headliner_alone(self) -> None:
        headliner = ArtistMatch(extracted_name="Radiohead", confidence=1.0, external_id="mb-1")
        # 0.6 + 0.1 + 0.3 * 0.5
        assert calculate_artist_confidence(headliner, [], PosterType.CONCERT) == pytest.approx(0.85)

    def test_capped_at_one(self) -> None:
        headliner = ArtistMatch(extracted_name="Radiohead", confidence=1.0, external_id="mb-1")
        support = [ArtistMatch(extracted_name="Blur", confidence=1.0)]
        assert calculate_artist_confidence(headliner, support, PosterType.CONCERT) == 1.0

    def test_missing_headliner_on_exhibition(self) -> None:
        assert calculate_artist_confidence(None, [], PosterType.EXHIBITION) == pytest.approx(0.45)

    def test_missing_headliner_on_concert(self) -> None:
        assert calculate_artist_confidence(None, [], PosterType.CONCERT) == pytest.approx(0.15)


# ======================================================================
# Phase execution
# ======================================================================


class TestArtistPhase:
    @pytest.mark.asyncio
    async def test_without_validators_names_are_kept_at_half(self, mock_vision_provider) -> None:
        manager = PhaseManager()
        phase = ArtistPhase(vision_provider=mock_vision_provider, phase_manager=manager)

        result = await phase.execute(_typed_input(manager, PosterType.CONCERT))

        assert result.headliner is not None
        assert result.headliner.extracted_name == "Radiohead"
        assert result.headliner.confidence == 0.5
        assert result.headliner.source == ValidationSource.INTERNAL
        assert [act.extracted_name for act in result.supporting_acts] == ["Blur"]
        # 0.6 * 0.5 + 0.3 * 0.5
        assert result.confidence == pytest.approx(0.45)
        assert result.status == PhaseStatus.NEEDS_REVIEW
        assert result.ready_for_phase3 is False
        assert result.validation_results == []
        assert 'Headliner "Radiohead" not verified in external database' in result.warnings

    @pytest.mark.asyncio
    async def test_validated_bill(self, mock_vision_provider, reference_provider_factory) -> None:
        manager = PhaseManager()
        splitter = ArtistSplitter(musicbrainz=reference_provider_factory(["Radiohead", "Blur"]))
        phase = ArtistPhase(
            vision_provider=mock_vision_provider, phase_manager=manager, artist_splitter=splitter
        )

        result = await phase.execute(_typed_input(manager, PosterType.CONCERT))

        assert result.status == PhaseStatus.COMPLETED
        assert result.ready_for_phase3 is True
        assert result.confidence == 1.0
        assert result.headliner.external_id == "musicbrainz-radiohead"
        assert result.headliner.source == ValidationSource.MUSICBRAINZ
        assert [r.field for r in result.validation_results] == ["headliner", "supporting_acts"]
        assert all(r.status == ValidationStatus.MATCH for r in result.validation_results)
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_concatenated_headliner_is_split(
        self, vision_provider_factory, reference_provider_factory
    ) -> None:
        manager = PhaseManager()
        vision = vision_provider_factory({PhaseName.ARTIST: {"headliner": "Radiohead, Blur"}})
        splitter = ArtistSplitter(musicbrainz=reference_provider_factory(["Radiohead", "Blur"]))
        phase = ArtistPhase(vision_provider=vision, phase_manager=manager, artist_splitter=splitter)

        result = await phase.execute(_typed_input(manager, PosterType.CONCERT))

        assert result.headliner.validated_name == "Radiohead"
        assert [act.validated_name for act in result.supporting_acts] == ["Blur"]
        assert any("split into 2 acts" in warning for warning in result.warnings)

    @pytest.mark.asyncio
    async def test_headliner_repeated_in_support_is_deduplicated(
        self, vision_provider_factory
    ) -> None:
        manager = PhaseManager()
        vision = vision_provider_factory(
            {PhaseName.ARTIST: {"headliner": "Radiohead", "supporting_acts": ["radiohead", "Blur"]}}
        )
        phase = ArtistPhase(vision_provider=vision, phase_manager=manager)

        result = await phase.execute(_typed_input(manager, PosterType.CONCERT))

        assert [act.extracted_name for act in result.supporting_acts] == ["Blur"]

    @pytest.mark.asyncio
    async def test_validation_outage_keeps_names_at_low_confidence(
        self, mock_vision_provider, reference_provider_factory
    ) -> None:
        manager = PhaseManager()
        musicbrainz = reference_provider_factory([])
        musicbrainz.search_by_name.side_effect = ValidationUnavailableError("down")
        phase = ArtistPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            artist_splitter=ArtistSplitter(musicbrainz=musicbrainz),
        )

        result = await phase.execute(_typed_input(manager, PosterType.CONCERT))

        assert result.status == PhaseStatus.NEEDS_REVIEW
        assert result.headliner.confidence == 0.3
        assert [act.confidence for act in result.supporting_acts] == [0.3]
        assert result.confidence == pytest.approx(0.27)

    @pytest.mark.asyncio
    async def test_validation_switched_off(
        self, mock_vision_provider, reference_provider_factory
    ) -> None:
        manager = PhaseManager()
        musicbrainz = reference_provider_factory(["Radiohead", "Blur"])
        phase = ArtistPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            artist_splitter=ArtistSplitter(musicbrainz=musicbrainz),
        )

        result = await phase.execute(
            _typed_input(
                manager, PosterType.CONCERT, IterativeProcessingOptions(validate_artists=False)
            )
        )

        assert result.headliner.confidence == 0.5
        musicbrainz.search_by_name.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_splitter_without_providers_leaves_names_unvalidated(
        self, mock_vision_provider
    ) -> None:
        manager = PhaseManager()
        phase = ArtistPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            artist_splitter=ArtistSplitter(musicbrainz=None),
        )

        result = await phase.execute(_typed_input(manager, PosterType.CONCERT))

        assert result.errors == []
        assert result.headliner.extracted_name == "Radiohead"
        assert result.headliner.confidence == 0.5
        assert [act.confidence for act in result.supporting_acts] == [0.5]

    @pytest.mark.asyncio
    async def test_film_director_and_cast(
        self, vision_provider_factory, reference_provider_factory
    ) -> None:
        manager = PhaseManager()
        vision = vision_provider_factory(
            {PhaseName.ARTIST: {"director": "Christopher Nolan", "cast": ["Cillian Murphy"]}}
        )
        splitter = ArtistSplitter(
            musicbrainz=reference_provider_factory(["Christopher Nolan", "Cillian Murphy"])
        )
        phase = ArtistPhase(vision_provider=vision, phase_manager=manager, artist_splitter=splitter)

        result = await phase.execute(_typed_input(manager, PosterType.FILM))

        assert result.poster_type == PosterType.FILM
        assert result.director is not None
        assert result.director == result.headliner
        assert [member.validated_name for member in result.cast] == ["Cillian Murphy"]
        # 0.6 + 0.1 + 0.3 * 0.5
        assert result.confidence == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_existing_artists_found_in_knowledge_base(self, mock_vision_provider) -> None:
        manager = PhaseManager()
        knowledge_base = InMemoryKnowledgeBase(
            entities=[KnowledgeEntity("artist_radiohead", "Artist", ["name: Radiohead"])]
        )
        phase = ArtistPhase(
            vision_provider=mock_vision_provider,
            phase_manager=manager,
            knowledge_base=knowledge_base,
        )

        result = await phase.execute(_typed_input(manager, PosterType.CONCERT))

        assert [(m.name, m.entity_id) for m in result.existing_artist_matches] == [
            ("Radiohead", "artist_radiohead")
        ]

    @pytest.mark.asyncio
    async def test_no_names_at_all(self, vision_provider_factory) -> None:
        manager = PhaseManager()
        phase = ArtistPhase(vision_provider=vision_provider_factory({}), phase_manager=manager)

        result = await phase.execute(_typed_input(manager, PosterType.CONCERT))

        assert result.headliner is None
        assert result.supporting_acts == []
        assert result.confidence == pytest.approx(0.15)
        assert result.status == PhaseStatus.NEEDS_REVIEW
