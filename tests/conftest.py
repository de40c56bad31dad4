"""Shared pytest fixtures for the posterExtract test suite."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.interfaces.knowledge_base_provider import KnowledgeEntity
from src.interfaces.reference_data_provider import IReferenceDataProvider, ReferenceCandidate
from src.interfaces.vision_provider import IVisionProvider, VisionExtraction, VisionModelInfo
from src.models.phases import PhaseName
from src.pipeline.phases.prompts import (
    ARTIST_PROMPTS,
    EVENT_PROMPTS,
    TYPE_CLASSIFICATION_PROMPT,
    VENUE_PROMPTS,
)
from src.providers.knowledge_base.memory_knowledge_base import InMemoryKnowledgeBase
from src.utils.similarity import normalize_artist_name

# Smallest valid PNG: signature plus IHDR/IDAT/IEND for a 1x1 pixel.
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


# ---------------------------------------------------------------------------
# Vision model
# ---------------------------------------------------------------------------


def phase_for_prompt(prompt: str) -> PhaseName | str:
    """Which phase sent *prompt*; ``"refine"`` for the type refinement prompt."""
    if prompt == TYPE_CLASSIFICATION_PROMPT:
        return PhaseName.TYPE
    if prompt.startswith("A first look"):
        return "refine"
    if prompt in ARTIST_PROMPTS.values():
        return PhaseName.ARTIST
    if prompt in VENUE_PROMPTS.values():
        return PhaseName.VENUE
    if prompt in EVENT_PROMPTS.values():
        return PhaseName.EVENT
    raise AssertionError(f"Unexpected prompt: {prompt[:60]!r}")


def make_vision_provider(
    responses: Mapping[PhaseName | str, dict[str, Any] | str | Exception],
    model: str = "test-model",
) -> MagicMock:
    """Mock vision provider answering each phase prompt from *responses*.

    Dict answers are JSON-encoded; strings are returned verbatim; exceptions
    are raised.  Phases with no entry answer ``{}``.
    """

    async def _extract(image_path: str, prompt: str) -> VisionExtraction:
        answer = responses.get(phase_for_prompt(prompt), {})
        if isinstance(answer, Exception):
            raise answer
        text = answer if isinstance(answer, str) else json.dumps(answer)
        return VisionExtraction(extracted_text=text, processing_time_ms=5, model=model)

    provider = MagicMock(spec=IVisionProvider)
    provider.extract_from_image = AsyncMock(side_effect=_extract)
    provider.get_model_info.return_value = VisionModelInfo(provider="mock", model=model)
    return provider


CONCERT_RESPONSES: dict[PhaseName, dict[str, Any]] = {
    PhaseName.TYPE: {
        "poster_type": "concert",
        "confidence": 0.95,
        "evidence": ["venue and date", "doors time"],
        "visual_cues": {
            "has_artist_photo": True,
            "has_logo": False,
            "dominant_colors": ["red", "black"],
            "style": "photographic",
        },
        "extracted_text": "Radiohead live at the venue, doors 8pm, show 9pm, tickets $15, with Blur",
    },
    PhaseName.ARTIST: {
        "headliner": "Radiohead",
        "supporting_acts": ["Blur"],
        "tour_name": None,
        "record_label": None,
    },
    PhaseName.VENUE: {
        "venue_name": "The Metro",
        "city": "Chicago",
        "state": "IL",
        "country": "USA",
    },
    PhaseName.EVENT: {
        "event_date": "15/03/1997",
        "year": 1997,
        "door_time": "20:00",
        "show_time": "21:00",
        "ticket_price": "$15",
        "age_restriction": "18+",
        "promoter": "Jam Productions",
    },
}


@pytest.fixture
def concert_responses() -> dict[PhaseName, dict[str, Any]]:
    return {phase: dict(answer) for phase, answer in CONCERT_RESPONSES.items()}


@pytest.fixture
def vision_provider_factory() -> Callable[..., MagicMock]:
    return make_vision_provider


@pytest.fixture
def mock_vision_provider(concert_responses) -> MagicMock:
    return make_vision_provider(concert_responses)


# ---------------------------------------------------------------------------
# Reference databases
# ---------------------------------------------------------------------------


def make_reference_provider(
    known: Iterable[str],
    name: str = "musicbrainz",
    url_template: str = "https://musicbrainz.org/artist/{id}",
) -> MagicMock:
    """Mock reference provider that finds exactly the *known* names."""
    catalogue = {normalize_artist_name(artist): artist for artist in known}

    async def _search(query: str, limit: int = 5) -> list[ReferenceCandidate]:
        artist = catalogue.get(normalize_artist_name(query))
        if artist is None:
            return []
        return [ReferenceCandidate(id=f"{name}-{normalize_artist_name(artist)}", name=artist, score=1.0)]

    provider = MagicMock(spec=IReferenceDataProvider)
    provider.search_by_name = AsyncMock(side_effect=_search)
    provider.search_by_name_fuzzy = AsyncMock(return_value=[])
    provider.get_by_id = AsyncMock(return_value=None)
    provider.get_canonical_url.side_effect = lambda entry_id: url_template.format(id=entry_id)
    provider.get_provider_name.return_value = name
    provider.is_available.return_value = True
    return provider


@pytest.fixture
def reference_provider_factory() -> Callable[..., MagicMock]:
    return make_reference_provider


# ---------------------------------------------------------------------------
# Knowledge base
# ---------------------------------------------------------------------------


@pytest.fixture
def knowledge_base() -> InMemoryKnowledgeBase:
    """Graph seeded with one known venue and one earlier poster."""
    return InMemoryKnowledgeBase(
        entities=[
            KnowledgeEntity(
                name="venue_the_metro",
                entity_type="Venue",
                observations=["name: The Metro", "city: Chicago", "state: IL", "year: 1995"],
            ),
            KnowledgeEntity(
                name="poster_0000000000000001",
                entity_type="Poster",
                observations=[
                    "poster_type: concert",
                    "headliner: Pavement",
                    "venue: Empty Bottle",
                    "city: Chicago",
                    "year: 1994",
                ],
            ),
        ]
    )


# ---------------------------------------------------------------------------
# Files and config
# ---------------------------------------------------------------------------


@pytest.fixture
def poster_image(tmp_path: Path) -> Path:
    path = tmp_path / "poster.png"
    path.write_bytes(PNG_BYTES)
    return path


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Minimal configuration dict in the shape of config/config.yaml."""
    return {
        "llm": {"priority": ["anthropic", "openai", "ollama"]},
        "iterative": {
            "on_low_confidence": "flag",
            "batch_size": 4,
            "phases": {
                "type": {"confidence_threshold": 0.7},
                "artist": {"confidence_threshold": 0.6},
            },
        },
        "artist_splitter": {"match_threshold": 0.85, "partial_threshold": 0.7},
        "session": {"cleanup_max_age_ms": 3_600_000, "persist": False},
        "music_db": {"request_interval_seconds": 0.0},
    }
