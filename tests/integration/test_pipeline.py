"""End-to-end tests: build_pipeline wiring through to knowledge-base writes.

The vision LLM and the reference databases are mocked; everything else
(settings, YAML config, phases, phase manager, progress tracking, graph
store and SQLite session store) is real.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.main import build_pipeline
from src.models.phases import PhaseName, PhaseStatus
from src.models.processing import IterativeProcessingOptions, JobState
from src.pipeline.phase_manager import PhaseManager
from src.providers.session.sqlite_context_store import SQLiteContextStore
from src.utils.hashing import compute_file_hash, generate_poster_id
from tests.conftest import CONCERT_RESPONSES, PNG_BYTES, make_reference_provider, phase_for_prompt


def _llm(responses: dict[PhaseName, dict[str, Any]]) -> MagicMock:
    """Vision LLM that answers each phase prompt from *responses*."""

    async def _vision_extract(image_bytes: bytes, prompt: str) -> str:
        return json.dumps(responses.get(phase_for_prompt(prompt), {}))

    llm = MagicMock(spec=ILLMProvider)
    llm.get_provider_name.return_value = "mock"
    llm.get_model_name.return_value = "mock-vision"
    llm.supports_vision.return_value = True
    llm.vision_extract = AsyncMock(side_effect=_vision_extract)
    return llm


@pytest.fixture
def reference_providers():
    musicbrainz = make_reference_provider(["Radiohead", "Blur"])
    with patch("src.main._build_reference_providers", return_value=(musicbrainz, None)):
        yield musicbrainz


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        session_db_path=str(tmp_path / "sessions.db"),
        anthropic_api_key="",
        openai_api_key="",
        ollama_base_url="",
    )


class TestConcertPosterEndToEnd:
    @pytest.mark.asyncio
    async def test_batch_writes_graph_and_sessions(
        self, settings, mock_config, knowledge_base, reference_providers, poster_image, tmp_path
    ) -> None:
        mock_config["session"]["persist"] = True
        llm = _llm(CONCERT_RESPONSES)
        processor = build_pipeline(
            settings, config=mock_config, knowledge_base=knowledge_base, llm_provider=llm
        )
        updates: list[tuple[str, PhaseName, float, str]] = []

        batch = await processor.process_batch(
            [str(poster_image)],
            on_progress=lambda *update: updates.append(update),
        )

        # One image, fully validated against the mocked MusicBrainz.
        assert batch.summary.total == 1
        assert batch.summary.successful == 1
        assert batch.summary.by_type == {"concert": 1}
        result = batch.results[0]
        assert result.status == PhaseStatus.COMPLETED
        assert result.poster_id == generate_poster_id(compute_file_hash(poster_image))
        assert result.entity.headliner == "Radiohead"
        assert result.entity.vision_model == "mock-vision"
        assert all(call.kwargs["image_bytes"] == PNG_BYTES for call in llm.vision_extract.await_args_list)
        reference_providers.search_by_name.assert_any_await("Radiohead", 5)

        # Graph writes reach the shared knowledge base.
        poster = await knowledge_base.get_entity(result.poster_id)
        assert poster is not None
        assert "venue: The Metro" in poster.observations
        assert await knowledge_base.get_entity("artist_blur") is not None
        relation_types = {r.relation_type for r in knowledge_base.relations}
        assert {"HAS_TYPE", "ADVERTISES_VENUE", "PERFORMS_IN", "PROMOTED_BY"} <= relation_types

        # Progress ends at 100% and the job is finished.
        assert updates[-1] == (batch.job_id, PhaseName.ASSEMBLY, 100.0, "Batch complete")
        assert processor.progress_tracker.get_status(batch.job_id)["progress"] == 0.0
        assert processor.phase_manager.get_job(batch.job_id).status == JobState.COMPLETED

        # The session survives a restart through the SQLite store.
        store = SQLiteContextStore(db_path=tmp_path / "sessions.db")
        store.initialize()
        restored = PhaseManager().import_context_state(store[result.session_id])
        assert set(restored.phase_results) == set(PhaseName)

    @pytest.mark.asyncio
    async def test_skip_storage_and_missing_file(
        self, settings, mock_config, knowledge_base, reference_providers, poster_image, tmp_path
    ) -> None:
        processor = build_pipeline(
            settings,
            config=mock_config,
            knowledge_base=knowledge_base,
            llm_provider=_llm(CONCERT_RESPONSES),
        )
        missing = tmp_path / "missing.png"

        batch = await processor.process_batch(
            [str(poster_image), str(missing)],
            options=IterativeProcessingOptions(skip_storage=True),
        )

        assert batch.summary.successful == 1
        assert batch.summary.failed == 1
        ok, failed = batch.results
        assert ok.entity is not None
        assert await knowledge_base.get_entity(ok.poster_id) is None
        assert failed.status == PhaseStatus.FAILED
        assert failed.error == f"File not found: {missing}"

    @pytest.mark.asyncio
    async def test_unvalidated_artist_needs_review(
        self, settings, mock_config, reference_providers, tmp_path
    ) -> None:
        image = tmp_path / "unknown_band.png"
        image.write_bytes(PNG_BYTES)
        responses = {phase: dict(answer) for phase, answer in CONCERT_RESPONSES.items()}
        responses[PhaseName.ARTIST] = {"headliner": "Zzyzx Orchestra", "supporting_acts": []}
        processor = build_pipeline(settings, config=mock_config, llm_provider=_llm(responses))

        batch = await processor.process_batch([str(image)])

        result = batch.results[0]
        assert result.success is True
        assert result.status == PhaseStatus.NEEDS_REVIEW
        assert "artist_phase" in result.fields_needing_review
        assert batch.summary.needs_review == 1
