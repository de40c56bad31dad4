"""Unit tests for PhaseManager: sessions, gates, review fields and jobs."""

from __future__ import annotations

import asyncio
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from src.models.phases import (
    ArtistMatch,
    ArtistPhaseResult,
    EventPhaseResult,
    PhaseName,
    PhaseStatus,
    PrimaryType,
    TypePhaseResult,
    VenueMatch,
    VenuePhaseResult,
)
from src.models.poster import PosterType
from src.models.processing import (
    IterativeProcessingConfig,
    IterativeProcessingResult,
    JobState,
    PhaseConfig,
)
from src.models.validation import ValidationStatus, ValidatorResult
from src.pipeline.phase_manager import PhaseManager
from src.utils.errors import SessionNotFoundError

IMAGE = "/tmp/poster.png"
BASE = {"poster_id": "poster_1", "image_path": IMAGE}


def _type_result(
    status: PhaseStatus = PhaseStatus.COMPLETED, confidence: float = 0.9, ready: bool = True
) -> TypePhaseResult:
    return TypePhaseResult(
        **BASE,
        status=status,
        confidence=confidence,
        primary_type=PrimaryType(type=PosterType.CONCERT, confidence=confidence),
        ready_for_phase2=ready,
    )


@pytest.fixture
def manager() -> PhaseManager:
    return PhaseManager()


# ======================================================================
# Contexts
# ======================================================================


class TestContexts:
    def test_create_context(self, manager: PhaseManager) -> None:
        context = manager.create_context(IMAGE, "poster_1")

        assert re.fullmatch(r"iter_[0-9a-z]+_[0-9a-f]{8}", context.session_id)
        assert context.current_phase == PhaseName.TYPE
        assert context.phase_results == {}
        assert manager.get_context(context.session_id) == context
        assert manager.get_active_contexts() == [context]

    def test_session_ids_are_unique(self, manager: PhaseManager) -> None:
        ids = {manager.create_context(IMAGE, "poster_1").session_id for _ in range(20)}
        assert len(ids) == 20

    def test_remove_context(self, manager: PhaseManager) -> None:
        context = manager.create_context(IMAGE, "poster_1")
        assert manager.remove_context(context.session_id) is True
        assert manager.remove_context(context.session_id) is False
        assert manager.get_context(context.session_id) is None

    def test_store_unknown_session_raises(self, manager: PhaseManager) -> None:
        with pytest.raises(SessionNotFoundError, match="iter_missing"):
            manager.store_phase_result("iter_missing", _type_result())

    def test_store_replaces_and_accumulates_validation(self, manager: PhaseManager) -> None:
        session_id = manager.create_context(IMAGE, "poster_1").session_id
        record = ValidatorResult(
            validator_name="knowledge_base", field="poster_type", status=ValidationStatus.MATCH
        )
        manager.store_phase_result(
            session_id, _type_result().model_copy(update={"validation_results": [record]})
        )
        context = manager.store_phase_result(session_id, _type_result(confidence=0.75))

        assert context.phase_results[PhaseName.TYPE].confidence == 0.75
        assert context.validation_results == [record]
        assert manager.get_phase_result(session_id, PhaseName.TYPE).confidence == 0.75
        assert set(manager.get_all_phase_results(session_id)) == {PhaseName.TYPE}
        assert manager.get_poster_type(session_id) == PosterType.CONCERT

    def test_unknown_session_lookups(self, manager: PhaseManager) -> None:
        assert manager.get_phase_result("nope", PhaseName.TYPE) is None
        assert manager.get_all_phase_results("nope") == {}
        assert manager.get_next_phase("nope") is None
        assert manager.calculate_overall_confidence("nope") == 0.0
        assert manager.get_fields_needing_review("nope") == []
        assert manager.export_context_state("nope") is None


# ======================================================================
# State machine
# ======================================================================


class TestAdvancePhase:
    def test_advances_when_completed_and_ready(self, manager: PhaseManager) -> None:
        session_id = manager.create_context(IMAGE, "poster_1").session_id
        manager.store_phase_result(session_id, _type_result())

        assert manager.get_next_phase(session_id) == PhaseName.ARTIST
        assert manager.advance_phase(session_id) == PhaseName.ARTIST
        assert manager.get_context(session_id).current_phase == PhaseName.ARTIST
        # The new current phase has no result yet.
        assert manager.advance_phase(session_id) is None

    @pytest.mark.parametrize(
        ("status", "ready"),
        [
            (PhaseStatus.NEEDS_REVIEW, True),
            (PhaseStatus.FAILED, False),
            (PhaseStatus.COMPLETED, False),
        ],
    )
    def test_does_not_advance(self, manager: PhaseManager, status: PhaseStatus, ready: bool) -> None:
        session_id = manager.create_context(IMAGE, "poster_1").session_id
        manager.store_phase_result(session_id, _type_result(status=status, ready=ready))

        assert manager.advance_phase(session_id) is None
        assert manager.get_context(session_id).current_phase == PhaseName.TYPE

    def test_no_result_no_advance(self, manager: PhaseManager) -> None:
        session_id = manager.create_context(IMAGE, "poster_1").session_id
        assert manager.get_next_phase(session_id) is None


# ======================================================================
# Confidence gates
# ======================================================================


class TestConfidenceGates:
    def test_thresholds_per_phase(self, manager: PhaseManager) -> None:
        assert manager.meets_confidence_threshold(PhaseName.TYPE, 0.7) is True
        assert manager.meets_confidence_threshold(PhaseName.TYPE, 0.69) is False
        assert manager.meets_confidence_threshold(PhaseName.EVENT, 0.5) is True

    def test_assembly_uses_default_threshold(self, manager: PhaseManager) -> None:
        assert manager.meets_confidence_threshold(PhaseName.ASSEMBLY, 0.5) is True
        assert manager.meets_confidence_threshold(PhaseName.ASSEMBLY, 0.49) is False

    def test_should_retry(self, manager: PhaseManager) -> None:
        assert manager.should_retry_phase(PhaseName.TYPE, 0.4, attempts=0) is True
        assert manager.should_retry_phase(PhaseName.TYPE, 0.4, attempts=2) is False
        assert manager.should_retry_phase(PhaseName.TYPE, 0.8, attempts=0) is False
        # Venue does not retry on low confidence by default.
        assert manager.should_retry_phase(PhaseName.VENUE, 0.1, attempts=0) is False
        assert manager.should_retry_phase(PhaseName.ASSEMBLY, 0.1, attempts=0) is False

    def test_custom_config(self) -> None:
        config = IterativeProcessingConfig(
            phases={PhaseName.TYPE: PhaseConfig(confidence_threshold=0.9)}
        )
        manager = PhaseManager(config)
        assert manager.meets_confidence_threshold(PhaseName.TYPE, 0.85) is False
        # Phases missing from the config fall back to the default.
        assert manager.meets_confidence_threshold(PhaseName.ARTIST, 0.5) is True


# ======================================================================
# Aggregation
# ======================================================================


class TestAggregation:
    def _full_session(self, manager: PhaseManager) -> str:
        session_id = manager.create_context(IMAGE, "poster_1").session_id
        manager.store_phase_result(session_id, _type_result(confidence=0.9))
        manager.store_phase_result(
            session_id,
            ArtistPhaseResult(
                **BASE,
                status=PhaseStatus.NEEDS_REVIEW,
                confidence=0.5,
                headliner=ArtistMatch(
                    extracted_name="Radiohed", validated_name="Radiohead", confidence=0.8
                ),
                validation_results=[
                    ValidatorResult(
                        validator_name="artist_splitter",
                        field="headliner",
                        status=ValidationStatus.PARTIAL,
                    )
                ],
            ),
        )
        manager.store_phase_result(
            session_id,
            VenuePhaseResult(
                **BASE,
                status=PhaseStatus.COMPLETED,
                confidence=0.7,
                venue=VenueMatch(extracted_name="The Metro", city="Chicago", confidence=0.7),
            ),
        )
        manager.store_phase_result(
            session_id,
            EventPhaseResult(**BASE, status=PhaseStatus.FAILED, confidence=0.0, year=1997),
        )
        return session_id

    def test_phase_context(self, manager: PhaseManager) -> None:
        session_id = self._full_session(manager)

        hints = manager.get_phase_context(session_id)

        assert hints.poster_type == PosterType.CONCERT
        assert hints.headliner == "Radiohead"
        assert hints.venue == "The Metro"
        assert hints.city == "Chicago"
        assert hints.year == 1997

    def test_phase_context_limited_to_upstream_phases(self, manager: PhaseManager) -> None:
        session_id = self._full_session(manager)

        hints = manager.get_phase_context(session_id, PhaseName.VENUE)

        assert hints.poster_type == PosterType.CONCERT
        assert hints.headliner == "Radiohead"
        assert hints.venue is None
        assert hints.city is None
        assert hints.year is None

    def test_phase_context_for_unknown_session_is_empty(self, manager: PhaseManager) -> None:
        hints = manager.get_phase_context("nope")
        assert hints.poster_type is None
        assert hints.headliner is None

    def test_overall_confidence_ignores_zero(self, manager: PhaseManager) -> None:
        session_id = self._full_session(manager)
        assert manager.calculate_overall_confidence(session_id) == pytest.approx((0.9 + 0.5 + 0.7) / 3)

    def test_fields_needing_review(self, manager: PhaseManager) -> None:
        session_id = self._full_session(manager)
        # Partial headliner validation, plus phases under their thresholds.
        assert manager.get_fields_needing_review(session_id) == [
            "headliner",
            "artist_phase",
            "event_phase",
        ]


# ======================================================================
# Persistence and cleanup
# ======================================================================


class TestStateRoundTrip:
    def test_export_then_import(self, manager: PhaseManager) -> None:
        session_id = manager.create_context(IMAGE, "poster_1").session_id
        manager.store_phase_result(session_id, _type_result())
        state = manager.export_context_state(session_id)

        other = PhaseManager()
        restored = other.import_context_state(state)

        assert restored == manager.get_context(session_id)
        assert isinstance(restored.phase_results[PhaseName.TYPE], TypePhaseResult)
        assert other.get_next_phase(session_id) == PhaseName.ARTIST


class TestCleanup:
    def _age(self, manager: PhaseManager, session_id: str, hours: int) -> None:
        state = manager.export_context_state(session_id)
        state["started_at"] = (datetime.now(tz=timezone.utc) - timedelta(hours=hours)).isoformat()
        manager.import_context_state(state)

    def test_removes_old_finished_sessions(self, manager: PhaseManager) -> None:
        finished = manager.create_context(IMAGE, "poster_1").session_id
        manager.store_phase_result(finished, _type_result())
        self._age(manager, finished, hours=2)

        in_review = manager.create_context(IMAGE, "poster_2").session_id
        manager.store_phase_result(in_review, _type_result(status=PhaseStatus.NEEDS_REVIEW))
        self._age(manager, in_review, hours=2)

        empty = manager.create_context(IMAGE, "poster_3").session_id
        self._age(manager, empty, hours=2)

        fresh = manager.create_context(IMAGE, "poster_4").session_id
        manager.store_phase_result(fresh, _type_result())

        assert manager.cleanup_old_contexts() == 1
        remaining = {c.session_id for c in manager.get_active_contexts()}
        assert remaining == {in_review, empty, fresh}

    def test_latest_result_decides(self, manager: PhaseManager) -> None:
        session_id = manager.create_context(IMAGE, "poster_1").session_id
        manager.store_phase_result(session_id, _type_result())
        manager.store_phase_result(
            session_id, ArtistPhaseResult(**BASE, status=PhaseStatus.IN_PROGRESS)
        )
        self._age(manager, session_id, hours=2)

        assert manager.cleanup_old_contexts() == 0

    def test_custom_age(self, manager: PhaseManager) -> None:
        session_id = manager.create_context(IMAGE, "poster_1").session_id
        manager.store_phase_result(session_id, _type_result())
        self._age(manager, session_id, hours=2)

        assert manager.cleanup_old_contexts(max_age_ms=3 * 3_600_000) == 0
        assert manager.cleanup_old_contexts(max_age_ms=60_000) == 1


# ======================================================================
# Jobs
# ======================================================================


class TestJobs:
    def test_create_job(self, manager: PhaseManager) -> None:
        job = manager.create_job(["a.png", "b.png", "c.png"])

        assert re.fullmatch(r"job_[0-9a-z]+_[0-9a-f]{8}", job.job_id)
        assert job.status == JobState.PENDING
        assert job.progress.total_images == 3
        assert job.phase_progress[PhaseName.ASSEMBLY].total == 3
        assert manager.get_job(job.job_id) == job
        assert manager.get_all_jobs() == [job]

    def test_update_job(self, manager: PhaseManager) -> None:
        job = manager.create_job(["a.png"])

        updated = manager.update_job(job.job_id, status=JobState.RUNNING)

        assert updated.status == JobState.RUNNING
        assert updated.updated_at >= job.updated_at
        assert manager.update_job("job_missing", status=JobState.RUNNING) is None

    def test_terminal_status_is_kept(self, manager: PhaseManager) -> None:
        job = manager.create_job(["a.png"])
        manager.update_job(job.job_id, status=JobState.CANCELLED)

        updated = manager.update_job(job.job_id, status=JobState.COMPLETED, error="late")

        assert updated.status == JobState.CANCELLED
        assert updated.error == "late"
        assert updated.is_terminal is True

    def test_record_job_result(self, manager: PhaseManager) -> None:
        job = manager.create_job(["a.png", "b.png", "c.png"])
        good = IterativeProcessingResult(
            poster_id="poster_a",
            image_path="a.png",
            success=True,
            status=PhaseStatus.COMPLETED,
            overall_confidence=0.9,
            phase_results={PhaseName.TYPE: _type_result()},
        )
        weak = IterativeProcessingResult(
            poster_id="poster_b",
            image_path="b.png",
            success=True,
            status=PhaseStatus.NEEDS_REVIEW,
            overall_confidence=0.3,
        )
        failed = IterativeProcessingResult(
            poster_id="poster_c",
            image_path="c.png",
            success=False,
            status=PhaseStatus.FAILED,
            overall_confidence=0.0,
        )

        for result in (good, weak, failed):
            manager.record_job_result(job.job_id, result)
        job = manager.get_job(job.job_id)

        assert job.progress.processed_images == 3
        assert job.stats.success_count == 2
        assert job.stats.failure_count == 1
        assert job.stats.needs_review_count == 1
        assert job.stats.low_confidence_count == 1
        assert job.stats.average_confidence == pytest.approx(0.4)
        assert job.phase_progress[PhaseName.TYPE].completed == 1
        assert job.phase_progress[PhaseName.ARTIST].completed == 0

    def test_record_for_unknown_job(self, manager: PhaseManager) -> None:
        result = IterativeProcessingResult(poster_id="p", image_path="a.png")
        assert manager.record_job_result("job_missing", result) is None

    def test_clear_all(self, manager: PhaseManager) -> None:
        manager.create_context(IMAGE, "poster_1")
        manager.create_job(["a.png"])

        manager.clear_all()

        assert manager.get_active_contexts() == []
        assert manager.get_all_jobs() == []


# ======================================================================
# Concurrent access
# ======================================================================


def _run_session(manager: PhaseManager, job_id: str, index: int, total: int) -> str:
    image = f"/tmp/poster_{index}.png"
    poster = {"poster_id": f"poster_{index}", "image_path": image}
    session_id = manager.create_context(image, poster["poster_id"]).session_id
    manager.store_phase_result(session_id, _type_result().model_copy(update=poster))
    manager.advance_phase(session_id)
    manager.store_phase_result(
        session_id,
        ArtistPhaseResult(
            **poster,
            status=PhaseStatus.COMPLETED,
            confidence=0.8,
            headliner=ArtistMatch(extracted_name=f"Artist {index}", confidence=0.8),
            ready_for_phase3=True,
        ),
    )
    manager.advance_phase(session_id)
    manager.record_job_result(
        job_id,
        IterativeProcessingResult(
            **poster,
            session_id=session_id,
            success=True,
            status=PhaseStatus.COMPLETED,
            overall_confidence=(index + 1) / total,
        ),
    )
    return session_id


class TestConcurrentAccess:
    def test_sessions_and_job_counters_under_threads(self, manager: PhaseManager) -> None:
        total = 32
        job = manager.create_job([f"/tmp/poster_{i}.png" for i in range(total)])

        with ThreadPoolExecutor(max_workers=8) as pool:
            session_ids = list(
                pool.map(lambda i: _run_session(manager, job.job_id, i, total), range(total))
            )

        assert len(set(session_ids)) == total
        for index, session_id in enumerate(session_ids):
            context = manager.get_context(session_id)
            assert context.current_phase == PhaseName.VENUE
            assert context.poster_id == f"poster_{index}"
            artist = context.phase_results[PhaseName.ARTIST]
            assert artist.headliner.extracted_name == f"Artist {index}"
            assert {r.poster_id for r in context.phase_results.values()} == {f"poster_{index}"}

        job = manager.get_job(job.job_id)
        assert job.progress.processed_images == total
        assert job.stats.success_count == total
        assert job.stats.failure_count == 0
        expected = sum((i + 1) / total for i in range(total)) / total
        assert job.stats.average_confidence == pytest.approx(expected)

    def test_same_session_writes_are_not_lost(self, manager: PhaseManager) -> None:
        session_id = manager.create_context(IMAGE, "poster_1").session_id
        writes = 50

        def store(index: int) -> None:
            record = ValidatorResult(
                validator_name=f"validator_{index}",
                field="poster_type",
                status=ValidationStatus.MATCH,
            )
            manager.store_phase_result(
                session_id, _type_result().model_copy(update={"validation_results": [record]})
            )

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(store, range(writes)))

        context = manager.get_context(session_id)
        names = {record.validator_name for record in context.validation_results}
        assert names == {f"validator_{i}" for i in range(writes)}

    @pytest.mark.asyncio
    async def test_sessions_under_gather(self, manager: PhaseManager) -> None:
        total = 16
        job = manager.create_job([f"/tmp/poster_{i}.png" for i in range(total)])

        session_ids = await asyncio.gather(
            *(asyncio.to_thread(_run_session, manager, job.job_id, i, total) for i in range(total))
        )

        assert all(
            manager.get_context(sid).current_phase == PhaseName.VENUE for sid in session_ids
        )
        assert manager.get_job(job.job_id).progress.processed_images == total
