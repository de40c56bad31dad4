"""Driver for the five-phase poster extraction pipeline.

Runs each image through Type → Artist → Venue → Event → Assembly, storing
every result in the :class:`~src.pipeline.phase_manager.PhaseManager` and
asking it to advance after each phase.  The manager's guarded
``advance_phase`` is the only thing that moves ``current_phase``; the
driver decides what to do when it refuses:

    flag    keep going; the session stays at the gate and the weak
            fields are reported for review
    pause   stop this image and return a result with ``paused_at``
    skip    keep going, without retries or type refinement

A failed Type phase ends the image immediately, since every later prompt
depends on the poster type.

Batches fan out with :func:`~src.utils.concurrency.throttled_gather`;
each image's phases stay sequential.  Cancellation is cooperative: the
job status is checked before each phase, and a result that arrives after
cancellation is discarded while already stored results are kept.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import MutableMapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from src.interfaces.knowledge_base_provider import IKnowledgeBaseProvider
from src.interfaces.vision_provider import IVisionProvider
from src.models.phases import (
    PHASE_ORDER,
    AssemblyPhaseResult,
    PhaseName,
    PhaseResult,
    PhaseStatus,
    TypePhaseResult,
)
from src.models.processing import (
    BatchSummary,
    IterativeBatchResult,
    IterativeProcessingOptions,
    IterativeProcessingResult,
    JobState,
    LowConfidencePolicy,
    PhaseInput,
    PhaseOverride,
    ProcessingContext,
)
from src.pipeline.phase_manager import DEFAULT_CLEANUP_AGE_MS, PhaseManager
from src.pipeline.phases import PHASE_REGISTRY, ArtistPhase, BasePhase
from src.pipeline.phases.base import elapsed_ms
from src.pipeline.progress_tracker import ProgressListener, ProgressTracker, batch_progress
from src.services.artist_splitter import ArtistSplitter
from src.utils.concurrency import throttled_gather
from src.utils.confidence import calculate_batch_statistics, summarize_validation
from src.utils.errors import (
    JobCancelledError,
    PhaseExecutionError,
    PosterExtractError,
    SessionNotFoundError,
)
from src.utils.hashing import compute_file_hash, generate_poster_id, hash_text
from src.utils.logging import get_logger

ContextStore = MutableMapping[str, dict[str, Any]]


class IterativeProcessor:
    """Runs images through the phase pipeline, one session per image.

    All collaborators are injected; ``src.main.build_pipeline`` wires the
    production set.

    Parameters
    ----------
    vision_provider:
        Model used by every extraction phase.
    phase_manager:
        Session and job store; a fresh one is created when omitted.
    knowledge_base:
        Optional graph for cross-checks and for storing assembly output.
    artist_splitter:
        Optional splitter/validator for the Artist phase.
    progress_tracker:
        Receives per-phase progress for batch jobs.
    context_store:
        Optional mapping (e.g. :class:`SQLiteContextStore`) that receives
        each session's exported state once its image finishes.
    cleanup_max_age_ms:
        Age after which finished sessions are swept at the end of a batch.
    """

    def __init__(
        self,
        vision_provider: IVisionProvider,
        phase_manager: PhaseManager | None = None,
        knowledge_base: IKnowledgeBaseProvider | None = None,
        artist_splitter: ArtistSplitter | None = None,
        progress_tracker: ProgressTracker | None = None,
        context_store: ContextStore | None = None,
        cleanup_max_age_ms: int = DEFAULT_CLEANUP_AGE_MS,
    ) -> None:
        self._vision = vision_provider
        self._manager = phase_manager or PhaseManager()
        self._knowledge_base = knowledge_base
        self._progress = progress_tracker or ProgressTracker()
        self._context_store = context_store
        self._cleanup_max_age_ms = cleanup_max_age_ms
        self._logger: structlog.BoundLogger = get_logger(__name__)

        self._phases: dict[PhaseName, BasePhase] = {}
        for name, phase_cls in PHASE_REGISTRY.items():
            if phase_cls is ArtistPhase:
                self._phases[name] = ArtistPhase(
                    vision_provider, self._manager, knowledge_base, artist_splitter
                )
            else:
                self._phases[name] = phase_cls(vision_provider, self._manager, knowledge_base)

    @property
    def phase_manager(self) -> PhaseManager:
        return self._manager

    @property
    def progress_tracker(self) -> ProgressTracker:
        return self._progress

    # ------------------------------------------------------------------
    # Single image
    # ------------------------------------------------------------------

    async def process_image(
        self,
        image_path: str,
        options: IterativeProcessingOptions | None = None,
        job_id: str | None = None,
    ) -> IterativeProcessingResult:
        """Run one image through every phase.

        Never raises for per-image problems: a missing file, a failed Type
        phase, a cancelled job or an unexpected error all come back as an
        unsuccessful :class:`IterativeProcessingResult`.
        """
        options = options or IterativeProcessingOptions(
            on_low_confidence=self._manager.config.on_low_confidence
        )
        start = time.perf_counter()

        if not Path(image_path).is_file():
            self._logger.warning("image_not_found", image_path=image_path)
            return IterativeProcessingResult(
                poster_id=generate_poster_id(hash_text(image_path)),
                image_path=image_path,
                status=PhaseStatus.FAILED,
                processing_time_ms=elapsed_ms(start),
                error=f"File not found: {image_path}",
            )

        try:
            poster_id = generate_poster_id(compute_file_hash(image_path))
        except OSError as exc:
            self._logger.error("image_read_failed", image_path=image_path, error=str(exc))
            return IterativeProcessingResult(
                poster_id=generate_poster_id(hash_text(image_path)),
                image_path=image_path,
                status=PhaseStatus.FAILED,
                processing_time_ms=elapsed_ms(start),
                error=f"Could not read {image_path}: {exc}",
            )

        context = self._manager.create_context(image_path, poster_id)
        session_id = context.session_id
        self._logger.info(
            "image_processing_started",
            image_path=image_path,
            poster_id=poster_id,
            session_id=session_id,
            job_id=job_id,
        )

        try:
            result = await self._run_phases(session_id, options, job_id, start)
        except JobCancelledError:
            self._logger.info("job_cancelled", job_id=job_id, session_id=session_id)
            result = self._build_result(
                session_id,
                start,
                status=PhaseStatus.SKIPPED,
                error="Job was cancelled",
            )
        except PosterExtractError as exc:
            self._logger.error(
                "image_processing_failed",
                image_path=image_path,
                session_id=session_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            result = self._build_result(
                session_id, start, status=PhaseStatus.FAILED, error=str(exc)
            )

        self._persist_session(session_id)
        self._logger.info(
            "image_processing_finished",
            image_path=image_path,
            session_id=session_id,
            success=result.success,
            status=result.status.value,
            overall_confidence=round(result.overall_confidence, 3),
            processing_time_ms=result.processing_time_ms,
        )
        return result

    async def _run_phases(
        self,
        session_id: str,
        options: IterativeProcessingOptions,
        job_id: str | None,
        start: float,
    ) -> IterativeProcessingResult:
        for phase in PHASE_ORDER:
            await self._before_phase(job_id, session_id, phase)
            result = await self._execute_with_retries(phase, session_id, options, job_id)

            if phase == PhaseName.TYPE and result.status == PhaseStatus.FAILED:
                return self._build_result(
                    session_id,
                    start,
                    status=PhaseStatus.FAILED,
                    error="; ".join(result.errors) or "Type classification failed",
                )
            if phase == PhaseName.ASSEMBLY:
                break

            if self._manager.advance_phase(session_id) is None:
                policy = options.on_low_confidence
                self._logger.info(
                    "phase_gate_not_passed",
                    session_id=session_id,
                    phase=phase.value,
                    status=result.status.value,
                    confidence=round(result.confidence, 3),
                    policy=policy.value,
                )
                if policy == LowConfidencePolicy.PAUSE:
                    return self._build_result(
                        session_id, start, status=PhaseStatus.NEEDS_REVIEW, paused_at=phase
                    )

        return self._build_result(session_id, start)

    async def _execute_with_retries(
        self,
        phase: PhaseName,
        session_id: str,
        options: IterativeProcessingOptions,
        job_id: str | None,
    ) -> PhaseResult:
        """Run *phase*, retrying low-confidence results, and store the best one."""
        result = await self._execute(phase, session_id, options)
        attempts = 0
        while (
            options.on_low_confidence != LowConfidencePolicy.SKIP
            and result.status != PhaseStatus.FAILED
            and attempts < options.max_retries
            and self._manager.should_retry_phase(phase, result.confidence, attempts)
        ):
            attempts += 1
            self._logger.info(
                "phase_retry",
                session_id=session_id,
                phase=phase.value,
                attempt=attempts,
                confidence=round(result.confidence, 3),
            )
            self._check_cancelled(job_id)
            retry = await self._execute(phase, session_id, options)
            if retry.status != PhaseStatus.FAILED and retry.confidence > result.confidence:
                result = retry

        self._store(job_id, session_id, result)
        return result

    async def _execute(
        self,
        phase: PhaseName,
        session_id: str,
        options: IterativeProcessingOptions,
    ) -> PhaseResult:
        context = self._manager.get_context(session_id)
        if context is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        phase_input = PhaseInput(
            image_path=context.image_path,
            poster_id=context.poster_id,
            context=context,
            options=options,
        )
        return await self._phases[phase].execute(phase_input)

    def _store(self, job_id: str | None, session_id: str, result: PhaseResult) -> None:
        # A result that lands after cancellation is dropped.
        self._check_cancelled(job_id)
        self._manager.store_phase_result(session_id, result)

    async def _before_phase(self, job_id: str | None, session_id: str, phase: PhaseName) -> None:
        self._check_cancelled(job_id)
        if job_id is None:
            return
        job = self._manager.update_job(job_id, current_phase=phase)
        if job is None:
            return
        context = self._manager.get_context(session_id)
        name = Path(context.image_path).name if context else session_id
        await self._progress.update(
            job_id,
            phase,
            batch_progress(job.progress.processed_images, job.progress.total_images, phase),
            f"{name}: {phase.value}",
        )

    def _check_cancelled(self, job_id: str | None) -> None:
        if job_id is None:
            return
        job = self._manager.get_job(job_id)
        if job is not None and job.status == JobState.CANCELLED:
            raise JobCancelledError(f"Job {job_id} was cancelled")

    def _build_result(
        self,
        session_id: str,
        start: float,
        status: PhaseStatus | None = None,
        paused_at: PhaseName | None = None,
        error: str | None = None,
    ) -> IterativeProcessingResult:
        context = self._manager.get_context(session_id)
        if context is None:
            raise SessionNotFoundError(f"Session {session_id} not found")

        assembly = context.phase_results.get(PhaseName.ASSEMBLY)
        entity = None
        if isinstance(assembly, AssemblyPhaseResult) and status is None:
            status = assembly.status
            entity = assembly.entity
            fields = assembly.fields_needing_review
            overall = assembly.overall_confidence
        else:
            fields = self._manager.get_fields_needing_review(session_id)
            overall = self._manager.calculate_overall_confidence(session_id)

        final_status = status or PhaseStatus.FAILED
        return IterativeProcessingResult(
            poster_id=context.poster_id,
            image_path=context.image_path,
            session_id=session_id,
            success=entity is not None and final_status != PhaseStatus.FAILED,
            status=final_status,
            entity=entity,
            phase_results=dict(context.phase_results),
            overall_confidence=overall,
            fields_needing_review=fields,
            validation=summarize_validation(context.validation_results),
            paused_at=paused_at,
            processing_time_ms=elapsed_ms(start),
            error=error,
        )

    def _persist_session(self, session_id: str) -> None:
        if self._context_store is None:
            return
        state = self._manager.export_context_state(session_id)
        if state is not None:
            self._context_store[session_id] = state

    def restore_session(self, session_id: str) -> ProcessingContext:
        """Load a persisted session back into the phase manager.

        Raises:
            SessionNotFoundError: No context store is configured, or it
                holds nothing for *session_id*.
        """
        if self._context_store is None:
            raise SessionNotFoundError(f"Cannot restore {session_id}: no context store configured")
        state = self._context_store.get(session_id)
        if state is None:
            raise SessionNotFoundError(f"Session {session_id} not found in context store")
        context = self._manager.import_context_state(state)
        self._logger.info(
            "session_restored",
            session_id=session_id,
            current_phase=context.current_phase.value,
            phases=len(context.phase_results),
        )
        return context

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def process_batch(
        self,
        image_paths: Sequence[str],
        options: IterativeProcessingOptions | None = None,
        concurrency: int | None = None,
        on_progress: ProgressListener | None = None,
    ) -> IterativeBatchResult:
        """Process *image_paths* concurrently under one job.

        At most ``concurrency`` images (default: the configured
        ``batch_size``) are in flight at once.  One image failing never
        affects the others.
        """
        job = self._manager.create_job(image_paths)
        job_id = job.job_id
        self._manager.update_job(job_id, status=JobState.RUNNING)
        if on_progress is not None:
            self._progress.register_listener(job_id, on_progress)

        semaphore = asyncio.Semaphore(concurrency or self._manager.config.batch_size)
        outcomes = await throttled_gather(
            [self._process_for_job(job_id, index, path, options) for index, path in enumerate(image_paths)],
            semaphore=semaphore,
        )

        results: list[IterativeProcessingResult] = []
        for path, outcome in zip(image_paths, outcomes):
            if isinstance(outcome, BaseException):
                self._logger.error("batch_image_crashed", image_path=path, error=str(outcome))
                outcome = IterativeProcessingResult(
                    poster_id=generate_poster_id(hash_text(path)),
                    image_path=path,
                    status=PhaseStatus.FAILED,
                    error=str(outcome),
                )
            results.append(outcome)

        final = self._manager.update_job(
            job_id, status=JobState.COMPLETED, completed_at=datetime.now(tz=timezone.utc)  # noqa: UP017
        )
        if final is not None and final.status != JobState.CANCELLED:
            await self._progress.update(job_id, PhaseName.ASSEMBLY, 100.0, "Batch complete")
        self._progress.clear(job_id)
        self._manager.cleanup_old_contexts(self._cleanup_max_age_ms)

        summary = summarize_batch(results)
        self._logger.info(
            "batch_completed",
            job_id=job_id,
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
            needs_review=summary.needs_review,
            average_confidence=round(summary.average_confidence, 3),
        )
        return IterativeBatchResult(
            job_id=job_id,
            results=results,
            summary=summary,
            validation_statistics=calculate_batch_statistics(
                [r.validation for r in results if r.validation is not None]
            ),
        )

    async def _process_for_job(
        self,
        job_id: str,
        index: int,
        image_path: str,
        options: IterativeProcessingOptions | None,
    ) -> IterativeProcessingResult:
        job = self._manager.get_job(job_id)
        if job is not None:
            self._manager.update_job(
                job_id,
                progress=job.progress.model_copy(
                    update={"current_image_index": index, "current_image_path": image_path}
                ),
            )
        result = await self.process_image(image_path, options, job_id=job_id)
        self._manager.record_job_result(job_id, result)
        return result

    def cancel_job(self, job_id: str) -> bool:
        """Mark a job cancelled; images stop before their next phase.

        Returns ``False`` for unknown jobs and jobs already finished.
        """
        job = self._manager.get_job(job_id)
        if job is None or job.is_terminal:
            return False
        updated = self._manager.update_job(job_id, status=JobState.CANCELLED)
        self._logger.info("job_cancelled", job_id=job_id)
        return updated is not None and updated.status == JobState.CANCELLED

    # ------------------------------------------------------------------
    # Manual intervention
    # ------------------------------------------------------------------

    async def retry_phase(
        self,
        session_id: str,
        phase: PhaseName,
        options: IterativeProcessingOptions | None = None,
    ) -> PhaseResult:
        """Re-run one phase of an existing session and store the new result.

        The session's ``current_phase`` is left where it was.  A session
        only held by the context store is restored first.

        Raises:
            PhaseExecutionError: The session is unknown.
        """
        if (
            self._manager.get_context(session_id) is None
            and self._context_store is not None
            and session_id in self._context_store
        ):
            self.restore_session(session_id)
        if self._manager.get_context(session_id) is None:
            raise PhaseExecutionError(f"Cannot retry {phase.value}: session {session_id} not found")
        result = await self._execute(phase, session_id, options or IterativeProcessingOptions())
        self._manager.store_phase_result(session_id, result)
        self._persist_session(session_id)
        self._logger.info(
            "phase_retried",
            session_id=session_id,
            phase=phase.value,
            status=result.status.value,
            confidence=round(result.confidence, 3),
        )
        return result

    def apply_override(self, session_id: str, override: PhaseOverride) -> PhaseResult:
        """Replace one top-level field of a stored phase result.

        The new value is validated against the result model, and the
        change is noted in the result's warnings.

        Raises:
            PhaseExecutionError: No stored result for the phase, an unknown
                field, or a value the model rejects.
        """
        current = self._manager.get_phase_result(session_id, override.phase)
        if current is None:
            raise PhaseExecutionError(
                f"No {override.phase.value} result stored for session {session_id}"
            )
        model = type(current)
        if override.field not in model.model_fields or override.field == "phase":
            raise PhaseExecutionError(
                f"Unknown field '{override.field}' for {override.phase.value} results"
            )

        note = f"Manual override of {override.field}"
        if override.reason:
            note += f": {override.reason}"
        data = current.model_dump()
        data[override.field] = override.value
        data["warnings"] = [*current.warnings, note]
        try:
            updated = model.model_validate(data)
        except ValidationError as exc:
            raise PhaseExecutionError(
                f"Invalid value for {override.phase.value}.{override.field}: {exc.error_count()} error(s)"
            ) from exc

        self._manager.store_phase_result(session_id, updated)
        self._persist_session(session_id)
        self._logger.info(
            "phase_override_applied",
            session_id=session_id,
            phase=override.phase.value,
            field=override.field,
        )
        return updated


def summarize_batch(results: Sequence[IterativeProcessingResult]) -> BatchSummary:
    """Counts, mean confidence and per-type tally for a finished batch."""
    by_type: dict[str, int] = {}
    for result in results:
        type_result = result.phase_results.get(PhaseName.TYPE)
        if isinstance(type_result, TypePhaseResult) and type_result.status != PhaseStatus.FAILED:
            key = type_result.primary_type.type.value
            by_type[key] = by_type.get(key, 0) + 1

    total = len(results)
    return BatchSummary(
        total=total,
        successful=sum(1 for r in results if r.success),
        failed=sum(1 for r in results if not r.success),
        needs_review=sum(1 for r in results if r.fields_needing_review),
        average_confidence=sum(r.overall_confidence for r in results) / total if total else 0.0,
        by_type=by_type,
    )

