"""Session and job state for the iterative extraction pipeline.

The Phase Manager owns every :class:`ProcessingContext` (one per image)
and every :class:`IterativeJobStatus` (one per batch).  Phases never edit
state directly; they return results and the driver stores them here.

State machine
-------------
A session starts at ``type``.  ``advance_phase`` moves it to the next
entry of ``PHASE_ORDER`` only when the stored result for the current
phase is ``completed`` *and* its readiness flag is set::

    type --ready_for_phase2--> artist --ready_for_phase3--> venue
         --ready_for_phase4--> event --ready_for_assembly--> assembly

Calling ``advance_phase`` twice without storing a new result is a no-op
the second time, because the new current phase has no result yet.

Concurrency
-----------
Contexts and jobs are frozen pydantic models, so every mutation builds a
replacement with ``model_copy(update=...)`` and swaps it in.  Each swap
runs under a per-key ``threading.Lock`` from :class:`KeyedLocks`; there is
no manager-wide lock, so images processed concurrently never contend on
each other's sessions.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from src.models.phases import (
    PHASE_ORDER,
    ArtistPhaseResult,
    EventPhaseResult,
    PhaseContext,
    PhaseName,
    PhaseResult,
    PhaseStatus,
    TypePhaseResult,
    VenuePhaseResult,
)
from src.models.poster import PosterType
from src.models.processing import (
    TERMINAL_JOB_STATES,
    IterativeJobStatus,
    IterativeProcessingConfig,
    IterativeProcessingResult,
    JobProgress,
    PhaseProgress,
    ProcessingContext,
)
from src.models.validation import QASuggestion, ValidationStatus, ValidatorResult
from src.utils.concurrency import KeyedLocks
from src.utils.errors import SessionNotFoundError
from src.utils.logging import get_logger

DEFAULT_CONFIDENCE_THRESHOLD = 0.5
DEFAULT_CLEANUP_AGE_MS = 3_600_000  # 1 hour

# Results below this overall confidence count as low-confidence in job stats.
_LOW_CONFIDENCE_CUTOFF = 0.5

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_session_id() -> str:
    """``iter_<base36 epoch ms>_<8 hex>``."""
    return f"iter_{_base36(int(time.time() * 1000))}_{secrets.token_hex(4)}"


def generate_job_id() -> str:
    """``job_<base36 epoch ms>_<8 hex>``."""
    return f"job_{_base36(int(time.time() * 1000))}_{secrets.token_hex(4)}"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class PhaseManager:
    """Owns processing contexts and batch jobs.

    Parameters
    ----------
    config:
        Per-phase thresholds and retry policy.  Read-only for the life of
        the manager.
    """

    def __init__(self, config: IterativeProcessingConfig | None = None) -> None:
        self._config = config or IterativeProcessingConfig()
        self._contexts: dict[str, ProcessingContext] = {}
        self._jobs: dict[str, IterativeJobStatus] = {}
        self._session_locks = KeyedLocks()
        self._job_locks = KeyedLocks()
        self._logger = get_logger(__name__)

    @property
    def config(self) -> IterativeProcessingConfig:
        return self._config

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def create_context(self, image_path: str, poster_id: str) -> ProcessingContext:
        session_id = generate_session_id()
        context = ProcessingContext(
            session_id=session_id,
            image_path=image_path,
            poster_id=poster_id,
            current_phase=PhaseName.TYPE,
        )
        with self._session_locks.hold(session_id):
            self._contexts[session_id] = context
        self._logger.debug("context_created", session_id=session_id, image_path=image_path)
        return context

    def get_context(self, session_id: str) -> ProcessingContext | None:
        return self._contexts.get(session_id)

    def remove_context(self, session_id: str) -> bool:
        with self._session_locks.hold(session_id):
            removed = self._contexts.pop(session_id, None) is not None
        self._session_locks.discard(session_id)
        return removed

    def get_active_contexts(self) -> list[ProcessingContext]:
        return list(self._contexts.values())

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, image_paths: Sequence[str]) -> IterativeJobStatus:
        total = len(image_paths)
        job = IterativeJobStatus(
            job_id=generate_job_id(),
            progress=JobProgress(total_images=total),
            phase_progress={phase: PhaseProgress(total=total) for phase in PHASE_ORDER},
        )
        with self._job_locks.hold(job.job_id):
            self._jobs[job.job_id] = job
        self._logger.info("job_created", job_id=job.job_id, total_images=total)
        return job

    def get_job(self, job_id: str) -> IterativeJobStatus | None:
        return self._jobs.get(job_id)

    def get_all_jobs(self) -> list[IterativeJobStatus]:
        return list(self._jobs.values())

    def update_job(self, job_id: str, **updates: Any) -> IterativeJobStatus | None:
        """Apply *updates* to a job and stamp ``updated_at``.

        A job already in a terminal state keeps its status; a request to
        change it is dropped (other fields still apply).
        """
        with self._job_locks.hold(job_id):
            job = self._jobs.get(job_id)
            if job is None:
                return None

            new_status = updates.get("status")
            if job.status in TERMINAL_JOB_STATES and new_status is not None and new_status != job.status:
                self._logger.warning(
                    "terminal_job_status_change_refused",
                    job_id=job_id,
                    status=job.status.value,
                    requested=str(new_status),
                )
                updates = {key: value for key, value in updates.items() if key != "status"}

            job = job.model_copy(update={**updates, "updated_at": _utcnow()})
            self._jobs[job_id] = job
            return job

    def record_job_result(
        self,
        job_id: str,
        result: IterativeProcessingResult,
    ) -> IterativeJobStatus | None:
        """Fold one image's result into the job counters and running average."""
        with self._job_locks.hold(job_id):
            job = self._jobs.get(job_id)
            if job is None:
                return None

            processed = job.progress.processed_images + 1
            stats = job.stats
            average = (
                stats.average_confidence * job.progress.processed_images + result.overall_confidence
            ) / processed

            phase_progress = dict(job.phase_progress)
            for phase, phase_result in result.phase_results.items():
                if phase_result.status in (PhaseStatus.COMPLETED, PhaseStatus.NEEDS_REVIEW):
                    current = phase_progress.get(phase, PhaseProgress(total=job.progress.total_images))
                    phase_progress[phase] = current.model_copy(
                        update={"completed": current.completed + 1}
                    )

            job = job.model_copy(
                update={
                    "progress": job.progress.model_copy(update={"processed_images": processed}),
                    "phase_progress": phase_progress,
                    "stats": stats.model_copy(
                        update={
                            "success_count": stats.success_count + int(result.success),
                            "failure_count": stats.failure_count + int(not result.success),
                            "needs_review_count": stats.needs_review_count
                            + int(result.status == PhaseStatus.NEEDS_REVIEW),
                            "low_confidence_count": stats.low_confidence_count
                            + int(result.success and result.overall_confidence < _LOW_CONFIDENCE_CUTOFF),
                            "average_confidence": average,
                        }
                    ),
                    "updated_at": _utcnow(),
                }
            )
            self._jobs[job_id] = job
            return job

    # ------------------------------------------------------------------
    # Phase results
    # ------------------------------------------------------------------

    def store_phase_result(self, session_id: str, result: PhaseResult) -> ProcessingContext:
        """Store *result* for its phase, replacing any earlier one.

        Raises
        ------
        SessionNotFoundError
            If *session_id* is unknown.
        """
        phase = PhaseName(result.phase)
        with self._session_locks.hold(session_id):
            context = self._contexts.get(session_id)
            if context is None:
                raise SessionNotFoundError(message=f"Context not found: {session_id}")

            context = context.model_copy(
                update={
                    "phase_results": {**context.phase_results, phase: result},
                    "validation_results": [
                        *context.validation_results,
                        *result.validation_results,
                    ],
                }
            )
            self._contexts[session_id] = context

        self._logger.debug(
            "phase_result_stored",
            session_id=session_id,
            phase=phase.value,
            status=result.status.value,
            confidence=round(result.confidence, 3),
        )
        return context

    def get_phase_result(self, session_id: str, phase: PhaseName) -> PhaseResult | None:
        context = self._contexts.get(session_id)
        if context is None:
            return None
        return context.phase_results.get(phase)

    def get_all_phase_results(self, session_id: str) -> dict[PhaseName, PhaseResult]:
        context = self._contexts.get(session_id)
        if context is None:
            return {}
        return dict(context.phase_results)

    def get_next_phase(self, session_id: str) -> PhaseName | None:
        context = self._contexts.get(session_id)
        if context is None:
            return None

        index = PHASE_ORDER.index(context.current_phase)
        if index >= len(PHASE_ORDER) - 1:
            return None

        current = context.phase_results.get(context.current_phase)
        if current is None or current.status != PhaseStatus.COMPLETED:
            return None
        if not current.ready:
            return None
        return PHASE_ORDER[index + 1]

    def advance_phase(self, session_id: str) -> PhaseName | None:
        """Move to the next phase if the current one is complete and ready."""
        with self._session_locks.hold(session_id):
            next_phase = self.get_next_phase(session_id)
            if next_phase is None:
                return None
            context = self._contexts[session_id]
            self._contexts[session_id] = context.model_copy(update={"current_phase": next_phase})

        self._logger.debug("phase_advanced", session_id=session_id, phase=next_phase.value)
        return next_phase

    # ------------------------------------------------------------------
    # Validation records
    # ------------------------------------------------------------------

    def add_validation_results(self, session_id: str, results: Sequence[ValidatorResult]) -> None:
        with self._session_locks.hold(session_id):
            context = self._contexts.get(session_id)
            if context is None:
                return
            self._contexts[session_id] = context.model_copy(
                update={"validation_results": [*context.validation_results, *results]}
            )

    def add_suggestions(self, session_id: str, suggestions: Sequence[QASuggestion]) -> None:
        with self._session_locks.hold(session_id):
            context = self._contexts.get(session_id)
            if context is None:
                return
            self._contexts[session_id] = context.model_copy(
                update={"suggestions": [*context.suggestions, *suggestions]}
            )

    # ------------------------------------------------------------------
    # Confidence gates
    # ------------------------------------------------------------------

    def meets_confidence_threshold(self, phase: PhaseName, confidence: float) -> bool:
        phase_config = self._config.for_phase(phase)
        threshold = (
            phase_config.confidence_threshold
            if phase_config is not None
            else DEFAULT_CONFIDENCE_THRESHOLD
        )
        return confidence >= threshold

    def should_retry_phase(self, phase: PhaseName, confidence: float, attempts: int) -> bool:
        phase_config = self._config.for_phase(phase)
        if phase_config is None:
            return False
        return (
            phase_config.retry_on_low_confidence
            and not self.meets_confidence_threshold(phase, confidence)
            and attempts < phase_config.max_retries
        )

    # ------------------------------------------------------------------
    # Context aggregation
    # ------------------------------------------------------------------

    def get_poster_type(self, session_id: str) -> PosterType | None:
        result = self.get_phase_result(session_id, PhaseName.TYPE)
        if isinstance(result, TypePhaseResult):
            return result.primary_type.type
        return None

    def get_phase_context(self, session_id: str, phase: PhaseName | None = None) -> PhaseContext:
        """Project earlier phase results into the hints later phases use.

        With *phase*, only results of phases before it in ``PHASE_ORDER``
        are used, so a retried phase never sees its own or later output.
        """
        context = self._contexts.get(session_id)
        if context is None:
            return PhaseContext()

        results = context.phase_results
        if phase is not None:
            upstream = PHASE_ORDER[: PHASE_ORDER.index(phase)]
            results = {name: result for name, result in results.items() if name in upstream}
        type_result = results.get(PhaseName.TYPE)
        artist_result = results.get(PhaseName.ARTIST)
        venue_result = results.get(PhaseName.VENUE)
        event_result = results.get(PhaseName.EVENT)

        poster_type = headliner = venue = city = year = None
        if isinstance(type_result, TypePhaseResult):
            poster_type = type_result.primary_type.type
        if isinstance(artist_result, ArtistPhaseResult) and artist_result.headliner is not None:
            headliner = artist_result.headliner.display_name
        if isinstance(venue_result, VenuePhaseResult) and venue_result.venue is not None:
            venue = venue_result.venue.display_name
            city = venue_result.venue.city
        if isinstance(event_result, EventPhaseResult):
            year = event_result.year

        return PhaseContext(
            poster_type=poster_type,
            headliner=headliner,
            venue=venue,
            city=city,
            year=year,
        )

    def calculate_overall_confidence(self, session_id: str) -> float:
        """Unweighted mean of the phase confidences above zero."""
        context = self._contexts.get(session_id)
        if context is None:
            return 0.0
        confidences = [r.confidence for r in context.phase_results.values() if r.confidence > 0]
        if not confidences:
            return 0.0
        return sum(confidences) / len(confidences)

    def get_fields_needing_review(self, session_id: str) -> list[str]:
        context = self._contexts.get(session_id)
        if context is None:
            return []

        fields = [
            result.field
            for result in context.validation_results
            if result.status in (ValidationStatus.PARTIAL, ValidationStatus.MISMATCH)
        ]
        for phase, result in context.phase_results.items():
            phase_config = self._config.for_phase(phase)
            if phase_config is not None and result.confidence < phase_config.confidence_threshold:
                fields.append(f"{phase.value}_phase")

        return list(dict.fromkeys(fields))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export_context_state(self, session_id: str) -> dict[str, Any] | None:
        """Return a JSON-compatible snapshot of a session, or ``None``."""
        context = self._contexts.get(session_id)
        if context is None:
            return None
        return context.model_dump(mode="json")

    def import_context_state(self, state: dict[str, Any]) -> ProcessingContext:
        """Rebuild a session from :meth:`export_context_state` output and register it."""
        context = ProcessingContext.model_validate(state)
        with self._session_locks.hold(context.session_id):
            self._contexts[context.session_id] = context
        return context

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup_old_contexts(self, max_age_ms: int = DEFAULT_CLEANUP_AGE_MS) -> int:
        """Remove sessions older than *max_age_ms* whose latest result is final.

        Sessions still in flight (latest result pending, in progress or
        awaiting review) and sessions with no results are kept.
        """
        cutoff = _utcnow() - timedelta(milliseconds=max_age_ms)
        removed = 0

        for session_id in list(self._contexts):
            with self._session_locks.hold(session_id):
                context = self._contexts.get(session_id)
                if context is None or context.started_at >= cutoff:
                    continue
                latest = self._latest_result(context)
                if latest is None or latest.status not in (PhaseStatus.COMPLETED, PhaseStatus.FAILED):
                    continue
                del self._contexts[session_id]
                removed += 1
            self._session_locks.discard(session_id)

        if removed:
            self._logger.info("contexts_cleaned_up", removed=removed, max_age_ms=max_age_ms)
        return removed

    def clear_all(self) -> None:
        self._contexts.clear()
        self._jobs.clear()
        self._session_locks.clear()
        self._job_locks.clear()

    @staticmethod
    def _latest_result(context: ProcessingContext) -> PhaseResult | None:
        for phase in reversed(PHASE_ORDER):
            result = context.phase_results.get(phase)
            if result is not None:
                return result
        return None
