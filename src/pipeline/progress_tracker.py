"""Per-job progress broadcasting with callback listeners.

The processor reports every phase transition of every image in a batch:

    IterativeProcessor ──update()──→ ProgressTracker ──callback()──→ CLI progress line
                                                    ──→ (any other listener)

Listeners are keyed by job id so concurrent batches never see each
other's updates.  Both sync and async callbacks are accepted; a listener
that raises is logged and skipped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from src.models.phases import PHASE_ORDER, PhaseName
from src.utils.logging import get_logger

ProgressListener = Callable[[str, PhaseName, float, str], object]


@dataclass
class _JobStatus:
    phase: PhaseName = PhaseName.TYPE
    progress: float = 0.0
    message: str = ""


def batch_progress(processed: int, total: int, phase: PhaseName | None = None) -> float:
    """Percent complete, counting the finished phases of the current image.

    Parameters
    ----------
    processed:
        Images fully finished.
    total:
        Images in the batch.
    phase:
        Phase the current image is about to run, or ``None`` between images.
    """
    if total <= 0:
        return 100.0
    fraction = processed / total
    if phase is not None:
        fraction += PHASE_ORDER.index(phase) / len(PHASE_ORDER) / total
    return max(0.0, min(100.0, fraction * 100))


class ProgressTracker:
    """Tracks and broadcasts batch progress via callbacks."""

    def __init__(self) -> None:
        self._statuses: dict[str, _JobStatus] = {}
        self._listeners: dict[str, list[ProgressListener]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def update(
        self,
        job_id: str,
        phase: PhaseName,
        progress: float,
        message: str,
    ) -> None:
        """Record a progress update and notify the job's listeners.

        Parameters
        ----------
        job_id:
            The batch job being reported on.
        phase:
            Phase currently running.
        progress:
            Completion percentage (0.0 – 100.0); clamped.
        message:
            Human-readable status, e.g. ``"poster.jpg: venue"``.
        """
        progress = max(0.0, min(100.0, progress))
        self._statuses[job_id] = _JobStatus(phase=phase, progress=progress, message=message)

        self._logger.debug(
            "progress_update",
            job_id=job_id,
            phase=phase.value,
            progress=round(progress, 1),
            message=message,
        )
        await self._notify_listeners(job_id, phase, progress, message)

    def register_listener(self, job_id: str, callback: ProgressListener) -> None:
        listeners = self._listeners.setdefault(job_id, [])
        if callback not in listeners:
            listeners.append(callback)
            self._logger.debug(
                "listener_registered", job_id=job_id, total_listeners=len(listeners)
            )

    def unregister_listener(self, job_id: str, callback: ProgressListener) -> None:
        listeners = self._listeners.get(job_id, [])
        if callback in listeners:
            listeners.remove(callback)
            self._logger.debug(
                "listener_unregistered", job_id=job_id, remaining_listeners=len(listeners)
            )

    def get_status(self, job_id: str) -> dict:
        """Current ``phase`` / ``progress`` / ``message`` for a job; zeroed if unknown."""
        status = self._statuses.get(job_id) or _JobStatus()
        return {
            "phase": status.phase.value,
            "progress": status.progress,
            "message": status.message,
        }

    def clear(self, job_id: str) -> None:
        self._statuses.pop(job_id, None)
        self._listeners.pop(job_id, None)

    async def _notify_listeners(
        self,
        job_id: str,
        phase: PhaseName,
        progress: float,
        message: str,
    ) -> None:
        for callback in list(self._listeners.get(job_id, [])):
            try:
                result = callback(job_id, phase, progress, message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    job_id=job_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
