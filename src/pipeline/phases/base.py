"""Shared contract for the extraction phases.

Every phase follows the same shape:

    1. Read earlier decisions from the Phase Manager (poster type,
       headliner, venue ...).
    2. Prompt the vision model and parse its JSON answer.
    3. Cross-check the answer against reference data.
    4. Score it, decide readiness, and return a frozen result.

:meth:`BasePhase.execute` wraps :meth:`BasePhase.run` so that a phase
never raises: any exception becomes a ``failed`` result with confidence 0
and the message in ``errors``.  Storing the result and advancing the
session are the driver's job, not the phase's.
"""

from __future__ import annotations

import json
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, ClassVar

from src.interfaces.knowledge_base_provider import IKnowledgeBaseProvider, KnowledgeEntity
from src.interfaces.vision_provider import IVisionProvider, VisionExtraction
from src.models.phases import BasePhaseResult, PhaseName, PhaseResult, PhaseStatus
from src.models.poster import PosterType
from src.models.processing import PhaseConfig, PhaseInput, ProcessingContext
from src.utils.confidence import calculate_completeness_confidence
from src.utils.errors import MalformedExtractionError
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from src.pipeline.phase_manager import PhaseManager

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")
_BARE_KEY_RE = re.compile(r"([{,])\s*([A-Za-z_][A-Za-z0-9_]*)\s*:")


def parse_json_response(text: str) -> dict[str, Any]:
    """Pull the JSON object out of a vision-model answer.

    Takes the greedy first ``{...}`` span.  If that does not parse, three
    repairs are applied in a fixed order (trailing commas, bare keys,
    single quotes) and parsing is tried once more.

    Raises:
        MalformedExtractionError: No object in the text, or still invalid
            after the repairs.
    """
    match = _JSON_OBJECT_RE.search(text or "")
    if match is None:
        raise MalformedExtractionError("No JSON object found in vision response")

    candidate = match.group(0)
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        repaired = _TRAILING_COMMA_RE.sub(r"\1", candidate)
        repaired = _BARE_KEY_RE.sub(r'\1"\2":', repaired)
        repaired = repaired.replace("'", '"')
        try:
            parsed = json.loads(repaired)
        except json.JSONDecodeError as exc:
            raise MalformedExtractionError(
                f"Vision response is not valid JSON after repair: {exc.msg}"
            ) from exc

    if not isinstance(parsed, dict):
        raise MalformedExtractionError("Vision response JSON is not an object")
    return parsed


def normalize_string(value: Any) -> str | None:
    """Strip a string; numbers are stringified, blanks and other values become ``None``."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def normalize_string_array(value: Any) -> list[str]:
    """Accept a list of strings or one comma-separated string."""
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [item for item in (normalize_string(v) for v in value) if item is not None]
    return []


def elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class BasePhase(ABC):
    """Abstract extraction phase.

    Parameters
    ----------
    vision_provider:
        Image-in, text-out model used for extraction.
    phase_manager:
        Source of earlier phase results and of this phase's config.
    knowledge_base:
        Optional graph used for cross-checks; phases skip those checks
        when it is absent.
    """

    phase_name: ClassVar[PhaseName]
    result_model: ClassVar[type[BasePhaseResult]]

    def __init__(
        self,
        vision_provider: IVisionProvider,
        phase_manager: PhaseManager,
        knowledge_base: IKnowledgeBaseProvider | None = None,
    ) -> None:
        self._vision = vision_provider
        self._manager = phase_manager
        self._knowledge_base = knowledge_base
        self._logger = get_logger(f"{__name__}.{self.phase_name.value}")

    async def execute(self, phase_input: PhaseInput) -> PhaseResult:
        """Run the phase; failures come back as a ``failed`` result."""
        start = time.perf_counter()
        try:
            result = await self.run(phase_input, start)
        except Exception as exc:
            return self.handle_error(phase_input, exc, start)

        self._logger.info(
            "phase_completed",
            phase=self.phase_name.value,
            poster_id=phase_input.poster_id,
            status=result.status.value,
            confidence=round(result.confidence, 3),
            processing_time_ms=result.processing_time_ms,
        )
        return result

    @abstractmethod
    async def run(self, phase_input: PhaseInput, start: float) -> PhaseResult:
        """Phase body; may raise."""

    def handle_error(self, phase_input: PhaseInput, error: Exception, start: float) -> PhaseResult:
        self._logger.warning(
            "phase_failed",
            phase=self.phase_name.value,
            poster_id=phase_input.poster_id,
            error=str(error),
            error_type=type(error).__name__,
        )
        return self.result_model(
            **self.create_base_result(phase_input, PhaseStatus.FAILED, 0.0, start),
            errors=[str(error)],
        )

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    async def extract(self, image_path: str, prompt: str) -> tuple[dict[str, Any], VisionExtraction]:
        extraction = await self._vision.extract_from_image(image_path, prompt)
        return parse_json_response(extraction.extracted_text), extraction

    @staticmethod
    def calculate_confidence(
        fields: Mapping[str, Any],
        required: Sequence[str],
        optional: Sequence[str] = (),
    ) -> float:
        return calculate_completeness_confidence(fields, required, optional)

    @staticmethod
    def create_base_result(
        phase_input: PhaseInput,
        status: PhaseStatus,
        confidence: float,
        start: float,
    ) -> dict[str, Any]:
        return {
            "poster_id": phase_input.poster_id,
            "image_path": phase_input.image_path,
            "status": status,
            "confidence": max(0.0, min(1.0, confidence)),
            "processing_time_ms": elapsed_ms(start),
        }

    @staticmethod
    def get_poster_type(context: ProcessingContext) -> PosterType:
        result = context.phase_results.get(PhaseName.TYPE)
        if result is not None and result.phase == "type":
            return result.primary_type.type
        return PosterType.UNKNOWN

    normalize_string = staticmethod(normalize_string)
    normalize_string_array = staticmethod(normalize_string_array)

    def get_phase_config(self) -> PhaseConfig | None:
        return self._manager.config.for_phase(self.phase_name)

    def is_ready(self, confidence: float) -> bool:
        return self._manager.meets_confidence_threshold(self.phase_name, confidence)

    @staticmethod
    def status_for(ready: bool) -> PhaseStatus:
        return PhaseStatus.COMPLETED if ready else PhaseStatus.NEEDS_REVIEW


def observation_values(observations: Sequence[str], key: str) -> list[str]:
    """Values of ``"<key>: <value>"`` observations, in order."""
    prefix = f"{key.lower()}:"
    return [
        obs.split(":", 1)[1].strip()
        for obs in observations
        if obs.lower().startswith(prefix) and obs.split(":", 1)[1].strip()
    ]


def observation_value(observations: Sequence[str], key: str) -> str | None:
    values = observation_values(observations, key)
    return values[0] if values else None


def entity_label(entity: KnowledgeEntity) -> str:
    """Human-readable name of a graph entity: its ``name:`` observation, else its id."""
    return observation_value(entity.observations, "name") or entity.name
