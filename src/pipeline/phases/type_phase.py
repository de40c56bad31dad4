"""Phase 1: poster type classification.

Decides what the poster advertises (concert, film, album ...), which
steers the prompts and validation of every later phase.

Scoring
-------
  1. The vision model's own confidence (percentages are rescaled).
  2. A refinement pass when that is below the phase threshold, keeping
     whichever of the two answers is more confident.
  3. A keyword check over the extracted text, blended as
     ``0.7 * model + 0.3 * pattern``.
  4. +0.1 (capped at 1.0) when similar posters already in the knowledge
     base carry the same type.
"""

from __future__ import annotations

import re
from typing import Any

from src.interfaces.knowledge_base_provider import IKnowledgeBaseProvider
from src.models.phases import PhaseName, PrimaryType, TypePhaseResult
from src.models.poster import PosterType, TypeInference, VisualCues, VisualStyle
from src.models.processing import LowConfidencePolicy, PhaseInput
from src.models.validation import ValidationSource, ValidationStatus, ValidatorResult
from src.pipeline.phases.base import BasePhase, normalize_string, observation_values
from src.pipeline.phases.prompts import TYPE_CLASSIFICATION_PROMPT, get_refinement_prompt
from src.utils.errors import PosterExtractError

# Keywords that hint at each poster type when found in the poster text.
TYPE_PATTERNS: dict[PosterType, list[str]] = {
    PosterType.CONCERT: ["venue", "doors", "show", "tickets", "live", "with", "featuring", "opens"],
    PosterType.FESTIVAL: ["festival", "fest", "day 1", "day 2", "stages", "lineup", "gates"],
    PosterType.ALBUM: [
        "out now",
        "available",
        "new album",
        "new single",
        "streaming",
        "pre-order",
        "release date",
    ],
    PosterType.FILM: [
        "in theaters",
        "coming soon",
        "directed by",
        "starring",
        "pg",
        "pg-13",
        "rated r",
        "nc-17",
    ],
    PosterType.THEATER: ["broadway", "off-broadway", "now playing", "written by", "a play", "musical"],
    PosterType.COMEDY: ["comedy", "stand-up", "standup", "comedian", "laughs", "funny"],
    PosterType.PROMO: ["merchandise", "tour dates", "available at", "shop", "order now"],
    PosterType.EXHIBITION: [
        "exhibition",
        "gallery",
        "museum",
        "on view",
        "opening reception",
        "curated",
    ],
    PosterType.HYBRID: ["album release show", "release party", "record release"],
    PosterType.UNKNOWN: [],
}

# Checked in order; the first matching fragment wins.
_TYPE_VARIATIONS: list[tuple[tuple[str, ...], PosterType]] = [
    (("concert", "show"), PosterType.CONCERT),
    (("festival",), PosterType.FESTIVAL),
    (("album", "release"), PosterType.ALBUM),
    (("movie", "film"), PosterType.FILM),
    (("play", "theater", "theatre"), PosterType.THEATER),
    (("comedy", "stand"), PosterType.COMEDY),
]

_STYLE_VARIATIONS: list[tuple[tuple[str, ...], VisualStyle]] = [
    (("photo",), VisualStyle.PHOTOGRAPHIC),
    (("illustrat", "drawn"), VisualStyle.ILLUSTRATED),
    (("typo", "text"), VisualStyle.TYPOGRAPHIC),
    (("mix",), VisualStyle.MIXED),
]

_PATTERN_WEIGHT = 0.3
_KNOWLEDGE_BASE_BONUS = 0.1
_LOW_CONFIDENCE_WARNING = 0.7
_KB_QUERY_CHARS = 200

# Secondary types implied by a hybrid poster, as a share of its confidence.
_HYBRID_COMPONENTS: list[tuple[PosterType, float]] = [
    (PosterType.ALBUM, 0.9),
    (PosterType.CONCERT, 0.85),
]

_POSTER_TYPE_OBSERVATION = "poster_type"
_WORD_RE = re.compile(r"[a-z]+")


def normalize_poster_type(value: Any) -> PosterType:
    """Map a model's type label onto :class:`PosterType`, falling back to unknown."""
    if not isinstance(value, str):
        return PosterType.UNKNOWN
    normalized = value.lower().strip()
    try:
        return PosterType(normalized)
    except ValueError:
        pass
    for fragments, poster_type in _TYPE_VARIATIONS:
        if any(fragment in normalized for fragment in fragments):
            return poster_type
    return PosterType.UNKNOWN


def normalize_confidence(value: Any) -> float:
    """Coerce a model-reported confidence into [0, 1].

    Values above 1 are read as percentages; anything unparseable is 0.5.
    """
    if isinstance(value, bool):
        return 0.5
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return 0.5
    if not isinstance(value, (int, float)):
        return 0.5
    score = value / 100 if value > 1 else float(value)
    return max(0.0, min(1.0, score))


def normalize_visual_style(value: Any) -> VisualStyle | None:
    if not isinstance(value, str):
        return None
    normalized = value.lower().strip()
    try:
        return VisualStyle(normalized)
    except ValueError:
        pass
    for fragments, style in _STYLE_VARIATIONS:
        if any(fragment in normalized for fragment in fragments):
            return style
    return VisualStyle.OTHER


def pattern_confidence(text: str, detected: PosterType) -> float:
    """Share of the detected type's keywords present, minus a penalty for rival keywords.

    Each keyword hit for another type costs 0.05, up to 0.3.  Types with
    no keywords (unknown) score a neutral 0.5.
    """
    patterns = TYPE_PATTERNS.get(detected, [])
    if not patterns:
        return 0.5

    lowered = (text or "").lower()
    matches = sum(1 for pattern in patterns if pattern in lowered)
    competing = sum(
        1
        for poster_type, keywords in TYPE_PATTERNS.items()
        if poster_type not in (detected, PosterType.UNKNOWN)
        for keyword in keywords
        if keyword in lowered
    )
    penalty = min(competing * 0.05, 0.3)
    return max(0.0, matches / len(patterns) - penalty)


class TypePhase(BasePhase):
    """Classify the poster and collect visual cues."""

    phase_name = PhaseName.TYPE
    result_model = TypePhaseResult

    async def run(self, phase_input: PhaseInput, start: float) -> TypePhaseResult:
        parsed, extraction = await self.extract(phase_input.image_path, TYPE_CLASSIFICATION_PROMPT)
        extracted_text = normalize_string(parsed.get("extracted_text")) or extraction.extracted_text

        poster_type = normalize_poster_type(parsed.get("poster_type"))
        confidence = normalize_confidence(parsed.get("confidence"))
        evidence = self.normalize_string_array(parsed.get("evidence"))

        threshold = self._threshold(phase_input)
        if (
            confidence < threshold
            and phase_input.options.on_low_confidence != LowConfidencePolicy.SKIP
        ):
            poster_type, confidence, evidence = await self._refine(
                phase_input.image_path, poster_type, confidence, evidence
            )

        blended = confidence * (1 - _PATTERN_WEIGHT) + pattern_confidence(
            extracted_text, poster_type
        ) * _PATTERN_WEIGHT

        validation_results: list[ValidatorResult] = []
        if self._knowledge_base is not None and phase_input.options.validate_types:
            kb_types = await self._similar_poster_types(self._knowledge_base, extracted_text)
            if kb_types:
                validated = poster_type in kb_types
                if validated:
                    blended = min(blended + _KNOWLEDGE_BASE_BONUS, 1.0)
                validation_results.append(
                    ValidatorResult(
                        validator_name="knowledge_base",
                        field="poster_type",
                        original_value=poster_type.value,
                        validated_value=poster_type.value if validated else kb_types[0].value,
                        confidence=blended,
                        status=ValidationStatus.MATCH if validated else ValidationStatus.PARTIAL,
                        source=ValidationSource.INTERNAL,
                        message=f"Similar posters typed as: {', '.join(t.value for t in kb_types)}",
                    )
                )

        ready = blended >= threshold
        warnings = []
        if blended < _LOW_CONFIDENCE_WARNING:
            warnings.append(f"Low confidence type classification: {poster_type.value}")

        return TypePhaseResult(
            **self.create_base_result(phase_input, self.status_for(ready), blended, start),
            primary_type=PrimaryType(type=poster_type, confidence=blended, evidence=evidence),
            secondary_types=self._build_type_inferences(poster_type, blended, extraction.model),
            visual_cues=self._visual_cues(parsed.get("visual_cues")),
            extracted_text=extracted_text,
            ready_for_phase2=ready,
            warnings=warnings,
            validation_results=validation_results,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _threshold(self, phase_input: PhaseInput) -> float:
        config = self.get_phase_config()
        if config is not None:
            return config.confidence_threshold
        return phase_input.options.confidence_threshold

    async def _refine(
        self,
        image_path: str,
        poster_type: PosterType,
        confidence: float,
        evidence: list[str],
    ) -> tuple[PosterType, float, list[str]]:
        """Ask again with the first answer quoted; keep the more confident one."""
        self._logger.info(
            "type_refinement_started",
            image_path=image_path,
            poster_type=poster_type.value,
            confidence=round(confidence, 3),
        )
        try:
            parsed, _ = await self.extract(
                image_path, get_refinement_prompt(poster_type, confidence, evidence)
            )
        except PosterExtractError as exc:
            self._logger.warning("type_refinement_failed", image_path=image_path, error=str(exc))
            return poster_type, confidence, evidence

        refined_confidence = normalize_confidence(parsed.get("confidence"))
        if refined_confidence <= confidence:
            return poster_type, confidence, evidence
        return (
            normalize_poster_type(parsed.get("poster_type")),
            refined_confidence,
            self.normalize_string_array(parsed.get("evidence")),
        )

    async def _similar_poster_types(
        self, knowledge_base: IKnowledgeBaseProvider, extracted_text: str
    ) -> list[PosterType]:
        """Types recorded on posters in the knowledge base that resemble this one."""
        query = extracted_text[:_KB_QUERY_CHARS]
        if not _WORD_RE.search(query.lower()):
            return []
        try:
            entities = await knowledge_base.search_entities(
                query, entity_types=["Poster"], limit=5
            )
        except PosterExtractError as exc:
            self._logger.warning("type_knowledge_base_check_failed", error=str(exc))
            return []

        found: list[PosterType] = []
        for entity in entities:
            for value in observation_values(entity.observations, _POSTER_TYPE_OBSERVATION):
                poster_type = normalize_poster_type(value)
                if poster_type not in found:
                    found.append(poster_type)
        return found

    def _visual_cues(self, raw: Any) -> VisualCues:
        if not isinstance(raw, dict):
            return VisualCues()
        return VisualCues(
            has_artist_photo=raw.get("has_artist_photo") is True,
            has_album_artwork=raw.get("has_album_artwork") is True,
            has_logo=raw.get("has_logo") is True,
            dominant_colors=self.normalize_string_array(raw.get("dominant_colors")),
            style=normalize_visual_style(raw.get("style")),
        )

    @staticmethod
    def _build_type_inferences(
        poster_type: PosterType,
        confidence: float,
        model: str,
    ) -> list[TypeInference]:
        inferences = [
            TypeInference(
                type_key=poster_type,
                confidence=confidence,
                source="vision",
                evidence=f"Vision model {model} classification",
                is_primary=True,
            )
        ]
        if poster_type == PosterType.HYBRID:
            inferences.extend(
                TypeInference(
                    type_key=component,
                    confidence=confidence * share,
                    source="vision",
                    evidence=f"Hybrid type includes {component.value} component",
                )
                for component, share in _HYBRID_COMPONENTS
            )
        return inferences
