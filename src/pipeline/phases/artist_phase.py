"""Phase 2: artist extraction and validation.

Uses the poster type from phase 1 to pick a prompt (film posters are
asked for a director and cast, exhibitions for the exhibiting artist, and
so on), then runs every extracted name through the
:class:`~src.services.artist_splitter.ArtistSplitter` so that a
concatenated bill comes back as separate, validated acts.

Validation never drops a name.  When no reference provider is configured
a name is kept at 0.5 with source ``internal``; when a provider errors or
finds nothing it is kept at 0.3.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from src.interfaces.knowledge_base_provider import IKnowledgeBaseProvider
from src.interfaces.vision_provider import IVisionProvider
from src.models.phases import (
    ArtistMatch,
    ArtistPhaseResult,
    ExistingEntityMatch,
    PhaseName,
)
from src.models.poster import PosterType
from src.models.processing import PhaseInput
from src.models.validation import ValidationSource, ValidationStatus, ValidatorResult
from src.pipeline.phases.base import BasePhase, entity_label
from src.pipeline.phases.prompts import get_phase_prompt
from src.services.artist_splitter import (
    ArtistSplitter,
    ValidatedArtist,
    split_and_validate_artists,
)
from src.utils.errors import PosterExtractError, ValidationUnavailableError
from src.utils.similarity import get_match_status

if TYPE_CHECKING:
    from src.pipeline.phase_manager import PhaseManager

_UNVALIDATED_CONFIDENCE = 0.5
_VALIDATION_FAILED_CONFIDENCE = 0.3

_HEADLINER_WEIGHT = 0.6
_SUPPORTING_WEIGHT = 0.3
_EXTERNAL_ID_BONUS = 0.1
_MISSING_TERM_FLOOR = 0.5

# Poster types that may legitimately name no headliner.
_HEADLINER_OPTIONAL = frozenset({PosterType.EXHIBITION, PosterType.PROMO})


def _names(value: Any) -> list[str]:
    return BasePhase.normalize_string_array(value)


def extract_artist_fields(parsed: dict[str, Any], poster_type: PosterType) -> dict[str, Any]:
    """Map a type-specific answer onto headliner / supporting / director / cast."""
    text = BasePhase.normalize_string
    if poster_type == PosterType.FILM:
        cast = _names(parsed.get("cast")) or [
            *_names(parsed.get("lead_actors")),
            *_names(parsed.get("supporting_cast")),
        ]
        director = text(parsed.get("director"))
        return {"headliner": director, "supporting_acts": [], "director": director, "cast": cast}

    if poster_type == PosterType.THEATER:
        performers = _names(parsed.get("performers")) or _names(parsed.get("lead_performers"))
        headliner = text(parsed.get("playwright")) or (performers[0] if performers else None)
        supporting = performers[1:] if not text(parsed.get("playwright")) else performers
        return {
            "headliner": headliner,
            "supporting_acts": supporting,
            "director": text(parsed.get("director")),
        }

    if poster_type == PosterType.EXHIBITION:
        return {"headliner": text(parsed.get("exhibiting_artist")), "supporting_acts": []}

    if poster_type == PosterType.ALBUM:
        return {
            "headliner": text(parsed.get("headliner")),
            "supporting_acts": _names(parsed.get("featured_artists")),
            "record_label": text(parsed.get("record_label")),
        }

    if poster_type == PosterType.UNKNOWN:
        return {
            "headliner": text(parsed.get("primary_name")),
            "supporting_acts": _names(parsed.get("other_names")),
        }

    return {
        "headliner": text(parsed.get("headliner")),
        "supporting_acts": _names(parsed.get("supporting_acts")),
        "tour_name": text(parsed.get("tour_name")),
        "record_label": text(parsed.get("record_label")),
    }


def calculate_artist_confidence(
    headliner: ArtistMatch | None,
    supporting_acts: Sequence[ArtistMatch],
    poster_type: PosterType,
) -> float:
    """``0.6*headliner (+0.1 if externally identified) + 0.3*avg(supporting)``, capped at 1."""
    score = 0.0
    if headliner is not None:
        score += _HEADLINER_WEIGHT * headliner.confidence
        if headliner.external_id:
            score += _EXTERNAL_ID_BONUS
    elif poster_type in _HEADLINER_OPTIONAL:
        score += _HEADLINER_WEIGHT * _MISSING_TERM_FLOOR

    if supporting_acts:
        average = sum(act.confidence for act in supporting_acts) / len(supporting_acts)
        score += _SUPPORTING_WEIGHT * average
    else:
        score += _SUPPORTING_WEIGHT * _MISSING_TERM_FLOOR

    return min(score, 1.0)


def _to_match(artist: ValidatedArtist) -> ArtistMatch:
    if artist.source == ValidationSource.INTERNAL:
        return ArtistMatch(
            extracted_name=artist.name,
            confidence=_VALIDATION_FAILED_CONFIDENCE,
            source=ValidationSource.INTERNAL,
        )
    return ArtistMatch(
        extracted_name=artist.name,
        validated_name=artist.canonical_name,
        external_id=artist.external_id,
        external_url=artist.external_url,
        confidence=artist.confidence,
        source=artist.source,
    )


class ArtistPhase(BasePhase):
    """Extract performers/credits and validate them against music databases."""

    phase_name = PhaseName.ARTIST
    result_model = ArtistPhaseResult

    def __init__(
        self,
        vision_provider: IVisionProvider,
        phase_manager: PhaseManager,
        knowledge_base: IKnowledgeBaseProvider | None = None,
        artist_splitter: ArtistSplitter | None = None,
    ) -> None:
        super().__init__(vision_provider, phase_manager, knowledge_base)
        self._splitter = artist_splitter

    async def run(self, phase_input: PhaseInput, start: float) -> ArtistPhaseResult:
        poster_type = self.get_poster_type(phase_input.context)
        parsed, _ = await self.extract(
            phase_input.image_path, get_phase_prompt(PhaseName.ARTIST, poster_type)
        )
        fields = extract_artist_fields(parsed, poster_type)
        splitter = self._active_splitter(phase_input.options.validate_artists)
        warnings: list[str] = []

        headliner: ArtistMatch | None = None
        supporting: list[ArtistMatch] = []
        if fields["headliner"]:
            acts = await self._split_headliner(fields["headliner"], splitter, warnings)
            headliner, supporting = acts[0], acts[1:]
        supporting.extend(await self._resolve_names(fields["supporting_acts"], splitter))
        supporting = self._dedupe(supporting, headliner)

        director: ArtistMatch | None = None
        cast: list[ArtistMatch] = []
        if fields.get("director") and fields["director"] == fields["headliner"] and headliner:
            director = headliner
        elif fields.get("director"):
            director = await self._resolve_single(fields["director"], splitter)
        if fields.get("cast"):
            cast = [await self._resolve_single(name, splitter) for name in fields["cast"]]

        existing = await self._find_existing_artists(headliner, supporting)
        confidence = calculate_artist_confidence(headliner, supporting, poster_type)
        ready = self.is_ready(confidence)
        warnings.extend(self._warnings(headliner, supporting))

        return ArtistPhaseResult(
            **self.create_base_result(phase_input, self.status_for(ready), confidence, start),
            poster_type=poster_type,
            headliner=headliner,
            supporting_acts=supporting,
            tour_name=fields.get("tour_name"),
            record_label=fields.get("record_label"),
            director=director,
            cast=cast,
            existing_artist_matches=existing,
            ready_for_phase3=ready,
            warnings=warnings,
            validation_results=self._validation_records(headliner, supporting),
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _active_splitter(self, enabled: bool) -> ArtistSplitter | None:
        if not enabled or self._splitter is None or not self._splitter.has_validators:
            return None
        return self._splitter

    async def _split_headliner(
        self,
        name: str,
        splitter: ArtistSplitter | None,
        warnings: list[str],
    ) -> list[ArtistMatch]:
        """The headliner string may hide a whole bill; the first act stays headliner."""
        if splitter is None:
            return [self._unvalidated(name)]
        try:
            split = await splitter.split_and_validate(name)
        except ValidationUnavailableError as exc:
            self._logger.warning("artist_validation_unavailable", artist=name, error=str(exc))
            return [self._failed(name)]

        if not split.artists:
            return [self._failed(name)]
        if split.was_concatenated:
            warnings.append(
                f'Headliner text "{name}" was split into {len(split.artists)} acts '
                f"({split.split_method})"
            )
        return [_to_match(artist) for artist in split.artists]

    async def _resolve_names(
        self, names: list[str], splitter: ArtistSplitter | None
    ) -> list[ArtistMatch]:
        if not names:
            return []
        if splitter is None:
            return [self._unvalidated(name) for name in names]
        try:
            result = await split_and_validate_artists(names, splitter)
        except ValidationUnavailableError as exc:
            self._logger.warning("artist_validation_unavailable", artists=names, error=str(exc))
            return [self._failed(name) for name in names]
        return [_to_match(artist) for artist in result.artists]

    async def _resolve_single(self, name: str, splitter: ArtistSplitter | None) -> ArtistMatch:
        """Director and cast names are validated as-is, without splitting."""
        if splitter is None:
            return self._unvalidated(name)
        try:
            artist = await splitter.validate_single(name)
        except ValidationUnavailableError as exc:
            self._logger.warning("artist_validation_unavailable", artist=name, error=str(exc))
            return self._failed(name)
        if artist is None:
            return self._failed(name)
        return _to_match(artist)

    @staticmethod
    def _unvalidated(name: str) -> ArtistMatch:
        return ArtistMatch(
            extracted_name=name,
            confidence=_UNVALIDATED_CONFIDENCE,
            source=ValidationSource.INTERNAL,
        )

    @staticmethod
    def _failed(name: str) -> ArtistMatch:
        return ArtistMatch(
            extracted_name=name,
            confidence=_VALIDATION_FAILED_CONFIDENCE,
            source=ValidationSource.INTERNAL,
        )

    @staticmethod
    def _dedupe(acts: list[ArtistMatch], headliner: ArtistMatch | None) -> list[ArtistMatch]:
        seen = {headliner.display_name.lower()} if headliner is not None else set()
        unique: list[ArtistMatch] = []
        for act in acts:
            key = act.display_name.lower()
            if key in seen:
                continue
            seen.add(key)
            unique.append(act)
        return unique

    @staticmethod
    def _validation_records(
        headliner: ArtistMatch | None,
        supporting: list[ArtistMatch],
    ) -> list[ValidatorResult]:
        records: list[ValidatorResult] = []
        tagged = [("headliner", headliner)] if headliner is not None else []
        tagged.extend(("supporting_acts", act) for act in supporting)
        for field, match in tagged:
            if match.source == ValidationSource.INTERNAL:
                continue
            records.append(
                ValidatorResult(
                    validator_name="artist_splitter",
                    field=field,
                    original_value=match.extracted_name,
                    validated_value=match.validated_name,
                    confidence=match.confidence,
                    status=ValidationStatus(get_match_status(match.confidence)),
                    source=match.source,
                    external_id=match.external_id,
                    external_url=match.external_url,
                )
            )
        return records

    # ------------------------------------------------------------------
    # Knowledge base
    # ------------------------------------------------------------------

    async def _find_existing_artists(
        self,
        headliner: ArtistMatch | None,
        supporting: list[ArtistMatch],
    ) -> list[ExistingEntityMatch]:
        if self._knowledge_base is None:
            return []

        names = [m.display_name for m in ([headliner] if headliner else []) + supporting]
        matches: list[ExistingEntityMatch] = []
        for name in names:
            lowered = name.lower()
            try:
                entities = await self._knowledge_base.search_entities(
                    name, entity_types=["Artist"], limit=3
                )
            except PosterExtractError as exc:
                self._logger.warning("existing_artist_lookup_failed", artist=name, error=str(exc))
                continue
            for entity in entities:
                entity_name = entity_label(entity).lower()
                if lowered in entity_name or entity_name in lowered:
                    matches.append(ExistingEntityMatch(name=name, entity_id=entity.name))
                    break
        return matches

    @staticmethod
    def _warnings(headliner: ArtistMatch | None, supporting: list[ArtistMatch]) -> list[str]:
        warnings: list[str] = []
        if headliner is not None and not headliner.external_id:
            warnings.append(
                f'Headliner "{headliner.extracted_name}" not verified in external database'
            )
        if (
            headliner is not None
            and headliner.validated_name
            and headliner.validated_name != headliner.extracted_name
        ):
            warnings.append(
                f'Headliner spelling may be "{headliner.validated_name}" '
                f'instead of "{headliner.extracted_name}"'
            )
        for act in supporting:
            if act.validated_name and act.validated_name != act.extracted_name:
                warnings.append(f'"{act.extracted_name}" may be "{act.validated_name}"')
        return warnings
