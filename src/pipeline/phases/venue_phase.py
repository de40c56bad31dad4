"""Phase 3: venue and location extraction.

The raw venue string is cleaned first: vision models often fold the
date into it ("Madison Square Garden 12/31/1999"), so
:func:`~src.utils.venue_date_splitter.split_venue_date` runs before any
matching and the split-off date is kept on the result for phase 4.

When a knowledge base is configured the venue is matched against known
venues, and a missing city may be inferred from earlier posters that
share the headliner and venue.
"""

from __future__ import annotations

from typing import Any

from src.interfaces.knowledge_base_provider import KnowledgeEntity
from src.models.phases import (
    ExistingEntityMatch,
    PhaseName,
    VenueDateSplit,
    VenueMatch,
    VenuePhaseResult,
)
from src.models.poster import PosterType
from src.models.processing import PhaseInput
from src.models.validation import ValidationSource, ValidationStatus, ValidatorResult
from src.pipeline.phases.base import BasePhase, entity_label, observation_value
from src.pipeline.phases.prompts import get_phase_prompt
from src.utils.errors import PosterExtractError
from src.utils.similarity import get_match_status, name_similarity
from src.utils.similarity import normalize_string as normalize_for_match
from src.utils.venue_date_splitter import split_venue_date

_BASE_CONFIDENCE = 0.5
_NAME_MATCH_THRESHOLD = 0.7
_EXISTING_MATCH_FLOOR = 0.8
_CITY_BONUS = 0.1
_EXISTING_VENUE_BONUS = 0.15
_VALIDATED_NAME_BONUS = 0.1
_OPTIONAL_VENUE_CONFIDENCE = 0.6

# Album drops, promos and films often name no physical venue.
_VENUE_OPTIONAL = frozenset({PosterType.ALBUM, PosterType.PROMO, PosterType.FILM})


class VenuePhase(BasePhase):
    """Extract where the event happens and match it to known venues."""

    phase_name = PhaseName.VENUE
    result_model = VenuePhaseResult

    async def run(self, phase_input: PhaseInput, start: float) -> VenuePhaseResult:
        poster_type = self.get_poster_type(phase_input.context)
        hints = self._manager.get_phase_context(phase_input.session_id, PhaseName.VENUE)
        parsed, _ = await self.extract(
            phase_input.image_path, get_phase_prompt(PhaseName.VENUE, poster_type)
        )
        fields = self._venue_fields(parsed, poster_type)
        warnings: list[str] = []

        date_split: VenueDateSplit | None = None
        venue_name = fields["venue_name"]
        if venue_name:
            split = split_venue_date(venue_name)
            if split.was_mixed and split.venue:
                date_split = split
                venue_name = split.venue
                warnings.append(
                    f'Date "{split.date}" separated from venue text "{split.original_text}"'
                )
            elif split.venue is None and split.date:
                date_split = split
                venue_name = None
                warnings.append(f'Venue text "{split.original_text}" is a date, not a venue')

        venue: VenueMatch | None = None
        existing: list[ExistingEntityMatch] = []
        validation_results: list[ValidatorResult] = []

        if venue_name:
            city, state = fields["city"], fields["state"]
            if city is None and hints.headliner:
                city, state = await self._infer_location(hints.headliner, venue_name, state)

            venue = VenueMatch(
                extracted_name=venue_name,
                city=city,
                state=state,
                country=fields["country"],
                confidence=_BASE_CONFIDENCE,
            )
            if phase_input.options.validate_venues:
                venue = await self._validate_venue(venue)
                if venue.validated_name:
                    validation_results.append(self._validation_record(venue))
            existing = await self._find_existing_venues(venue_name, venue.city)
            if existing and venue.existing_venue_id is None:
                exact = next(
                    (
                        match
                        for match in existing
                        if normalize_for_match(match.name) == normalize_for_match(venue_name)
                    ),
                    None,
                )
                if exact is not None:
                    venue = venue.model_copy(
                        update={
                            "existing_venue_id": exact.entity_id,
                            "confidence": max(venue.confidence, _EXISTING_MATCH_FLOOR),
                        }
                    )

        theater: VenueMatch | None = None
        if poster_type == PosterType.FILM and venue is not None:
            theater = venue

        confidence = self._confidence(venue, poster_type)
        ready = poster_type in _VENUE_OPTIONAL or self.is_ready(confidence)
        warnings.extend(self._warnings(venue, poster_type))

        return VenuePhaseResult(
            **self.create_base_result(phase_input, self.status_for(ready), confidence, start),
            poster_type=poster_type,
            venue=venue,
            theater=theater,
            existing_venue_matches=existing,
            venue_date_split=date_split,
            ready_for_phase4=ready,
            warnings=warnings,
            validation_results=validation_results,
        )

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _venue_fields(self, parsed: dict[str, Any], poster_type: PosterType) -> dict[str, Any]:
        venue_name = self.normalize_string(parsed.get("venue_name"))
        if poster_type == PosterType.FILM:
            venue_name = self.normalize_string(parsed.get("theater_name")) or venue_name
        return {
            "venue_name": venue_name,
            "city": self.normalize_string(parsed.get("city")),
            "state": self.normalize_string(parsed.get("state")),
            "country": self.normalize_string(parsed.get("country")),
        }

    # ------------------------------------------------------------------
    # Knowledge base
    # ------------------------------------------------------------------

    async def _search(self, query: str, entity_type: str, limit: int) -> list[KnowledgeEntity]:
        if self._knowledge_base is None:
            return []
        try:
            return await self._knowledge_base.search_entities(
                query, entity_types=[entity_type], limit=limit
            )
        except PosterExtractError as exc:
            self._logger.warning(
                "venue_knowledge_base_search_failed",
                query=query,
                entity_type=entity_type,
                error=str(exc),
            )
            return []

    async def _validate_venue(self, venue: VenueMatch) -> VenueMatch:
        """Adopt the first known venue whose name is similar enough."""
        query = f"{venue.extracted_name} {venue.city}" if venue.city else venue.extracted_name
        for entity in await self._search(query, "Venue", limit=5):
            similarity = name_similarity(venue.extracted_name, entity_label(entity))
            if similarity <= _NAME_MATCH_THRESHOLD:
                continue
            return venue.model_copy(
                update={
                    "validated_name": entity_label(entity),
                    "existing_venue_id": entity.name,
                    "city": venue.city or observation_value(entity.observations, "city"),
                    "state": venue.state or observation_value(entity.observations, "state"),
                    "confidence": similarity,
                    "source": ValidationSource.INTERNAL,
                }
            )
        return venue

    async def _find_existing_venues(
        self, venue_name: str, city: str | None
    ) -> list[ExistingEntityMatch]:
        query = f"{venue_name} {city}" if city else venue_name
        return [
            ExistingEntityMatch(
                name=entity_label(entity),
                entity_id=entity.name,
                city=observation_value(entity.observations, "city"),
            )
            for entity in await self._search(query, "Venue", limit=5)
        ]

    async def _infer_location(
        self, headliner: str, venue_name: str, state: str | None
    ) -> tuple[str | None, str | None]:
        """City/state from earlier posters with the same headliner and venue."""
        for entity in await self._search(f"{headliner} {venue_name}", "Poster", limit=10):
            city = observation_value(entity.observations, "city")
            if city:
                self._logger.debug("venue_city_inferred", venue=venue_name, city=city)
                return city, state or observation_value(entity.observations, "state")
        return None, state

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def _confidence(venue: VenueMatch | None, poster_type: PosterType) -> float:
        if venue is None:
            return _OPTIONAL_VENUE_CONFIDENCE if poster_type in _VENUE_OPTIONAL else 0.0
        score = venue.confidence
        if venue.city:
            score += _CITY_BONUS
        if venue.existing_venue_id:
            score += _EXISTING_VENUE_BONUS
        if venue.validated_name:
            score += _VALIDATED_NAME_BONUS
        return min(score, 1.0)

    @staticmethod
    def _validation_record(venue: VenueMatch) -> ValidatorResult:
        return ValidatorResult(
            validator_name="knowledge_base",
            field="venue",
            original_value=venue.extracted_name,
            validated_value=venue.validated_name,
            confidence=venue.confidence,
            status=ValidationStatus(get_match_status(venue.confidence)),
            source=venue.source,
        )

    @staticmethod
    def _warnings(venue: VenueMatch | None, poster_type: PosterType) -> list[str]:
        if venue is None:
            if poster_type in _VENUE_OPTIONAL:
                return []
            return ["No venue information extracted"]
        warnings: list[str] = []
        if not venue.city:
            warnings.append("City not identified for venue")
        if venue.validated_name and venue.validated_name != venue.extracted_name:
            warnings.append(
                f'Venue may be "{venue.validated_name}" instead of "{venue.extracted_name}"'
            )
        return warnings
