"""Phase 4: dates, show times and temporal plausibility."""

from __future__ import annotations

import re
from datetime import date
from typing import Any

from src.interfaces.knowledge_base_provider import KnowledgeEntity
from src.models.phases import (
    ArtistPhaseResult,
    DateInfo,
    EventPhaseResult,
    PhaseName,
    PlausibilityCheck,
    ShowInfo,
    TimeDetails,
    VenuePhaseResult,
)
from src.models.poster import PosterType
from src.models.processing import PhaseInput
from src.pipeline.phases.base import BasePhase
from src.pipeline.phases.prompts import get_phase_prompt
from src.utils.errors import PosterExtractError

_MONTHS = "january|february|march|april|may|june|july|august|september|october|november|december"
_MONTH_ABBREVIATIONS = "jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec"

# (pattern, field order); the first pattern that matches wins.
DATE_PATTERNS: list[tuple[re.Pattern[str], tuple[str, ...]]] = [
    (re.compile(r"(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?"), ("day", "month", "year")),
    (re.compile(r"(\d{1,2})-(\d{1,2})-(\d{2,4})"), ("day", "month", "year")),
    (re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{2,4})"), ("day", "month", "year")),
    (
        re.compile(rf"({_MONTHS})\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s*(\d{{4}})?"),
        ("month_name", "day", "year"),
    ),
    (
        re.compile(rf"({_MONTH_ABBREVIATIONS})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s*(\d{{4}})?"),
        ("month_name", "day", "year"),
    ),
    (
        re.compile(rf"(\d{{1,2}})(?:st|nd|rd|th)?\s+({_MONTHS}),?\s*(\d{{4}})?"),
        ("day", "month_name", "year"),
    ),
    (re.compile(r"\b(19[6-9]\d|20[0-2]\d|2030)\b"), ("year",)),
]

MONTH_NUMBERS: dict[str, int] = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}  # fmt: skip

MIN_YEAR = 1960
MAX_YEAR = 2030

_YEAR_RE = re.compile(r"\b(19[6-9]\d|20[0-2]\d|2030)\b")
_OBSERVED_YEAR_RE = re.compile(r"year:\s*(\d{4})", re.IGNORECASE)

_PARSED_CONFIDENCE = 0.7
_FULL_DATE_CONFIDENCE = 0.9
_YEAR_ONLY_CONFIDENCE = 0.6
_OPTIONAL_DATE_CONFIDENCE = 0.5
_TIME_BONUS = 0.1
_FULL_DATE_BONUS = 0.1
_ARTIST_IMPLAUSIBLE_PENALTY = 0.15
_VENUE_IMPLAUSIBLE_PENALTY = 0.1

# Years before the first / after the last known poster still counted as active.
_ARTIST_WINDOW = (5, 10)
_VENUE_WINDOW = (0, 20)

_DATE_FIELDS: dict[PosterType, str] = {
    PosterType.ALBUM: "release_date",
    PosterType.FILM: "release_date",
    PosterType.THEATER: "opening_date",
    PosterType.EXHIBITION: "opening_date",
    PosterType.FESTIVAL: "start_date",
}

_DATE_OPTIONAL = frozenset({PosterType.PROMO, PosterType.UNKNOWN})


def expand_year(year: int) -> int:
    """Two-digit years above 30 are read as 19xx, the rest as 20xx."""
    if year < 100:
        return year + (1900 if year > 30 else 2000)
    return year


def extract_year(value: Any) -> int | None:
    """A year in [1960, 2030] from an int or from text containing one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if MIN_YEAR <= value <= MAX_YEAR else None
    if isinstance(value, str):
        match = _YEAR_RE.search(value)
        if match:
            return int(match.group(1))
    return None


def parse_date(raw: str) -> DateInfo | None:
    """Parse *raw* with the first matching :data:`DATE_PATTERNS` entry.

    A match gives confidence 0.7; when year, month and day form a real
    calendar date it is set on ``parsed`` and confidence rises to 0.9.
    Numeric dates are read day-first; a month above 12 with a day that
    fits is swapped.
    """
    lowered = raw.lower().strip()
    for pattern, order in DATE_PATTERNS:
        match = pattern.search(lowered)
        if match is None:
            continue

        values: dict[str, int] = {}
        for field, value in zip(order, match.groups()):
            if not value:
                continue
            if field == "year":
                values["year"] = expand_year(int(value))
            elif field == "month_name":
                values["month"] = MONTH_NUMBERS[value]
            else:
                values[field] = int(value)

        month, day = values.get("month"), values.get("day")
        if month is not None and day is not None and month > 12 >= day:
            values["month"], values["day"] = day, month

        info = DateInfo(raw_value=raw, confidence=_PARSED_CONFIDENCE, format="parsed", **values)
        return _with_calendar_date(info)
    return None


def _with_calendar_date(info: DateInfo) -> DateInfo:
    if info.year is None or info.month is None or info.day is None:
        return info
    try:
        parsed = date(info.year, info.month, info.day)
    except ValueError:
        return info
    return info.model_copy(update={"parsed": parsed, "confidence": _FULL_DATE_CONFIDENCE})


def year_only(year: int) -> DateInfo:
    return DateInfo(
        raw_value=str(year), year=year, confidence=_YEAR_ONLY_CONFIDENCE, format="year_only"
    )


def decade_for(year: int | None) -> str | None:
    return f"{year // 10 * 10}s" if year else None


def normalize_time(value: Any) -> str | None:
    """Times pass through as text; a list of showtimes is comma-joined."""
    if isinstance(value, list):
        times = [str(item).strip() for item in value if str(item).strip()]
        return ", ".join(times) or None
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def year_window_check(
    year: int,
    observed_years: list[int],
    window: tuple[int, int],
    subject: str,
) -> PlausibilityCheck:
    """Is *year* inside ``[min(observed) - before, max(observed) + after]``?"""
    if not observed_years:
        return PlausibilityCheck(valid=True, message="No year data to validate")
    first, last = min(observed_years), max(observed_years)
    before, after = window
    if first - before <= year <= last + after:
        return PlausibilityCheck(valid=True, message=f"{subject} active from {first} to {last}")
    return PlausibilityCheck(
        valid=False, message=f"Year {year} outside known {subject.lower()} activity ({first}-{last})"
    )


def calculate_event_confidence(
    event_date: DateInfo | None,
    time_details: TimeDetails | None,
    poster_type: PosterType,
    artist_check: PlausibilityCheck | None = None,
    venue_check: PlausibilityCheck | None = None,
) -> float:
    score = event_date.confidence if event_date is not None else 0.0
    if event_date is None and poster_type in _DATE_OPTIONAL:
        score = _OPTIONAL_DATE_CONFIDENCE
    if time_details is not None:
        score += _TIME_BONUS
    if artist_check is not None and not artist_check.valid:
        score -= _ARTIST_IMPLAUSIBLE_PENALTY
    if venue_check is not None and not venue_check.valid:
        score -= _VENUE_IMPLAUSIBLE_PENALTY
    if event_date is not None and event_date.parsed is not None:
        score += _FULL_DATE_BONUS
    return max(0.0, min(score, 1.0))


class EventPhase(BasePhase):
    """Extract dates and times, then sanity-check the year against history."""

    phase_name = PhaseName.EVENT
    result_model = EventPhaseResult

    async def run(self, phase_input: PhaseInput, start: float) -> EventPhaseResult:
        poster_type = self.get_poster_type(phase_input.context)
        parsed, _ = await self.extract(
            phase_input.image_path, get_phase_prompt(PhaseName.EVENT, poster_type)
        )

        shared_year = extract_year(parsed.get("year"))
        shows = self._extract_shows(parsed, poster_type, shared_year)
        venue_result = phase_input.context.phase_results.get(PhaseName.VENUE)
        if not shows and isinstance(venue_result, VenuePhaseResult):
            shows = self._shows_from_venue_split(venue_result, shared_year)
        event_date = shows[0].date if shows else None
        year = event_date.year if event_date is not None and event_date.year else shared_year

        door_time = normalize_time(parsed.get("door_time") or parsed.get("doors"))
        show_time = normalize_time(parsed.get("show_time") or parsed.get("showtimes"))
        time_details = (
            TimeDetails(door_time=door_time, show_time=show_time)
            if door_time or show_time
            else None
        )

        artist_check: PlausibilityCheck | None = None
        venue_check: PlausibilityCheck | None = None
        if phase_input.options.validate_events and year:
            artist_result = phase_input.context.phase_results.get(PhaseName.ARTIST)
            if isinstance(artist_result, ArtistPhaseResult) and artist_result.headliner:
                artist_check = await self._check_artist_active(
                    artist_result.headliner.display_name, year
                )
            if isinstance(venue_result, VenuePhaseResult) and venue_result.venue:
                venue_check = await self._check_venue_exists(
                    venue_result.venue.display_name, year
                )

        confidence = calculate_event_confidence(
            event_date, time_details, poster_type, artist_check, venue_check
        )
        ready = poster_type in _DATE_OPTIONAL or event_date is not None or year is not None

        return EventPhaseResult(
            **self.create_base_result(phase_input, self.status_for(ready), confidence, start),
            poster_type=poster_type,
            event_date=event_date,
            shows=shows,
            year=year,
            decade=decade_for(year),
            time_details=time_details,
            ticket_price=self.normalize_string(parsed.get("ticket_price")),
            age_restriction=self.normalize_string(parsed.get("age_restriction")),
            promoter=self.normalize_string(parsed.get("promoter")),
            artist_active_validation=artist_check,
            venue_exists_validation=venue_check,
            ready_for_assembly=ready,
            warnings=self._warnings(event_date, artist_check, venue_check),
        )

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _extract_date(self, parsed: dict[str, Any], poster_type: PosterType) -> DateInfo | None:
        raw = self.normalize_string(parsed.get(_DATE_FIELDS.get(poster_type, "event_date")))
        year = extract_year(parsed.get("year"))
        info = parse_date(raw) if raw else None
        if info is not None:
            if info.year is None and year:
                info = _with_calendar_date(info.model_copy(update={"year": year}))
            return info
        return year_only(year) if year else None

    def _extract_shows(
        self,
        parsed: dict[str, Any],
        poster_type: PosterType,
        shared_year: int | None,
    ) -> list[ShowInfo]:
        """Every dated show; falls back to the single date, then to the bare year."""
        text = self.normalize_string
        shows: list[ShowInfo] = []
        raw_shows = parsed.get("shows")
        if isinstance(raw_shows, list):
            for number, show in enumerate(raw_shows, start=1):
                if not isinstance(show, dict):
                    continue
                raw = text(show.get("date")) or text(show.get("event_date"))
                info = parse_date(raw) if raw else None
                if info is None:
                    continue
                if info.year is None and shared_year:
                    info = _with_calendar_date(info.model_copy(update={"year": shared_year}))
                shows.append(
                    ShowInfo(
                        date=info,
                        day_of_week=text(show.get("day_of_week")),
                        door_time=normalize_time(show.get("door_time")),
                        show_time=normalize_time(show.get("show_time")),
                        ticket_price=text(show.get("ticket_price")),
                        age_restriction=text(show.get("age_restriction")),
                        show_number=number,
                    )
                )
        if shows:
            return shows

        info = self._extract_date(parsed, poster_type)
        if info is not None:
            return [
                ShowInfo(
                    date=info,
                    door_time=normalize_time(parsed.get("door_time") or parsed.get("doors")),
                    show_time=normalize_time(parsed.get("show_time") or parsed.get("showtimes")),
                    ticket_price=text(parsed.get("ticket_price")),
                    age_restriction=text(parsed.get("age_restriction")),
                )
            ]
        if shared_year:
            return [ShowInfo(date=year_only(shared_year))]
        return []

    @staticmethod
    def _shows_from_venue_split(
        venue_result: VenuePhaseResult, shared_year: int | None
    ) -> list[ShowInfo]:
        """Use the date phase 3 cut out of the venue text when nothing else was found."""
        split = venue_result.venue_date_split
        if split is None or not split.date:
            return []
        info = parse_date(split.date)
        if info is None:
            return []
        year = info.year or split.year or shared_year
        if info.year is None and year:
            info = _with_calendar_date(info.model_copy(update={"year": year}))
        return [ShowInfo(date=info)]

    # ------------------------------------------------------------------
    # Plausibility
    # ------------------------------------------------------------------

    async def _observed_years(self, query: str, entity_types: list[str]) -> list[int] | None:
        """Years recorded on matching entities; ``None`` when the lookup is unavailable."""
        if self._knowledge_base is None:
            return None
        try:
            entities: list[KnowledgeEntity] = await self._knowledge_base.search_entities(
                query, entity_types=entity_types, limit=20
            )
        except PosterExtractError as exc:
            self._logger.warning("event_plausibility_lookup_failed", query=query, error=str(exc))
            return None
        return [
            int(match.group(1))
            for entity in entities
            for observation in entity.observations
            if (match := _OBSERVED_YEAR_RE.search(observation))
        ]

    async def _check_artist_active(self, artist: str, year: int) -> PlausibilityCheck:
        years = await self._observed_years(artist, ["Poster"])
        if years is None:
            return PlausibilityCheck(valid=True, message="Validation skipped - no knowledge base")
        return year_window_check(year, years, _ARTIST_WINDOW, "Artist")

    async def _check_venue_exists(self, venue: str, year: int) -> PlausibilityCheck:
        years = await self._observed_years(venue, ["Poster", "Venue"])
        if years is None:
            return PlausibilityCheck(valid=True, message="Validation skipped - no knowledge base")
        return year_window_check(year, years, _VENUE_WINDOW, "Venue")

    @staticmethod
    def _warnings(
        event_date: DateInfo | None,
        artist_check: PlausibilityCheck | None,
        venue_check: PlausibilityCheck | None,
    ) -> list[str]:
        warnings: list[str] = []
        if event_date is None:
            warnings.append("No date information extracted")
        elif event_date.year is None:
            warnings.append("Year not identified")
        if artist_check is not None and not artist_check.valid:
            warnings.append(f"Artist activity validation: {artist_check.message}")
        if venue_check is not None and not venue_check.valid:
            warnings.append(f"Venue existence validation: {venue_check.message}")
        return warnings
