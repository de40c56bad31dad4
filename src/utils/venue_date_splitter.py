"""Separate a date that a vision model folded into a venue field.

Vision models regularly return the line under a venue name as part of the
venue itself ("Rod Laver Arena 23/04/2024"), and film posters put the
release channel where a venue would be ("In Cinemas August 7th").  The
:func:`split_venue_date` heuristic tries, in order:

1. release-channel phrases followed by a date (confidence 0.9);
2. a venue name followed by a trailing date in one of five formats
   (0.85 for month names, 0.9 for numeric dates with a year, 0.8 for
   ``DD/MM``);
3. a bare date with no venue keyword (venue ``None``, 0.8);
4. the whole string as a venue with no date (1.0).

Dates are normalised to ``DD/MM`` or ``DD/MM/YYYY``.  Two-digit years
pivot at 50: above 50 is the 1900s, otherwise the 2000s.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from src.models.phases import VenueDateSplit

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
}

_MONTH = (
    r"(?:january|february|march|april|may|june|july|august|september|october|"
    r"november|december|jan|feb|mar|apr|jun|jul|aug|sep|sept|oct|nov|dec)"
)
_ORDINAL = r"(?:st|nd|rd|th)?"

_RELEASE_VENUE_PATTERNS = [
    re.compile(r"^(in\s+cinemas?)\s+(.+)$", re.IGNORECASE),
    re.compile(r"^(in\s+theaters?)\s+(.+)$", re.IGNORECASE),
    re.compile(r"^(in\s+theatres?)\s+(.+)$", re.IGNORECASE),
    re.compile(r"^(only\s+(?:in\s+)?(?:cinemas?|theaters?|theatres?))\s+(.+)$", re.IGNORECASE),
    re.compile(r"^(coming\s+to\s+(?:cinemas?|theaters?|theatres?))\s+(.+)$", re.IGNORECASE),
    re.compile(r"^(on\s+(?:dvd|blu-?ray|streaming|netflix|amazon|hulu))\s+(.+)$", re.IGNORECASE),
]

# Venue followed by a trailing date.
_VENUE_MONTH_DAY = re.compile(
    rf"^(.+?)\s+({_MONTH})\s+(\d{{1,2}}){_ORDINAL}(?:\s+(\d{{4}}))?$", re.IGNORECASE
)
_VENUE_DAY_MONTH = re.compile(
    rf"^(.+?)\s+(\d{{1,2}}){_ORDINAL}\s+({_MONTH})(?:\s+(\d{{4}}))?$", re.IGNORECASE
)
_VENUE_NUMERIC_LONG_YEAR = re.compile(r"^(.+?)\s+(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})$")
_VENUE_NUMERIC_SHORT_YEAR = re.compile(r"^(.+?)\s+(\d{1,2})[/\-](\d{1,2})[/\-](\d{2})$")
_VENUE_NUMERIC_NO_YEAR = re.compile(r"^(.+?)\s+(\d{1,2})[/\-](\d{1,2})$")

# Bare dates.
_MONTH_DAY = re.compile(
    rf"^({_MONTH})\s+(\d{{1,2}}){_ORDINAL}(?:,?\s+(\d{{4}}))?$", re.IGNORECASE
)
_DAY_MONTH = re.compile(rf"^(\d{{1,2}}){_ORDINAL}\s+({_MONTH})(?:\s+(\d{{4}}))?$", re.IGNORECASE)
_NUMERIC_LONG_YEAR = re.compile(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})$")
_NUMERIC_SHORT_YEAR = re.compile(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{2})$")
_NUMERIC_NO_YEAR = re.compile(r"^(\d{1,2})[/\-](\d{1,2})$")

VENUE_KEYWORDS = (
    "arena", "stadium", "theatre", "theater", "hall", "center", "centre",
    "club", "bar", "pub", "lounge", "room", "auditorium", "amphitheater",
    "amphitheatre", "pavilion", "garden", "gardens", "park", "field",
    "coliseum", "dome", "forum", "palace", "house", "ballroom", "showroom",
    "casino", "hotel", "resort", "cinema", "cinemas", "multiplex",
)


class ParsedDate(NamedTuple):
    formatted: str
    day: int
    month: int
    year: int | None


def expand_two_digit_year(short_year: int) -> int:
    return 1900 + short_year if short_year > 50 else 2000 + short_year


def _is_valid_day_month(day: int, month: int) -> bool:
    return 1 <= month <= 12 and 1 <= day <= 31


def format_date(day: int, month: int, year: int | None = None) -> str:
    """Format as ``DD/MM`` or ``DD/MM/YYYY``."""
    if year:
        return f"{day:02d}/{month:02d}/{year}"
    return f"{day:02d}/{month:02d}"


def _build(day: int, month: int, year: int | None) -> ParsedDate | None:
    if not _is_valid_day_month(day, month):
        return None
    return ParsedDate(format_date(day, month, year), day, month, year)


def parse_date(text: str) -> ParsedDate | None:
    """Parse a standalone date string, or return ``None``.

    Accepts ``Month DD[th][,] [YYYY]``, ``DD[th] Month [YYYY]``,
    ``DD/MM/YYYY``, ``DD/MM/YY`` and ``DD/MM`` (``-`` also works as the
    separator).  Numeric dates are read day first.
    """
    trimmed = text.strip()

    if match := _MONTH_DAY.match(trimmed):
        year = int(match.group(3)) if match.group(3) else None
        parsed = _build(int(match.group(2)), MONTH_NUMBERS[match.group(1).lower()], year)
        if parsed:
            return parsed

    if match := _DAY_MONTH.match(trimmed):
        year = int(match.group(3)) if match.group(3) else None
        parsed = _build(int(match.group(1)), MONTH_NUMBERS[match.group(2).lower()], year)
        if parsed:
            return parsed

    if match := _NUMERIC_LONG_YEAR.match(trimmed):
        parsed = _build(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return parsed

    if match := _NUMERIC_SHORT_YEAR.match(trimmed):
        year = expand_two_digit_year(int(match.group(3)))
        parsed = _build(int(match.group(1)), int(match.group(2)), year)
        if parsed:
            return parsed

    if match := _NUMERIC_NO_YEAR.match(trimmed):
        return _build(int(match.group(1)), int(match.group(2)), None)

    return None


class _TrailingDate(NamedTuple):
    venue: str
    date: ParsedDate
    confidence: float


def _split_trailing_date(text: str) -> _TrailingDate | None:
    if match := _VENUE_MONTH_DAY.match(text):
        year = int(match.group(4)) if match.group(4) else None
        parsed = _build(int(match.group(3)), MONTH_NUMBERS[match.group(2).lower()], year)
        if parsed and match.group(1).strip():
            return _TrailingDate(match.group(1).strip(), parsed, 0.85)

    if match := _VENUE_DAY_MONTH.match(text):
        year = int(match.group(4)) if match.group(4) else None
        parsed = _build(int(match.group(2)), MONTH_NUMBERS[match.group(3).lower()], year)
        if parsed and match.group(1).strip():
            return _TrailingDate(match.group(1).strip(), parsed, 0.85)

    if match := _VENUE_NUMERIC_LONG_YEAR.match(text):
        parsed = _build(int(match.group(2)), int(match.group(3)), int(match.group(4)))
        if parsed and match.group(1).strip():
            return _TrailingDate(match.group(1).strip(), parsed, 0.9)

    if match := _VENUE_NUMERIC_SHORT_YEAR.match(text):
        year = expand_two_digit_year(int(match.group(4)))
        parsed = _build(int(match.group(2)), int(match.group(3)), year)
        if parsed and match.group(1).strip():
            return _TrailingDate(match.group(1).strip(), parsed, 0.9)

    if match := _VENUE_NUMERIC_NO_YEAR.match(text):
        parsed = _build(int(match.group(2)), int(match.group(3)), None)
        if parsed and match.group(1).strip():
            return _TrailingDate(match.group(1).strip(), parsed, 0.8)

    return None


def contains_venue_keyword(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in VENUE_KEYWORDS)


def split_venue_date(venue_text: str | None) -> VenueDateSplit:
    """Split *venue_text* into a venue and an optional date.

    Args:
        venue_text: The raw venue string from a vision-model response.

    Returns:
        A :class:`VenueDateSplit` with the venue, the normalised date, the
        year when one was present, whether the input mixed the two, a
        confidence for the chosen branch and explanatory notes.
    """
    if not venue_text or not isinstance(venue_text, str):
        return VenueDateSplit(original_text=venue_text or "", notes=["Empty input"])

    trimmed = venue_text.strip()
    if not trimmed:
        return VenueDateSplit(original_text=venue_text, notes=["Empty input after trim"])

    for pattern in _RELEASE_VENUE_PATTERNS:
        match = pattern.match(trimmed)
        if not match:
            continue
        venue_part = match.group(1).strip()
        date_part = match.group(2).strip()
        parsed = parse_date(date_part)
        if parsed:
            return VenueDateSplit(
                original_text=venue_text,
                venue=venue_part,
                date=parsed.formatted,
                year=parsed.year,
                was_mixed=True,
                confidence=0.9,
                notes=[f'Matched release pattern: venue="{venue_part}", date="{date_part}"'],
            )

    trailing = _split_trailing_date(trimmed)
    if trailing:
        return VenueDateSplit(
            original_text=venue_text,
            venue=trailing.venue,
            date=trailing.date.formatted,
            year=trailing.date.year,
            was_mixed=True,
            confidence=trailing.confidence,
            notes=[
                f'Matched venue+date pattern: venue="{trailing.venue}", '
                f'date="{trailing.date.formatted}"'
            ],
        )

    pure_date = parse_date(trimmed)
    if pure_date and not contains_venue_keyword(trimmed):
        return VenueDateSplit(
            original_text=venue_text,
            date=pure_date.formatted,
            year=pure_date.year,
            confidence=0.8,
            notes=["Input appears to be a date only, not a venue"],
        )

    return VenueDateSplit(
        original_text=venue_text,
        venue=trimmed,
        confidence=1.0,
        notes=["No date pattern detected, treating as pure venue"],
    )
