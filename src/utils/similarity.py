"""String normalization and name-similarity scoring.

Vision models return names with inconsistent casing, punctuation, leading
articles and "featuring" tails, and external reference databases spell the
same artist or venue in yet another way.  This module provides the pure
functions used to compare the two:

1. **Normalization** -- ``normalize_string`` (case, diacritics, articles,
   punctuation) and ``normalize_artist_name`` (conjunctions, band suffixes,
   featuring credits).
2. **Similarity** -- Levenshtein and Jaro-Winkler scores via rapidfuzz,
   blended by ``combined_similarity``; ``artist_similarity`` adds an
   acronym shortcut; ``name_similarity`` is the looser word-overlap score
   used for venue names.
3. **Matching helpers** -- best-candidate selection, match-status tiers
   and extraction of candidate names from delimiter-separated text.
"""

import re
import unicodedata
from collections.abc import Callable

from rapidfuzz import process
from rapidfuzz.distance import JaroWinkler, Levenshtein

_LEADING_ARTICLE_RE = re.compile(r"^(the|a|an)\s+", re.IGNORECASE)
_PUNCTUATION_RE = re.compile(r"[^\w\s']")
_WHITESPACE_RE = re.compile(r"\s+")
_ARTIST_SUFFIX_RE = re.compile(r"\s+(band|group|ensemble|orchestra|quartet|trio|duo)$", re.IGNORECASE)
_FEATURING_RE = re.compile(r"\s*(featuring|feat\.?|ft\.?)\s+.+$", re.IGNORECASE)
_NAME_DELIMITER_RE = re.compile(r"[,&+•·\n|]")

# Fragments that show up between names on posters but are never names.
_NON_NAME_PHRASES = (
    "tickets",
    "admission",
    "doors",
    "show",
    "starts",
    "ages",
    "all ages",
    "presented by",
    "with special guest",
    "featuring",
    "live at",
    "appearing at",
)

MATCH_THRESHOLD = 0.9
PARTIAL_THRESHOLD = 0.7


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_string(text: str | None) -> str:
    """Normalize a string for comparison.

    Lowercases, strips diacritics, drops a leading "the"/"a"/"an", removes
    punctuation (apostrophes included) and collapses whitespace, so that
    "The Beatles" and "beatles" compare equal.

    Args:
        text: Raw string, may be ``None`` or empty.

    Returns:
        The normalized string, or ``""`` for empty input.
    """
    if not text:
        return ""

    normalized = unicodedata.normalize("NFD", text.lower())
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    normalized = _LEADING_ARTICLE_RE.sub("", normalized)
    normalized = _PUNCTUATION_RE.sub("", normalized)
    normalized = normalized.replace("'", "")
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    return normalized.strip()


def normalize_artist_name(name: str | None) -> str:
    """Normalize an artist name, folding common credit variations.

    On top of :func:`normalize_string` this treats "and" and "&" as a
    plain space, drops trailing ensemble words ("band", "trio", ...) and
    cuts everything from a "featuring"/"feat."/"ft." credit onwards.
    """
    if not name:
        return ""

    normalized = normalize_string(name)
    normalized = re.sub(r"\s+and\s+", " ", normalized)
    normalized = re.sub(r"\s*&\s*", " ", normalized)
    normalized = _ARTIST_SUFFIX_RE.sub("", normalized)
    normalized = _FEATURING_RE.sub("", normalized)
    return normalized.strip()


# ---------------------------------------------------------------------------
# Similarity scores
# ---------------------------------------------------------------------------


def levenshtein_distance(first: str, second: str) -> int:
    """Return the edit distance between two strings."""
    return Levenshtein.distance(first, second)


def levenshtein_similarity(first: str, second: str) -> float:
    """Return ``1 - distance / max_length`` in [0, 1].

    Two empty strings are identical (1.0); one empty string scores 0.0.
    """
    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0
    return Levenshtein.normalized_similarity(first, second)


def jaro_winkler_similarity(first: str, second: str) -> float:
    """Return the case-insensitive Jaro-Winkler similarity in [0, 1].

    Uses the standard prefix scale of 0.1 over a common prefix of up to
    four characters, which favours names that agree at the start.
    """
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0
    return JaroWinkler.similarity(first.lower(), second.lower(), prefix_weight=0.1)


def combined_similarity(first: str, second: str) -> float:
    """Blend Jaro-Winkler (0.6) and Levenshtein (0.4) on normalized input.

    A 0.1 bonus applies when one normalized string contains the other.
    The result is capped at 1.0; exact normalized matches return 1.0.
    """
    normalized_first = normalize_string(first)
    normalized_second = normalize_string(second)

    if normalized_first == normalized_second:
        return 1.0

    lev = levenshtein_similarity(normalized_first, normalized_second)
    jaro = jaro_winkler_similarity(normalized_first, normalized_second)
    contains_bonus = (
        0.1
        if normalized_first in normalized_second or normalized_second in normalized_first
        else 0.0
    )
    return min(1.0, jaro * 0.6 + lev * 0.4 + contains_bonus)


def _acronym(normalized: str) -> str:
    return "".join(word[0] for word in normalized.split() if word)


def artist_similarity(first: str, second: str) -> float:
    """Similarity for artist names with an acronym shortcut.

    "Electric Light Orchestra" vs "ELO" style pairs score 0.9 when one
    name is the initials of the other; everything else falls through to
    :func:`combined_similarity`.
    """
    normalized_first = normalize_artist_name(first)
    normalized_second = normalize_artist_name(second)

    if normalized_first == normalized_second:
        return 1.0

    if (
        normalized_first
        and normalized_second
        and (
            _acronym(normalized_first) == normalized_second
            or _acronym(normalized_second) == normalized_first
        )
    ):
        return 0.9

    return combined_similarity(normalized_first, normalized_second)


def name_similarity(first: str, second: str) -> float:
    """Loose similarity used for venue names.

    Both sides are reduced to lowercase alphanumerics and spaces.  Equal
    strings score 1.0, containment scores 0.9, and anything else scores
    the Jaccard overlap of their word sets.
    """
    clean_first = re.sub(r"[^a-z0-9\s]", "", first.lower()).strip()
    clean_second = re.sub(r"[^a-z0-9\s]", "", second.lower()).strip()

    if not clean_first or not clean_second:
        return 0.0
    if clean_first == clean_second:
        return 1.0
    if clean_first in clean_second or clean_second in clean_first:
        return 0.9

    words_first = set(clean_first.split())
    words_second = set(clean_second.split())
    union = words_first | words_second
    if not union:
        return 0.0
    return len(words_first & words_second) / len(union)


# ---------------------------------------------------------------------------
# Matching helpers
# ---------------------------------------------------------------------------


def find_best_match(
    target: str,
    candidates: list[str],
    scorer: Callable[[str, str], float] = combined_similarity,
) -> tuple[str, float, int] | None:
    """Find the highest-scoring candidate for *target*.

    Args:
        target: The string to match.
        candidates: Strings to compare against.
        scorer: Similarity function returning a score in [0, 1].

    Returns:
        ``(match, score, index)`` for the best candidate, or ``None`` when
        there are no candidates or every score is zero.
    """
    if not target or not candidates:
        return None

    result = process.extractOne(
        target,
        candidates,
        scorer=lambda query, choice, **_: scorer(query, choice),
        processor=None,
    )
    if result is None:
        return None

    match, score, index = result
    if score <= 0:
        return None
    return match, score, index


def is_likely_match(
    first: str,
    second: str,
    threshold: float = 0.8,
    scorer: Callable[[str, str], float] = combined_similarity,
) -> bool:
    """Return ``True`` when the two strings score at or above *threshold*."""
    return scorer(first, second) >= threshold


def get_match_status(
    score: float,
    match_threshold: float = MATCH_THRESHOLD,
    partial_threshold: float = PARTIAL_THRESHOLD,
) -> str:
    """Map a similarity score to ``"match"``, ``"partial"`` or ``"mismatch"``."""
    if score >= match_threshold:
        return "match"
    if score >= partial_threshold:
        return "partial"
    return "mismatch"


def extract_potential_names(text: str | None) -> list[str]:
    """Split poster text into candidate names on common delimiters.

    Splits on ``, & + • · | newline``, then drops fragments shorter than
    two or longer than 100 characters, fragments with more than four
    digits (dates, addresses, prices) and known billing phrases such as
    "doors" or "presented by".

    Args:
        text: Raw text that may list several names.

    Returns:
        Candidate names in their original order.
    """
    if not text:
        return []

    names: list[str] = []
    for part in _NAME_DELIMITER_RE.split(text):
        candidate = part.strip()
        if len(candidate) < 2 or len(candidate) > 100:
            continue
        if sum(ch.isdigit() for ch in candidate) > 4:
            continue
        lowered = candidate.lower()
        if any(phrase in lowered for phrase in _NON_NAME_PHRASES):
            continue
        names.append(candidate)

    return names
