"""Artist-name de-concatenation and validation.

Vision models reading festival or package-tour posters often return the
whole bill as one string ("The Black Eyed Peas Fergie Taboo").  This
service decides whether such a string is one act or several, splits it
when needed, and validates every resulting name against the injected
reference databases.

Pipeline for one string
-----------------------
  1. WHOLE      -- Validate the string as a single act.  A score at or
                   above ``match_threshold`` is accepted immediately.
  2. SIGNALS    -- Check for concatenation signals (length, many
                   capitalised words, delimiters, "and"/"with"/"feat.").
                   Without signals, a score at or above
                   ``partial_threshold`` is accepted.
  3. SPLIT      -- Split on delimiters.  When that finds at most one
                   candidate but the string looked concatenated, walk the
                   tokens greedily and keep the longest windows that
                   validate.
  4. MAJORITY   -- Accept the split only when more than
                   ``SPLIT_MAJORITY_RATIO`` of the candidates validated and
                   more than one act came out.
  5. FALLBACK   -- Otherwise keep the original string, validated or not.

Reference lookups go to MusicBrainz first (exact, then fuzzy search) and
fall back to Discogs.  Remote relevance scores are ignored; every
candidate is re-scored locally with :func:`artist_similarity` against
both its name and sort name.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field

from src.interfaces.reference_data_provider import IReferenceDataProvider, ReferenceCandidate
from src.models.validation import ValidationSource
from src.utils.errors import ValidationUnavailableError
from src.utils.logging import get_logger
from src.utils.similarity import artist_similarity, extract_potential_names, normalize_artist_name

# Share of split candidates that must validate (strictly more than) for a
# split to replace the original string.
SPLIT_MAJORITY_RATIO = 0.5

# Longest run of whitespace tokens tried as one act during a
# validation-guided split.
_MAX_WINDOW_TOKENS = 4

_CAPITALISED_WORD_RE = re.compile(r"\b[A-Z][a-z]+\b")
_DELIMITER_SIGNAL_RE = re.compile(r"[,&|•·]")
_CONJUNCTION_SIGNAL_RE = re.compile(r"\b(and|with|featuring|feat\.?|ft\.?)(?=\s|$)", re.IGNORECASE)


class ArtistSplitterConfig(BaseModel):
    """Thresholds for :class:`ArtistSplitter`; loaded from ``artist_splitter`` in config.yaml."""

    model_config = ConfigDict(frozen=True)

    match_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    partial_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_single_artist_length: int = Field(default=50, ge=1)
    use_discogs_fallback: bool = True


class ValidatedArtist(BaseModel):
    """One act name and what the reference databases made of it."""

    model_config = ConfigDict(frozen=True)

    name: str
    canonical_name: str | None = None
    external_id: str | None = None
    external_url: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: ValidationSource = ValidationSource.INTERNAL


class SplitResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    original_text: str
    artists: list[ValidatedArtist] = Field(default_factory=list)
    was_concatenated: bool = False
    split_method: str = "none"  # none | delimiter | validation_guided
    notes: list[str] = Field(default_factory=list)


class MultiSplitResult(BaseModel):
    """Flattened, de-duplicated outcome of splitting several strings."""

    model_config = ConfigDict(frozen=True)

    artists: list[ValidatedArtist] = Field(default_factory=list)
    any_concatenated: bool = False
    notes: list[str] = Field(default_factory=list)


class ArtistSplitter:
    """Split concatenated artist strings and validate each act.

    Parameters
    ----------
    musicbrainz:
        Primary reference provider.
    discogs:
        Optional fallback provider, consulted when MusicBrainz finds
        nothing (and ``use_discogs_fallback`` is set).
    config:
        Thresholds; defaults to :class:`ArtistSplitterConfig`.
    """

    def __init__(
        self,
        musicbrainz: IReferenceDataProvider | None,
        discogs: IReferenceDataProvider | None = None,
        config: ArtistSplitterConfig | None = None,
    ) -> None:
        self._musicbrainz = musicbrainz
        self._discogs = discogs
        self._config = config or ArtistSplitterConfig()
        self._logger = get_logger(__name__)

    @property
    def config(self) -> ArtistSplitterConfig:
        return self._config

    @property
    def has_validators(self) -> bool:
        return self._musicbrainz is not None or (
            self._discogs is not None and self._config.use_discogs_fallback
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def split_and_validate(self, artist_string: str) -> SplitResult:
        """Split *artist_string* into validated acts.

        Raises
        ------
        ValidationUnavailableError
            When every configured reference provider failed for the whole
            string, so nothing can be said about it.
        """
        trimmed = (artist_string or "").strip()
        if not trimmed:
            return SplitResult(original_text=artist_string or "", notes=["Empty input"])

        notes: list[str] = []
        single = await self.validate_single(trimmed)

        if single is not None and single.confidence >= self._config.match_threshold:
            return SplitResult(original_text=artist_string, artists=[single], notes=notes)

        concatenated = self.looks_concatenated(trimmed)
        if (
            not concatenated
            and single is not None
            and single.confidence >= self._config.partial_threshold
        ):
            notes.append(f"Partial match accepted: {single.canonical_name}")
            return SplitResult(original_text=artist_string, artists=[single], notes=notes)

        split_method = "delimiter"
        candidates = extract_potential_names(trimmed)
        guided: list[ValidatedArtist] | None = None
        if len(candidates) <= 1 and concatenated:
            guided = await self._validation_guided_split(trimmed)
            if guided is not None:
                split_method = "validation_guided"
                candidates = [artist.name for artist in guided]

        if len(candidates) <= 1:
            notes.append(
                "Could not split, using single result"
                if single is not None
                else "Could not validate or split"
            )
            return self._keep_original(artist_string, trimmed, single, notes)

        if guided is not None:
            artists = guided
        else:
            artists = [await self._validate_candidate(candidate) for candidate in candidates]
        validated = sum(1 for artist in artists if artist.source != ValidationSource.INTERNAL)

        if validated > len(candidates) * SPLIT_MAJORITY_RATIO and len(artists) > 1:
            notes.append(f"Split successful: {validated}/{len(candidates)} artists validated")
            self._logger.info(
                "artist_split_accepted",
                original=trimmed,
                method=split_method,
                artist_count=len(artists),
                validated=validated,
            )
            return SplitResult(
                original_text=artist_string,
                artists=artists,
                was_concatenated=True,
                split_method=split_method,
                notes=notes,
            )

        self._logger.debug(
            "artist_split_rejected",
            original=trimmed,
            candidates=len(candidates),
            validated=validated,
        )
        notes.append("Split validation unsuccessful, using original")
        return self._keep_original(artist_string, trimmed, single, notes)

    async def validate_single(self, name: str) -> ValidatedArtist | None:
        """Validate one name against MusicBrainz, then Discogs.

        Returns ``None`` when no provider produced a match at or above the
        partial threshold.  Raises :class:`ValidationUnavailableError` only
        when every configured provider errored.
        """
        normalized = normalize_artist_name(name)
        attempted = 0
        failures: list[ValidationUnavailableError] = []

        if self._musicbrainz is not None:
            attempted += 1
            try:
                match = await self._search_musicbrainz(self._musicbrainz, name, normalized)
            except ValidationUnavailableError as exc:
                self._logger.warning("musicbrainz_validation_failed", artist=name, error=str(exc))
                failures.append(exc)
            else:
                if match is not None:
                    return match

        if self._discogs is not None and self._config.use_discogs_fallback:
            attempted += 1
            try:
                match = await self._search_discogs(self._discogs, name, normalized)
            except ValidationUnavailableError as exc:
                self._logger.warning("discogs_validation_failed", artist=name, error=str(exc))
                failures.append(exc)
            else:
                if match is not None:
                    return match

        if attempted and len(failures) == attempted:
            raise failures[-1]
        return None

    def looks_concatenated(self, text: str) -> bool:
        if len(text) > self._config.max_single_artist_length:
            return True
        if len(_CAPITALISED_WORD_RE.findall(text)) >= 4:
            return True
        if _DELIMITER_SIGNAL_RE.search(text):
            return True
        return bool(_CONJUNCTION_SIGNAL_RE.search(text))

    # ------------------------------------------------------------------
    # Splitting helpers
    # ------------------------------------------------------------------

    async def _validation_guided_split(self, text: str) -> list[ValidatedArtist] | None:
        """Greedy longest-window walk over whitespace tokens.

        At each position the longest window (up to four tokens) that
        validates at or above the partial threshold becomes one act.
        Runs of tokens that never validate are kept together as a single
        unvalidated act.  Returns ``None`` when nothing validated.
        """
        tokens = text.split()
        artists: list[ValidatedArtist] = []
        leftover: list[str] = []
        i = 0

        while i < len(tokens):
            accepted: ValidatedArtist | None = None
            width = 0
            for width in range(min(_MAX_WINDOW_TOKENS, len(tokens) - i), 0, -1):
                window = " ".join(tokens[i : i + width])
                try:
                    candidate = await self.validate_single(window)
                except ValidationUnavailableError:
                    candidate = None
                if candidate is not None and candidate.confidence >= self._config.partial_threshold:
                    accepted = candidate
                    break

            if accepted is None:
                leftover.append(tokens[i])
                i += 1
                continue

            if leftover:
                artists.append(ValidatedArtist(name=" ".join(leftover)))
                leftover = []
            artists.append(accepted)
            i += width

        if leftover:
            artists.append(ValidatedArtist(name=" ".join(leftover)))

        if not any(artist.source != ValidationSource.INTERNAL for artist in artists):
            return None
        return artists

    async def _validate_candidate(self, candidate: str) -> ValidatedArtist:
        try:
            result = await self.validate_single(candidate)
        except ValidationUnavailableError:
            result = None
        if result is not None and result.confidence >= self._config.partial_threshold:
            return result
        return ValidatedArtist(
            name=candidate,
            confidence=result.confidence if result is not None else 0.0,
        )

    @staticmethod
    def _keep_original(
        artist_string: str,
        trimmed: str,
        single: ValidatedArtist | None,
        notes: list[str],
    ) -> SplitResult:
        artist = single if single is not None else ValidatedArtist(name=trimmed)
        return SplitResult(original_text=artist_string, artists=[artist], notes=notes)

    # ------------------------------------------------------------------
    # Provider lookups
    # ------------------------------------------------------------------

    async def _search_musicbrainz(
        self, musicbrainz: IReferenceDataProvider, name: str, normalized: str
    ) -> ValidatedArtist | None:
        exact = await musicbrainz.search_by_name(name, 5)
        best = self._best_candidate(normalized, exact)
        if best is None:
            fuzzy = await musicbrainz.search_by_name_fuzzy(name, 10)
            best = self._best_candidate(normalized, fuzzy)
        if best is None:
            return None

        candidate, similarity = best
        return ValidatedArtist(
            name=name,
            canonical_name=candidate.name,
            external_id=candidate.id,
            external_url=musicbrainz.get_canonical_url(candidate.id),
            confidence=similarity,
            source=ValidationSource.MUSICBRAINZ,
        )

    async def _search_discogs(
        self, discogs: IReferenceDataProvider, name: str, normalized: str
    ) -> ValidatedArtist | None:
        results = await discogs.search_by_name(name, 5)
        best = self._best_candidate(normalized, results)
        if best is None:
            return None

        candidate, similarity = best
        return ValidatedArtist(
            name=name,
            canonical_name=candidate.name,
            external_id=candidate.id,
            external_url=discogs.get_canonical_url(candidate.id),
            confidence=similarity,
            source=ValidationSource.DISCOGS,
        )

    def _best_candidate(
        self,
        normalized: str,
        candidates: list[ReferenceCandidate],
    ) -> tuple[ReferenceCandidate, float] | None:
        best: ReferenceCandidate | None = None
        best_similarity = 0.0
        for candidate in candidates:
            similarity = artist_similarity(normalized, candidate.name)
            if candidate.sort_name:
                similarity = max(similarity, artist_similarity(normalized, candidate.sort_name))
            if similarity > best_similarity:
                best, best_similarity = candidate, similarity

        if best is None or best_similarity < self._config.partial_threshold:
            return None
        return best, best_similarity


async def split_and_validate_artists(
    artist_strings: list[str],
    splitter: ArtistSplitter,
) -> MultiSplitResult:
    """Split every string and flatten the acts, de-duplicated by canonical name."""
    artists: list[ValidatedArtist] = []
    notes: list[str] = []
    any_concatenated = False

    for artist_string in artist_strings:
        result = await splitter.split_and_validate(artist_string)
        artists.extend(result.artists)
        notes.extend(result.notes)
        any_concatenated = any_concatenated or result.was_concatenated

    seen: set[str] = set()
    unique: list[ValidatedArtist] = []
    for artist in artists:
        key = normalize_artist_name(artist.canonical_name or artist.name)
        if key in seen:
            continue
        seen.add(key)
        unique.append(artist)

    return MultiSplitResult(artists=unique, any_concatenated=any_concatenated, notes=notes)
