"""Abstract base class for external reference-data providers.

Reference providers (MusicBrainz, Discogs) are the authorities extracted
artist names are validated against.  The pipeline consumes their ranked
candidates but always re-scores names locally with
:func:`src.utils.similarity.artist_similarity`; the remote ``score`` is
informational only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ReferenceCandidate:
    """A single result returned by a name search.

    Attributes
    ----------
    id:
        Provider-specific unique identifier.
    name:
        The name as listed by the provider.
    sort_name:
        Alternate sortable form ("Beatles, The"), when the provider has one.
    score:
        The provider's own relevance score normalised to 0.0-1.0.
    disambiguation:
        Extra text distinguishing identically named entries.
    """

    id: str
    name: str
    sort_name: str | None = None
    score: float = 0.0
    disambiguation: str | None = None


# Concrete implementations: MusicBrainzProvider, DiscogsAPIProvider
# Located in: src/providers/music_db/
class IReferenceDataProvider(ABC):
    """Contract for name lookups against an external authority."""

    @abstractmethod
    async def search_by_name(self, name: str, limit: int = 5) -> list[ReferenceCandidate]:
        """Search for entries whose name matches *name*.

        Raises
        ------
        src.utils.errors.ValidationUnavailableError
            If the remote call fails.
        """

    @abstractmethod
    async def search_by_name_fuzzy(self, name: str, limit: int = 10) -> list[ReferenceCandidate]:
        """Looser search used when the exact search finds nothing usable."""

    @abstractmethod
    async def get_by_id(self, entry_id: str) -> ReferenceCandidate | None:
        """Fetch a single entry, or ``None`` if it does not exist."""

    @abstractmethod
    def get_canonical_url(self, entry_id: str) -> str:
        """Return the public web URL for *entry_id*."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return an identifier such as ``"musicbrainz"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured."""
