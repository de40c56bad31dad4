"""MusicBrainz provider implementing IReferenceDataProvider.

Uses the musicbrainzngs library to look artists up in the MusicBrainz open
database.  Enforces the MusicBrainz rate limit of 1 request per second via
asyncio-based throttling; the blocking musicbrainzngs calls run in a worker
thread so the event loop keeps serving other posters.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import musicbrainzngs
import structlog

from src.config.settings import Settings
from src.interfaces.reference_data_provider import IReferenceDataProvider, ReferenceCandidate
from src.utils.errors import ValidationUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_ARTIST_URL = "https://musicbrainz.org/artist/{id}"


class MusicBrainzProvider(IReferenceDataProvider):
    """MusicBrainz artist lookups with built-in rate limiting.

    No API key is required, but clients must identify themselves via a
    user-agent string and respect the 1 request/second rate limit.
    """

    _MIN_REQUEST_INTERVAL: float = 1.0

    def __init__(self, settings: Settings, min_request_interval: float | None = None) -> None:
        self._last_request_time: float = 0.0
        self._throttle_lock = asyncio.Lock()
        if min_request_interval is not None:
            self._MIN_REQUEST_INTERVAL = min_request_interval

        musicbrainzngs.set_useragent(
            settings.musicbrainz_app_name,
            settings.musicbrainz_app_version,
            settings.musicbrainz_contact or None,
        )
        logger.info(
            "musicbrainz_provider_initialized",
            app_name=settings.musicbrainz_app_name,
            app_version=settings.musicbrainz_app_version,
        )

    # ------------------------------------------------------------------
    # Rate-limiting helper
    # ------------------------------------------------------------------

    async def _throttle(self) -> None:
        """Enforce the MusicBrainz 1 req/sec rate limit across concurrent posters."""
        async with self._throttle_lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self._MIN_REQUEST_INTERVAL:
                await asyncio.sleep(self._MIN_REQUEST_INTERVAL - elapsed)
            self._last_request_time = time.monotonic()

    # ------------------------------------------------------------------
    # IReferenceDataProvider implementation
    # ------------------------------------------------------------------

    async def search_by_name(self, name: str, limit: int = 5) -> list[ReferenceCandidate]:
        """Field search on the artist name."""
        return await self._search(name, limit, artist=name)

    async def search_by_name_fuzzy(self, name: str, limit: int = 10) -> list[ReferenceCandidate]:
        """Free-text search across names, aliases and sort names."""
        return await self._search(name, limit, query=name)

    async def get_by_id(self, entry_id: str) -> ReferenceCandidate | None:
        await self._throttle()
        try:
            response = await asyncio.to_thread(musicbrainzngs.get_artist_by_id, entry_id)
        except musicbrainzngs.ResponseError:
            return None
        except musicbrainzngs.WebServiceError as exc:
            raise ValidationUnavailableError(
                message=f"MusicBrainz lookup failed for '{entry_id}': {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        artist = response.get("artist")
        if not artist:
            return None
        return self._map_artist(artist, score=1.0)

    def get_canonical_url(self, entry_id: str) -> str:
        return _ARTIST_URL.format(id=entry_id)

    def get_provider_name(self) -> str:
        return "musicbrainz"

    def is_available(self) -> bool:
        """MusicBrainz is always available (no API key required)."""
        return True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _search(self, name: str, limit: int, **criteria: str) -> list[ReferenceCandidate]:
        await self._throttle()
        try:
            response = await asyncio.to_thread(
                musicbrainzngs.search_artists, limit=limit, **criteria
            )
        except musicbrainzngs.WebServiceError as exc:
            raise ValidationUnavailableError(
                message=f"MusicBrainz artist search failed for '{name}': {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        results = [
            self._map_artist(artist, score=int(artist.get("ext:score", 0)) / 100.0)
            for artist in response.get("artist-list", [])
        ]
        logger.debug(
            "musicbrainz_artist_search",
            query=name,
            criteria=sorted(criteria),
            result_count=len(results),
        )
        return results

    @staticmethod
    def _map_artist(artist: dict[str, Any], score: float) -> ReferenceCandidate:
        return ReferenceCandidate(
            id=artist["id"],
            name=artist.get("name", ""),
            sort_name=artist.get("sort-name"),
            score=score,
            disambiguation=artist.get("disambiguation"),
        )
