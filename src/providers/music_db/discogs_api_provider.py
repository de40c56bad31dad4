"""Discogs REST API provider using python3-discogs-client.

Implements IReferenceDataProvider as the secondary authority for artist
names.  The client is initialized lazily and rate-limited to respect
Discogs' 60 req/min cap; blocking client calls run via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import discogs_client
from discogs_client.exceptions import DiscogsAPIError, HTTPError
from rapidfuzz import fuzz

from src.config.settings import Settings
from src.interfaces.reference_data_provider import IReferenceDataProvider, ReferenceCandidate
from src.utils.errors import ValidationUnavailableError
from src.utils.logging import get_logger
from src.utils.similarity import normalize_artist_name

_USER_AGENT = "posterExtract/0.1.0"
_MIN_REQUEST_INTERVAL = 1.0  # seconds, 60 requests per minute
_ARTIST_URL = "https://www.discogs.com/artist/{id}"


class DiscogsAPIProvider(IReferenceDataProvider):
    """Reference provider backed by the Discogs REST API.

    Requires a personal access token (``DISCOGS_USER_TOKEN``); Discogs
    rejects unauthenticated database searches.
    """

    def __init__(self, settings: Settings) -> None:
        self._token = settings.discogs_user_token
        self._client: discogs_client.Client | None = None
        self._last_request_time: float = 0.0
        self._throttle_lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    # -- Private helpers -------------------------------------------------------

    def _get_client(self) -> discogs_client.Client:
        if self._client is None:
            self._client = discogs_client.Client(_USER_AGENT, user_token=self._token)
        return self._client

    async def _throttle(self) -> None:
        """Enforce minimum interval between API requests."""
        async with self._throttle_lock:
            elapsed = time.monotonic() - self._last_request_time
            if self._last_request_time > 0 and elapsed < _MIN_REQUEST_INTERVAL:
                await asyncio.sleep(_MIN_REQUEST_INTERVAL - elapsed)
            self._last_request_time = time.monotonic()

    @staticmethod
    def _compute_score(query: str, result_name: str) -> float:
        """Token-sort similarity between the query and a result title."""
        return (
            fuzz.token_sort_ratio(normalize_artist_name(query), normalize_artist_name(result_name))
            / 100.0
        )

    # -- Sync helpers (executed via asyncio.to_thread) -------------------------

    def _search_sync(self, query: str, limit: int) -> list[dict[str, Any]]:
        client = self._get_client()
        items: list[dict[str, Any]] = []
        for i, item in enumerate(client.search(query, type="artist")):
            if i >= limit:
                break
            items.append({"id": item.id, "title": item.data.get("title", "")})
        return items

    def _get_artist_sync(self, artist_id: int) -> dict[str, Any]:
        artist = self._get_client().artist(artist_id)
        # Attribute access triggers the HTTP fetch.
        return {"id": artist.id, "name": artist.name, "profile": artist.data.get("profile")}

    async def _search(self, name: str, query: str, limit: int) -> list[ReferenceCandidate]:
        await self._throttle()
        try:
            raw_results = await asyncio.to_thread(self._search_sync, query, limit)
        except (DiscogsAPIError, OSError) as exc:
            self._logger.warning("discogs_api_search_failed", artist=name, error=str(exc))
            raise ValidationUnavailableError(
                message=f"Discogs API search failed for '{name}': {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        results = [
            ReferenceCandidate(
                id=str(item["id"]),
                name=item.get("title", ""),
                score=self._compute_score(name, item.get("title", "")),
            )
            for item in raw_results
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        self._logger.debug("discogs_api_search_complete", artist=name, result_count=len(results))
        return results

    # -- IReferenceDataProvider implementation ---------------------------------

    async def search_by_name(self, name: str, limit: int = 5) -> list[ReferenceCandidate]:
        return await self._search(name, name, limit)

    async def search_by_name_fuzzy(self, name: str, limit: int = 10) -> list[ReferenceCandidate]:
        """Search on the normalized name (no punctuation, articles or credits)."""
        return await self._search(name, normalize_artist_name(name) or name, limit)

    async def get_by_id(self, entry_id: str) -> ReferenceCandidate | None:
        await self._throttle()
        try:
            data = await asyncio.to_thread(self._get_artist_sync, int(entry_id))
        except HTTPError as exc:
            if exc.status_code == 404:
                return None
            raise ValidationUnavailableError(
                message=f"Discogs artist lookup failed for {entry_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except (DiscogsAPIError, OSError) as exc:
            raise ValidationUnavailableError(
                message=f"Discogs artist lookup failed for {entry_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        return ReferenceCandidate(id=str(data["id"]), name=data["name"], score=1.0)

    def get_canonical_url(self, entry_id: str) -> str:
        return _ARTIST_URL.format(id=entry_id)

    def get_provider_name(self) -> str:
        return "discogs"

    def is_available(self) -> bool:
        """Return ``True`` if a user token is configured."""
        return bool(self._token)
