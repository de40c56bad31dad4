"""Reference-data provider implementations.

Two concrete implementations of IReferenceDataProvider, consulted in this
order by the artist splitter when validating extracted names:

    1. MusicBrainzProvider -- MusicBrainz open API (no key; identify via
       MUSICBRAINZ_CONTACT). Rate limit: 1 req/sec.
    2. DiscogsAPIProvider  -- official Discogs REST API, used as the fallback
       (requires DISCOGS_USER_TOKEN). Rate limit: 60 req/min.
"""

from src.providers.music_db.discogs_api_provider import DiscogsAPIProvider
from src.providers.music_db.musicbrainz_provider import MusicBrainzProvider

__all__ = ["DiscogsAPIProvider", "MusicBrainzProvider"]
