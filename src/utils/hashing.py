"""Content hashing for poster images."""

from __future__ import annotations

import hashlib
from pathlib import Path

_BLOCK_SIZE = 1024 * 1024
_POSTER_ID_HASH_CHARS = 16


def compute_file_hash(file_path: str | Path) -> str:
    """SHA-256 hex digest of a file, read in 1 MB blocks.

    Raises:
        OSError: The file cannot be opened or read.
    """
    hasher = hashlib.sha256()
    with open(file_path, "rb") as fh:
        while True:
            block = fh.read(_BLOCK_SIZE)
            if not block:
                break
            hasher.update(block)
    return hasher.hexdigest()


def generate_poster_id(content_hash: str) -> str:
    """Stable poster id: identical image bytes always give the same id."""
    return f"poster_{content_hash[:_POSTER_ID_HASH_CHARS]}"


def hash_text(text: str) -> str:
    """SHA-256 hex digest of a string, for ids of images that cannot be read."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
