"""Utility modules for posterExtract.

Available utility modules (re-exported here for convenience):

- **confidence** -- Weighted scoring, completeness confidence and the
  field-weighted validation score used for review reports.
- **errors** -- Domain-specific exception hierarchy rooted at
  PosterExtractError.
- **concurrency** -- Semaphore-throttled gather for batch fan-out and the
  per-key lock registry used by the Phase Manager.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **similarity** -- Name normalization and rapidfuzz-backed similarity.
- **venue_date_splitter** (not re-exported here) -- Separates dates that
  leaked into venue fields.
"""

from src.utils.concurrency import KeyedLocks, throttled_gather
from src.utils.confidence import (
    ConfidenceLevel,
    calculate_completeness_confidence,
    calculate_confidence,
    confidence_to_level,
    merge_confidence,
)
from src.utils.errors import (
    ConfigurationError,
    JobCancelledError,
    LLMError,
    MalformedExtractionError,
    PhaseExecutionError,
    PosterExtractError,
    SessionNotFoundError,
    ValidationUnavailableError,
)
from src.utils.logging import configure_logging, get_logger
from src.utils.similarity import artist_similarity, name_similarity, normalize_artist_name

__all__ = [
    "ConfidenceLevel",
    "ConfigurationError",
    "JobCancelledError",
    "KeyedLocks",
    "LLMError",
    "MalformedExtractionError",
    "PhaseExecutionError",
    "PosterExtractError",
    "SessionNotFoundError",
    "ValidationUnavailableError",
    "artist_similarity",
    "calculate_completeness_confidence",
    "calculate_confidence",
    "confidence_to_level",
    "configure_logging",
    "get_logger",
    "merge_confidence",
    "name_similarity",
    "normalize_artist_name",
    "throttled_gather",
]
