"""Custom exception hierarchy for posterExtract.

All application exceptions inherit from :class:`PosterExtractError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "musicbrainz", "discogs", "anthropic") caused the
failure.

The hierarchy is organized by pipeline concern:

    PosterExtractError  (base -- catch-all for any posterExtract error)
    +-- SessionNotFoundError       (unknown session id passed to the manager)
    +-- MalformedExtractionError   (vision output not JSON after repairs)
    +-- ValidationUnavailableError (reference client missing or erroring)
    +-- PhaseExecutionError        (driver-level phase failure)
    +-- JobCancelledError          (batch job cancelled mid-run)
    +-- ConfigurationError         (startup / missing config)
    +-- LLMError                   (any vision-model API call failure)

Low confidence is deliberately absent: it is a ``needs_review`` phase
status, not an exception.
"""


class PosterExtractError(Exception):
    """Base exception for all posterExtract errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[musicbrainz] Search failed``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Session / phase errors
# ---------------------------------------------------------------------------

class SessionNotFoundError(PosterExtractError):
    """Raised when a phase result is stored against an unknown session id."""

    def __init__(
        self,
        message: str = "Processing session not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class MalformedExtractionError(PosterExtractError):
    """Raised when vision-model output cannot be parsed as a JSON object."""

    def __init__(
        self,
        message: str = "Vision model response could not be parsed as JSON",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PhaseExecutionError(PosterExtractError):
    """Raised when the driver cannot run a phase (unknown phase, missing input)."""

    def __init__(
        self,
        message: str = "Phase execution failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class JobCancelledError(PosterExtractError):
    """Raised inside the driver when a job is found cancelled between phases."""

    def __init__(
        self,
        message: str = "Job was cancelled",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service / provider errors
# ---------------------------------------------------------------------------

class ValidationUnavailableError(PosterExtractError):
    """Raised when an external reference client is missing or fails.

    Phases catch this and degrade to an unvalidated, low-confidence match
    tagged with the ``internal`` source instead of aborting.
    """

    def __init__(
        self,
        message: str = "External validation is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(PosterExtractError):
    """Raised when a vision-model API call fails or returns an empty response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(PosterExtractError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
