"""Abstract base class for poster vision extraction.

Every phase sends the poster image plus a phase-specific prompt through this
interface and gets back a text blob to JSON-parse.  The core is agnostic to
which backend served the request.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class VisionExtraction:
    """Raw text a vision model returned for one prompt.

    Attributes
    ----------
    extracted_text:
        The model's reply, expected to contain a JSON object.
    processing_time_ms:
        Wall-clock time of the request.
    model:
        Identifier of the model that answered.
    """

    extracted_text: str
    processing_time_ms: int = 0
    model: str | None = None


@dataclass(frozen=True)
class VisionModelInfo:
    provider: str
    model: str


# Concrete implementation: LLMVisionProvider (src/providers/vision/)
class IVisionProvider(ABC):
    """Contract for reading a poster image with a prompt."""

    @abstractmethod
    async def extract_from_image(self, image_path: str, prompt: str) -> VisionExtraction:
        """Run *prompt* against the image at *image_path*.

        Raises
        ------
        src.utils.errors.LLMError
            If the image cannot be read or the model call fails.
        """

    @abstractmethod
    def get_model_info(self) -> VisionModelInfo:
        """Return the provider and model names, for provenance records."""
