"""Abstract base class for vision-capable LLM service providers.

Defines the contract for any large-language-model backend that can read a
poster image and answer an extraction prompt.  Implementations wrap the
OpenAI API, the Anthropic API, or a local Ollama server.  Phases never talk
to an LLM directly; they go through :class:`~src.interfaces.vision_provider.IVisionProvider`,
whose shipped adapter wraps one of these.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: OpenAILLMProvider, AnthropicLLMProvider, OllamaLLMProvider
# Located in: src/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM services used by the extraction pipeline."""

    @abstractmethod
    async def vision_extract(self, image_bytes: bytes, prompt: str) -> str:
        """Analyse an image using the model's vision capability.

        Parameters
        ----------
        image_bytes:
            Raw bytes of the poster image.
        prompt:
            The extraction instruction; phase prompts ask for a single JSON
            object in reply.

        Returns
        -------
        str
            The model's raw text response.

        Raises
        ------
        src.utils.errors.LLMError
            If the provider cannot do vision or the API call fails.
        """

    @abstractmethod
    def supports_vision(self) -> bool:
        """Return ``True`` if this provider can process image inputs."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"anthropic"``."""

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model used for vision requests, e.g. ``"gpt-4o"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Implementations check that credentials are present without making
        an inference call.
        """

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Perform a lightweight API call to confirm the provider works.

        Returns
        -------
        bool
            ``True`` if the remote service accepted the request.
        """
