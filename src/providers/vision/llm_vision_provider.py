"""LLM-backed vision provider for poster extraction.

Adapts any vision-capable :class:`ILLMProvider` to :class:`IVisionProvider`:
it reads the image file, forwards the phase prompt, and times the call.
Prompts and JSON parsing belong to the phases; this layer only moves bytes.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.vision_provider import IVisionProvider, VisionExtraction, VisionModelInfo
from src.utils.errors import LLMError
from src.utils.logging import get_logger


class LLMVisionProvider(IVisionProvider):
    """Vision provider that delegates to a vision-capable LLM.

    An "adapter of an adapter": the phases see one image-in/text-out call
    regardless of which LLM SDK sits underneath.
    """

    def __init__(self, llm_provider: ILLMProvider) -> None:
        self._llm_provider = llm_provider
        self._logger = get_logger(__name__)

    async def extract_from_image(self, image_path: str, prompt: str) -> VisionExtraction:
        if not self._llm_provider.supports_vision():
            raise LLMError(
                "Configured LLM provider does not support vision",
                provider_name=self._llm_provider.get_provider_name(),
            )

        try:
            image_bytes = await asyncio.to_thread(Path(image_path).read_bytes)
        except OSError as exc:
            raise LLMError(
                f"Could not read image {image_path}: {exc}",
                provider_name=self._llm_provider.get_provider_name(),
            ) from exc

        start = time.perf_counter()
        text = await self._llm_provider.vision_extract(image_bytes=image_bytes, prompt=prompt)
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        self._logger.debug(
            "vision_extraction_complete",
            provider=self._llm_provider.get_provider_name(),
            image_path=image_path,
            processing_time_ms=elapsed_ms,
            response_chars=len(text),
        )
        return VisionExtraction(
            extracted_text=text,
            processing_time_ms=elapsed_ms,
            model=self._llm_provider.get_model_name(),
        )

    def get_model_info(self) -> VisionModelInfo:
        return VisionModelInfo(
            provider=self._llm_provider.get_provider_name(),
            model=self._llm_provider.get_model_name(),
        )
