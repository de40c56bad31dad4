"""Vision provider implementations."""

from src.providers.vision.llm_vision_provider import LLMVisionProvider

__all__ = ["LLMVisionProvider"]
