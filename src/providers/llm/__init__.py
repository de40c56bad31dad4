"""Vision LLM provider adapters.

Three concrete implementations of ILLMProvider (src/interfaces/llm_provider.py):
    - AnthropicLLMProvider -- Claude Sonnet
    - OpenAILLMProvider    -- gpt-4o (also OpenAI-compatible endpoints)
    - OllamaLLMProvider    -- local llava via an Ollama server

src/main.py picks the first configured provider in ``llm.priority`` order
and wraps it in LLMVisionProvider for the phases.
"""

from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.ollama_provider import OllamaLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["AnthropicLLMProvider", "OllamaLLMProvider", "OpenAILLMProvider"]
