"""Public interface definitions for all external service providers.

Every external service in the extraction pipeline is accessed exclusively
through the abstract base classes defined in this package.  Concrete
adapters implement these interfaces and are injected at startup by
``src/main.py``, so phases and services can be tested with mocks and
backends can be swapped without touching call sites.

CONCRETE PROVIDER MAP:
    Interface                  ->  Concrete implementations (in src/providers/)
    ---------------------------------------------------------------------
    ILLMProvider               ->  OpenAILLMProvider, AnthropicLLMProvider,
                                   OllamaLLMProvider
    IVisionProvider            ->  LLMVisionProvider
    IReferenceDataProvider     ->  MusicBrainzProvider, DiscogsAPIProvider
    IKnowledgeBaseProvider     ->  InMemoryKnowledgeBase
"""

from src.interfaces.knowledge_base_provider import (
    IKnowledgeBaseProvider,
    KnowledgeEntity,
    KnowledgeRelation,
)
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.reference_data_provider import IReferenceDataProvider, ReferenceCandidate
from src.interfaces.vision_provider import IVisionProvider, VisionExtraction, VisionModelInfo

__all__ = [
    "IKnowledgeBaseProvider",
    "ILLMProvider",
    "IReferenceDataProvider",
    "IVisionProvider",
    "KnowledgeEntity",
    "KnowledgeRelation",
    "ReferenceCandidate",
    "VisionExtraction",
    "VisionModelInfo",
]
