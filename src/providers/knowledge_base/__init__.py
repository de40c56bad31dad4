"""Knowledge-base provider implementations."""

from src.providers.knowledge_base.memory_knowledge_base import InMemoryKnowledgeBase

__all__ = ["InMemoryKnowledgeBase"]
