"""Abstract base class for the knowledge-graph store.

The knowledge base holds entities (posters, artists, venues, events) with
free-text observations such as ``"City: Chicago"`` or ``"Year: 1994"``, and
typed relations between them.  Phases query it for existing artists and
venues, cross-poster location inference and temporal plausibility; the
Assembly phase writes its entity and relationship plan back to it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class KnowledgeEntity:
    name: str
    entity_type: str
    observations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class KnowledgeRelation:
    from_name: str
    to_name: str
    relation_type: str


# Concrete implementation: InMemoryKnowledgeBase (src/providers/knowledge_base/)
class IKnowledgeBaseProvider(ABC):
    """Contract for knowledge-graph search and storage."""

    @abstractmethod
    async def search_entities(
        self,
        query: str,
        entity_types: list[str] | None = None,
        limit: int = 10,
    ) -> list[KnowledgeEntity]:
        """Search entities whose name or observations match *query*.

        Parameters
        ----------
        query:
            Free-text query, e.g. ``"The Metro Chicago"``.
        entity_types:
            Restrict results to these entity types (``"Artist"``,
            ``"Venue"``, ``"Poster"`` ...).  ``None`` searches all types.
        limit:
            Maximum number of results, best first.
        """

    @abstractmethod
    async def get_entity(self, name: str) -> KnowledgeEntity | None:
        """Return the entity named *name*, or ``None``."""

    @abstractmethod
    async def create_entities(self, entities: list[KnowledgeEntity]) -> list[KnowledgeEntity]:
        """Create entities, merging observations into existing ones.

        Returns
        -------
        list[KnowledgeEntity]
            The entities that did not exist before the call.
        """

    @abstractmethod
    async def create_relations(self, relations: list[KnowledgeRelation]) -> int:
        """Create relations, ignoring duplicates; return how many were new."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return an identifier such as ``"memory"``."""
