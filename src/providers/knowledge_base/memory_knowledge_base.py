"""In-memory knowledge base implementing IKnowledgeBaseProvider.

Simple, dependency-free graph store suitable for local runs, the CLI and
tests.  Entities are keyed by name; searching scores each entity by the
share of query tokens found in its name and observations.  The whole
graph can be loaded from and saved to a JSON file so successive CLI runs
build on earlier posters.
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict
from pathlib import Path

import structlog

from src.interfaces.knowledge_base_provider import (
    IKnowledgeBaseProvider,
    KnowledgeEntity,
    KnowledgeRelation,
)
from src.utils.similarity import normalize_string

logger = structlog.get_logger(logger_name=__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset({"the", "a", "an", "and", "of", "at", "in", "on"})


def _tokens(text: str) -> set[str]:
    return {t for t in _TOKEN_RE.findall(normalize_string(text)) if t not in _STOPWORDS}


class InMemoryKnowledgeBase(IKnowledgeBaseProvider):
    """Dict-backed knowledge graph.

    Parameters
    ----------
    entities:
        Optional seed entities.
    relations:
        Optional seed relations.
    """

    def __init__(
        self,
        entities: list[KnowledgeEntity] | None = None,
        relations: list[KnowledgeRelation] | None = None,
    ) -> None:
        self._entities: dict[str, KnowledgeEntity] = {}
        self._relations: list[KnowledgeRelation] = []
        for entity in entities or []:
            self._merge(entity)
        for relation in relations or []:
            if relation not in self._relations:
                self._relations.append(relation)

    # ------------------------------------------------------------------
    # IKnowledgeBaseProvider implementation
    # ------------------------------------------------------------------

    async def search_entities(
        self,
        query: str,
        entity_types: list[str] | None = None,
        limit: int = 10,
    ) -> list[KnowledgeEntity]:
        query_tokens = _tokens(query)
        if not query_tokens:
            return []

        scored: list[tuple[float, KnowledgeEntity]] = []
        for entity in self._entities.values():
            if entity_types and entity.entity_type not in entity_types:
                continue
            name_tokens = _tokens(entity.name)
            haystack = name_tokens | _tokens(" ".join(entity.observations))
            hits = query_tokens & haystack
            if not hits:
                continue
            # Name hits rank ahead of observation-only hits.
            score = len(hits) / len(query_tokens) + 0.5 * len(query_tokens & name_tokens) / len(
                query_tokens
            )
            scored.append((score, entity))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        results = [entity for _, entity in scored[:limit]]
        logger.debug(
            "knowledge_base_search",
            query=query,
            entity_types=entity_types,
            result_count=len(results),
        )
        return results

    async def get_entity(self, name: str) -> KnowledgeEntity | None:
        return self._entities.get(name)

    async def create_entities(self, entities: list[KnowledgeEntity]) -> list[KnowledgeEntity]:
        created = [entity for entity in entities if self._merge(entity)]
        logger.info(
            "knowledge_base_entities_created",
            requested=len(entities),
            created=len(created),
        )
        return created

    async def create_relations(self, relations: list[KnowledgeRelation]) -> int:
        created = 0
        for relation in relations:
            if relation not in self._relations:
                self._relations.append(relation)
                created += 1
        logger.info("knowledge_base_relations_created", requested=len(relations), created=created)
        return created

    def get_provider_name(self) -> str:
        return "memory"

    # ------------------------------------------------------------------
    # Inspection and persistence
    # ------------------------------------------------------------------

    @property
    def entities(self) -> list[KnowledgeEntity]:
        return list(self._entities.values())

    @property
    def relations(self) -> list[KnowledgeRelation]:
        return list(self._relations)

    @classmethod
    def from_file(cls, path: str | Path) -> InMemoryKnowledgeBase:
        """Load a graph saved by :meth:`save`; a missing file gives an empty graph."""
        file_path = Path(path)
        if not file_path.exists():
            return cls()
        data = json.loads(file_path.read_text(encoding="utf-8"))
        return cls(
            entities=[KnowledgeEntity(**item) for item in data.get("entities", [])],
            relations=[KnowledgeRelation(**item) for item in data.get("relations", [])],
        )

    def save(self, path: str | Path) -> None:
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "entities": [asdict(entity) for entity in self._entities.values()],
            "relations": [asdict(relation) for relation in self._relations],
        }
        file_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def _merge(self, entity: KnowledgeEntity) -> bool:
        """Insert or merge observations; return ``True`` if the entity is new."""
        existing = self._entities.get(entity.name)
        if existing is None:
            self._entities[entity.name] = KnowledgeEntity(
                name=entity.name,
                entity_type=entity.entity_type,
                observations=list(entity.observations),
            )
            return True

        merged = list(existing.observations)
        merged.extend(obs for obs in entity.observations if obs not in merged)
        self._entities[entity.name] = KnowledgeEntity(
            name=existing.name,
            entity_type=existing.entity_type,
            observations=merged,
        )
        return False
