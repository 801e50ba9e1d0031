from typing import Dict, List, Optional
from abc import ABC, abstractmethod
import asyncio
import structlog

from nanna_agent.domain.entities.entity_types import RelationshipType
from nanna_agent.domain.entities.models import Entity, EntityQuery, EntityRelationship, QueryResult
from nanna_agent.domain.entities.errors import (
    EntityNotFoundError,
    EntityAlreadyExistsError,
    StaleVersionError,
    InvalidRelationshipError,
)

logger = structlog.get_logger(__name__)

TEXT_MATCH_RELEVANCE = 0.8
UNFILTERED_RELEVANCE = 1.0
SNIPPET_RADIUS = 60


class EntityStore(ABC):
    """Authoritative registry of entities and their relationships"""

    @abstractmethod
    async def store(self, entity: Entity) -> str:
        """Insert a new entity and return its id"""
        pass

    @abstractmethod
    async def update(self, entity: Entity) -> None:
        """Replace a stored entity with a newer version"""
        pass

    @abstractmethod
    async def delete(self, entity_id: str) -> None:
        """Remove an entity and every relationship touching it"""
        pass

    @abstractmethod
    async def exists(self, entity_id: str) -> bool:
        pass

    @abstractmethod
    async def query(self, query: EntityQuery) -> List[QueryResult]:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def export(self, entity_id: str) -> str:
        """Serialized form of a stored entity"""
        pass

    @abstractmethod
    async def relationships_of(self, entity_id: str) -> List[EntityRelationship]:
        pass

    @abstractmethod
    async def list_relationships(self) -> List[EntityRelationship]:
        pass

    @abstractmethod
    async def create_relationship(self, relationship: EntityRelationship) -> None:
        pass

    @abstractmethod
    async def delete_relationship(
        self,
        from_id: str,
        to_id: str,
        kind: RelationshipType,
        label: Optional[str] = None
    ) -> None:
        pass


class InMemoryEntityStore(EntityStore):
    """Entity store held in process memory"""

    def __init__(self, optimistic_locking: bool = True):
        self.entities: Dict[str, Entity] = {}
        self.relationships: List[EntityRelationship] = []
        self.optimistic_locking = optimistic_locking
        self._lock = asyncio.Lock()

    async def store(self, entity: Entity) -> str:
        async with self._lock:
            if entity.id in self.entities:
                raise EntityAlreadyExistsError(entity.id)
            self.entities[entity.id] = entity.model_copy(deep=True)

        logger.debug("Stored entity", entity_id=entity.id, entity_type=entity.entity_type.value)
        return entity.id

    async def update(self, entity: Entity) -> None:
        async with self._lock:
            current = self.entities.get(entity.id)
            if current is None:
                raise EntityNotFoundError(entity.id)

            if entity.version <= current.version:
                if self.optimistic_locking:
                    raise StaleVersionError(entity.id, current.version, entity.version)
                entity = entity.model_copy(update={
                    "metadata": entity.metadata.model_copy(update={"version": current.version + 1})
                })

            self.entities[entity.id] = entity.model_copy(deep=True)

        logger.debug("Updated entity", entity_id=entity.id, version=entity.version)

    async def delete(self, entity_id: str) -> None:
        async with self._lock:
            if entity_id not in self.entities:
                raise EntityNotFoundError(entity_id)
            del self.entities[entity_id]

            before = len(self.relationships)
            self.relationships = [r for r in self.relationships if not r.involves(entity_id)]
            removed = before - len(self.relationships)

        logger.debug("Deleted entity", entity_id=entity_id, relationships_removed=removed)

    async def exists(self, entity_id: str) -> bool:
        async with self._lock:
            return entity_id in self.entities

    async def count(self) -> int:
        async with self._lock:
            return len(self.entities)

    async def export(self, entity_id: str) -> str:
        async with self._lock:
            entity = self.entities.get(entity_id)
            if entity is None:
                raise EntityNotFoundError(entity_id)
            return entity.to_json()

    async def query(self, query: EntityQuery) -> List[QueryResult]:
        async with self._lock:
            candidates = list(self.entities.values())

        needle = query.text_query.lower() if query.text_query else None
        wanted_tags = set(query.tags)
        results = []

        for entity in candidates:
            if query.entity_types and entity.entity_type not in query.entity_types:
                continue
            if wanted_tags and not wanted_tags.intersection(entity.metadata.tags):
                continue
            if query.time_range and not query.time_range.contains(entity.metadata.created_at):
                continue

            if needle is None:
                results.append(QueryResult(
                    entity_id=entity.id,
                    entity_type=entity.entity_type,
                    relevance=UNFILTERED_RELEVANCE,
                ))
                continue

            haystack = entity.search_text()
            position = haystack.find(needle)
            if position < 0:
                continue

            results.append(QueryResult(
                entity_id=entity.id,
                entity_type=entity.entity_type,
                relevance=TEXT_MATCH_RELEVANCE,
                snippet=_snippet(haystack, position, len(needle)),
            ))

        results.sort(key=lambda r: (-r.relevance, r.entity_id))
        if query.limit is not None:
            results = results[:query.limit]
        return results

    async def relationships_of(self, entity_id: str) -> List[EntityRelationship]:
        async with self._lock:
            return [r for r in self.relationships if r.involves(entity_id)]

    async def list_relationships(self) -> List[EntityRelationship]:
        async with self._lock:
            return list(self.relationships)

    async def create_relationship(self, relationship: EntityRelationship) -> None:
        async with self._lock:
            for endpoint in (relationship.from_id, relationship.to_id):
                if endpoint not in self.entities:
                    raise InvalidRelationshipError(relationship.from_id, relationship.to_id, endpoint)
            self.relationships.append(relationship)

        logger.debug(
            "Created relationship",
            from_id=relationship.from_id,
            to_id=relationship.to_id,
            kind=relationship.kind.value
        )

    async def delete_relationship(
        self,
        from_id: str,
        to_id: str,
        kind: RelationshipType,
        label: Optional[str] = None
    ) -> None:
        async with self._lock:
            self.relationships = [
                r for r in self.relationships
                if not r.matches(from_id, to_id, kind, label)
            ]


def _snippet(text: str, position: int, length: int) -> str:
    start = max(0, position - SNIPPET_RADIUS)
    end = min(len(text), position + length + SNIPPET_RADIUS)
    return text[start:end]
