from typing import List, Optional, Set, Tuple
from enum import Enum
import re
import structlog

from nanna_agent.domain.entities.entity_types import EntityType, RelationshipType
from nanna_agent.domain.entities.models import Entity, EntityRelationship, QueryResult
from nanna_agent.domain.entities.payloads import (
    ContextPayload, EnvironmentPayload, FilePayload, GitRepositoryPayload, TelemetryPayload, TestPayload,
)
from nanna_agent.domain.entities.store import EntityStore
from nanna_agent.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)

AGENT_TAG = "agent-created"
REVISION_TAG = "agent-revised"
MAX_REFERENCES = 5


class RequestIntent(str, Enum):
    """What the user asks the agent to do with the workspace"""
    CREATE = "create"
    UPDATE = "update"
    INSPECT = "inspect"


CREATE_WORDS = frozenset({
    "create", "add", "make", "generate", "init", "initialize", "new", "build", "write", "record",
})
UPDATE_WORDS = frozenset({
    "update", "modify", "change", "rename", "edit", "tag", "mark", "fix",
})
INSPECT_WORDS = frozenset({
    "find", "list", "show", "search", "query", "inspect", "analyze", "analyse", "describe",
    "explain", "get", "locate",
})

TYPE_KEYWORDS: List[Tuple[EntityType, Set[str]]] = [
    (EntityType.GIT, {"git", "repository", "repo", "commit", "branch"}),
    (EntityType.FILE, {"file", "source", "module"}),
    (EntityType.TEST, {"test"}),
    (EntityType.CONTEXT, {"context", "note"}),
    (EntityType.ENVIRONMENT, {"environment", "env", "container"}),
    (EntityType.TELEMETRY, {"telemetry", "metric"}),
]


def _words(text: str) -> Set[str]:
    words = set()
    for word in re.findall(r'\w+', text.lower()):
        words.add(word)
        if len(word) > 3 and word.endswith("s"):
            words.add(word[:-1])
    return words


def classify_intent(prompt: str) -> RequestIntent:
    words = _words(prompt)
    if words & CREATE_WORDS:
        return RequestIntent.CREATE
    if words & UPDATE_WORDS:
        return RequestIntent.UPDATE
    if words & INSPECT_WORDS:
        return RequestIntent.INSPECT
    return RequestIntent.CREATE


def infer_entity_types(prompt: str) -> List[EntityType]:
    """Entity types mentioned in a request, in a fixed order"""

    words = _words(prompt)
    return [entity_type for entity_type, keywords in TYPE_KEYWORDS if words & keywords]


def build_entity(entity_type: EntityType, prompt: str, plan: Optional[str] = None) -> Entity:
    """Create a fresh entity of the given type for a request"""

    if entity_type == EntityType.GIT:
        payload = GitRepositoryPayload(current_branch="main")
    elif entity_type == EntityType.FILE:
        names = re.findall(r'[\w\-/]+\.\w+', prompt)
        name = names[0] if names else "untitled.txt"
        payload = FilePayload(absolute_path=f"/workspace/{name}", relative_path=name)
    elif entity_type == EntityType.TEST:
        subject = "_".join(sorted(_words(prompt) & {"git", "repository", "file"}))
        payload = TestPayload(name=f"test_{subject}" if subject else "test_request")
    elif entity_type == EntityType.CONTEXT:
        payload = ContextPayload(summary=plan or prompt, source_request=prompt)
    elif entity_type == EntityType.ENVIRONMENT:
        payload = EnvironmentPayload(name="default")
    else:
        payload = TelemetryPayload(metric_name="agent.actions", value=1.0)

    return Entity.create(payload, tags=[AGENT_TAG])


def plan_relationship(anchor: Entity, other: Entity) -> EntityRelationship:
    """Edge linking an entity to the first entity created in the same run"""

    if other.entity_type == EntityType.TEST:
        return EntityRelationship(from_id=other.id, to_id=anchor.id, kind=RelationshipType.VALIDATES)
    if anchor.entity_type == EntityType.GIT and other.entity_type == EntityType.FILE:
        return EntityRelationship(from_id=anchor.id, to_id=other.id, kind=RelationshipType.CONTAINS)
    if other.entity_type == EntityType.CONTEXT:
        return EntityRelationship(from_id=other.id, to_id=anchor.id, kind=RelationshipType.REFERENCES)
    return EntityRelationship(from_id=other.id, to_id=anchor.id, kind=RelationshipType.DEPENDS_ON)


class ActionPerformer:
    """Applies one round of store mutations for a request"""

    def __init__(self, store: EntityStore):
        self.store = store
        self.created: List[Entity] = []
        self.touched_ids: List[str] = []

    @property
    def created_types(self) -> Set[EntityType]:
        return {entity.entity_type for entity in self.created}

    async def perform(self, user_prompt: str, plan: Optional[str], rag_results: List[QueryResult]) -> List[str]:
        """Mutate the store for the request and return the touched entity IDs"""

        intent = classify_intent(user_prompt)
        logger.info("Performing action", intent=intent.value, created_so_far=len(self.created))

        if intent == RequestIntent.UPDATE:
            for result in rag_results:
                if await self.store.exists(result.entity_id):
                    return [await self._revise(result.entity_id, "agent-modified")]

        if intent == RequestIntent.INSPECT:
            if self.created:
                return [await self._revise(self.created[-1].id, REVISION_TAG)]
            return await self._record_inspection(user_prompt, rag_results)

        pending = [t for t in infer_entity_types(user_prompt) or [EntityType.CONTEXT] if t not in self.created_types]
        if not pending:
            if self.created:
                return [await self._revise(self.created[-1].id, REVISION_TAG)]
            pending = [EntityType.CONTEXT]

        touched = []
        for entity_type in pending:
            entity = build_entity(entity_type, user_prompt, plan)
            await self._store(entity)
            touched.append(entity.id)

            if len(self.created) > 1:
                await self.store.create_relationship(plan_relationship(self.created[0], entity))

        return touched

    async def _record_inspection(self, user_prompt: str, rag_results: List[QueryResult]) -> List[str]:
        top = rag_results[:MAX_REFERENCES]
        references = [r.entity_id for r in top]
        types = ", ".join(sorted({r.entity_type.value for r in top})) or "none"
        summary = f"Inspected {len(references)} entities ({types}) for: {user_prompt}"
        entity = Entity.create(
            ContextPayload(summary=summary, source_request=user_prompt, references=references),
            tags=[AGENT_TAG],
        )
        await self._store(entity)

        for target_id in references:
            if await self.store.exists(target_id):
                await self.store.create_relationship(EntityRelationship(
                    from_id=entity.id,
                    to_id=target_id,
                    kind=RelationshipType.REFERENCES,
                ))
        return [entity.id]

    async def _store(self, entity: Entity):
        await self.store.store(entity)
        self.created.append(entity)
        self.touched_ids.append(entity.id)
        agent_logger.log_entity_mutation("create", entity.id, entity.entity_type.value, entity.version)

    async def _revise(self, entity_id: str, tag: str) -> str:
        current = Entity.from_json(await self.store.export(entity_id))
        revised = current.revised(tags=[tag])
        await self.store.update(revised)

        self.touched_ids.append(entity_id)
        agent_logger.log_entity_mutation("update", entity_id, revised.entity_type.value, revised.version)
        return entity_id
