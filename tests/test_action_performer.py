"""Tests for request classification and store mutations."""
import pytest

from nanna_agent.domain.entities.entity_types import EntityType, RelationshipType
from nanna_agent.domain.entities.models import Entity, EntityQuery
from nanna_agent.domain.entities.payloads import FilePayload, GitRepositoryPayload
from nanna_agent.domain.orchestration.core.action_performer import (
    ActionPerformer, RequestIntent, build_entity, classify_intent, infer_entity_types, plan_relationship,
)


@pytest.mark.parametrize("prompt, intent", [
    ("Create a new git repository entity", RequestIntent.CREATE),
    ("Analyze existing entities and create a related context entity", RequestIntent.CREATE),
    ("Update the login test", RequestIntent.UPDATE),
    ("Find all git repository entities", RequestIntent.INSPECT),
    ("git repository", RequestIntent.CREATE),
])
def test_classify_intent(prompt, intent):
    assert classify_intent(prompt) == intent


def test_infer_entity_types_in_fixed_order():
    assert infer_entity_types("Add tests for the repo and a source file") == [
        EntityType.GIT, EntityType.FILE, EntityType.TEST,
    ]
    assert infer_entity_types("Do something") == []


def test_build_file_entity_uses_named_path():
    entity = build_entity(EntityType.FILE, "Create src/parser.py for the lexer")

    assert isinstance(entity.payload, FilePayload)
    assert entity.payload.relative_path == "src/parser.py"
    assert "agent-created" in entity.metadata.tags


def test_plan_relationship_directions():
    repo = Entity.create(GitRepositoryPayload())
    source = build_entity(EntityType.FILE, "main.py")
    test = build_entity(EntityType.TEST, "test the repository")
    note = build_entity(EntityType.CONTEXT, "note")

    contains = plan_relationship(repo, source)
    assert (contains.from_id, contains.to_id, contains.kind) == (repo.id, source.id, RelationshipType.CONTAINS)

    validates = plan_relationship(repo, test)
    assert (validates.from_id, validates.to_id, validates.kind) == (test.id, repo.id, RelationshipType.VALIDATES)
    assert test.payload.name == "test_repository"

    assert plan_relationship(repo, note).kind == RelationshipType.REFERENCES
    assert plan_relationship(source, repo).kind == RelationshipType.DEPENDS_ON


@pytest.mark.asyncio
async def test_repeat_visit_revises_last_created(store):
    performer = ActionPerformer(store)

    first = await performer.perform("Create a git repository", None, [])
    second = await performer.perform("Create a git repository", None, [])

    assert first == second
    assert await store.count() == 1
    revised = Entity.from_json(await store.export(first[0]))
    assert revised.version == 2
    assert "agent-revised" in revised.metadata.tags


@pytest.mark.asyncio
async def test_request_without_types_records_context(store):
    performer = ActionPerformer(store)
    await performer.perform("Do something useful", "Write a note", [])

    results = await store.query(EntityQuery())
    assert [r.entity_type for r in results] == [EntityType.CONTEXT]
