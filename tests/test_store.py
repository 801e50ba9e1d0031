"""Tests for the in-memory entity store."""
import asyncio
from datetime import datetime, timedelta

import pytest

from nanna_agent.domain.entities.entity_types import EntityType, RelationshipType
from nanna_agent.domain.entities.errors import (
    EntityAlreadyExistsError, EntityNotFoundError, InvalidRelationshipError, StaleVersionError,
)
from nanna_agent.domain.entities.models import Entity, EntityQuery, EntityRelationship, TimeRange
from nanna_agent.domain.entities.payloads import ContextPayload, GitRepositoryPayload, TestPayload
from nanna_agent.domain.entities.store import InMemoryEntityStore

pytestmark = pytest.mark.asyncio


def git_entity(**kwargs):
    return Entity.create(GitRepositoryPayload(**kwargs))


async def test_store_and_export(store):
    entity = git_entity(remote_url="https://example.com/app.git")
    entity_id = await store.store(entity)

    assert entity_id == entity.id
    assert await store.exists(entity_id)
    assert await store.count() == 1
    assert Entity.from_json(await store.export(entity_id)) == entity


async def test_store_rejects_duplicate_id(store):
    entity = git_entity()
    await store.store(entity)
    with pytest.raises(EntityAlreadyExistsError):
        await store.store(entity)


async def test_update_requires_newer_version(store):
    entity = git_entity()
    await store.store(entity)

    revised = entity.revised(is_dirty=True)
    await store.update(revised)
    assert Entity.from_json(await store.export(entity.id)).version == 2

    with pytest.raises(StaleVersionError) as excinfo:
        await store.update(entity)
    assert excinfo.value.stored_version == 2
    assert excinfo.value.supplied_version == 1


async def test_update_without_locking_takes_next_version():
    store = InMemoryEntityStore(optimistic_locking=False)
    entity = git_entity()
    await store.store(entity)
    await store.update(entity.revised())

    await store.update(entity)

    assert Entity.from_json(await store.export(entity.id)).version == 3


async def test_caller_changes_do_not_reach_stored_entities(store):
    entity = git_entity(remote_url="https://example.com/app.git")
    await store.store(entity)
    entity.metadata.version = 0
    entity.payload.remote_url = "https://example.com/other.git"

    stored = Entity.from_json(await store.export(entity.id))
    assert stored.version == 1
    assert stored.payload.remote_url == "https://example.com/app.git"

    revised = stored.revised(is_dirty=True)
    await store.update(revised)
    revised.payload.is_dirty = False
    revised.metadata.tags.append("tampered")

    stored = Entity.from_json(await store.export(entity.id))
    assert stored.version == 2
    assert stored.payload.is_dirty
    assert "tampered" not in stored.metadata.tags


async def test_update_missing_entity(store):
    with pytest.raises(EntityNotFoundError):
        await store.update(git_entity())


async def test_delete_cascades_relationships(store):
    repo = git_entity()
    test = Entity.create(TestPayload(name="test_repo"))
    note = Entity.create(ContextPayload(summary="notes"))
    for entity in (repo, test, note):
        await store.store(entity)

    await store.create_relationship(EntityRelationship(from_id=test.id, to_id=repo.id, kind=RelationshipType.VALIDATES))
    await store.create_relationship(EntityRelationship(from_id=note.id, to_id=test.id, kind=RelationshipType.REFERENCES))

    await store.delete(repo.id)

    assert not await store.exists(repo.id)
    remaining = await store.list_relationships()
    assert len(remaining) == 1
    assert remaining[0].from_id == note.id

    with pytest.raises(EntityNotFoundError):
        await store.delete(repo.id)


async def test_relationship_requires_both_endpoints(store):
    repo = git_entity()
    await store.store(repo)

    with pytest.raises(InvalidRelationshipError) as excinfo:
        await store.create_relationship(
            EntityRelationship(from_id=repo.id, to_id="missing", kind=RelationshipType.CONTAINS)
        )
    assert excinfo.value.entity_id == "missing"
    assert isinstance(excinfo.value, EntityNotFoundError)


async def test_delete_relationship_matches_kind(store):
    repo = git_entity()
    note = Entity.create(ContextPayload(summary="notes"))
    await store.store(repo)
    await store.store(note)
    await store.create_relationship(EntityRelationship(from_id=note.id, to_id=repo.id, kind=RelationshipType.REFERENCES))
    await store.create_relationship(EntityRelationship(from_id=note.id, to_id=repo.id, kind=RelationshipType.DOCUMENTS))

    await store.delete_relationship(note.id, repo.id, RelationshipType.REFERENCES)

    edges = await store.relationships_of(repo.id)
    assert [edge.kind for edge in edges] == [RelationshipType.DOCUMENTS]


async def test_query_filters_by_type_and_tags(store):
    await store.store(Entity.create(GitRepositoryPayload(), tags=["seed"]))
    await store.store(Entity.create(TestPayload(name="test_a"), tags=["seed"]))
    await store.store(Entity.create(TestPayload(name="test_b"), tags=["agent-created"]))

    tests = await store.query(EntityQuery(entity_types=[EntityType.TEST]))
    assert len(tests) == 2
    assert all(r.relevance == 1.0 for r in tests)

    seeded_tests = await store.query(EntityQuery(entity_types=[EntityType.TEST], tags=["seed"]))
    assert len(seeded_tests) == 1


async def test_query_text_match_has_snippet(store):
    await store.store(Entity.create(ContextPayload(summary="Investigate the flaky login test")))
    await store.store(Entity.create(ContextPayload(summary="Unrelated")))

    results = await store.query(EntityQuery(text_query="FLAKY"))

    assert len(results) == 1
    assert results[0].relevance == 0.8
    assert "flaky" in results[0].snippet


async def test_query_respects_limit_and_order(store):
    for _ in range(5):
        await store.store(git_entity())

    results = await store.query(EntityQuery(limit=3))

    assert len(results) == 3
    assert [r.entity_id for r in results] == sorted(r.entity_id for r in results)
    assert await store.query(EntityQuery(limit=0)) == []


async def test_query_time_range(store):
    await store.store(git_entity())
    past = datetime.utcnow() - timedelta(days=2)

    outside = await store.query(EntityQuery(time_range=TimeRange(start=past, end=past + timedelta(hours=1))))
    inside = await store.query(EntityQuery(time_range=TimeRange(start=past, end=datetime.utcnow() + timedelta(hours=1))))

    assert outside == []
    assert len(inside) == 1


async def test_concurrent_stores(store):
    entities = [git_entity() for _ in range(20)]
    await asyncio.gather(*(store.store(e) for e in entities))
    assert await store.count() == 20
