"""Tests for prompt-driven entity retrieval."""
import pytest

from nanna_agent.domain.context.rag import (
    average_relevance, extract_search_terms, query_entities, summarize_entity_types, summarize_results,
)
from nanna_agent.domain.entities.entity_types import EntityType
from nanna_agent.domain.entities.models import Entity, QueryResult
from nanna_agent.domain.entities.payloads import ContextPayload, GitRepositoryPayload, TestPayload


def test_extract_search_terms_drops_stopwords_and_short_words():
    assert extract_search_terms("Find all git repository entities") == ["git", "repository"]
    assert extract_search_terms("Create a new git git repo") == ["git", "repo"]
    assert extract_search_terms("a an of") == []


@pytest.mark.asyncio
async def test_query_entities_matches_any_term(store):
    repo = Entity.create(GitRepositoryPayload())
    test = Entity.create(TestPayload(name="test_login"))
    note = Entity.create(ContextPayload(summary="deployment checklist"))
    for entity in (repo, test, note):
        await store.store(entity)

    results = await query_entities(store, "Show the git repository and login tests")

    found = {r.entity_id for r in results}
    assert found == {repo.id, test.id}
    assert all(r.relevance == 0.8 for r in results)


@pytest.mark.asyncio
async def test_query_entities_without_terms_lists_everything(store):
    await store.store(Entity.create(GitRepositoryPayload()))
    await store.store(Entity.create(ContextPayload(summary="note")))

    results = await query_entities(store, "find all", limit=1)

    assert len(results) == 1
    assert results[0].relevance == 1.0


@pytest.mark.asyncio
async def test_query_entities_type_filter(store):
    await store.store(Entity.create(GitRepositoryPayload()))
    await store.store(Entity.create(TestPayload(name="test_git_clone")))

    results = await query_entities(store, "git", entity_types=[EntityType.TEST])

    assert [r.entity_type for r in results] == [EntityType.TEST]


@pytest.mark.asyncio
async def test_query_entities_empty_store(store):
    assert await query_entities(store, "git repository") == []


def test_summaries():
    results = [
        QueryResult(entity_id="1", entity_type=EntityType.GIT, relevance=0.8),
        QueryResult(entity_id="2", entity_type=EntityType.TEST, relevance=0.8),
        QueryResult(entity_id="3", entity_type=EntityType.GIT, relevance=0.4),
        QueryResult(entity_id="4", entity_type=EntityType.FILE, relevance=0.4),
    ]

    assert summarize_results([]) == "No relevant entities found"
    assert summarize_results(results) == "Found 4 relevant entities: git, test, git"
    assert summarize_entity_types(results) == "file: 1, git: 2, test: 1"
    assert average_relevance(results) == pytest.approx(0.6)
    assert average_relevance([]) == 0.0
