from typing import Dict, List, Optional
import re
import structlog

from nanna_agent.domain.entities.entity_types import EntityType
from nanna_agent.domain.entities.models import EntityQuery, QueryResult
from nanna_agent.domain.entities.store import EntityStore

logger = structlog.get_logger(__name__)

MIN_TERM_LENGTH = 3
SUMMARY_TYPE_COUNT = 3

STOPWORDS = frozenset({
    "the", "and", "for", "with", "from", "into", "onto", "that", "this", "these", "those",
    "all", "any", "some", "are", "was", "were", "has", "have", "had", "can", "could",
    "should", "would", "will", "please", "new", "create", "make", "add", "find", "list",
    "show", "get", "search", "entity", "entities", "about", "our", "your", "its", "their",
    "then", "than", "also", "each", "every", "what", "which", "where", "when", "how",
})


def extract_search_terms(prompt: str) -> List[str]:
    """Split a prompt into unique lowercase search terms"""

    terms = []
    for word in re.findall(r'\w+', prompt.lower()):
        if len(word) < MIN_TERM_LENGTH or word in STOPWORDS or word in terms:
            continue
        terms.append(word)
    return terms


async def query_entities(
    store: EntityStore,
    prompt: str,
    limit: Optional[int] = 10,
    entity_types: Optional[List[EntityType]] = None
) -> List[QueryResult]:
    """Rank stored entities against a free-text prompt"""

    terms = extract_search_terms(prompt)
    if not terms:
        return await store.query(EntityQuery(entity_types=entity_types or [], limit=limit))

    best: Dict[str, QueryResult] = {}
    for term in terms:
        matches = await store.query(EntityQuery(entity_types=entity_types or [], text_query=term))
        for result in matches:
            current = best.get(result.entity_id)
            if current is None or result.relevance > current.relevance:
                best[result.entity_id] = result

    ranked = sorted(best.values(), key=lambda r: (-r.relevance, r.entity_id))
    if limit is not None:
        ranked = ranked[:limit]

    logger.debug("Retrieved entities", terms=terms, results=len(ranked), limit=limit)
    return ranked


def summarize_results(results: List[QueryResult]) -> str:
    """Short description of retrieved entities for prompts"""

    if not results:
        return "No relevant entities found"

    types = ", ".join(r.entity_type.value for r in results[:SUMMARY_TYPE_COUNT])
    return f"Found {len(results)} relevant entities: {types}"


def summarize_entity_types(results: List[QueryResult]) -> str:
    """Per-type counts, e.g. 'git: 2, test: 1'"""

    counts: Dict[str, int] = {}
    for result in results:
        counts[result.entity_type.value] = counts.get(result.entity_type.value, 0) + 1
    return ", ".join(f"{name}: {count}" for name, count in sorted(counts.items()))


def average_relevance(results: List[QueryResult]) -> float:
    if not results:
        return 0.0
    return sum(r.relevance for r in results) / len(results)
