"""Deterministic quality scores for model replies.

Both scores land in [0, 1]. They are heuristics over surface features of
the text, not semantic judgements.
"""

from typing import Set
import re

from nanna_agent.infrastructure.judge.config import ValidationCriteria

SENTENCE_TERMINATORS = (".", "!", "?")


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, score))


def _words(text: str) -> Set[str]:
    return set(re.findall(r'\w+', text.lower()))


def calculate_coherence_score(text: str) -> float:
    if not text.strip():
        return 0.0

    score = 0.5

    if any(terminator in text for terminator in SENTENCE_TERMINATORS):
        score += 0.2

    blocks = [line for line in text.splitlines() if line.strip()]
    if len(blocks) >= 2:
        score += 0.1

    if 50 <= len(text) < 5000:
        score += 0.1

    words = text.lower().split()
    if words:
        score += 0.1 * len(set(words)) / len(words)

    return _clamp(score)


def calculate_relevance_score(prompt: str, response: str, criteria: ValidationCriteria) -> float:
    lower = response.lower()
    score = 0.0

    # An empty requirement list counts as satisfied
    if all(keyword.lower() in lower for keyword in criteria.required_keywords):
        score += 0.5

    if any(keyword.lower() in lower for keyword in criteria.forbidden_keywords):
        score -= 0.3

    prompt_words = _words(prompt)
    if prompt_words:
        overlap = len(prompt_words & _words(response))
        score += 0.3 * overlap / len(prompt_words)

    length = len(response)
    if length < criteria.min_response_length:
        score -= 0.2
    elif length > criteria.max_response_length:
        score -= 0.1
    else:
        score += 0.2

    return _clamp(score)
