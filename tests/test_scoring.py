"""Tests for the reply scoring heuristics."""
import pytest

from nanna_agent.infrastructure.judge.config import JudgeConfig, ValidationCriteria
from nanna_agent.infrastructure.judge.scoring import calculate_coherence_score, calculate_relevance_score


def test_coherence_empty_text():
    assert calculate_coherence_score("") == 0.0
    assert calculate_coherence_score("   \n ") == 0.0


def test_coherence_rewards_structure():
    flat = calculate_coherence_score("word word word")
    structured = calculate_coherence_score(
        "The repository has two branches.\nBoth branches build cleanly and the tests pass."
    )

    assert 0.0 < flat < structured <= 1.0


def test_coherence_single_repeated_word():
    # Base score plus a small diversity share
    assert calculate_coherence_score("go go go go") == pytest.approx(0.525)


def test_relevance_overlap_and_length():
    criteria = ValidationCriteria(forbidden_keywords=[])
    score = calculate_relevance_score(
        "describe the parser",
        "The parser reads tokens and builds a syntax tree.",
        criteria,
    )
    # required (0.5) + overlap 2/3 of 0.3 + length bonus 0.2
    assert score == pytest.approx(0.5 + 0.2 + 0.2)


def test_relevance_penalties():
    criteria = ValidationCriteria(required_keywords=["example"], min_response_length=50)
    score = calculate_relevance_score("explain", "I cannot", criteria)

    assert score == 0.0


def test_relevance_clamped_to_one():
    criteria = ValidationCriteria(forbidden_keywords=[])
    score = calculate_relevance_score("parser", "parser parser parser", criteria)
    assert score == 1.0


def test_retry_delay_grows_and_caps():
    config = JudgeConfig(base_delay_ms=100, max_delay_ms=400, jitter_factor=0.0)

    assert config.calculate_retry_delay(0) == pytest.approx(0.1)
    assert config.calculate_retry_delay(1) == pytest.approx(0.2)
    assert config.calculate_retry_delay(5) == pytest.approx(0.4)


def test_retry_delay_jitter_bounds():
    config = JudgeConfig(base_delay_ms=100, jitter_factor=0.5)
    for _ in range(20):
        assert 0.1 <= config.calculate_retry_delay(0) <= 0.15


def test_criteria_presets():
    docs = ValidationCriteria.technical_documentation()
    assert docs.required_keywords == ["implementation", "example"]
    assert docs.min_response_length == 100

    creative = ValidationCriteria.creative_writing()
    assert not creative.require_factual_accuracy
