from typing import List
from pydantic import BaseModel, Field
import random


class JudgeConfig(BaseModel):
    """Retry and timeout policy for judged model calls"""
    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=100, ge=0)
    max_delay_ms: int = Field(default=5000, ge=0)
    jitter_factor: float = Field(default=0.1, ge=0.0, le=1.0)
    default_timeout_seconds: float = Field(default=30.0, gt=0)
    consistency_pause_ms: int = Field(default=100, ge=0, description="Pause between consistency attempts")
    verbose_logging: bool = False

    def calculate_retry_delay(self, attempt: int) -> float:
        """Backoff delay in seconds for a 0-indexed attempt"""

        delay_ms = min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)
        jitter_ms = random.uniform(0, self.jitter_factor * delay_ms)
        return (delay_ms + jitter_ms) / 1000


class ValidationCriteria(BaseModel):
    """Thresholds a model reply must meet"""
    min_response_length: int = Field(default=10, ge=0)
    max_response_length: int = Field(default=10000, ge=0)
    required_keywords: List[str] = Field(default_factory=list)
    forbidden_keywords: List[str] = Field(
        default_factory=lambda: ["I cannot", "I don't know", "unable to"]
    )
    min_coherence_score: float = Field(default=0.7, ge=0.0, le=1.0)
    min_relevance_score: float = Field(default=0.8, ge=0.0, le=1.0)
    require_factual_accuracy: bool = True
    custom_validators: List[str] = Field(default_factory=list)

    @classmethod
    def technical_documentation(cls) -> "ValidationCriteria":
        return cls(
            min_response_length=100,
            max_response_length=5000,
            required_keywords=["implementation", "example"],
            forbidden_keywords=["I think", "maybe"],
            min_coherence_score=0.85,
            min_relevance_score=0.9,
        )

    @classmethod
    def creative_writing(cls) -> "ValidationCriteria":
        return cls(
            min_response_length=50,
            max_response_length=20000,
            forbidden_keywords=["error", "failed"],
            min_coherence_score=0.6,
            min_relevance_score=0.7,
            require_factual_accuracy=False,
        )
