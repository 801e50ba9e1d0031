from typing import Dict, List, Optional, Union, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator


class ValidationMetrics(BaseModel):
    """Measurements attached to a validation result"""
    model_config = ConfigDict(validate_assignment=True)

    duration_seconds: float = 0.0
    retry_count: int = 0
    response_length: Optional[int] = None
    coherence_score: Optional[float] = None
    relevance_score: Optional[float] = None
    success_rate: Optional[float] = None
    custom_metrics: Dict[str, float] = Field(default_factory=dict)

    @field_validator("coherence_score", "relevance_score", "success_rate")
    @classmethod
    def _clamp(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        return max(0.0, min(1.0, value))


class ValidationOutcome(BaseModel):
    """Behavior shared by all validation results"""
    message: str

    def is_success(self) -> bool:
        return self.status == "success"

    def is_warning(self) -> bool:
        return self.status == "warning"

    def is_failure(self) -> bool:
        return self.status == "failure"

    def suggestion_list(self) -> List[str]:
        return list(getattr(self, "suggestions", []))

    def __str__(self) -> str:
        return f"{self.label()} {self.message}"

    def label(self) -> str:
        return ""


class ValidationSuccess(ValidationOutcome):
    status: Literal["success"] = "success"
    metrics: ValidationMetrics = Field(default_factory=ValidationMetrics)

    def label(self) -> str:
        return "✅ SUCCESS:"


class ValidationWarning(ValidationOutcome):
    status: Literal["warning"] = "warning"
    suggestions: List[str] = Field(default_factory=list)
    metrics: ValidationMetrics = Field(default_factory=ValidationMetrics)

    def label(self) -> str:
        return "⚠️  WARNING:"


class ValidationFailure(ValidationOutcome):
    status: Literal["failure"] = "failure"
    error_details: str = ""
    suggestions: List[str] = Field(default_factory=list)
    metrics: Optional[ValidationMetrics] = None

    def label(self) -> str:
        return "❌ FAILURE:"


ValidationResult = Union[ValidationSuccess, ValidationWarning, ValidationFailure]
