from typing import List, Optional
from pydantic import BaseModel, Field, ValidationError
from enum import Enum

from nanna_agent.domain.entities.entity_types import EntityType
from nanna_agent.domain.models.agent_state import AgentState
from nanna_agent.domain.evaluation.errors import ScenarioSetupError
from nanna_agent.infrastructure.judge.config import ValidationCriteria


class EvaluationCategory(str, Enum):
    """What a scenario exercises"""
    ENTITY_CREATION = "entity_creation"
    RAG_RETRIEVAL = "rag_retrieval"
    DECISION_MAKING = "decision_making"
    WORKFLOW = "workflow"
    PROMPT_ENGINEERING = "prompt_engineering"
    ERROR_HANDLING = "error_handling"
    PERFORMANCE = "performance"
    CUSTOM = "custom"


class ExpectedOutcomes(BaseModel):
    """Thresholds a run must meet to pass"""
    final_state: Optional[AgentState] = Field(default_factory=AgentState.completed)
    min_entities_created: int = Field(default=1, ge=0)
    expected_entity_types: List[EntityType] = Field(default_factory=list)
    should_complete: bool = True
    max_allowed_iterations: int = Field(default=10, ge=0)
    min_relationships_created: int = Field(default=0, ge=0)
    min_decision_quality: float = Field(default=0.6, ge=0.0, le=1.0)
    min_rag_relevance: float = Field(default=0.7, ge=0.0, le=1.0)


class EvaluationScenario(BaseModel):
    """Declarative test case for the agent loop"""
    id: str
    name: str
    description: str = ""
    user_prompt: str
    initial_entities: List[EntityType] = Field(default_factory=list)
    expected_outcomes: ExpectedOutcomes = Field(default_factory=ExpectedOutcomes)
    validation_criteria: Optional[ValidationCriteria] = None
    max_iterations: int = 10
    timeout_seconds: Optional[float] = Field(None, gt=0, description="Overrides the harness timeout")
    category: EvaluationCategory = Field(default=EvaluationCategory.CUSTOM)

    def validate_setup(self):
        """Fail fast on scenarios that cannot be run"""

        if not self.user_prompt.strip():
            raise ScenarioSetupError(f"Scenario '{self.id}' has an empty user prompt")
        if self.max_iterations < 1:
            raise ScenarioSetupError(f"Scenario '{self.id}' needs max_iterations >= 1")

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    @classmethod
    def from_json(cls, data: str) -> "EvaluationScenario":
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise ScenarioSetupError(f"Invalid scenario: {e}") from e

    @classmethod
    def simple_entity_creation(cls) -> "EvaluationScenario":
        return cls(
            id="simple_entity_creation",
            name="Simple Entity Creation",
            description="Tests basic agent ability to create a git repository entity",
            user_prompt="Create a new git repository entity",
            expected_outcomes=ExpectedOutcomes(
                min_entities_created=1,
                expected_entity_types=[EntityType.GIT],
                max_allowed_iterations=15,
                min_rag_relevance=0.0,
            ),
            max_iterations=10,
            category=EvaluationCategory.ENTITY_CREATION,
        )

    @classmethod
    def rag_retrieval_accuracy(cls) -> "EvaluationScenario":
        return cls(
            id="rag_retrieval_accuracy",
            name="RAG Retrieval Accuracy",
            description="Tests the agent's ability to find relevant entities",
            user_prompt="Find all git repository entities",
            initial_entities=[EntityType.GIT, EntityType.GIT, EntityType.CONTEXT],
            expected_outcomes=ExpectedOutcomes(
                min_rag_relevance=0.7,
                max_allowed_iterations=12,
            ),
            max_iterations=10,
            category=EvaluationCategory.RAG_RETRIEVAL,
        )

    @classmethod
    def multi_entity_workflow(cls) -> "EvaluationScenario":
        return cls(
            id="multi_entity_workflow",
            name="Multi-Entity Workflow",
            description="Tests the agent's ability to manage multiple related entities",
            user_prompt="Create a git repository with associated test results",
            expected_outcomes=ExpectedOutcomes(
                min_entities_created=2,
                expected_entity_types=[EntityType.GIT, EntityType.TEST],
                min_relationships_created=1,
                max_allowed_iterations=10,
            ),
            max_iterations=15,
            category=EvaluationCategory.WORKFLOW,
        )

    @classmethod
    def decision_quality_test(cls) -> "EvaluationScenario":
        return cls(
            id="decision_quality_test",
            name="Decision Quality Test",
            description="Tests decision-making when choosing between query and perform",
            user_prompt="Analyze existing entities and create a related context entity",
            initial_entities=[EntityType.GIT, EntityType.TEST],
            expected_outcomes=ExpectedOutcomes(
                min_entities_created=1,
                expected_entity_types=[EntityType.CONTEXT],
                min_decision_quality=0.8,
            ),
            max_iterations=8,
            category=EvaluationCategory.DECISION_MAKING,
        )

    @classmethod
    def presets(cls) -> List["EvaluationScenario"]:
        return [
            cls.simple_entity_creation(),
            cls.rag_retrieval_accuracy(),
            cls.multi_entity_workflow(),
            cls.decision_quality_test(),
        ]
