from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
import time
import structlog

from nanna_agent.domain.entities.models import Entity, EntityQuery, QueryResult
from nanna_agent.domain.entities.payloads import default_payload
from nanna_agent.domain.entities.store import InMemoryEntityStore
from nanna_agent.domain.entities.errors import EntityStoreError
from nanna_agent.domain.context.rag import query_entities, average_relevance
from nanna_agent.domain.models.agent_state import AgentConfig, AgentContext, AgentState, RunResult
from nanna_agent.domain.orchestration.core.agent_loop import AgentLoop, TIMEOUT_MESSAGE
from nanna_agent.domain.orchestration.core.errors import AgentError
from nanna_agent.domain.evaluation.errors import (
    EvaluationTimeoutError, EvaluationValidationError, ScenarioSetupError,
)
from nanna_agent.domain.evaluation.scenarios import EvaluationScenario
from nanna_agent.infrastructure.config.settings import HarnessSettings, get_settings
from nanna_agent.infrastructure.judge.config import ValidationCriteria
from nanna_agent.infrastructure.judge.model_judge import ModelJudge
from nanna_agent.infrastructure.observability.logging import metrics, setup_logging

logger = structlog.get_logger(__name__)

RAG_EVALUATION_RESULTS = 10


def _default_criteria() -> ValidationCriteria:
    return ValidationCriteria(
        min_response_length=10,
        max_response_length=1000,
        forbidden_keywords=["I don't know", "I cannot"],
        min_coherence_score=0.7,
        min_relevance_score=0.8,
    )


class EvaluationConfig(BaseModel):
    """Harness-wide evaluation settings"""
    model: str = "qwen3:0.6b"
    base_url: Optional[str] = None
    timeout_seconds: float = Field(default=300.0, gt=0)
    verbose: bool = False
    max_retries: int = Field(default=2, ge=0)
    collect_observability: bool = True
    validation_criteria: ValidationCriteria = Field(default_factory=_default_criteria)

    @classmethod
    def from_settings(cls, settings: Optional[HarnessSettings] = None) -> "EvaluationConfig":
        settings = settings or get_settings()
        return cls(
            model=settings.model_name,
            timeout_seconds=settings.evaluation_timeout_seconds,
            verbose=settings.verbose,
        )

    def with_model(self, model: str) -> "EvaluationConfig":
        return self.model_copy(update={"model": model})

    def with_base_url(self, base_url: str) -> "EvaluationConfig":
        return self.model_copy(update={"base_url": base_url})

    def with_timeout(self, timeout_seconds: float) -> "EvaluationConfig":
        return self.model_copy(update={"timeout_seconds": timeout_seconds})

    def with_verbose(self, verbose: bool) -> "EvaluationConfig":
        return self.model_copy(update={"verbose": verbose})


class EvaluationMetrics(BaseModel):
    """Measurements of one scenario run"""
    model_config = ConfigDict(validate_assignment=True)

    execution_time_seconds: float = 0.0
    iterations_executed: int = 0
    decision_quality: float = 0.0
    rag_relevance: float = 0.0
    entity_accuracy: float = 0.0
    prompt_effectiveness: float = 0.0
    entities_created: int = 0
    relationships_created: int = 0
    state_transitions: List[AgentState] = Field(default_factory=list)
    validation_results: List[str] = Field(default_factory=list)
    custom_metrics: Dict[str, float] = Field(default_factory=dict)


class AgentEvaluationResult(BaseModel):
    """Outcome of one scenario"""
    scenario_id: str
    success: bool
    metrics: EvaluationMetrics
    final_state: AgentState
    failures: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class BatchEvaluationResult(BaseModel):
    """Outcome of several scenarios"""
    total_scenarios: int
    passed: int
    failed: int
    total_time_seconds: float
    results: List[AgentEvaluationResult] = Field(default_factory=list)

    @property
    def pass_rate(self) -> float:
        if self.total_scenarios == 0:
            return 0.0
        return self.passed / self.total_scenarios


def calculate_decision_quality(run_result: RunResult, scenario: EvaluationScenario) -> float:
    """Completion (0.5) + iteration efficiency (0.3) + final-state correctness (0.2)"""

    score = 0.0
    if run_result.task_completed:
        score += 0.5

    efficiency = max(0.0, 1.0 - run_result.iterations / scenario.max_iterations)
    score += 0.3 * efficiency

    expected_state = scenario.expected_outcomes.final_state
    if expected_state is None or run_result.final_state == expected_state:
        score += 0.2

    return max(0.0, min(1.0, score))


def calculate_entity_accuracy(scenario: EvaluationScenario, final_entities: List[QueryResult]) -> float:
    """Fraction of expected entity types present after the run"""

    expected = scenario.expected_outcomes.expected_entity_types
    if not expected:
        return 1.0

    present = {result.entity_type for result in final_entities}
    found = sum(1 for entity_type in expected if entity_type in present)
    return found / len(expected)


def validate_outcomes(
    scenario: EvaluationScenario,
    evaluation_metrics: EvaluationMetrics,
    run_result: RunResult
) -> Tuple[List[str], List[str]]:
    """Compare a run against the scenario's expected outcomes"""

    expected = scenario.expected_outcomes
    failures: List[str] = []
    warnings: List[str] = []

    if expected.should_complete and not run_result.task_completed:
        failures.append("Agent did not complete the task")

    if evaluation_metrics.entities_created < expected.min_entities_created:
        failures.append(
            f"Expected at least {expected.min_entities_created} entities, "
            f"but only {evaluation_metrics.entities_created} were created"
        )

    if evaluation_metrics.entity_accuracy < 1.0:
        failures.append(f"Missing expected entity types: accuracy {evaluation_metrics.entity_accuracy:.2f}")

    if evaluation_metrics.relationships_created < expected.min_relationships_created:
        failures.append(
            f"Expected at least {expected.min_relationships_created} relationships, "
            f"but only {evaluation_metrics.relationships_created} were created"
        )

    if evaluation_metrics.iterations_executed > expected.max_allowed_iterations:
        warnings.append(
            f"Exceeded recommended iterations: "
            f"{evaluation_metrics.iterations_executed} > {expected.max_allowed_iterations}"
        )

    if evaluation_metrics.decision_quality < expected.min_decision_quality:
        failures.append(
            f"Decision quality too low: "
            f"{evaluation_metrics.decision_quality:.2f} < {expected.min_decision_quality:.2f}"
        )

    if evaluation_metrics.rag_relevance < expected.min_rag_relevance:
        failures.append(
            f"RAG relevance too low: "
            f"{evaluation_metrics.rag_relevance:.2f} < {expected.min_rag_relevance:.2f}"
        )

    if expected.final_state is not None and run_result.final_state != expected.final_state:
        failures.append(f"Expected final state {expected.final_state}, but got {run_result.final_state}")

    return failures, warnings


class AgentEvaluator:
    """Runs scenarios against the agent loop and scores them"""

    def __init__(self, config: Optional[EvaluationConfig] = None, judge: Optional[ModelJudge] = None):
        self.config = config or EvaluationConfig()
        self.judge = judge

    async def setup_entity_store(self, scenario: EvaluationScenario) -> InMemoryEntityStore:
        """Build a fresh store holding the scenario's initial entities"""

        scenario.validate_setup()
        store = InMemoryEntityStore()
        try:
            for entity_type in scenario.initial_entities:
                await store.store(Entity.create(default_payload(entity_type), tags=["seed"]))
        except EntityStoreError as e:
            raise ScenarioSetupError(f"Could not seed store for '{scenario.id}': {e}") from e
        return store

    async def evaluate(self, scenario: EvaluationScenario) -> AgentEvaluationResult:
        """Run one scenario and score it"""

        warnings: List[str] = []
        if self.config.collect_observability:
            settings = get_settings()
            if not setup_logging(settings.log_level, settings.log_format, settings.service_name):
                warnings.append("Logging was already initialized")

        logger.info("Starting evaluation", scenario_id=scenario.id, category=scenario.category.value)
        store = await self.setup_entity_store(scenario)

        agent = AgentLoop(
            AgentConfig(
                max_iterations=scenario.max_iterations,
                verbose=self.config.verbose,
                model_name=self.config.model,
            ),
            store=store,
            judge=self.judge,
        )
        context = AgentContext(user_prompt=scenario.user_prompt, app_state_id=f"eval_{scenario.id}")
        evaluation_metrics = EvaluationMetrics()
        timeout = scenario.timeout_seconds or self.config.timeout_seconds

        started = time.perf_counter()
        try:
            run_result = await agent.run(context, timeout=timeout)
        except AgentError as e:
            evaluation_metrics.execution_time_seconds = time.perf_counter() - started
            evaluation_metrics.iterations_executed = agent.iterations
            evaluation_metrics.state_transitions = list(agent.transitions)
            return self._finish(AgentEvaluationResult(
                scenario_id=scenario.id,
                success=False,
                metrics=evaluation_metrics,
                final_state=AgentState.error(str(e)),
                failures=[f"Agent execution failed: {e}"],
                warnings=warnings,
            ))

        evaluation_metrics.execution_time_seconds = time.perf_counter() - started
        evaluation_metrics.iterations_executed = run_result.iterations
        evaluation_metrics.state_transitions = list(agent.transitions)

        if run_result.final_state == AgentState.error(TIMEOUT_MESSAGE):
            return self._finish(AgentEvaluationResult(
                scenario_id=scenario.id,
                success=False,
                metrics=evaluation_metrics,
                final_state=run_result.final_state,
                failures=[str(EvaluationTimeoutError(timeout))],
                warnings=warnings,
            ))

        try:
            final_entities = await store.query(EntityQuery())
            relationships = await store.list_relationships()
            evaluation_metrics.rag_relevance = await self.evaluate_rag_relevance(store, scenario)
        except EntityStoreError as e:
            raise EvaluationValidationError(f"Could not inspect store after '{scenario.id}': {e}") from e

        evaluation_metrics.entities_created = max(0, len(final_entities) - len(scenario.initial_entities))
        evaluation_metrics.relationships_created = len(relationships)
        evaluation_metrics.entity_accuracy = calculate_entity_accuracy(scenario, final_entities)
        evaluation_metrics.decision_quality = calculate_decision_quality(run_result, scenario)
        evaluation_metrics.prompt_effectiveness = agent.prompt_effectiveness()
        evaluation_metrics.custom_metrics = {
            "actions_performed": float(run_result.actions_performed),
            "model_replies": float(agent.model_replies),
        }

        if self.judge is not None and scenario.validation_criteria is not None:
            validation = await self.judge.validate_response_quality(scenario.user_prompt, scenario.validation_criteria)
            evaluation_metrics.validation_results.append(str(validation))
            if not validation.is_success():
                warnings.append(f"Response validation: {validation.message}")

        failures, outcome_warnings = validate_outcomes(scenario, evaluation_metrics, run_result)
        return self._finish(AgentEvaluationResult(
            scenario_id=scenario.id,
            success=not failures,
            metrics=evaluation_metrics,
            final_state=run_result.final_state,
            failures=failures,
            warnings=warnings + outcome_warnings,
        ))

    async def evaluate_rag_relevance(self, store: InMemoryEntityStore, scenario: EvaluationScenario) -> float:
        """Average relevance of the scenario prompt's results against the final store"""

        results = await query_entities(store, scenario.user_prompt, RAG_EVALUATION_RESULTS)
        if not results:
            # Nothing stored means nothing to retrieve
            return 1.0 if await store.count() == 0 else 0.0
        return average_relevance(results)

    async def evaluate_batch(self, scenarios: List[EvaluationScenario]) -> BatchEvaluationResult:
        """Run scenarios one after another, each with its own store"""

        started = time.perf_counter()
        results = []
        for scenario in scenarios:
            results.append(await self.evaluate(scenario))

        passed = sum(1 for result in results if result.success)
        batch = BatchEvaluationResult(
            total_scenarios=len(scenarios),
            passed=passed,
            failed=len(scenarios) - passed,
            total_time_seconds=time.perf_counter() - started,
            results=results,
        )
        metrics.set_gauge("evaluation.pass_rate", batch.pass_rate)
        logger.info("Batch evaluation finished", total=batch.total_scenarios, passed=passed, failed=batch.failed)
        return batch

    def _finish(self, result: AgentEvaluationResult) -> AgentEvaluationResult:
        metrics.increment_counter("evaluation.passed" if result.success else "evaluation.failed")
        if result.success:
            logger.info("Evaluation passed", scenario_id=result.scenario_id)
        else:
            logger.warning("Evaluation failed", scenario_id=result.scenario_id, failures=result.failures)
        return result
