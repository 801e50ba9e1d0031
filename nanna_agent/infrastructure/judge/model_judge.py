from typing import Awaitable, Callable, List, Optional, Tuple
import asyncio
import statistics
import time
import structlog

from nanna_agent.infrastructure.model.provider import ModelProvider
from nanna_agent.infrastructure.model.types import ChatMessage, ChatRequest, ChatResponse, ToolDefinition
from nanna_agent.infrastructure.model.errors import ModelError, ModelTimeoutError
from nanna_agent.infrastructure.judge.config import JudgeConfig, ValidationCriteria
from nanna_agent.infrastructure.judge.scoring import calculate_coherence_score, calculate_relevance_score
from nanna_agent.infrastructure.judge.validation import (
    ValidationFailure, ValidationMetrics, ValidationResult, ValidationSuccess, ValidationWarning,
)
from nanna_agent.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

CONSISTENCY_MIN_SUCCESS_RATE = 0.8
CONSISTENCY_MAX_LENGTH_VARIANCE = 10000.0
CONSISTENCY_MAX_COHERENCE_VARIANCE = 0.1
DEFAULT_MAX_LATENCY_SECONDS = 5.0
DEFAULT_QUALITY_PROMPT = "Explain the concept of artificial intelligence in a clear and comprehensive manner."


class ModelJudge:
    """Wraps a model provider with retries, scoring and validation"""

    def __init__(self, provider: ModelProvider, model_name: str, config: Optional[JudgeConfig] = None):
        self.provider = provider
        self.model_name = model_name
        self.config = config or JudgeConfig()

    async def chat(self, request: ChatRequest, purpose: str = "chat") -> ChatResponse:
        """Send a request, retrying retryable failures with backoff"""

        response, _ = await self._chat_with_retries(request, purpose)
        return response

    async def complete(self, prompt: str, system_prompt: Optional[str] = None, purpose: str = "complete") -> str:
        """Send a single prompt and return the reply text"""

        messages = []
        if system_prompt:
            messages.append(ChatMessage.system(system_prompt))
        messages.append(ChatMessage.user(prompt))

        response = await self.chat(ChatRequest(model=self.model_name, messages=messages), purpose)
        return response.first_content()

    async def _chat_with_retries(self, request: ChatRequest, purpose: str) -> Tuple[ChatResponse, int]:
        attempt = 0
        while True:
            started = time.perf_counter()
            try:
                response = await asyncio.wait_for(
                    self.provider.chat(request),
                    timeout=self.config.default_timeout_seconds
                )
            except asyncio.TimeoutError:
                error: ModelError = ModelTimeoutError(
                    f"No reply within {self.config.default_timeout_seconds}s"
                )
            except ModelError as e:
                error = e
            else:
                duration_ms = (time.perf_counter() - started) * 1000
                metrics.record_latency("model.chat", duration_ms, {"purpose": purpose})
                if self.config.verbose_logging:
                    agent_logger.log_model_call(purpose, request.model, duration_ms, retry_count=attempt)
                return response, attempt

            if not error.retryable or attempt >= self.config.max_retries:
                agent_logger.log_model_call(
                    purpose,
                    request.model,
                    (time.perf_counter() - started) * 1000,
                    retry_count=attempt,
                    success=False,
                    error=str(error)
                )
                error.retry_count = attempt
                raise error

            delay = self.config.calculate_retry_delay(attempt)
            logger.warning(
                "Model call failed, retrying",
                purpose=purpose,
                attempt=attempt + 1,
                delay_seconds=delay,
                error=str(error)
            )
            metrics.increment_counter("model.retries")
            await asyncio.sleep(delay)
            attempt += 1

    async def validate_api_responsiveness(
        self,
        max_latency_seconds: float = DEFAULT_MAX_LATENCY_SECONDS
    ) -> ValidationResult:
        """Run health checks and compare latency to a threshold"""

        started = time.perf_counter()
        last_error: Optional[ModelError] = None
        attempts = 0

        for attempt in range(self.config.max_retries + 1):
            attempts = attempt + 1
            check_started = time.perf_counter()
            try:
                await asyncio.wait_for(
                    self.provider.health_check(),
                    timeout=self.config.default_timeout_seconds
                )
            except asyncio.TimeoutError:
                last_error = ModelTimeoutError("Health check timed out")
            except ModelError as e:
                last_error = e
            else:
                latency = time.perf_counter() - check_started
                result_metrics = ValidationMetrics(
                    duration_seconds=time.perf_counter() - started,
                    retry_count=attempt,
                    custom_metrics={"latency_seconds": latency},
                )

                if latency <= max_latency_seconds:
                    return ValidationSuccess(
                        message=f"API responded in {latency:.3f}s",
                        metrics=result_metrics,
                    )
                return ValidationWarning(
                    message=f"API responded in {latency:.3f}s, above the {max_latency_seconds:.3f}s threshold",
                    suggestions=[
                        "Check backend load",
                        "Consider a smaller model",
                    ],
                    metrics=result_metrics,
                )

            if not last_error.retryable:
                break
            if attempt < self.config.max_retries:
                await asyncio.sleep(self.config.calculate_retry_delay(attempt))

        return ValidationFailure(
            message=f"API health check failed after {attempts} attempts",
            error_details=str(last_error),
            suggestions=[
                "Verify the model backend is running",
                "Check the backend address and credentials",
            ],
            metrics=ValidationMetrics(
                duration_seconds=time.perf_counter() - started,
                retry_count=attempts - 1,
            ),
        )

    async def validate_response_quality(self, prompt: str, criteria: ValidationCriteria) -> ValidationResult:
        """Send a prompt and score the reply against criteria"""

        started = time.perf_counter()
        request = ChatRequest(model=self.model_name, messages=[ChatMessage.user(prompt)])

        try:
            response, retries = await self._chat_with_retries(request, "quality")
        except ModelError as e:
            return ValidationFailure(
                message="Failed to get a response from the model",
                error_details=str(e),
                suggestions=["Check model availability"],
                metrics=ValidationMetrics(
                    duration_seconds=time.perf_counter() - started,
                    retry_count=e.retry_count,
                ),
            )

        if not response.choices:
            return ValidationFailure(
                message="Model returned no choices",
                error_details="Empty choices list",
                suggestions=["Check the model configuration"],
                metrics=ValidationMetrics(duration_seconds=time.perf_counter() - started, retry_count=retries),
            )

        content = response.first_content()
        if not content.strip():
            return ValidationFailure(
                message="Model returned an empty response",
                error_details="Response has no content",
                suggestions=["Check the prompt", "Try a different model"],
                metrics=ValidationMetrics(duration_seconds=time.perf_counter() - started, retry_count=retries),
            )

        length = len(content)
        coherence = calculate_coherence_score(content)
        relevance = calculate_relevance_score(prompt, content, criteria)
        result_metrics = ValidationMetrics(
            duration_seconds=time.perf_counter() - started,
            retry_count=retries,
            response_length=length,
            coherence_score=coherence,
            relevance_score=relevance,
        )

        if length < criteria.min_response_length:
            return ValidationFailure(
                message=f"Response too short: {length} < {criteria.min_response_length} characters",
                error_details=content,
                suggestions=["Ask for a more detailed answer"],
                metrics=result_metrics,
            )

        issues = []
        suggestions = []
        lower = content.lower()

        if length > criteria.max_response_length:
            issues.append(f"response too long ({length} > {criteria.max_response_length} characters)")
            suggestions.append("Ask for a more concise answer")

        forbidden = [k for k in criteria.forbidden_keywords if k.lower() in lower]
        if forbidden:
            issues.append(f"forbidden keywords present: {', '.join(forbidden)}")
            suggestions.append("Rephrase the prompt to avoid refusals")

        missing = [k for k in criteria.required_keywords if k.lower() not in lower]
        if missing:
            issues.append(f"required keywords missing: {', '.join(missing)}")
            suggestions.append("Mention the required topics explicitly in the prompt")

        if coherence < criteria.min_coherence_score:
            issues.append(f"low coherence ({coherence:.2f} < {criteria.min_coherence_score:.2f})")
            suggestions.append("Ask for complete sentences")

        if relevance < criteria.min_relevance_score:
            issues.append(f"low relevance ({relevance:.2f} < {criteria.min_relevance_score:.2f})")
            suggestions.append("Make the prompt more specific")

        if issues:
            return ValidationWarning(
                message=f"Response quality issues: {'; '.join(issues)}",
                suggestions=suggestions,
                metrics=result_metrics,
            )

        if response.usage:
            result_metrics.custom_metrics = {
                "prompt_tokens": float(response.usage.prompt_tokens),
                "completion_tokens": float(response.usage.completion_tokens),
                "total_tokens": float(response.usage.total_tokens),
            }

        return ValidationSuccess(
            message=f"Response meets quality criteria ({length} characters)",
            metrics=result_metrics,
        )

    async def validate_tool_calling(self, tools: List[ToolDefinition]) -> ValidationResult:
        """Check that the model requests one of the advertised tools"""

        started = time.perf_counter()
        if not tools:
            return ValidationSuccess(message="No tools to validate")

        known = {tool.function.name for tool in tools}
        tool_prompt = (
            f"Call the {tools[0].function.name} tool with suitable arguments. "
            "Do not answer in plain text."
        )
        request = ChatRequest(model=self.model_name, messages=[ChatMessage.user(tool_prompt)]).with_tools(tools)

        try:
            response, retries = await self._chat_with_retries(request, "tool_calling")
        except ModelError as e:
            return ValidationFailure(
                message="Tool-calling request failed",
                error_details=str(e),
                suggestions=["Check model availability"],
            )

        result_metrics = ValidationMetrics(duration_seconds=time.perf_counter() - started, retry_count=retries)
        requested = [call.function.name for call in response.tool_calls()]

        if not requested:
            return ValidationWarning(
                message="Model did not request any tool",
                suggestions=["Use a model trained for tool calling"],
                metrics=result_metrics,
            )

        unknown = [name for name in requested if name not in known]
        if unknown:
            return ValidationWarning(
                message=f"Model requested unknown tools: {', '.join(unknown)}",
                suggestions=["Describe the available tools more clearly"],
                metrics=result_metrics,
            )

        return ValidationSuccess(
            message=f"Model requested tools: {', '.join(requested)}",
            metrics=result_metrics,
        )

    async def validate_consistency(self, prompts: List[str], iterations: int) -> ValidationResult:
        """Send every prompt several times and measure how stable the replies are"""

        started = time.perf_counter()
        if not prompts or iterations == 0:
            return ValidationSuccess(message="No prompts to check for consistency")

        lengths: List[int] = []
        coherences: List[float] = []
        total_attempts = len(prompts) * iterations
        attempt = 0

        for prompt in prompts:
            for _ in range(iterations):
                attempt += 1
                request = ChatRequest(model=self.model_name, messages=[ChatMessage.user(prompt)])
                try:
                    response = await self.chat(request, "consistency")
                except ModelError as e:
                    logger.warning("Consistency attempt failed", attempt=attempt, error=str(e))
                else:
                    content = response.first_content()
                    if content.strip():
                        lengths.append(len(content))
                        coherences.append(calculate_coherence_score(content))

                if attempt < total_attempts:
                    await asyncio.sleep(self.config.consistency_pause_ms / 1000)

        successful = len(lengths)
        success_rate = successful / total_attempts
        length_variance = statistics.pvariance(lengths) if lengths else 0.0
        coherence_variance = statistics.pvariance(coherences) if coherences else 0.0

        result_metrics = ValidationMetrics(
            duration_seconds=time.perf_counter() - started,
            success_rate=success_rate,
            coherence_score=statistics.fmean(coherences) if coherences else None,
            custom_metrics={
                "total_attempts": float(total_attempts),
                "successful_attempts": float(successful),
                "length_variance": float(length_variance),
                "coherence_variance": float(coherence_variance),
            },
        )

        issues = []
        if success_rate < CONSISTENCY_MIN_SUCCESS_RATE:
            issues.append(f"low success rate ({success_rate:.0%})")
        if length_variance > CONSISTENCY_MAX_LENGTH_VARIANCE:
            issues.append(f"high response length variance ({length_variance:.1f})")
        if coherence_variance > CONSISTENCY_MAX_COHERENCE_VARIANCE:
            issues.append(f"high coherence variance ({coherence_variance:.3f})")

        if issues:
            return ValidationWarning(
                message=f"Inconsistent responses: {'; '.join(issues)}",
                suggestions=["Lower the temperature", "Make prompts more specific"],
                metrics=result_metrics,
            )

        return ValidationSuccess(
            message=f"Responses consistent across {total_attempts} attempts",
            metrics=result_metrics,
        )

    async def validate_comprehensive(
        self,
        criteria: Optional[ValidationCriteria] = None,
        prompts: Optional[List[str]] = None,
        tools: Optional[List[ToolDefinition]] = None,
        consistency_iterations: int = 2
    ) -> List[ValidationResult]:
        """Run every validation and collect the results"""

        criteria = criteria or ValidationCriteria()
        prompts = prompts or []
        checks: List[Tuple[str, Callable[[], Awaitable[ValidationResult]]]] = [
            ("responsiveness", self.validate_api_responsiveness),
        ]
        quality_prompt = prompts[0] if prompts else DEFAULT_QUALITY_PROMPT
        checks.append(("quality", lambda: self.validate_response_quality(quality_prompt, criteria)))
        checks.append(("tool_calling", lambda: self.validate_tool_calling(tools or [])))
        checks.append(("consistency", lambda: self.validate_consistency(prompts, consistency_iterations)))

        results: List[ValidationResult] = []
        for name, check in checks:
            try:
                results.append(await check())
            except ModelError as e:
                results.append(ValidationFailure(
                    message=f"{name} validation raised an error",
                    error_details=str(e),
                ))

        logger.info(
            "Comprehensive validation finished",
            total=len(results),
            failures=sum(1 for r in results if r.is_failure())
        )
        return results
