from typing import TypedDict, List, Dict, Any, Optional, Literal, Callable, Awaitable
import asyncio
import time
from langgraph.graph import StateGraph, END
from langgraph.errors import GraphRecursionError
import structlog

from nanna_agent.domain.models.agent_state import (
    AgentConfig, AgentContext, AgentPhase, AgentState, RunResult,
)
from nanna_agent.domain.entities.models import EntityQuery, QueryResult
from nanna_agent.domain.entities.store import EntityStore, InMemoryEntityStore
from nanna_agent.domain.entities.errors import EntityStoreError
from nanna_agent.domain.context.rag import query_entities, summarize_results, summarize_entity_types
from nanna_agent.domain.prompts.templates import (
    CompletionPrompt, CompletionStatus, Decision, DecisionPrompt, PlanningPrompt,
)
from nanna_agent.domain.orchestration.core.action_performer import ActionPerformer
from nanna_agent.domain.orchestration.core.errors import AgentError, MaxIterationsExceeded, StateError, TaskCheckFailed
from nanna_agent.domain.tool.tool_registry import ToolError
from nanna_agent.infrastructure.judge.model_judge import ModelJudge
from nanna_agent.infrastructure.model.errors import ModelError
from nanna_agent.infrastructure.model.types import ChatMessage, ChatRequest
from nanna_agent.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

PLANNING_RESULTS = 10
QUERYING_RESULTS = 5
RECURSION_HEADROOM = 5
TIMEOUT_MESSAGE = "Timeout"

StepResult = Dict[str, Any]


class LoopState(TypedDict):
    """State carried through the loop graph"""
    user_prompt: str
    agent_state: AgentState
    iterations: int
    actions_performed: int
    current_plan: Optional[str]
    rag_results: List[QueryResult]


class AgentLoop:
    """Agent control loop driven by a LangGraph state machine.

    Each node handles one loop state: it checks the iteration budget, runs
    the state's action and names the next state. Routing reads that state
    tag, so the graph mirrors the loop's transition table. Without a judge
    the loop runs in MVP mode: formatted plans, always proceed, and
    completion once an action has been performed.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        store: Optional[EntityStore] = None,
        judge: Optional[ModelJudge] = None
    ):
        self.config = config or AgentConfig()
        self.store = store if store is not None else InMemoryEntityStore()
        self.judge = judge
        self._reset()
        self.workflow = self._create_workflow()

    def _reset(self):
        self.state = AgentState.planning()
        self.iterations = 0
        self.actions_performed = 0
        self.current_plan: Optional[str] = None
        self.transitions: List[AgentState] = [self.state]
        self.history: List[ChatMessage] = []
        self.performer = ActionPerformer(self.store)
        self.model_replies = 0
        self.ambiguous_replies = 0

    def _create_workflow(self):
        """Create the loop graph"""

        workflow = StateGraph(LoopState)

        workflow.add_node("planning", self.planning_node)
        workflow.add_node("checking_completion", self.checking_completion_node)
        workflow.add_node("deciding", self.deciding_node)
        workflow.add_node("querying", self.querying_node)
        workflow.add_node("performing", self.performing_node)
        workflow.add_node("completed", self.completed_node)

        workflow.set_entry_point("planning")

        routes = {phase.value: phase.value for phase in AgentPhase if phase != AgentPhase.ERROR}
        routes[AgentPhase.ERROR.value] = END

        for node in ("planning", "checking_completion", "deciding", "querying", "performing"):
            workflow.add_conditional_edges(node, self.route_next_state, routes)

        workflow.add_edge("completed", END)

        return workflow.compile()

    async def run(self, context: AgentContext, timeout: Optional[float] = None) -> RunResult:
        """Run the loop until it completes, fails, or runs out of iterations"""

        self._reset()
        self.history = list(context.conversation_history)
        structlog.contextvars.bind_contextvars(app_state_id=context.app_state_id)
        logger.info("Starting agent run", user_prompt=context.user_prompt, max_iterations=self.config.max_iterations)

        initial_state: LoopState = {
            "user_prompt": context.user_prompt,
            "agent_state": self.state,
            "iterations": 0,
            "actions_performed": 0,
            "current_plan": None,
            "rag_results": [],
        }

        try:
            final = await asyncio.wait_for(
                self.workflow.ainvoke(
                    initial_state,
                    config={"recursion_limit": self.config.max_iterations + RECURSION_HEADROOM}
                ),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Agent run timed out", timeout=timeout, iterations=self.iterations)
            self._set_state(AgentState.error(TIMEOUT_MESSAGE))
            return self._result()
        except GraphRecursionError as e:
            raise MaxIterationsExceeded(self.config.max_iterations, self.iterations) from e
        finally:
            structlog.contextvars.unbind_contextvars("app_state_id")

        self.state = final["agent_state"]
        self.iterations = final["iterations"]
        self.actions_performed = final["actions_performed"]
        self.current_plan = final["current_plan"]

        logger.info(
            "Agent run finished",
            final_state=str(self.state),
            iterations=self.iterations,
            actions_performed=self.actions_performed
        )
        return self._result()

    def _result(self) -> RunResult:
        return RunResult(
            final_state=self.state,
            iterations=self.iterations,
            task_completed=self.state.phase == AgentPhase.COMPLETED,
            actions_performed=self.actions_performed,
        )

    def prompt_effectiveness(self) -> float:
        """Share of model replies that parsed to a definite answer"""

        if self.model_replies == 0:
            return 1.0
        return 1.0 - self.ambiguous_replies / self.model_replies

    async def planning_node(self, state: LoopState) -> StepResult:
        return await self._tick(state, self._plan)

    async def checking_completion_node(self, state: LoopState) -> StepResult:
        return await self._tick(state, self._check_completion)

    async def deciding_node(self, state: LoopState) -> StepResult:
        return await self._tick(state, self._decide)

    async def querying_node(self, state: LoopState) -> StepResult:
        return await self._tick(state, self._query)

    async def performing_node(self, state: LoopState) -> StepResult:
        return await self._tick(state, self._perform)

    async def completed_node(self, state: LoopState) -> StepResult:
        self._check_budget(state["iterations"])
        return {"agent_state": state["agent_state"]}

    def route_next_state(self, state: LoopState) -> Literal[
        "planning", "querying", "deciding", "performing", "checking_completion", "completed", "error"
    ]:
        """Route to the node of the state chosen by the last action"""

        return state["agent_state"].phase.value

    async def _tick(self, state: LoopState, action: Callable[[LoopState], Awaitable[StepResult]]) -> StepResult:
        self._check_budget(state["iterations"])

        from_state = state["agent_state"]
        started = time.perf_counter()
        try:
            updates = await action(state)
        except MaxIterationsExceeded:
            raise
        except (AgentError, EntityStoreError, ModelError, ToolError) as e:
            error = StateError(f"{from_state.phase.value} failed: {e}")
            logger.error("State action failed", state=str(from_state), error=str(e))
            updates = {"agent_state": AgentState.error(str(error))}

        updates["iterations"] = state["iterations"] + 1
        duration_ms = (time.perf_counter() - started) * 1000

        self.iterations = updates["iterations"]
        self.actions_performed = updates.get("actions_performed", state["actions_performed"])
        self._set_state(updates["agent_state"])

        metrics.record_latency(f"agent.{from_state.phase.value}", duration_ms)
        metrics.increment_counter("agent.transitions")
        if self.config.verbose:
            agent_logger.log_state_transition(
                str(from_state),
                str(self.state),
                self.iterations,
                duration_ms=duration_ms,
                details={"actions_performed": self.actions_performed}
            )
        return updates

    def _check_budget(self, iterations: int):
        if iterations >= self.config.max_iterations:
            logger.warning("Iteration budget exhausted", iterations=iterations, max_iterations=self.config.max_iterations)
            raise MaxIterationsExceeded(self.config.max_iterations, iterations)

    def _set_state(self, new_state: AgentState):
        self.state = new_state
        self.transitions.append(new_state)

    async def _ask(self, purpose: str, prompt: str) -> str:
        messages = [ChatMessage.system(self.config.system_prompt)] + self.history + [ChatMessage.user(prompt)]
        request = ChatRequest(model=self.config.model_name, messages=messages)
        response = await self.judge.chat(request, purpose)
        return response.first_content()

    def _count_reply(self, parsed: Optional[Any]):
        self.model_replies += 1
        if parsed is None:
            self.ambiguous_replies += 1

    async def _plan(self, state: LoopState) -> StepResult:
        logger.info("Planning next action", iteration=state["iterations"])

        results = await query_entities(self.store, state["user_prompt"], PLANNING_RESULTS)
        entity_count = await self.store.count()

        if self.judge is not None:
            prompt = PlanningPrompt.build_from_results(state["user_prompt"], entity_count, results)
            plan = (await self._ask("planning", prompt)).strip()
        else:
            plan = f"Handle request '{state['user_prompt']}'. {summarize_results(results)}."

        self.current_plan = plan
        return {
            "agent_state": AgentState.checking_completion(),
            "current_plan": plan,
            "rag_results": results,
        }

    async def _check_completion(self, state: LoopState) -> StepResult:
        actions = state["actions_performed"]
        complete = actions > 0

        if self.judge is not None and self.config.llm_completion:
            try:
                results = await self.store.query(EntityQuery())
            except EntityStoreError as e:
                raise TaskCheckFailed(f"Could not summarize entities: {e}") from e
            prompt = CompletionPrompt.build(state["user_prompt"], actions, summarize_entity_types(results))
            try:
                reply = await self._ask("completion", prompt)
            except ModelError as e:
                logger.warning("Model unavailable for completion check, using action count", error=str(e))
            else:
                status = CompletionPrompt.parse(reply)
                self._count_reply(status)
                # An ambiguous reply counts as incomplete
                complete = status == CompletionStatus.COMPLETE

        logger.info("Checked completion", actions_performed=actions, complete=complete)
        next_state = AgentState.completed() if complete else AgentState.deciding()
        return {"agent_state": next_state}

    async def _decide(self, state: LoopState) -> StepResult:
        decision: Optional[Decision] = Decision.PROCEED

        if self.judge is not None:
            entity_count = await self.store.count()
            prompt = DecisionPrompt.build(
                state["user_prompt"],
                state["current_plan"] or "",
                entity_count,
                state["actions_performed"]
            )
            decision = DecisionPrompt.parse(await self._ask("decision", prompt))
            self._count_reply(decision)

        logger.info("Decided next step", decision=decision.value if decision else None)
        if decision == Decision.QUERY:
            return {"agent_state": AgentState.querying()}
        return {"agent_state": AgentState.performing()}

    async def _query(self, state: LoopState) -> StepResult:
        results = await query_entities(self.store, state["user_prompt"], QUERYING_RESULTS)
        logger.info("Queried entities", results=len(results))
        return {"agent_state": AgentState.planning(), "rag_results": results}

    async def _perform(self, state: LoopState) -> StepResult:
        touched = await self.performer.perform(state["user_prompt"], state["current_plan"], state["rag_results"])
        logger.info("Performed action", touched=touched)
        return {
            "agent_state": AgentState.checking_completion(),
            "actions_performed": state["actions_performed"] + 1,
        }
