from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
import uuid

from nanna_agent.infrastructure.model.types import ChatMessage
from nanna_agent.infrastructure.config.settings import HarnessSettings, get_settings

DEFAULT_SYSTEM_PROMPT = (
    "You are a code assistant that maintains a graph of workspace entities "
    "(git repositories, files, tests, context notes). Answer briefly."
)


class AgentPhase(str, Enum):
    """States of the agent control loop"""
    PLANNING = "planning"
    QUERYING = "querying"
    DECIDING = "deciding"
    PERFORMING = "performing"
    CHECKING_COMPLETION = "checking_completion"
    COMPLETED = "completed"
    ERROR = "error"


class AgentState(BaseModel):
    """Current loop state; ERROR carries a message"""
    model_config = ConfigDict(frozen=True)

    phase: AgentPhase
    message: Optional[str] = None

    @classmethod
    def planning(cls) -> "AgentState":
        return cls(phase=AgentPhase.PLANNING)

    @classmethod
    def querying(cls) -> "AgentState":
        return cls(phase=AgentPhase.QUERYING)

    @classmethod
    def deciding(cls) -> "AgentState":
        return cls(phase=AgentPhase.DECIDING)

    @classmethod
    def performing(cls) -> "AgentState":
        return cls(phase=AgentPhase.PERFORMING)

    @classmethod
    def checking_completion(cls) -> "AgentState":
        return cls(phase=AgentPhase.CHECKING_COMPLETION)

    @classmethod
    def completed(cls) -> "AgentState":
        return cls(phase=AgentPhase.COMPLETED)

    @classmethod
    def error(cls, message: str) -> "AgentState":
        return cls(phase=AgentPhase.ERROR, message=message)

    def is_terminal(self) -> bool:
        return self.phase in (AgentPhase.COMPLETED, AgentPhase.ERROR)

    def __str__(self) -> str:
        if self.phase == AgentPhase.ERROR:
            return f"error({self.message})"
        return self.phase.value


class AgentConfig(BaseModel):
    """Per-run loop configuration"""
    model_config = ConfigDict(protected_namespaces=())

    max_iterations: int = Field(default=100, ge=1)
    verbose: bool = False
    llm_completion: bool = Field(default=False, description="Ask the model whether the task is complete")
    model_name: str = Field(default="qwen3:0.6b")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT)

    @classmethod
    def from_settings(cls, settings: Optional[HarnessSettings] = None) -> "AgentConfig":
        settings = settings or get_settings()
        return cls(
            max_iterations=settings.max_iterations,
            verbose=settings.verbose,
            model_name=settings.model_name,
        )


class AgentContext(BaseModel):
    """Inputs of a single run"""
    user_prompt: str
    conversation_history: List[ChatMessage] = Field(default_factory=list)
    app_state_id: str = Field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")


class RunResult(BaseModel):
    """Outcome of a run"""
    final_state: AgentState
    iterations: int
    task_completed: bool
    actions_performed: int = 0
