class AgentError(Exception):
    """Base class for agent loop failures"""


class StateError(AgentError):
    """A state action failed or an invalid transition was attempted"""


class TaskCheckFailed(AgentError):
    """The completion check could not be carried out"""


class MaxIterationsExceeded(AgentError):
    """The run used up its iteration budget"""

    def __init__(self, max_iterations: int, iterations: int):
        self.max_iterations = max_iterations
        self.iterations = iterations
        super().__init__(f"Maximum iterations exceeded: {iterations} >= {max_iterations}")
