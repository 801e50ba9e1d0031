class EvaluationError(Exception):
    """Base class for evaluation harness failures"""


class ScenarioSetupError(EvaluationError):
    """A scenario is invalid or its initial store could not be built"""


class EvaluationTimeoutError(EvaluationError):
    """An evaluation ran past its deadline"""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Evaluation timed out after {timeout_seconds}s")


class EvaluationValidationError(EvaluationError):
    """Post-run metrics could not be computed"""
