"""
Error types raised by the workflow engine.

Every failure a run can end with is one of these, so callers can tell a
graph-authoring bug apart from a step that failed at run time.
"""

from typing import Any, List, Optional


class WorkflowError(Exception):
    """Base class for all engine errors."""

    def to_dict(self) -> dict:
        return {"type": type(self).__name__, "message": str(self)}


class GraphValidationError(WorkflowError):
    """The graph structure is invalid. Raised by ``Graph.compile``."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Graph validation failed: " + "; ".join(self.errors))

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class StepExecutionError(WorkflowError):
    """A step raised or returned something that is not a partial update."""

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"Error in step '{step}': {cause}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["step"] = self.step
        data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data


class InitializationError(WorkflowError):
    """Building the starting state failed, e.g. a default supplier raised."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Error initializing run state: {cause}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data


class ConfigurationError(WorkflowError):
    """A router produced a label that its conditional edge does not map."""

    def __init__(self, step: str, label: Any, available: Optional[List[Any]] = None):
        self.step = step
        self.label = label
        self.available = list(available or [])
        super().__init__(
            f"Router for step '{step}' returned unknown label {label!r}. "
            f"Available labels: {self.available}"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["step"] = self.step
        data["label"] = str(self.label)
        return data


class DeadEndError(WorkflowError):
    """A non-terminal step has no outgoing edge."""

    def __init__(self, step: str):
        self.step = step
        super().__init__(f"Step '{step}' has no outgoing edge")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["step"] = self.step
        return data


class UnknownStepError(WorkflowError):
    def __init__(self, step: str):
        self.step = step
        super().__init__(f"Step '{step}' not found in graph")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["step"] = self.step
        return data


class MaxStepsExceededError(WorkflowError):
    """The run executed more steps than its ceiling allows."""

    def __init__(self, max_steps: int, step: Optional[str] = None):
        self.max_steps = max_steps
        self.step = step
        super().__init__(
            f"Max steps ({max_steps}) exceeded"
            + (f" before step '{step}'" if step else "")
        )


class UnknownFieldError(WorkflowError, KeyError):
    """A field name that the state schema does not declare."""

    def __init__(self, field_name: str):
        self.field_name = field_name
        WorkflowError.__init__(self, f"Field '{field_name}' is not declared in the state schema")

    def __str__(self) -> str:
        return self.args[0]


class UnsetFieldError(WorkflowError, KeyError):
    """A declared field was read before any default, input or step set it."""

    def __init__(self, field_name: str):
        self.field_name = field_name
        WorkflowError.__init__(self, f"Field '{field_name}' has not been set")

    def __str__(self) -> str:
        return self.args[0]


class RunCancelled(Exception):
    """
    Raised by ``ExecutionResult.unwrap()`` for a cancelled run.

    Cancellation is not a failure and is not a ``WorkflowError``.
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' was cancelled")
