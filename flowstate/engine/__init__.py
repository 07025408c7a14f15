"""
Engine package - Core workflow orchestration components.
"""

from flowstate.engine.errors import (
    ConfigurationError,
    DeadEndError,
    GraphValidationError,
    InitializationError,
    MaxStepsExceededError,
    RunCancelled,
    StepExecutionError,
    UnknownFieldError,
    UnknownStepError,
    UnsetFieldError,
    WorkflowError,
)
from flowstate.engine.state import FieldSpec, RunState, StateManager, StateSchema, append, replace
from flowstate.engine.node import Step, passthrough
from flowstate.engine.graph import END, CompiledGraph, ConditionalEdge, Edge, Graph
from flowstate.engine.executor import (
    ExecutionResult,
    ExecutionStatus,
    ExecutionStep,
    Executor,
    StepEvent,
    execute_graph,
    invoke,
)

__all__ = [
    "END",
    "FieldSpec",
    "StateSchema",
    "RunState",
    "StateManager",
    "append",
    "replace",
    "Step",
    "passthrough",
    "Edge",
    "ConditionalEdge",
    "Graph",
    "CompiledGraph",
    "Executor",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutionStep",
    "StepEvent",
    "execute_graph",
    "invoke",
    "WorkflowError",
    "GraphValidationError",
    "InitializationError",
    "StepExecutionError",
    "ConfigurationError",
    "DeadEndError",
    "UnknownStepError",
    "MaxStepsExceededError",
    "UnknownFieldError",
    "UnsetFieldError",
    "RunCancelled",
]
