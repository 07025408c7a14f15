"""
Async Workflow Executor.

The executor runs a compiled graph, owning the run's state: it executes one
step at a time, merges each step's partial update through the schema's
reducers, evaluates routers to pick the next step and records an execution
log. Every run ends COMPLETED, FAILED (with a single typed error) or
CANCELLED.
"""

from collections.abc import Mapping
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio
import inspect
import uuid
import time
import logging

from flowstate.config import settings
from flowstate.engine.errors import (
    InitializationError,
    MaxStepsExceededError,
    RunCancelled,
    StepExecutionError,
    WorkflowError,
)
from flowstate.engine.graph import CompiledGraph, END
from flowstate.engine.node import Step
from flowstate.engine.state import RunState, StateManager


logger = logging.getLogger(__name__)


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ExecutionStep:
    """A single step in the execution log."""
    step: int
    node: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    result: str = "success"
    error: Optional[str] = None
    updated_fields: List[str] = field(default_factory=list)
    route_taken: Optional[str] = None
    next_node: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "node": self.node,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "result": self.result,
            "error": self.error,
            "updated_fields": self.updated_fields,
            "route_taken": self.route_taken,
            "next_node": self.next_node,
        }


@dataclass
class StepEvent:
    """State of a run right after one step's update was merged."""
    run_id: str
    step: ExecutionStep
    state: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            **self.step.to_dict(),
            "state": self.state,
        }


@dataclass
class ExecutionResult:
    """Result of a workflow execution."""
    run_id: str
    graph_id: str
    status: ExecutionStatus
    final_state: Dict[str, Any]
    execution_log: List[ExecutionStep] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None
    error: Optional[WorkflowError] = None
    steps: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def visited(self) -> List[str]:
        """Names of the steps executed, in order."""
        return [entry.node for entry in self.execution_log]

    def unwrap(self) -> Dict[str, Any]:
        """
        Return the final state, or raise what ended the run.

        Raises:
            WorkflowError: The run failed
            RunCancelled: The run was cancelled
        """
        if self.status == ExecutionStatus.CANCELLED:
            raise RunCancelled(self.run_id)
        if self.error is not None:
            raise self.error
        return self.final_state

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "graph_id": self.graph_id,
            "status": self.status.value,
            "final_state": self.final_state,
            "execution_log": [step.to_dict() for step in self.execution_log],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
            "error": self.error.to_dict() if self.error else None,
            "steps": self.steps,
        }


StepCallback = Callable[[StepEvent], Any]


class Executor:
    """
    Async workflow executor for a single run.

    A compiled graph is shared; an Executor is not. Create one per run:
    - Sequential step execution, never two steps of a run at once
    - Reducer-based merging of partial updates
    - Conditional branching via routers
    - A max_steps ceiling against runaway cycles
    - Cancellation between steps
    - Detailed execution logging

    Usage:
        executor = Executor(graph, max_steps=50)
        result = await executor.run({"input": "data"})

        async for event in Executor(graph).stream({"input": "data"}):
            print(event.step.node, event.state)
    """

    def __init__(
        self,
        graph: CompiledGraph,
        max_steps: Optional[int] = None,
        run_id: Optional[str] = None,
        on_step: Optional[StepCallback] = None
    ):
        """
        Initialize the executor.

        Args:
            graph: The compiled workflow graph to execute
            max_steps: Ceiling on steps executed in this run
                (defaults to ``settings.MAX_STEPS``)
            run_id: Optional run ID (generated if not provided)
            on_step: Optional callback (sync or async) for each step
        """
        if not isinstance(graph, CompiledGraph):
            raise TypeError("Executor requires a CompiledGraph; call Graph.compile() first")

        self.graph = graph
        self.max_steps = max_steps if max_steps is not None else settings.MAX_STEPS
        if self.max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.run_id = run_id or str(uuid.uuid4())
        self.on_step = on_step

        # Execution state
        self._state_manager = StateManager(graph.schema, self.run_id)
        self._execution_log: List[ExecutionStep] = []
        self._step_counter = 0
        self._status = ExecutionStatus.PENDING
        self._cancelled = False
        self._error: Optional[WorkflowError] = None
        self._current_node: Optional[str] = None
        self._start_time: Optional[float] = None
        self._end_time: Optional[float] = None

    @property
    def status(self) -> ExecutionStatus:
        """Get the current execution status."""
        return self._status

    @property
    def current_state(self) -> Optional[Dict[str, Any]]:
        """Get the current state data."""
        state = self._state_manager.current_state
        return state.to_dict() if state is not None else None

    @property
    def current_node(self) -> Optional[str]:
        """Get the step currently being executed (or about to be)."""
        return self._current_node

    @property
    def history(self) -> List[Dict[str, Any]]:
        return self._state_manager.get_history()

    def cancel(self) -> None:
        """
        Request cancellation. Honoured before the next step starts; a step
        already awaiting external work is allowed to finish.
        """
        if self._status in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING):
            self._cancelled = True
            logger.info(f"Cancellation requested for run {self.run_id}")

    async def run(self, initial_state: Optional[Mapping] = None) -> ExecutionResult:
        """
        Execute the workflow with the given initial state.

        Args:
            initial_state: Initial (partial) state, merged over schema defaults

        Returns:
            ExecutionResult with final state, logs and any error
        """
        try:
            async for _ in self._drive(initial_state):
                pass
        except WorkflowError as e:
            logger.error(f"Run {self.run_id} failed: {e}")
        return self.result

    async def stream(self, initial_state: Optional[Mapping] = None) -> AsyncIterator[StepEvent]:
        """
        Execute the workflow, yielding the state after every step.

        The states yielded are exactly those ``run`` would pass through. A
        failure is raised after the events that preceded it; ``result`` is
        available once the iteration ends.
        """
        async for event in self._drive(initial_state):
            yield event

    @property
    def result(self) -> ExecutionResult:
        """Snapshot of the run as an ExecutionResult."""
        if self._status == ExecutionStatus.CANCELLED:
            final_state: Dict[str, Any] = {}
        else:
            final_state = self.current_state or {}

        started_at = self._state_manager.started_at
        completed_at = self._state_manager.completed_at
        duration = None
        if self._start_time is not None:
            end = self._end_time if self._end_time is not None else time.time()
            duration = (end - self._start_time) * 1000

        return ExecutionResult(
            run_id=self.run_id,
            graph_id=self.graph.graph_id,
            status=self._status,
            final_state=final_state,
            execution_log=list(self._execution_log),
            started_at=started_at,
            completed_at=completed_at,
            total_duration_ms=duration,
            error=self._error,
            steps=self._step_counter,
        )

    async def _drive(self, initial_state: Optional[Mapping]) -> AsyncIterator[StepEvent]:
        """The run loop shared by ``run`` and ``stream``."""
        if self._status != ExecutionStatus.PENDING:
            raise RuntimeError(f"Executor for run {self.run_id} has already been used")

        self._start_time = time.time()
        if self._cancelled:
            self._finish(ExecutionStatus.CANCELLED)
            return

        self._status = ExecutionStatus.RUNNING
        logger.info(f"Starting run {self.run_id} of '{self.graph.name}'")

        try:
            state = self._initialize(initial_state)
            current = self.graph.entry_point

            while current != END:
                if self._cancelled:
                    logger.info(f"Execution cancelled before step '{current}'")
                    self._finish(ExecutionStatus.CANCELLED)
                    return

                if self._step_counter >= self.max_steps:
                    raise MaxStepsExceededError(self.max_steps, current)

                self._current_node = current
                step = self.graph.get_step(current)
                entry = await self._execute_node(step, state)
                state = self._state_manager.current_state

                next_node, label = self._route(current, state)
                entry.route_taken = None if label is None else str(label)
                entry.next_node = next_node
                if label is not None:
                    logger.debug(f"Conditional route: {label} -> {next_node}")

                event = StepEvent(run_id=self.run_id, step=entry, state=state.to_dict())
                await self._notify(event)
                yield event

                current = next_node

            self._current_node = END
            self._finish(ExecutionStatus.COMPLETED)
            logger.info(
                f"Run {self.run_id} completed in {self._step_counter} steps"
            )

        except WorkflowError as e:
            self._error = e
            self._finish(ExecutionStatus.FAILED)
            raise
        except (asyncio.CancelledError, GeneratorExit):
            # task cancelled mid-step, or the stream was closed early
            self._finish(ExecutionStatus.CANCELLED)
            raise

    def _initialize(self, initial_state: Optional[Mapping]) -> RunState:
        try:
            return self._state_manager.initialize(initial_state)
        except WorkflowError:
            raise
        except Exception as e:
            logger.error(f"Run {self.run_id} could not initialize its state: {e}")
            raise InitializationError(e) from e

    async def _execute_node(self, step: Step, state: RunState) -> ExecutionStep:
        """Execute a single step and merge its update into state."""
        self._step_counter += 1
        node_start_time = time.time()

        entry = ExecutionStep(
            step=self._step_counter,
            node=step.name,
            started_at=datetime.now(),
        )
        self._execution_log.append(entry)

        logger.info(f"Executing step: {step.name} (step {self._step_counter})")

        try:
            update = await step.execute(state)
            self._state_manager.update(step.name, update)
            entry.updated_fields = list(update)
        except Exception as e:
            entry.completed_at = datetime.now()
            entry.duration_ms = (time.time() - node_start_time) * 1000
            entry.result = "error"
            entry.error = str(e)
            logger.error(f"Step {step.name} failed: {e}")
            raise StepExecutionError(step.name, e) from e

        entry.completed_at = datetime.now()
        entry.duration_ms = (time.time() - node_start_time) * 1000
        return entry

    def _route(self, current: str, state: RunState):
        try:
            return self.graph.get_next_node(current, state)
        except WorkflowError:
            raise
        except Exception as e:
            logger.error(f"Router for step {current} failed: {e}")
            raise StepExecutionError(current, e) from e

    async def _notify(self, event: StepEvent) -> None:
        if not self.on_step:
            return
        try:
            outcome = self.on_step(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Step callback failed: {e}")

    def _finish(self, status: ExecutionStatus) -> None:
        self._status = status
        self._end_time = time.time()
        if status == ExecutionStatus.CANCELLED:
            self._state_manager.discard()
        else:
            self._state_manager.finalize()

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get a summary of the current execution."""
        return {
            "run_id": self.run_id,
            "graph_id": self.graph.graph_id,
            "status": self._status.value,
            "current_node": self.current_node,
            "current_state": self.current_state,
            "step_count": self._step_counter,
            "max_steps": self.max_steps,
        }


async def execute_graph(
    graph: CompiledGraph,
    initial_state: Optional[Mapping] = None,
    max_steps: Optional[int] = None,
    run_id: Optional[str] = None,
    on_step: Optional[StepCallback] = None
) -> ExecutionResult:
    """
    Convenience function to execute a graph.

    Args:
        graph: The compiled workflow graph
        initial_state: Initial state data
        max_steps: Per-run step ceiling
        run_id: Optional run ID
        on_step: Optional step callback

    Returns:
        ExecutionResult
    """
    executor = Executor(graph, max_steps=max_steps, run_id=run_id, on_step=on_step)
    return await executor.run(initial_state)


async def invoke(
    graph: CompiledGraph,
    initial_state: Optional[Mapping] = None,
    max_steps: Optional[int] = None,
) -> Dict[str, Any]:
    """Run a graph and return its final state, raising on failure."""
    result = await execute_graph(graph, initial_state, max_steps=max_steps)
    return result.unwrap()
