"""
In-Memory Run Registry.

Keeps a record of every run started through the API so its progress and
outcome can be polled. Records describe runs; they are not checkpoints and
a run cannot be resumed from one.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import asyncio
from dataclasses import dataclass, field

from flowstate.engine.executor import ExecutionResult, Executor, StepEvent


@dataclass
class StoredRun:
    """A stored execution run."""
    run_id: str
    workflow: str
    status: str
    initial_state: Dict[str, Any]
    current_state: Dict[str, Any] = field(default_factory=dict)
    final_state: Optional[Dict[str, Any]] = None
    execution_log: List[Dict[str, Any]] = field(default_factory=list)
    current_node: Optional[str] = None
    steps: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow": self.workflow,
            "status": self.status,
            "initial_state": self.initial_state,
            "current_state": self.current_state,
            "final_state": self.final_state,
            "execution_log": self.execution_log,
            "current_node": self.current_node,
            "steps": self.steps,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


class RunStorage:
    """
    Task-safe in-memory storage for execution runs.

    Also tracks the executor of each active run so it can be cancelled.
    """

    def __init__(self):
        self._runs: Dict[str, StoredRun] = {}
        self._executors: Dict[str, Executor] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        run_id: str,
        workflow: str,
        initial_state: Dict[str, Any],
        executor: Optional[Executor] = None,
    ) -> StoredRun:
        """
        Create a new run record.

        Args:
            run_id: Unique run identifier
            workflow: Name of the workflow being run
            initial_state: Caller input
            executor: The run's executor, kept until the run ends

        Returns:
            The stored run
        """
        async with self._lock:
            stored = StoredRun(
                run_id=run_id,
                workflow=workflow,
                status="pending",
                initial_state=initial_state,
                current_state=dict(initial_state),
            )
            self._runs[run_id] = stored
            if executor is not None:
                self._executors[run_id] = executor
            return stored

    async def get(self, run_id: str) -> Optional[StoredRun]:
        """Get a run by ID."""
        async with self._lock:
            return self._runs.get(run_id)

    async def record_step(self, run_id: str, event: StepEvent) -> Optional[StoredRun]:
        """Record the state after a completed step."""
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            stored.status = "running"
            stored.current_state = event.state
            stored.current_node = event.step.next_node
            stored.steps = event.step.step
            stored.execution_log.append(event.step.to_dict())
            return stored

    async def finish(self, run_id: str, result: ExecutionResult) -> Optional[StoredRun]:
        """Record the outcome of a run and drop its executor."""
        async with self._lock:
            self._executors.pop(run_id, None)
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            stored.status = result.status.value
            stored.final_state = result.final_state
            stored.current_state = result.final_state
            stored.execution_log = [entry.to_dict() for entry in result.execution_log]
            stored.steps = result.steps
            stored.error = result.error.to_dict() if result.error else None
            stored.completed_at = result.completed_at or datetime.now()
            return stored

    async def get_executor(self, run_id: str) -> Optional[Executor]:
        async with self._lock:
            return self._executors.get(run_id)

    async def list_all(self, workflow: Optional[str] = None) -> List[StoredRun]:
        """List all runs, optionally for one workflow."""
        async with self._lock:
            return [
                run for run in self._runs.values()
                if workflow is None or run.workflow == workflow
            ]

    async def delete(self, run_id: str) -> bool:
        """Delete a finished run."""
        async with self._lock:
            if run_id in self._runs and run_id not in self._executors:
                del self._runs[run_id]
                return True
            return False

    def __len__(self) -> int:
        return len(self._runs)
