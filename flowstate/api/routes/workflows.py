"""
Workflow API Routes.

Endpoints for inspecting and running the compiled workflows.
"""

from typing import Any, Dict
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from uuid import uuid4
import logging

from flowstate.api.dependencies import get_run_storage, get_workflows, lookup_workflow
from flowstate.api.schemas import (
    ConditionalRoutes,
    ErrorResponse,
    WorkflowInfoResponse,
    WorkflowListResponse,
    WorkflowRunRequest,
    WorkflowRunResponse,
)
from flowstate.engine.executor import ExecutionResult, ExecutionStatus, Executor
from flowstate.engine.graph import CompiledGraph
from flowstate.storage.memory import RunStorage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])


def _workflow_info(name: str, graph: CompiledGraph, with_diagram: bool = True) -> WorkflowInfoResponse:
    definition = graph.to_dict()
    return WorkflowInfoResponse(
        name=name,
        title=graph.name,
        description=graph.description or None,
        steps=list(graph.steps),
        entry_point=graph.entry_point,
        edges=definition["edges"],
        conditional_edges={
            source: ConditionalRoutes(router=edge["router"], routes=edge["routes"])
            for source, edge in definition["conditional_edges"].items()
        },
        state_fields=graph.schema.field_names,
        cycles=definition["cycles"],
        mermaid_diagram=graph.to_mermaid() if with_diagram else None,
    )


def _run_response(workflow: str, result: ExecutionResult) -> WorkflowRunResponse:
    data = result.to_dict()
    return WorkflowRunResponse(
        run_id=data["run_id"],
        workflow=workflow,
        status=result.status,
        final_state=data["final_state"],
        execution_log=data["execution_log"],
        started_at=data["started_at"],
        completed_at=data["completed_at"],
        total_duration_ms=data["total_duration_ms"],
        steps=data["steps"],
        error=data["error"],
    )


@router.get("/", response_model=WorkflowListResponse)
async def list_workflows(
    workflows: Dict[str, CompiledGraph] = Depends(get_workflows),
) -> WorkflowListResponse:
    """List all available workflows."""
    infos = [
        _workflow_info(name, graph, with_diagram=False)
        for name, graph in workflows.items()
    ]
    return WorkflowListResponse(workflows=infos, total=len(infos))


@router.get(
    "/{name}",
    response_model=WorkflowInfoResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_workflow(
    name: str,
    workflows: Dict[str, CompiledGraph] = Depends(get_workflows),
) -> WorkflowInfoResponse:
    """Get a workflow's structure, including a Mermaid diagram."""
    return _workflow_info(name, lookup_workflow(workflows, name))


# ============================================================
# Execution Endpoints
# ============================================================

@router.post(
    "/{name}/run",
    response_model=WorkflowRunResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Initial state names unknown fields"},
        404: {"model": ErrorResponse},
    }
)
async def run_workflow(
    name: str,
    request: WorkflowRunRequest,
    background_tasks: BackgroundTasks,
    workflows: Dict[str, CompiledGraph] = Depends(get_workflows),
    storage: RunStorage = Depends(get_run_storage),
) -> WorkflowRunResponse:
    """
    Execute a workflow with the given initial state.

    A run that fails still returns 200 with ``status: failed`` and a typed
    ``error``. If `async_execution` is True, the workflow runs in the
    background and you can poll GET /runs/{run_id}.
    """
    graph = lookup_workflow(workflows, name)

    unknown = [key for key in request.initial_state if key not in graph.schema]
    if unknown:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown state fields for '{name}': {unknown}. "
                   f"Declared fields: {graph.schema.field_names}"
        )

    run_id = str(uuid4())

    async def on_step(event):
        await storage.record_step(run_id, event)

    executor = Executor(graph, max_steps=request.max_steps, run_id=run_id, on_step=on_step)
    await storage.create(run_id, name, request.initial_state, executor)

    if request.async_execution:
        background_tasks.add_task(
            _execute_in_background,
            executor,
            storage,
            request.initial_state,
        )

        return WorkflowRunResponse(
            run_id=run_id,
            workflow=name,
            status=ExecutionStatus.PENDING,
            final_state={},
            execution_log=[],
            started_at=None,
            completed_at=None,
            total_duration_ms=None,
            steps=0,
        )

    try:
        result = await executor.run(request.initial_state)
    finally:
        await storage.finish(run_id, executor.result)

    logger.info(f"Run {run_id} of '{name}' finished: {result.status.value}")
    return _run_response(name, result)


async def _execute_in_background(
    executor: Executor,
    storage: RunStorage,
    initial_state: Dict[str, Any],
) -> None:
    """Execute a run in the background and record its outcome."""
    try:
        result = await executor.run(initial_state)
    finally:
        await storage.finish(executor.run_id, executor.result)
    logger.info(f"Background run {executor.run_id} finished: {result.status.value}")
