"""
Run API Routes.

Endpoints for polling and cancelling runs.
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
import logging

from flowstate.api.dependencies import get_run_storage
from flowstate.api.schemas import (
    CancelResponse,
    ErrorResponse,
    RunListResponse,
    RunStateResponse,
)
from flowstate.storage.memory import RunStorage, StoredRun


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["Runs"])


def _state_response(stored: StoredRun) -> RunStateResponse:
    data = stored.to_dict()
    return RunStateResponse(
        run_id=data["run_id"],
        workflow=data["workflow"],
        status=data["status"],
        current_node=data["current_node"],
        current_state=data["current_state"],
        steps=data["steps"],
        execution_log=data["execution_log"],
        started_at=data["started_at"],
        completed_at=data["completed_at"],
        error=data["error"],
    )


@router.get("/", response_model=RunListResponse)
async def list_runs(
    workflow: Optional[str] = None,
    storage: RunStorage = Depends(get_run_storage),
) -> RunListResponse:
    """List runs, optionally filtered by workflow."""
    runs = await storage.list_all(workflow)
    return RunListResponse(runs=[_state_response(run) for run in runs], total=len(runs))


@router.get(
    "/{run_id}",
    response_model=RunStateResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(
    run_id: str,
    storage: RunStorage = Depends(get_run_storage),
) -> RunStateResponse:
    """Get the current state of a run."""
    stored = await storage.get(run_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return _state_response(stored)


@router.post(
    "/{run_id}/cancel",
    response_model=CancelResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_run(
    run_id: str,
    storage: RunStorage = Depends(get_run_storage),
) -> CancelResponse:
    """Cancel a run before its next step starts."""
    stored = await storage.get(run_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")

    executor = await storage.get_executor(run_id)
    if executor is None:
        raise HTTPException(
            status_code=409,
            detail=f"Run '{run_id}' has already finished with status '{stored.status}'"
        )

    executor.cancel()
    logger.info(f"Cancellation requested for run: {run_id}")
    return CancelResponse(run_id=run_id, message="Cancellation requested")


@router.delete(
    "/{run_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_run(
    run_id: str,
    storage: RunStorage = Depends(get_run_storage),
):
    """Delete a finished run."""
    deleted = await storage.delete(run_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"No finished run '{run_id}'")
