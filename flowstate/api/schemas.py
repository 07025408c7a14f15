"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from flowstate.engine.executor import ExecutionStatus


# ============================================================
# Workflow Schemas
# ============================================================

class ConditionalRoutes(BaseModel):
    """Routes of a conditional edge."""
    router: str = Field(..., description="Name of the router function")
    routes: Dict[str, str] = Field(..., description="Mapping of labels to target steps")


class WorkflowInfoResponse(BaseModel):
    """Structure of a compiled workflow."""
    name: str = Field(..., description="Key the workflow is registered under")
    title: str = Field(..., description="Human-readable workflow name")
    description: Optional[str] = None
    steps: List[str]
    entry_point: str
    edges: Dict[str, str]
    conditional_edges: Dict[str, ConditionalRoutes]
    state_fields: List[str]
    cycles: List[List[str]] = Field(default_factory=list)
    mermaid_diagram: Optional[str] = Field(None, description="Mermaid diagram of the graph")


class WorkflowListResponse(BaseModel):
    """Response listing all workflows."""
    workflows: List[WorkflowInfoResponse]
    total: int


# ============================================================
# Run Schemas
# ============================================================

class WorkflowRunRequest(BaseModel):
    """Request to run a workflow."""
    initial_state: Dict[str, Any] = Field(
        default_factory=dict,
        description="Initial state, merged over the workflow's defaults"
    )
    max_steps: Optional[int] = Field(
        None,
        ge=1,
        le=10000,
        description="Step ceiling for this run (defaults to MAX_STEPS)"
    )
    async_execution: bool = Field(
        False,
        description="If true, run in background and return immediately"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "initial_state": {
                    "json": "{\"games\": [{\"id\": 1, \"home\": \"A\", \"away\": \"B\"}]}",
                    "context": "Who played in the last game?"
                },
                "max_steps": 50,
                "async_execution": False
            }
        }


class ExecutionLogEntry(BaseModel):
    """A single entry in the execution log."""
    step: int
    node: str
    started_at: str
    completed_at: Optional[str]
    duration_ms: Optional[float]
    result: str
    error: Optional[str]
    updated_fields: List[str] = Field(default_factory=list)
    route_taken: Optional[str]
    next_node: Optional[str]


class RunError(BaseModel):
    """The error a failed run ended with."""
    type: str
    message: str
    step: Optional[str] = None
    cause: Optional[str] = None
    label: Optional[str] = None
    errors: Optional[List[str]] = None


class WorkflowRunResponse(BaseModel):
    """Response after running a workflow."""
    run_id: str = Field(..., description="Unique identifier for this run")
    workflow: str
    status: ExecutionStatus
    final_state: Dict[str, Any]
    execution_log: List[ExecutionLogEntry]
    started_at: Optional[str]
    completed_at: Optional[str]
    total_duration_ms: Optional[float]
    steps: int
    error: Optional[RunError] = None


class RunStateResponse(BaseModel):
    """Response with current run state."""
    run_id: str
    workflow: str
    status: ExecutionStatus
    current_node: Optional[str]
    current_state: Dict[str, Any]
    steps: int
    execution_log: List[ExecutionLogEntry]
    started_at: str
    completed_at: Optional[str]
    error: Optional[RunError]


class RunListResponse(BaseModel):
    """Response listing runs."""
    runs: List[RunStateResponse]
    total: int


class CancelResponse(BaseModel):
    run_id: str
    message: str


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int
