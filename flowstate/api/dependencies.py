"""
Request dependencies shared by the API routes.
"""

from typing import Dict

from fastapi import HTTPException, Request

from flowstate.engine.graph import CompiledGraph
from flowstate.storage.memory import RunStorage


def get_workflows(request: Request) -> Dict[str, CompiledGraph]:
    """Compiled workflows registered on the application."""
    return request.app.state.workflows


def get_run_storage(request: Request) -> RunStorage:
    return request.app.state.run_storage


def lookup_workflow(workflows: Dict[str, CompiledGraph], name: str) -> CompiledGraph:
    graph = workflows.get(name)
    if graph is None:
        raise HTTPException(
            status_code=404,
            detail=f"Workflow '{name}' not found. Available: {sorted(workflows)}"
        )
    return graph
