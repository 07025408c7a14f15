"""
WebSocket Routes for Real-time Execution Streaming.

Provides live updates during workflow execution.
"""

from typing import Any, Dict
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from uuid import uuid4
import asyncio
import logging

from pydantic import ValidationError

from flowstate.api.schemas import WorkflowRunRequest
from flowstate.engine.errors import WorkflowError
from flowstate.engine.executor import ExecutionResult, Executor


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


@router.websocket("/ws/run/{name}")
async def websocket_run(websocket: WebSocket, name: str):
    """
    WebSocket endpoint for real-time workflow execution.

    Connect to this endpoint and send the initial state as JSON.
    You'll receive the state after every step as the workflow executes,
    and may send ``{"action": "cancel"}`` at any point.

    Message format (client -> server):
    ```json
    {"action": "start", "initial_state": {"tweet": "..."}, "max_steps": 50}
    ```

    Message format (server -> client):
    ```json
    {
        "type": "step",
        "step": 1,
        "node": "rate_image_suitability",
        "status": "success",
        "duration_ms": 15.5,
        "route_taken": null,
        "next_node": "check_can_generate_image",
        "state": {...}
    }
    ```
    """
    workflows = websocket.app.state.workflows
    storage = websocket.app.state.run_storage

    graph = workflows.get(name)
    if graph is None:
        await websocket.close(code=4004, reason=f"Workflow '{name}' not found")
        return

    await websocket.accept()
    run_id = str(uuid4())
    listener = None

    try:
        # Wait for start message
        data = await websocket.receive_json()

        if data.get("action") != "start":
            await websocket.send_json({
                "type": "error",
                "error": "Expected 'start' action"
            })
            return

        try:
            request = WorkflowRunRequest.model_validate(data)
        except ValidationError as e:
            await websocket.send_json({
                "type": "error",
                "error": "Invalid start message",
                "detail": jsonable_encoder(e.errors(include_url=False, include_context=False)),
            })
            return

        initial_state = request.initial_state
        unknown = [key for key in initial_state if key not in graph.schema]
        if unknown:
            await websocket.send_json({
                "type": "error",
                "error": f"Unknown state fields: {unknown}",
            })
            return

        async def on_step(event):
            await storage.record_step(run_id, event)

        executor = Executor(
            graph,
            max_steps=request.max_steps,
            run_id=run_id,
            on_step=on_step,
        )
        await storage.create(run_id, name, initial_state, executor)

        await websocket.send_json({
            "type": "started",
            "run_id": run_id,
            "workflow": name,
        })

        listener = asyncio.create_task(_listen_for_cancel(websocket, executor))
        stream = executor.stream(initial_state)

        try:
            async for event in stream:
                await websocket.send_json(jsonable_encoder({
                    "type": "step",
                    "run_id": run_id,
                    "step": event.step.step,
                    "node": event.step.node,
                    "status": event.step.result,
                    "duration_ms": event.step.duration_ms,
                    "updated_fields": event.step.updated_fields,
                    "route_taken": event.step.route_taken,
                    "next_node": event.step.next_node,
                    "state": event.state,
                }))
        except WorkflowError:
            # reported below from the executor's result
            pass
        finally:
            await stream.aclose()
            await storage.finish(run_id, executor.result)

        await websocket.send_json(jsonable_encoder(_final_message(executor.result)))

    except WebSocketDisconnect:
        logger.info(f"Client disconnected from run {run_id}")
    finally:
        if listener is not None:
            listener.cancel()


async def _listen_for_cancel(websocket: WebSocket, executor: Executor) -> None:
    """Cancel the run on a cancel action or when the client goes away."""
    try:
        while True:
            data = await websocket.receive_json()
            if data.get("action") == "cancel":
                executor.cancel()
                return
    except WebSocketDisconnect:
        executor.cancel()


def _final_message(result: ExecutionResult) -> Dict[str, Any]:
    return {
        "type": result.status.value,
        "run_id": result.run_id,
        "status": result.status.value,
        "final_state": result.final_state,
        "steps": result.steps,
        "total_duration_ms": result.total_duration_ms,
        "error": result.error.to_dict() if result.error else None,
    }
