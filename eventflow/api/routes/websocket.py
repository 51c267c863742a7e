"""
WebSocket Routes for Real-time Execution Streaming.

Every event a run produces is pushed to the client as it happens.
"""

from typing import Any, Dict
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import logging

from eventflow.api.routes.workflows import get_snapshot_store, record_run
from eventflow.engine.errors import SnapshotMismatchError, SnapshotNotFoundError
from eventflow.engine.events import Event
from eventflow.engine.executor import ExecutionHandle, WorkflowEngine
from eventflow.storage.memory import run_storage, workflow_storage


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


def _event_message(event: Event) -> Dict[str, Any]:
    return {
        "type": "event",
        "event_type": event.event_type(),
        "payload": event.to_payload(),
    }


@router.websocket("/ws/run/{name}")
async def websocket_run(websocket: WebSocket, name: str):
    """
    WebSocket endpoint for real-time workflow execution.

    Connect, then send one of:
    ```json
    {"action": "start", "initial_state": {"topic": "..."}, "workflow_id": null}
    {"action": "wakeup", "workflow_id": "...", "feedback": {"approved": true}}
    ```

    The server answers with a ``started`` message, one ``event`` message
    per produced event, and a final message whose ``type`` is the run
    status (``completed``, ``suspended`` or ``failed``).
    """
    stored = await workflow_storage.get(name)
    if not stored:
        await websocket.close(code=4004, reason=f"Workflow '{name}' not found")
        return

    await websocket.accept()
    engine = WorkflowEngine(stored.build(), store=get_snapshot_store(websocket.app))
    handle = None

    try:
        data = await websocket.receive_json()
        action = data.get("action")

        if action == "start":
            initial_state = data.get("initial_state") or {}
            handle = engine.start(initial_state, workflow_id=data.get("workflow_id"))
        elif action == "wakeup" and data.get("workflow_id"):
            initial_state = None
            handle = engine.wakeup(data["workflow_id"], data.get("feedback"))
        else:
            await websocket.send_json({
                "type": "error",
                "error": "Expected 'start' or 'wakeup' (with workflow_id) action",
            })
            return

        await websocket.send_json({
            "type": "started",
            "action": action,
            "workflow_id": handle.workflow_id,
            "workflow": name,
        })

        async for event in handle.stream_events():
            await websocket.send_json(_event_message(event))

        result = await handle
        await record_run(result, initial_state)
        await websocket.send_json({"type": result.status.value, **result.to_dict()})

    except WebSocketDisconnect:
        logger.info(f"Client disconnected from workflow {name}")
        if handle is not None:
            await _finish_detached(handle)
    except (SnapshotNotFoundError, SnapshotMismatchError) as e:
        await websocket.send_json({"type": "error", "error": str(e)})
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
        if handle is not None:
            await run_storage.fail(handle.workflow_id, str(e))
        await websocket.send_json({"type": "error", "error": str(e)})


async def _finish_detached(handle: ExecutionHandle) -> None:
    """Let a run whose client went away finish, and record its outcome."""
    handle.stream.detach()
    try:
        result = await handle
    except Exception as e:
        logger.error(f"Detached run {handle.workflow_id} failed: {e}")
        await run_storage.fail(handle.workflow_id, str(e))
        return
    await record_run(result)
