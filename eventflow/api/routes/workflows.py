"""
Workflow API Routes.

Endpoints for listing registered workflows, starting runs and waking up
suspended runs.
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, FastAPI, HTTPException, Request
import logging

from eventflow.api.schemas import (
    ErrorResponse,
    NodeInfo,
    RunListResponse,
    RunRecordResponse,
    WakeupRequest,
    WorkflowInfoResponse,
    WorkflowListResponse,
    WorkflowRunRequest,
    WorkflowRunResponse,
)
from eventflow.config import settings
from eventflow.engine.errors import SnapshotMismatchError, SnapshotNotFoundError
from eventflow.engine.executor import ExecutionResult, WorkflowEngine
from eventflow.storage import SnapshotStore, create_snapshot_store
from eventflow.storage.memory import StoredWorkflow, run_storage, workflow_storage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])


# ============================================================
# Helpers
# ============================================================

def get_snapshot_store(app: FastAPI) -> SnapshotStore:
    """The application's snapshot store, created from settings on first use."""
    store = getattr(app.state, "snapshot_store", None)
    if store is None:
        store = create_snapshot_store(settings)
        app.state.snapshot_store = store
    return store


async def get_engine(app: FastAPI, name: str) -> WorkflowEngine:
    """Build an engine over a fresh graph of the named workflow."""
    stored = await workflow_storage.get(name)
    if stored is None:
        raise HTTPException(status_code=404, detail=f"Workflow '{name}' not found")
    return WorkflowEngine(stored.build(), store=get_snapshot_store(app))


async def record_run(result: ExecutionResult, initial_state: Optional[Dict[str, Any]] = None):
    """Create or update the run record for a start/wakeup outcome."""
    if await run_storage.get(result.workflow_id) is None:
        await run_storage.create(result.workflow_id, result.graph_name, initial_state or {})
    return await run_storage.record_result(result.workflow_id, result.to_dict())


def _workflow_info(stored: StoredWorkflow, with_diagram: bool = True) -> WorkflowInfoResponse:
    graph = stored.build()
    return WorkflowInfoResponse(
        name=stored.name,
        description=stored.description or graph.description,
        node_count=len(graph.nodes),
        nodes=[
            NodeInfo(
                name=n.name,
                consumes=[t.event_type() for t in n.consumes],
                produces=[t.event_type() for t in n.produces],
                description=n.description,
            )
            for n in graph.nodes.values()
        ],
        entry_point=graph.entry_point,
        routes=graph.routes(),
        created_at=stored.created_at.isoformat(),
        mermaid_diagram=graph.to_mermaid() if with_diagram else None,
    )


def _result_to_response(result: ExecutionResult) -> WorkflowRunResponse:
    return WorkflowRunResponse(**result.to_dict())


# ============================================================
# Workflow Endpoints
# ============================================================

@router.get(
    "/",
    response_model=WorkflowListResponse,
)
async def list_workflows() -> WorkflowListResponse:
    """List all registered workflows."""
    workflows = await workflow_storage.list_all()
    infos = [_workflow_info(stored, with_diagram=False) for stored in workflows]
    return WorkflowListResponse(workflows=infos, total=len(infos))


@router.get(
    "/runs/{workflow_id}",
    response_model=RunRecordResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(workflow_id: str) -> RunRecordResponse:
    """Get the last known outcome of a run."""
    stored = await run_storage.get(workflow_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Run '{workflow_id}' not found")
    return RunRecordResponse(**stored.to_dict())


@router.get(
    "/{name}",
    response_model=WorkflowInfoResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_workflow(name: str) -> WorkflowInfoResponse:
    """Get information about a workflow, including its routing table."""
    stored = await workflow_storage.get(name)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Workflow '{name}' not found")
    return _workflow_info(stored)


@router.get(
    "/{name}/runs",
    response_model=RunListResponse,
)
async def list_runs(name: str) -> RunListResponse:
    """List the runs of a workflow."""
    runs = await run_storage.list_by_graph(name)
    return RunListResponse(
        runs=[RunRecordResponse(**r.to_dict()) for r in runs],
        total=len(runs),
    )


# ============================================================
# Execution Endpoints
# ============================================================

@router.post(
    "/{name}/run",
    response_model=WorkflowRunResponse,
    responses={
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse, "description": "A node raised"},
    },
)
async def run_workflow(name: str, body: WorkflowRunRequest, request: Request) -> WorkflowRunResponse:
    """
    Start a workflow and run it until it completes, fails or suspends.

    A suspended run returns its ``workflow_id`` and ``interrupt_payload``;
    answer it with ``POST /workflows/{name}/runs/{workflow_id}/wakeup``.
    """
    engine = await get_engine(request.app, name)

    try:
        result = await engine.run(body.initial_state, workflow_id=body.workflow_id)
    except Exception as e:
        logger.exception(f"Execution failed: {e}")
        if body.workflow_id:
            await run_storage.fail(body.workflow_id, str(e))
        raise HTTPException(status_code=500, detail=str(e))

    await record_run(result, body.initial_state)
    return _result_to_response(result)


@router.post(
    "/{name}/runs/{workflow_id}/wakeup",
    response_model=WorkflowRunResponse,
    responses={
        404: {"model": ErrorResponse, "description": "No suspended run under this id"},
        409: {"model": ErrorResponse, "description": "Snapshot does not fit the workflow"},
        500: {"model": ErrorResponse, "description": "A node raised"},
    },
)
async def wakeup_workflow(
    name: str,
    workflow_id: str,
    body: WakeupRequest,
    request: Request,
) -> WorkflowRunResponse:
    """Resume a suspended run with the reviewer's feedback."""
    engine = await get_engine(request.app, name)

    try:
        result = await engine.resume(workflow_id, body.feedback)
    except SnapshotNotFoundError:
        raise HTTPException(
            status_code=404,
            detail=f"No suspended run '{workflow_id}' for workflow '{name}'",
        )
    except SnapshotMismatchError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.exception(f"Execution failed: {e}")
        await run_storage.fail(workflow_id, str(e))
        raise HTTPException(status_code=500, detail=str(e))

    await record_run(result)
    return _result_to_response(result)
