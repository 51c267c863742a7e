"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from eventflow.engine.executor import ExecutionStatus


# ============================================================
# Workflow Schemas
# ============================================================

class NodeInfo(BaseModel):
    """A node and the events it handles."""
    name: str
    consumes: List[str]
    produces: List[str]
    description: Optional[str] = None


class WorkflowInfoResponse(BaseModel):
    """Response with workflow information."""
    name: str
    description: Optional[str]
    node_count: int
    nodes: List[NodeInfo]
    entry_point: Optional[str]
    routes: Dict[str, str] = Field(default_factory=dict, description="Event type -> consuming node")
    created_at: str
    mermaid_diagram: Optional[str] = Field(None, description="Mermaid diagram of the graph")


class WorkflowListResponse(BaseModel):
    """Response listing all registered workflows."""
    workflows: List[WorkflowInfoResponse]
    total: int


# ============================================================
# Run Schemas
# ============================================================

class WorkflowRunRequest(BaseModel):
    """Request to start a workflow run."""
    initial_state: Dict[str, Any] = Field(
        default_factory=dict,
        description="Initial state data for the workflow",
    )
    workflow_id: Optional[str] = Field(
        None,
        description="Key for the run's snapshots (generated when omitted)",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "initial_state": {"topic": "release notes", "max_revisions": 3},
                "workflow_id": None,
            }
        }
    )


class WakeupRequest(BaseModel):
    """Request to resume a suspended run."""
    feedback: Any = Field(None, description="Answer to the pending interrupt")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"feedback": {"approved": False, "notes": "add a summary"}}
        }
    )


class ExecutionLogEntry(BaseModel):
    """A single dispatched event in the execution log."""
    step: int
    node: str
    event: str
    started_at: str
    completed_at: Optional[str]
    duration_ms: Optional[float]
    result: str
    produced: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class WorkflowRunResponse(BaseModel):
    """Outcome of a start or wakeup."""
    workflow_id: str = Field(..., description="Identifier for this run, used to wake it up")
    graph_name: str
    status: ExecutionStatus
    final_state: Dict[str, Any]
    result: Any = None
    interrupt_payload: Any = None
    interrupted_node: Optional[str] = None
    execution_log: List[ExecutionLogEntry]
    started_at: Optional[str]
    completed_at: Optional[str]
    total_duration_ms: Optional[float]
    iterations: int
    resumed: bool = False
    error: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "workflow_id": "5f0c2d1e-7a8b-4c3d-9e0f-1a2b3c4d5e6f",
                "graph_name": "content-review",
                "status": "suspended",
                "final_state": {"topic": "release notes", "draft": "# Release Notes...", "revision": 1},
                "result": None,
                "interrupt_payload": {"question": "Approve this draft?", "revision": 1},
                "interrupted_node": "review",
                "execution_log": [
                    {
                        "step": 1,
                        "node": "draft",
                        "event": "StartEvent",
                        "started_at": "2024-01-01T12:00:00",
                        "completed_at": "2024-01-01T12:00:00",
                        "duration_ms": 1.2,
                        "result": "success",
                        "produced": ["DraftReady"],
                        "error": None,
                    }
                ],
                "started_at": "2024-01-01T12:00:00",
                "completed_at": "2024-01-01T12:00:00",
                "total_duration_ms": 3.4,
                "iterations": 2,
                "resumed": False,
                "error": None,
            }
        }
    )


class RunRecordResponse(BaseModel):
    """Last known outcome of a run, across suspend/resume cycles."""
    workflow_id: str
    graph_name: str
    status: str
    initial_state: Dict[str, Any]
    final_state: Dict[str, Any]
    result: Any = None
    interrupt_payload: Any = None
    interrupted_node: Optional[str] = None
    execution_log: List[ExecutionLogEntry]
    iterations: int
    started_at: str
    updated_at: str
    error: Optional[str] = None


class RunListResponse(BaseModel):
    """Response listing runs."""
    runs: List[RunRecordResponse]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int
