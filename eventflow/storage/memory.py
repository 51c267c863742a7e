"""
In-Memory Storage for Workflow Engine.

Provides asyncio-safe storage for registered workflows, run records and
interrupt snapshots. Snapshots are kept as serialized bytes so a stored
snapshot never shares objects with a live run.
"""

from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
import asyncio
import logging
from dataclasses import dataclass, field

from eventflow.engine.errors import SnapshotNotFoundError
from eventflow.engine.graph import Graph
from eventflow.engine.snapshot import InterruptSnapshot
from eventflow.storage.base import SnapshotStore


logger = logging.getLogger(__name__)


@dataclass
class StoredWorkflow:
    """A registered workflow: a factory that builds a fresh graph."""
    name: str
    factory: Callable[[], Graph]
    description: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    def build(self) -> Graph:
        return self.factory().build()


@dataclass
class StoredRun:
    """The last known outcome of a workflow run."""
    workflow_id: str
    graph_name: str
    status: str
    initial_state: Dict[str, Any]
    final_state: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    interrupt_payload: Any = None
    interrupted_node: Optional[str] = None
    execution_log: List[Dict[str, Any]] = field(default_factory=list)
    iterations: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "graph_name": self.graph_name,
            "status": self.status,
            "initial_state": self.initial_state,
            "final_state": self.final_state,
            "result": self.result,
            "interrupt_payload": self.interrupt_payload,
            "interrupted_node": self.interrupted_node,
            "execution_log": self.execution_log,
            "iterations": self.iterations,
            "started_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "error": self.error,
        }


class WorkflowStorage:
    """
    Registry of workflows that can be started by name.

    Stores graph factories rather than graphs so every run gets its own
    freshly built graph.
    """

    def __init__(self):
        self._workflows: Dict[str, StoredWorkflow] = {}
        self._lock = asyncio.Lock()

    async def register(
        self,
        name: str,
        factory: Callable[[], Graph],
        description: str = "",
    ) -> StoredWorkflow:
        """
        Register a workflow factory under a name.

        The factory is built once here so an invalid graph is rejected at
        registration.
        """
        factory().build()
        async with self._lock:
            stored = StoredWorkflow(name=name, factory=factory, description=description)
            self._workflows[name] = stored
            return stored

    async def get(self, name: str) -> Optional[StoredWorkflow]:
        async with self._lock:
            return self._workflows.get(name)

    async def delete(self, name: str) -> bool:
        async with self._lock:
            return self._workflows.pop(name, None) is not None

    async def list_all(self) -> List[StoredWorkflow]:
        async with self._lock:
            return list(self._workflows.values())

    def __len__(self) -> int:
        return len(self._workflows)


class RunStorage:
    """
    In-memory records of workflow runs for the API.

    A run keeps its record across suspend/resume cycles because the record
    is keyed by workflow id.
    """

    def __init__(self):
        self._runs: Dict[str, StoredRun] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        workflow_id: str,
        graph_name: str,
        initial_state: Dict[str, Any],
    ) -> StoredRun:
        """
        Create a new run record.

        Args:
            workflow_id: Unique workflow identifier
            graph_name: Name of the workflow being run
            initial_state: Initial state data

        Returns:
            The stored run
        """
        async with self._lock:
            stored = StoredRun(
                workflow_id=workflow_id,
                graph_name=graph_name,
                status="running",
                initial_state=initial_state,
            )
            self._runs[workflow_id] = stored
            return stored

    async def get(self, workflow_id: str) -> Optional[StoredRun]:
        async with self._lock:
            return self._runs.get(workflow_id)

    async def record_result(self, workflow_id: str, result: Dict[str, Any]) -> Optional[StoredRun]:
        """
        Store the outcome of a start or wakeup (an ``ExecutionResult.to_dict()``).

        The execution log of a resumed run is appended to the previous one.
        """
        async with self._lock:
            stored = self._runs.get(workflow_id)
            if stored is None:
                return None
            stored.status = result["status"]
            stored.final_state = result.get("final_state") or {}
            stored.result = result.get("result")
            stored.interrupt_payload = result.get("interrupt_payload")
            stored.interrupted_node = result.get("interrupted_node")
            stored.execution_log.extend(result.get("execution_log", []))
            stored.iterations = result.get("iterations", stored.iterations)
            stored.error = result.get("error")
            stored.updated_at = datetime.now()
            return stored

    async def fail(self, workflow_id: str, error: str) -> Optional[StoredRun]:
        """Mark a run as failed."""
        async with self._lock:
            stored = self._runs.get(workflow_id)
            if stored is None:
                return None
            stored.status = "failed"
            stored.error = error
            stored.updated_at = datetime.now()
            return stored

    async def list_all(self) -> List[StoredRun]:
        async with self._lock:
            return list(self._runs.values())

    async def list_by_graph(self, graph_name: str) -> List[StoredRun]:
        async with self._lock:
            return [r for r in self._runs.values() if r.graph_name == graph_name]

    def __len__(self) -> int:
        return len(self._runs)


class InMemorySnapshotStore(SnapshotStore):
    """Transient snapshot store living in the process."""

    def __init__(self):
        self._snapshots: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def save(self, workflow_id: str, snapshot: InterruptSnapshot) -> None:
        async with self._lock:
            self._snapshots[workflow_id] = snapshot.to_bytes()
        logger.debug(f"Saved snapshot for workflow {workflow_id}")

    async def load(self, workflow_id: str) -> InterruptSnapshot:
        async with self._lock:
            data = self._snapshots.get(workflow_id)
        if data is None:
            raise SnapshotNotFoundError(workflow_id)
        return InterruptSnapshot.from_bytes(data)

    async def delete(self, workflow_id: str) -> bool:
        async with self._lock:
            return self._snapshots.pop(workflow_id, None) is not None

    async def exists(self, workflow_id: str) -> bool:
        async with self._lock:
            return workflow_id in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)


# Global storage instances
workflow_storage = WorkflowStorage()
run_storage = RunStorage()
