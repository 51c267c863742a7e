"""
Storage package - workflow registry, run records and snapshot stores.
"""

from eventflow.storage.base import SnapshotStore
from eventflow.storage.file import FileSnapshotStore
from eventflow.storage.memory import (
    InMemorySnapshotStore,
    RunStorage,
    StoredRun,
    StoredWorkflow,
    WorkflowStorage,
    run_storage,
    workflow_storage,
)
from eventflow.storage.sql import SqlSnapshotStore


def create_snapshot_store(settings) -> SnapshotStore:
    """Build the snapshot store named by ``settings.PERSISTENCE_BACKEND``."""
    backend = settings.PERSISTENCE_BACKEND
    if backend == "memory":
        return InMemorySnapshotStore()
    if backend == "file":
        return FileSnapshotStore(settings.SNAPSHOT_DIR)
    if backend == "sql":
        return SqlSnapshotStore(settings.DATABASE_URL, table_name=settings.SNAPSHOT_TABLE)
    raise ValueError(f"Unknown persistence backend: {backend}")


__all__ = [
    "SnapshotStore",
    "InMemorySnapshotStore",
    "FileSnapshotStore",
    "SqlSnapshotStore",
    "create_snapshot_store",
    "WorkflowStorage",
    "RunStorage",
    "StoredWorkflow",
    "StoredRun",
    "workflow_storage",
    "run_storage",
]
