"""
Tests for snapshot stores and the in-memory registries.
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from eventflow.config import Settings
from eventflow.engine.errors import GraphValidationError, PersistenceError, SnapshotNotFoundError
from eventflow.engine.events import StartEvent, StopEvent
from eventflow.engine.executor import ExecutionStatus, WorkflowEngine
from eventflow.engine.graph import Graph
from eventflow.engine.node import Node
from eventflow.engine.snapshot import InterruptSnapshot, SerializedEvent
from eventflow.storage import (
    FileSnapshotStore,
    InMemorySnapshotStore,
    SqlSnapshotStore,
    create_snapshot_store,
)
from eventflow.storage.base import SnapshotStore
from eventflow.storage.memory import RunStorage, WorkflowStorage


def make_snapshot(workflow_id: str = "wf-1", **overrides) -> InterruptSnapshot:
    fields = dict(
        workflow_id=workflow_id,
        graph_name="approval",
        node_name="approve",
        event=SerializedEvent(type="Ping", payload={"n": 1}),
        state={"draft": "hello", "count": 2},
        checkpoints={"expensive": [1, 2, 3]},
        resolved_interrupts=["first answer"],
        interrupt_index=1,
        interrupt_payload={"question": "Approve?"},
        pending_events=[SerializedEvent(type="Pong", payload={"n": 2})],
        iterations=4,
    )
    fields.update(overrides)
    return InterruptSnapshot(**fields)


def ask_graph() -> Graph:
    def ask(event, state, ctx):
        state.set("asked", True)
        return StopEvent(result=ctx.interrupt("approve?"))

    graph = Graph(name="ask")
    graph.register(Node(name="ask", consumes=StartEvent, produces=StopEvent, handler=ask))
    return graph


class UnavailableStore(SnapshotStore):
    """A backend that is down: every operation fails."""

    def __init__(self):
        self.saves = 0
        self.loads = 0

    async def save(self, workflow_id, snapshot):
        self.saves += 1
        raise PersistenceError(f"cannot save '{workflow_id}'")

    async def load(self, workflow_id):
        self.loads += 1
        raise PersistenceError(f"cannot load '{workflow_id}'")

    async def delete(self, workflow_id):
        raise PersistenceError(f"cannot delete '{workflow_id}'")


@pytest_asyncio.fixture(params=["memory", "file", "sql"])
async def store(request, tmp_path):
    """Every snapshot backend behind the same port."""
    if request.param == "memory":
        backend = InMemorySnapshotStore()
    elif request.param == "file":
        backend = FileSnapshotStore(tmp_path / "snapshots")
    else:
        backend = SqlSnapshotStore(f"sqlite+aiosqlite:///{tmp_path / 'snapshots.db'}")
    yield backend
    await backend.close()


# ============================================================
# Snapshot Store Contract
# ============================================================

class TestSnapshotStores:
    """The same behavior for memory, file and SQL backends."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, store):
        snapshot = make_snapshot()
        await store.save("wf-1", snapshot)

        loaded = await store.load("wf-1")
        assert loaded.model_dump() == snapshot.model_dump()
        assert loaded.pending_events[0].type == "Pong"

    @pytest.mark.asyncio
    async def test_load_missing(self, store):
        with pytest.raises(SnapshotNotFoundError) as exc_info:
            await store.load("missing")
        assert exc_info.value.workflow_id == "missing"

    @pytest.mark.asyncio
    async def test_save_replaces_previous(self, store):
        await store.save("wf-1", make_snapshot(iterations=1))
        await store.save("wf-1", make_snapshot(iterations=7))

        loaded = await store.load("wf-1")
        assert loaded.iterations == 7

    @pytest.mark.asyncio
    async def test_delete_and_exists(self, store):
        await store.save("wf-1", make_snapshot())
        assert await store.exists("wf-1")

        assert await store.delete("wf-1") is True
        assert await store.delete("wf-1") is False
        assert not await store.exists("wf-1")

    @pytest.mark.asyncio
    async def test_ids_are_independent(self, store):
        await store.save("a", make_snapshot("a", node_name="first"))
        await store.save("b", make_snapshot("b", node_name="second"))

        assert (await store.load("a")).node_name == "first"
        assert (await store.load("b")).node_name == "second"

    @pytest.mark.asyncio
    async def test_suspend_and_resume_through_store(self, store):
        engine = WorkflowEngine(ask_graph(), store=store)
        suspended = await engine.run(workflow_id="through-store")
        assert suspended.is_suspended
        assert await store.exists("through-store")

        resumed = await WorkflowEngine(ask_graph(), store=store).resume("through-store", "yes")
        assert resumed.result == "yes"
        assert resumed.final_state["asked"] is True
        assert not await store.exists("through-store")


class TestStoreFailures:
    """Store errors reach the caller unchanged."""

    @pytest.mark.asyncio
    async def test_save_failure_propagates_from_run(self):
        store = UnavailableStore()
        engine = WorkflowEngine(ask_graph(), store=store)

        with pytest.raises(PersistenceError, match="cannot save 'down'"):
            await engine.run(workflow_id="down")
        assert store.saves == 1

    @pytest.mark.asyncio
    async def test_save_failure_marks_handle_failed(self):
        store = UnavailableStore()
        handle = WorkflowEngine(ask_graph(), store=store).start(workflow_id="down")

        with pytest.raises(PersistenceError):
            await handle
        assert handle.status == ExecutionStatus.FAILED
        assert store.saves == 1

    @pytest.mark.asyncio
    async def test_load_failure_propagates_from_resume(self):
        store = UnavailableStore()
        engine = WorkflowEngine(ask_graph(), store=store)

        with pytest.raises(PersistenceError, match="cannot load 'down'") as exc_info:
            await engine.resume("down", "yes")
        assert not isinstance(exc_info.value, SnapshotNotFoundError)
        assert store.loads == 1
        assert store.saves == 0


# ============================================================
# Backend Specifics
# ============================================================

class TestFileSnapshotStore:
    """Tests for the file backend."""

    def test_safe_ids_map_to_readable_names(self, tmp_path):
        store = FileSnapshotStore(tmp_path)
        assert store.path_for("run-42").name == "workflow_run-42.json"

    def test_unsafe_ids_are_hashed(self, tmp_path):
        store = FileSnapshotStore(tmp_path)
        path = store.path_for("../../etc/passwd")

        assert path.parent == tmp_path
        assert ".." not in path.name
        assert store.path_for(".hidden").name != "workflow_.hidden.json"

    @pytest.mark.asyncio
    async def test_writes_one_file_per_id(self, tmp_path):
        store = FileSnapshotStore(tmp_path, prefix="snap_")
        await store.save("one", make_snapshot("one"))
        await store.save("two", make_snapshot("two"))

        names = sorted(p.name for p in tmp_path.iterdir())
        assert names == ["snap_one.json", "snap_two.json"]

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path):
        await FileSnapshotStore(tmp_path).save("wf", make_snapshot("wf"))
        loaded = await FileSnapshotStore(tmp_path).load("wf")
        assert loaded.workflow_id == "wf"


class TestSqlSnapshotStore:
    """Tests for the SQL backend."""

    @pytest_asyncio.fixture
    async def engine(self):
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        yield engine
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_shared_engine_and_custom_table(self, engine):
        store = SqlSnapshotStore(engine, table_name="custom_snapshots")
        await store.init_schema()
        await store.save("wf", make_snapshot("wf"))

        assert store.table.name == "custom_snapshots"
        assert (await store.load("wf")).node_name == "approve"

        # the engine belongs to the caller
        await store.close()
        assert (await store.load("wf")).workflow_id == "wf"

    @pytest.mark.asyncio
    async def test_created_at_kept_on_overwrite(self, engine):
        store = SqlSnapshotStore(engine)
        await store.save("wf", make_snapshot("wf", iterations=1))
        created, _ = await store.timestamps("wf")

        await store.save("wf", make_snapshot("wf", iterations=2))
        created_again, updated = await store.timestamps("wf")

        assert created_again == created
        assert updated >= created
        assert await store.timestamps("missing") is None

    def test_postgres_urls_use_asyncpg(self):
        from eventflow.storage.sql import normalize_database_url

        assert normalize_database_url("postgres://u@h/db") == "postgresql+asyncpg://u@h/db"
        assert normalize_database_url("postgresql://u@h/db") == "postgresql+asyncpg://u@h/db"
        assert normalize_database_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"


class TestCreateSnapshotStore:
    """Tests for choosing a backend from settings."""

    def test_memory(self):
        settings = Settings(PERSISTENCE_BACKEND="memory")
        assert isinstance(create_snapshot_store(settings), InMemorySnapshotStore)

    def test_file(self, tmp_path):
        settings = Settings(PERSISTENCE_BACKEND="file", SNAPSHOT_DIR=str(tmp_path / "snaps"))
        store = create_snapshot_store(settings)

        assert isinstance(store, FileSnapshotStore)
        assert store.directory == tmp_path / "snaps"

    @pytest.mark.asyncio
    async def test_sql(self, tmp_path):
        settings = Settings(
            PERSISTENCE_BACKEND="sql",
            DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'app.db'}",
            SNAPSHOT_TABLE="app_snapshots",
        )
        store = create_snapshot_store(settings)

        assert isinstance(store, SqlSnapshotStore)
        assert store.table.name == "app_snapshots"
        await store.close()


# ============================================================
# Registries
# ============================================================

class TestWorkflowStorage:
    """Tests for the workflow registry."""

    @pytest.mark.asyncio
    async def test_register_and_get(self):
        storage = WorkflowStorage()
        await storage.register("ask", ask_graph, description="Ask once")

        stored = await storage.get("ask")
        assert stored.description == "Ask once"
        assert stored.build().is_built
        assert stored.build() is not stored.build()
        assert len(storage) == 1

    @pytest.mark.asyncio
    async def test_register_rejects_invalid_graph(self):
        storage = WorkflowStorage()
        with pytest.raises(GraphValidationError):
            await storage.register("empty", lambda: Graph(name="empty"))
        assert await storage.get("empty") is None

    @pytest.mark.asyncio
    async def test_delete(self):
        storage = WorkflowStorage()
        await storage.register("ask", ask_graph)
        assert await storage.delete("ask")
        assert not await storage.delete("ask")
        assert await storage.list_all() == []


class TestRunStorage:
    """Tests for run records."""

    @pytest.mark.asyncio
    async def test_record_results_across_resume(self):
        runs = RunStorage()
        engine = WorkflowEngine(ask_graph())

        suspended = await engine.run({"topic": "x"}, workflow_id="run-1")
        await runs.create("run-1", "ask", {"topic": "x"})
        stored = await runs.record_result("run-1", suspended.to_dict())
        assert stored.status == "suspended"
        assert stored.interrupt_payload == "approve?"

        completed = await engine.resume("run-1", "ok")
        stored = await runs.record_result("run-1", completed.to_dict())
        assert stored.status == "completed"
        assert stored.result == "ok"
        assert [entry["node"] for entry in stored.execution_log] == ["ask", "ask"]

        assert [r.workflow_id for r in await runs.list_by_graph("ask")] == ["run-1"]

    @pytest.mark.asyncio
    async def test_unknown_run(self):
        runs = RunStorage()
        assert await runs.record_result("nope", {"status": "completed"}) is None
        assert await runs.fail("nope", "error") is None

    @pytest.mark.asyncio
    async def test_fail(self):
        runs = RunStorage()
        await runs.create("run-1", "ask", {})
        stored = await runs.fail("run-1", "boom")
        assert stored.status == "failed"
        assert stored.error == "boom"
        assert stored.to_dict()["error"] == "boom"
