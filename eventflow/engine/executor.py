"""
Async Workflow Executor.

The engine drives a built graph: it pops the next pending event, hands it
to the node that consumes it, and queues whatever that node produces,
one event at a time, until a StopEvent ends the run. A node may suspend
the run through ``ctx.interrupt``; the engine then saves a snapshot and
hands control back to the caller, who later resumes it with ``wakeup``.

Loops are allowed and there is no built-in cycle detection. Guarding
against runaway loops is the caller's job; ``max_iterations`` is an
optional ceiling on the number of dispatched events.

At most one execution per workflow id may be in flight at a time.
Serializing ``wakeup`` calls for the same id is the caller's
responsibility; the engine does not lock.
"""

from typing import TYPE_CHECKING, Any, AsyncIterator, Deque, Dict, List, Optional
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio
import logging
import time
import uuid

from eventflow.config import settings
from eventflow.engine.context import NodeContext
from eventflow.engine.errors import (
    DeadEndError,
    MaxIterationsExceededError,
    RoutingError,
    SnapshotMismatchError,
    UndeclaredEventError,
    WorkflowError,
    WorkflowInterrupt,
)
from eventflow.engine.events import Event, StartEvent, StopEvent
from eventflow.engine.graph import Graph
from eventflow.engine.node import Node
from eventflow.engine.snapshot import InterruptSnapshot, SerializedEvent
from eventflow.engine.state import WorkflowState
from eventflow.engine.stream import EventStream

if TYPE_CHECKING:
    from eventflow.storage.base import SnapshotStore


logger = logging.getLogger(__name__)

_DEFAULT = object()


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ExecutionStep:
    """A single dispatched event in the execution log."""
    step: int
    node: str
    event: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    result: str = "success"
    produced: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def finish(self, result: str, started: float, error: Optional[str] = None) -> None:
        self.completed_at = datetime.now()
        self.duration_ms = (time.perf_counter() - started) * 1000
        self.result = result
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "node": self.node,
            "event": self.event,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "result": self.result,
            "produced": self.produced,
            "error": self.error,
        }


@dataclass
class ExecutionResult:
    """
    Outcome of ``start`` or ``wakeup``.

    Exactly one of three shapes, told apart by ``status``:

    - COMPLETED: ``final_state`` and ``result`` (the StopEvent's result)
    - SUSPENDED: ``workflow_id`` and ``interrupt_payload``; resume with
      ``engine.wakeup(result.workflow_id, feedback)``
    - FAILED: ``error`` and ``exception`` (routing error, dead end or
      iteration cap)
    """
    workflow_id: str
    graph_name: str
    status: ExecutionStatus
    final_state: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    interrupt_payload: Any = None
    interrupted_node: Optional[str] = None
    execution_log: List[ExecutionStep] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None
    error: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False)
    iterations: int = 0
    resumed: bool = False

    @property
    def is_completed(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def is_suspended(self) -> bool:
        return self.status == ExecutionStatus.SUSPENDED

    @property
    def is_failed(self) -> bool:
        return self.status == ExecutionStatus.FAILED

    def raise_for_error(self) -> "ExecutionResult":
        """Re-raise the failure of a FAILED result; otherwise return self."""
        if self.is_failed:
            if self.exception is not None:
                raise self.exception
            raise WorkflowError(self.error or "Workflow failed")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "graph_name": self.graph_name,
            "status": self.status.value,
            "final_state": self.final_state,
            "result": self.result,
            "interrupt_payload": self.interrupt_payload,
            "interrupted_node": self.interrupted_node,
            "execution_log": [step.to_dict() for step in self.execution_log],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
            "error": self.error,
            "iterations": self.iterations,
            "resumed": self.resumed,
        }


@dataclass
class _ResumePoint:
    node_name: str
    checkpoints: Dict[str, Any]
    resolved_interrupts: List[Any]
    feedback: Any


class ExecutionHandle:
    """
    One run of a graph.

    Holds the live state, the pending-event queue and the run's event
    stream. Await it for the ``ExecutionResult``:

        handle = engine.start({"topic": "release notes"})
        async for event in handle.stream_events():
            print(event)
        result = await handle

    Attributes:
        workflow_id: Key used for snapshots
        graph: The graph being executed
        state: The shared WorkflowState
        pending: Events waiting to be dispatched
        status: Current ExecutionStatus
        execution_log: Dispatched steps so far
    """

    def __init__(
        self,
        graph: Graph,
        workflow_id: str,
        stream: EventStream,
        state: Optional[WorkflowState] = None,
        pending: Optional[Deque[Event]] = None,
        resumed: bool = False,
    ):
        self.graph = graph
        self.workflow_id = workflow_id
        self.stream = stream
        self.state = state if state is not None else WorkflowState()
        self.pending: Deque[Event] = pending if pending is not None else deque()
        self.status = ExecutionStatus.PENDING
        self.execution_log: List[ExecutionStep] = []
        self.iterations = 0
        self.current_node: Optional[str] = None
        self.resumed = resumed
        self.started_at: Optional[datetime] = None
        self._resume: Optional[_ResumePoint] = None
        self._task: Optional[asyncio.Task] = None

    def __await__(self):
        return self._task.__await__()

    async def result(self) -> ExecutionResult:
        """Wait for the run to complete or suspend."""
        return await self._task

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def stream_events(self) -> AsyncIterator[Event]:
        """
        Every event produced during the run, in production order.

        Can be drained live or after the run has finished; single pass.
        Stopping early does not stop the run.
        """
        return self.stream.__aiter__()

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get a summary of the current execution."""
        return {
            "workflow_id": self.workflow_id,
            "graph_name": self.graph.name,
            "status": self.status.value,
            "current_node": self.current_node,
            "current_state": self.state.to_dict(),
            "step_count": len(self.execution_log),
            "iterations": self.iterations,
            "pending_events": [e.event_type() for e in self.pending],
            "stream_dropped": self.stream.dropped,
        }


class WorkflowEngine:
    """
    Runs a graph, suspends it on interrupts and resumes it from snapshots.

    Usage:
        engine = WorkflowEngine(graph, store=FileSnapshotStore("./snapshots"))
        result = await engine.run({"topic": "release notes"})
        if result.is_suspended:
            result = await engine.resume(result.workflow_id, {"approved": True})
    """

    def __init__(
        self,
        graph: Graph,
        store: Optional["SnapshotStore"] = None,
        max_iterations: Optional[int] = None,
        stream_buffer_size: Optional[int] = None,
        stream_put_timeout: Any = _DEFAULT,
    ):
        """
        Initialize the engine.

        Args:
            graph: The workflow graph; built here if it is not yet
            store: Snapshot persistence (in-memory when omitted)
            max_iterations: Dispatch ceiling; 0 or None disables it
                (defaults to settings.MAX_ITERATIONS)
            stream_buffer_size: Event stream capacity, 0 = unbounded
            stream_put_timeout: Seconds the engine waits on a full stream
                before dropping an event; None blocks
        """
        self.graph = graph.build()
        if store is None:
            from eventflow.storage.memory import InMemorySnapshotStore
            store = InMemorySnapshotStore()
        self.store = store
        self.max_iterations = (
            settings.MAX_ITERATIONS if max_iterations is None else max_iterations
        )
        self.stream_buffer_size = (
            settings.STREAM_BUFFER_SIZE if stream_buffer_size is None else stream_buffer_size
        )
        self.stream_put_timeout = (
            settings.STREAM_PUT_TIMEOUT if stream_put_timeout is _DEFAULT else stream_put_timeout
        )

    def _new_stream(self) -> EventStream:
        return EventStream(maxsize=self.stream_buffer_size, put_timeout=self.stream_put_timeout)

    # ============================================================
    # Public API
    # ============================================================

    def start(
        self,
        initial_state: Optional[Dict[str, Any]] = None,
        *,
        workflow_id: Optional[str] = None,
        start_event: Optional[StartEvent] = None,
    ) -> ExecutionHandle:
        """
        Start a new run in the background.

        Args:
            initial_state: Initial state data
            workflow_id: Key for snapshots (generated if not provided)
            start_event: StartEvent to dispatch (an empty one by default)

        Returns:
            The ExecutionHandle; await it for the result
        """
        handle = ExecutionHandle(
            graph=self.graph,
            workflow_id=workflow_id or str(uuid.uuid4()),
            stream=self._new_stream(),
            state=WorkflowState.from_dict(initial_state),
        )
        handle.pending.append(start_event if start_event is not None else StartEvent())
        handle._task = asyncio.get_running_loop().create_task(self._execute(handle))
        return handle

    def wakeup(self, workflow_id: str, feedback: Any = None) -> ExecutionHandle:
        """
        Resume a suspended run with external feedback.

        The snapshot is loaded when the run starts; awaiting the handle
        raises SnapshotNotFoundError if nothing is stored for the id.
        """
        handle = ExecutionHandle(
            graph=self.graph,
            workflow_id=workflow_id,
            stream=self._new_stream(),
            resumed=True,
        )
        handle._task = asyncio.get_running_loop().create_task(
            self._execute(handle, feedback=feedback)
        )
        return handle

    async def run(
        self,
        initial_state: Optional[Dict[str, Any]] = None,
        *,
        workflow_id: Optional[str] = None,
        start_event: Optional[StartEvent] = None,
    ) -> ExecutionResult:
        """Start a run and wait for its result. The run's event stream is not kept."""
        handle = self.start(initial_state, workflow_id=workflow_id, start_event=start_event)
        handle.stream.detach()
        return await handle

    async def resume(self, workflow_id: str, feedback: Any = None) -> ExecutionResult:
        """Wake a suspended run and wait for its result. The run's event stream is not kept."""
        handle = self.wakeup(workflow_id, feedback)
        handle.stream.detach()
        return await handle

    # ============================================================
    # Execution
    # ============================================================

    async def _execute(self, handle: ExecutionHandle, feedback: Any = None) -> ExecutionResult:
        start_time = time.time()
        handle.started_at = datetime.now()
        handle.status = ExecutionStatus.RUNNING
        try:
            if handle.resumed:
                await self._restore(handle, feedback)
            return await self._run_loop(handle, start_time)
        except BaseException:
            handle.status = ExecutionStatus.FAILED
            raise
        finally:
            handle.stream.close()

    async def _restore(self, handle: ExecutionHandle, feedback: Any) -> None:
        """Load the snapshot and rebuild the handle at the interrupted node."""
        snapshot = await self.store.load(handle.workflow_id)

        if snapshot.graph_name != self.graph.name:
            raise SnapshotMismatchError(
                f"Snapshot '{handle.workflow_id}' belongs to graph '{snapshot.graph_name}', "
                f"not '{self.graph.name}'"
            )
        node = self.graph.get_node(snapshot.node_name)
        if node is None:
            raise SnapshotMismatchError(
                f"Interrupted node '{snapshot.node_name}' is not in graph '{self.graph.name}'"
            )
        try:
            event = snapshot.event.to_event(self.graph)
            pending = [e.to_event(self.graph) for e in snapshot.pending_events]
        except RoutingError as e:
            raise SnapshotMismatchError(str(e)) from e
        if type(event) not in node.consumes:
            raise SnapshotMismatchError(
                f"Node '{node.name}' no longer consumes '{event.event_type()}'"
            )

        handle.state = WorkflowState.from_dict(snapshot.state)
        handle.pending = deque([event, *pending])
        handle.iterations = snapshot.iterations
        handle._resume = _ResumePoint(
            node_name=node.name,
            checkpoints=snapshot.checkpoints,
            resolved_interrupts=snapshot.resolved_interrupts,
            feedback=feedback,
        )
        logger.info(
            f"Resuming workflow {handle.workflow_id} at node '{node.name}' "
            f"({len(pending)} other pending events)"
        )

    async def _run_loop(self, handle: ExecutionHandle, start_time: float) -> ExecutionResult:
        queue = handle.pending
        state = handle.state
        loop = asyncio.get_running_loop()

        while True:
            if not queue:
                return self._fail(
                    handle,
                    DeadEndError(
                        f"Graph '{self.graph.name}' ran out of events without reaching a StopEvent"
                    ),
                    start_time,
                )

            if self.max_iterations and handle.iterations >= self.max_iterations:
                return self._fail(handle, MaxIterationsExceededError(self.max_iterations), start_time)

            event = queue.popleft()
            try:
                node = self.graph.resolve(type(event))
            except RoutingError as e:
                return self._fail(handle, e, start_time)

            ctx = self._make_context(handle, node, loop)
            handle.iterations += 1
            handle.current_node = node.name

            step = ExecutionStep(
                step=len(handle.execution_log) + 1,
                node=node.name,
                event=event.event_type(),
                started_at=datetime.now(),
            )
            handle.execution_log.append(step)
            node_start = time.perf_counter()
            logger.info(
                f"Executing node: {node.name} on {event.event_type()} (step {step.step})"
            )

            try:
                produced = await node.execute(event, state, ctx)
            except WorkflowInterrupt as signal:
                step.finish("suspended", node_start)
                return await self._suspend(handle, node, event, ctx, signal, start_time)
            except Exception as e:
                step.finish("error", node_start, str(e))
                logger.error(f"Node {node.name} failed: {e}")
                raise

            step.produced = [e.event_type() for e in produced]
            for out in produced:
                if type(out) not in node.produces:
                    step.finish("error", node_start, f"undeclared {out.event_type()}")
                    return self._fail(
                        handle, UndeclaredEventError(node.name, out.event_type()), start_time
                    )
            step.finish("success", node_start)

            for out in produced:
                await handle.stream.publish(out)
                if out.is_terminal():
                    if queue:
                        logger.debug(
                            f"Discarding {len(queue)} pending events after {out.event_type()}"
                        )
                    queue.clear()
                    return await self._complete(handle, out, start_time)
                queue.append(out)
                logger.debug(f"Routed {out.event_type()} from '{node.name}'")

    def _make_context(
        self,
        handle: ExecutionHandle,
        node: Node,
        loop: asyncio.AbstractEventLoop,
    ) -> NodeContext:
        resume, handle._resume = handle._resume, None
        if resume is not None and resume.node_name == node.name:
            return NodeContext(
                node_name=node.name,
                workflow_id=handle.workflow_id,
                state=handle.state,
                checkpoints=resume.checkpoints,
                resolved_interrupts=resume.resolved_interrupts,
                feedback=resume.feedback,
                stream=handle.stream,
                loop=loop,
            )
        return NodeContext(
            node_name=node.name,
            workflow_id=handle.workflow_id,
            state=handle.state,
            stream=handle.stream,
            loop=loop,
        )

    async def _suspend(
        self,
        handle: ExecutionHandle,
        node: Node,
        event: Event,
        ctx: NodeContext,
        signal: WorkflowInterrupt,
        start_time: float,
    ) -> ExecutionResult:
        snapshot = InterruptSnapshot(
            workflow_id=handle.workflow_id,
            graph_name=self.graph.name,
            node_name=node.name,
            event=SerializedEvent.from_event(event),
            state=handle.state.to_dict(),
            checkpoints=ctx.checkpoints,
            resolved_interrupts=ctx.resolved_interrupts,
            interrupt_index=signal.index,
            interrupt_payload=signal.payload,
            pending_events=[SerializedEvent.from_event(e) for e in handle.pending],
            # the interrupted event is dispatched again on resume
            iterations=handle.iterations - 1,
        )
        await self.store.save(handle.workflow_id, snapshot)

        handle.status = ExecutionStatus.SUSPENDED
        logger.info(
            f"Workflow {handle.workflow_id} suspended at node '{node.name}' "
            f"(interrupt {signal.index})"
        )
        return ExecutionResult(
            workflow_id=handle.workflow_id,
            graph_name=self.graph.name,
            status=ExecutionStatus.SUSPENDED,
            final_state=handle.state.all(),
            interrupt_payload=signal.payload,
            interrupted_node=node.name,
            execution_log=handle.execution_log,
            started_at=handle.started_at,
            completed_at=datetime.now(),
            total_duration_ms=(time.time() - start_time) * 1000,
            iterations=handle.iterations,
            resumed=handle.resumed,
        )

    async def _complete(
        self,
        handle: ExecutionHandle,
        stop: StopEvent,
        start_time: float,
    ) -> ExecutionResult:
        if handle.resumed:
            await self.store.delete(handle.workflow_id)

        handle.status = ExecutionStatus.COMPLETED
        handle.current_node = None
        logger.info(
            f"Workflow {handle.workflow_id} completed after {handle.iterations} dispatches"
        )
        return ExecutionResult(
            workflow_id=handle.workflow_id,
            graph_name=self.graph.name,
            status=ExecutionStatus.COMPLETED,
            final_state=handle.state.all(),
            result=stop.result,
            execution_log=handle.execution_log,
            started_at=handle.started_at,
            completed_at=datetime.now(),
            total_duration_ms=(time.time() - start_time) * 1000,
            iterations=handle.iterations,
            resumed=handle.resumed,
        )

    def _fail(
        self,
        handle: ExecutionHandle,
        error: WorkflowError,
        start_time: float,
    ) -> ExecutionResult:
        """Create an error result."""
        handle.status = ExecutionStatus.FAILED
        logger.error(f"Workflow {handle.workflow_id} failed: {error}")
        return ExecutionResult(
            workflow_id=handle.workflow_id,
            graph_name=self.graph.name,
            status=ExecutionStatus.FAILED,
            final_state=handle.state.all(),
            execution_log=handle.execution_log,
            started_at=handle.started_at,
            completed_at=datetime.now(),
            total_duration_ms=(time.time() - start_time) * 1000,
            error=str(error),
            exception=error,
            iterations=handle.iterations,
            resumed=handle.resumed,
        )


async def execute_graph(
    graph: Graph,
    initial_state: Optional[Dict[str, Any]] = None,
    store: Optional["SnapshotStore"] = None,
    workflow_id: Optional[str] = None,
    max_iterations: Optional[int] = None,
) -> ExecutionResult:
    """
    Convenience function to execute a graph.

    Args:
        graph: The workflow graph
        initial_state: Initial state data
        store: Snapshot store for interrupts
        workflow_id: Optional workflow ID
        max_iterations: Optional dispatch ceiling

    Returns:
        ExecutionResult
    """
    engine = WorkflowEngine(graph, store=store, max_iterations=max_iterations)
    return await engine.run(initial_state, workflow_id=workflow_id)
