"""
Exception hierarchy for the Workflow Engine.

Construction-time errors are raised by ``Graph.build()``. Routing-time,
dead-end and iteration-cap errors abort a run and are reported through a
FAILED ``ExecutionResult``. ``WorkflowInterrupt`` is a control-flow signal,
not an error, and derives from BaseException like ``asyncio.CancelledError``.
"""

from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for all engine errors."""


# ============================================================
# Construction-time
# ============================================================

class GraphValidationError(WorkflowError):
    """The graph declaration is invalid and cannot be executed."""


class DuplicateConsumerError(GraphValidationError):
    """Two nodes claim the same consumed event type."""

    def __init__(self, event_type: str, nodes: list):
        self.event_type = event_type
        self.nodes = list(nodes)
        super().__init__(
            f"Event type '{event_type}' is consumed by more than one node: {self.nodes}"
        )


class MultipleStartConsumersError(DuplicateConsumerError):
    """More than one node consumes the StartEvent."""


class NoStartConsumerError(GraphValidationError):
    """No node consumes the StartEvent."""


class UnreachableProducedTypeError(GraphValidationError):
    """A node declares a produced event type that nobody consumes."""

    def __init__(self, node_name: str, event_type: str):
        self.node_name = node_name
        self.event_type = event_type
        super().__init__(
            f"Node '{node_name}' may produce '{event_type}' but no node consumes it"
        )


# ============================================================
# Routing-time / execution
# ============================================================

class RoutingError(WorkflowError):
    """An event could not be routed during a run."""


class NoConsumerError(RoutingError):
    """A dequeued event has no registered consumer."""


class UndeclaredEventError(RoutingError):
    """A node produced an event type it did not declare."""

    def __init__(self, node_name: str, event_type: str):
        self.node_name = node_name
        self.event_type = event_type
        super().__init__(
            f"Node '{node_name}' produced undeclared event type '{event_type}'"
        )


class DeadEndError(WorkflowError):
    """The event queue drained before a StopEvent was produced."""


class MaxIterationsExceededError(WorkflowError):
    """The dispatch counter crossed the configured ceiling."""

    def __init__(self, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(f"Max iterations ({max_iterations}) exceeded")


# ============================================================
# Persistence
# ============================================================

class PersistenceError(WorkflowError):
    """A snapshot store operation failed."""


class SnapshotNotFoundError(PersistenceError):
    """No snapshot is stored for the given workflow id."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"No snapshot found for workflow '{workflow_id}'")


class SnapshotMismatchError(WorkflowError):
    """A stored snapshot does not fit the graph it is resumed on."""


# ============================================================
# Control flow
# ============================================================

class WorkflowInterrupt(BaseException):
    """
    Raised by ``NodeContext.interrupt`` to suspend the running node.

    The engine catches it, persists a snapshot and returns a SUSPENDED
    result. It is a BaseException so that ``except Exception`` blocks in
    node code do not swallow it; a bare ``except:`` or
    ``except BaseException`` still would, and must re-raise.
    """

    def __init__(self, payload: Any, index: int = 0, node_name: Optional[str] = None):
        self.payload = payload
        self.index = index
        self.node_name = node_name
        super().__init__(f"Workflow interrupted at node '{node_name}'")
