"""
Engine package - events, state, graph routing and the execution loop.
"""

from eventflow.engine.context import NodeContext
from eventflow.engine.errors import (
    DeadEndError,
    DuplicateConsumerError,
    GraphValidationError,
    MaxIterationsExceededError,
    MultipleStartConsumersError,
    NoConsumerError,
    NoStartConsumerError,
    PersistenceError,
    RoutingError,
    SnapshotMismatchError,
    SnapshotNotFoundError,
    UndeclaredEventError,
    UnreachableProducedTypeError,
    WorkflowError,
    WorkflowInterrupt,
)
from eventflow.engine.events import Event, StartEvent, StopEvent
from eventflow.engine.executor import (
    ExecutionHandle,
    ExecutionResult,
    ExecutionStatus,
    WorkflowEngine,
    execute_graph,
)
from eventflow.engine.graph import Graph
from eventflow.engine.node import Node, node
from eventflow.engine.snapshot import InterruptSnapshot
from eventflow.engine.state import WorkflowState
from eventflow.engine.stream import EventStream

__all__ = [
    "Event",
    "StartEvent",
    "StopEvent",
    "WorkflowState",
    "Node",
    "node",
    "NodeContext",
    "Graph",
    "WorkflowEngine",
    "ExecutionHandle",
    "ExecutionResult",
    "ExecutionStatus",
    "execute_graph",
    "EventStream",
    "InterruptSnapshot",
    "WorkflowError",
    "GraphValidationError",
    "DuplicateConsumerError",
    "MultipleStartConsumersError",
    "NoStartConsumerError",
    "UnreachableProducedTypeError",
    "RoutingError",
    "NoConsumerError",
    "UndeclaredEventError",
    "DeadEndError",
    "MaxIterationsExceededError",
    "PersistenceError",
    "SnapshotNotFoundError",
    "SnapshotMismatchError",
    "WorkflowInterrupt",
]
