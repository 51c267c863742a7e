"""
Serialized form of a suspended run.

A snapshot holds everything needed to re-enter a run at the interrupted
node: the state, the event being processed, the node's checkpoints and
answered interrupts, and the events still waiting in the queue.
Stores treat it as an opaque blob (``to_bytes`` / ``from_bytes``).
"""

from typing import TYPE_CHECKING, Any, Dict, List
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from eventflow.engine.events import Event

if TYPE_CHECKING:
    from eventflow.engine.graph import Graph


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SerializedEvent(BaseModel):
    """An event reduced to its routing tag and payload."""

    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_event(cls, event: Event) -> "SerializedEvent":
        return cls(type=event.event_type(), payload=event.to_payload())

    def to_event(self, graph: "Graph") -> Event:
        """Rebuild the event with the class the graph knows for this tag."""
        return graph.event_class(self.type).model_validate(self.payload)


class InterruptSnapshot(BaseModel):
    """
    Everything persisted when a node interrupts.

    Attributes:
        workflow_id: Key the snapshot is stored under
        graph_name: Graph the run belongs to
        node_name: The interrupted node
        event: The event the node was processing
        state: Workflow state at the moment of interruption
        checkpoints: Checkpointed values of the interrupted invocation
        resolved_interrupts: Answers already given to earlier interrupt points
        interrupt_index: Interrupt point that suspended the node
        interrupt_payload: Data the node surfaced with the interrupt
        pending_events: Other queued events, in dispatch order
        iterations: Dispatch counter at the moment of interruption
        created_at: When the snapshot was taken
    """

    workflow_id: str
    graph_name: str
    node_name: str
    event: SerializedEvent
    state: Dict[str, Any] = Field(default_factory=dict)
    checkpoints: Dict[str, Any] = Field(default_factory=dict)
    resolved_interrupts: List[Any] = Field(default_factory=list)
    interrupt_index: int = 0
    interrupt_payload: Any = None
    pending_events: List[SerializedEvent] = Field(default_factory=list)
    iterations: int = 0
    created_at: datetime = Field(default_factory=_utcnow)

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "InterruptSnapshot":
        return cls.model_validate_json(data)
