"""
Event Definitions for Workflow Engine.

Events are the only thing that moves between nodes. Each event class is a
routing tag: the graph maps an event class to the single node that consumes
it. Events are frozen once created.
"""

from typing import Any, ClassVar, Dict, Optional

from pydantic import BaseModel, ConfigDict


class Event(BaseModel):
    """
    Base class for all workflow events.

    Subclass it and declare the payload as ordinary pydantic fields:

        class Drafted(Event):
            text: str
            revision: int = 0

    The routing tag defaults to the class name. Set ``event_tag`` to pin a
    stable tag when the class may be renamed while snapshots are in flight.
    """

    model_config = ConfigDict(frozen=True)

    event_tag: ClassVar[Optional[str]] = None

    @classmethod
    def event_type(cls) -> str:
        """Return the routing tag of this event class."""
        return cls.event_tag or cls.__name__

    @classmethod
    def is_terminal(cls) -> bool:
        """Whether consuming this event ends the run."""
        return issubclass(cls, StopEvent)

    def get(self, key: str, default: Any = None) -> Any:
        """Read a payload field, including extra fields on StartEvent."""
        return self.to_payload().get(key, default)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-compatible payload of the event."""
        return self.model_dump(mode="json")

    def __repr__(self) -> str:
        return f"{self.event_type()}({self.to_payload()})"


class StartEvent(Event):
    """Entry event. Only the engine creates it; any keyword becomes payload."""

    model_config = ConfigDict(frozen=True, extra="allow")


class StopEvent(Event):
    """Terminal event. The first one produced ends the run."""

    result: Any = None
