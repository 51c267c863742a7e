"""
Node Definition for Workflow Engine.

Nodes are the building blocks of a workflow. Each node consumes one or
more event types, reads and writes the shared state, and returns the
event(s) that decide where the run goes next.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Tuple, Type, Union
from dataclasses import dataclass, field
import asyncio
import functools
import inspect

from eventflow.engine.events import Event, StartEvent

if TYPE_CHECKING:
    from eventflow.engine.context import NodeContext
    from eventflow.engine.state import WorkflowState


EventTypes = Tuple[Type[Event], ...]
NodeOutput = Union[Event, List[Event], None]


def _as_event_types(value: Union[Type[Event], Iterable[Type[Event]], None]) -> EventTypes:
    if value is None:
        return ()
    if inspect.isclass(value):
        value = (value,)
    types = tuple(value)
    for event_type in types:
        if not (inspect.isclass(event_type) and issubclass(event_type, Event)):
            raise ValueError(f"{event_type!r} is not an Event subclass")
    return types


@dataclass
class Node:
    """
    A node in the workflow graph.

    The handler is called as ``handler(event, state, ctx)`` and returns an
    event, a list of events, or None. It may be sync or async; sync
    handlers run in the default executor so they never block the loop.

    Subclasses may override ``run`` instead of passing a handler.

    Attributes:
        name: Unique identifier for the node
        consumes: Event types this node is invoked with
        produces: Event types this node may return
        handler: Function that processes an event (sync or async)
        description: Human-readable description
        metadata: Additional node metadata
    """

    name: str
    consumes: EventTypes = ()
    produces: EventTypes = ()
    handler: Optional[Callable[..., Any]] = None
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate the node after initialization."""
        if not self.name:
            raise ValueError("Node name cannot be empty")
        self.consumes = _as_event_types(self.consumes)
        self.produces = _as_event_types(self.produces)
        if not self.consumes:
            raise ValueError(f"Node '{self.name}' must consume at least one event type")
        if self.handler is None and type(self).run is Node.run:
            raise ValueError(f"Node '{self.name}' needs a handler or a run() override")
        if self.handler is not None and not callable(self.handler):
            raise ValueError(f"Handler for node '{self.name}' must be callable")

    @property
    def is_async(self) -> bool:
        """Check if the invocation routine is a coroutine function."""
        target = self.handler if self.handler is not None else self.run
        return inspect.iscoroutinefunction(target)

    @property
    def is_entry(self) -> bool:
        return StartEvent in self.consumes

    def run(self, event: Event, state: "WorkflowState", ctx: "NodeContext") -> NodeOutput:
        return self.handler(event, state, ctx)

    async def execute(
        self,
        event: Event,
        state: "WorkflowState",
        ctx: "NodeContext",
    ) -> List[Event]:
        """
        Invoke the node and normalize its output to a list of events.

        Exceptions raised by the routine, including the interrupt signal,
        propagate unchanged.

        Args:
            event: The event being consumed
            state: The shared workflow state
            ctx: Interrupt and checkpoint capabilities for this invocation

        Returns:
            Produced events in the order returned
        """
        if self.is_async:
            result = await self.run(event, state, ctx)
        else:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(
                None,
                functools.partial(self.run, event, state, ctx),
            )
            if inspect.isawaitable(result):
                result = await result

        if result is None:
            return []
        if isinstance(result, Event):
            return [result]
        if isinstance(result, (list, tuple)) and all(isinstance(e, Event) for e in result):
            return list(result)

        raise TypeError(
            f"Node '{self.name}' must return an Event, a list of Events or None, "
            f"got {type(result).__name__}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the node to a dictionary."""
        target = self.handler if self.handler is not None else type(self)
        return {
            "name": self.name,
            "consumes": [t.event_type() for t in self.consumes],
            "produces": [t.event_type() for t in self.produces],
            "description": self.description,
            "handler": getattr(target, "__name__", str(target)),
            "metadata": self.metadata,
        }


def node(
    consumes: Union[Type[Event], Iterable[Type[Event]]],
    produces: Union[Type[Event], Iterable[Type[Event]], None] = None,
    name: Optional[str] = None,
    description: str = "",
) -> Callable:
    """
    Decorator to declare a function as a workflow node.

    Usage:
        @node(consumes=StartEvent, produces=[Drafted, StopEvent])
        def draft(event, state, ctx):
            state.set("draft", "...")
            return Drafted(text="...")

    The function itself is returned unchanged, with the declaration stored
    on it; pass it to ``Graph.add_node``.

    Args:
        consumes: Event type(s) that invoke this node
        produces: Event type(s) this node may return
        name: Node name (defaults to function name)
        description: Human-readable description

    Returns:
        Decorated function
    """
    def decorator(func: Callable) -> Callable:
        func._node_metadata = {
            "name": name or func.__name__,
            "consumes": _as_event_types(consumes),
            "produces": _as_event_types(produces),
            "description": description or inspect.getdoc(func) or "",
        }
        return func

    return decorator


def create_node_from_function(
    func: Callable,
    name: Optional[str] = None,
    consumes: Union[Type[Event], Iterable[Type[Event]], None] = None,
    produces: Union[Type[Event], Iterable[Type[Event]], None] = None,
    description: str = "",
) -> Node:
    """
    Create a Node instance from a function.

    Explicit arguments win over what ``@node`` recorded on the function.
    """
    meta = getattr(func, "_node_metadata", {})
    return Node(
        name=name or meta.get("name") or func.__name__,
        consumes=consumes if consumes is not None else meta.get("consumes", ()),
        produces=produces if produces is not None else meta.get("produces", ()),
        handler=func,
        description=description or meta.get("description", ""),
    )
