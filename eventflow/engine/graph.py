"""
Graph Definition for Workflow Engine.

The Graph is the core structure that defines the workflow. There is no
edge list: each node declares the event types it consumes and produces,
and ``build()`` derives the routing table (event type -> consumer node)
from those declarations, rejecting ambiguous or incomplete graphs before
anything runs.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Type, Union
from dataclasses import dataclass, field
from types import MappingProxyType
import logging
import uuid

from eventflow.engine.errors import (
    DuplicateConsumerError,
    GraphValidationError,
    MultipleStartConsumersError,
    NoConsumerError,
    NoStartConsumerError,
    UnreachableProducedTypeError,
)
from eventflow.engine.events import Event, StartEvent, StopEvent
from eventflow.engine.node import Node, create_node_from_function


logger = logging.getLogger(__name__)


# Special node names used in diagrams
END = "__END__"
START = "__START__"


@dataclass
class Graph:
    """
    A workflow graph: registered nodes plus the derived routing table.

    Usage:
        graph = Graph(name="review")
        graph.add_node(draft).add_node(review)
        graph.build()
        graph.resolve(Drafted)  # -> Node "review"

    Attributes:
        graph_id: Unique identifier for this graph
        name: Human-readable name, also stamped on snapshots
        nodes: Dict of node_name -> Node, in registration order
        description: What the workflow does
        metadata: Additional graph metadata
    """

    name: str = "Unnamed Workflow"
    graph_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    nodes: Dict[str, Node] = field(default_factory=dict)
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self._routes: Optional[MappingProxyType] = None
        self._event_classes: Dict[str, Type[Event]] = {}

    @property
    def is_built(self) -> bool:
        return self._routes is not None

    def register(self, node: Node) -> "Graph":
        """
        Add a node and its consumed/produced declarations.

        Args:
            node: The node to register

        Returns:
            Self for chaining
        """
        if self.is_built:
            raise GraphValidationError(
                f"Graph '{self.name}' is already built; cannot register '{node.name}'"
            )
        if node.name in self.nodes:
            raise GraphValidationError(f"Node '{node.name}' already exists in the graph")
        self.nodes[node.name] = node
        return self

    def add_node(
        self,
        handler: Union[Node, Callable],
        name: Optional[str] = None,
        consumes: Union[Type[Event], Iterable[Type[Event]], None] = None,
        produces: Union[Type[Event], Iterable[Type[Event]], None] = None,
        description: str = "",
    ) -> "Graph":
        """
        Add a node built from a function (or an existing Node).

        Declarations missing from the arguments are taken from the
        function's ``@node`` decorator.

        Returns:
            Self for chaining
        """
        if isinstance(handler, Node):
            return self.register(handler)
        node = create_node_from_function(handler, name, consumes, produces, description)
        return self.register(node)

    def build(self) -> "Graph":
        """
        Validate the graph and freeze the routing table.

        Raises:
            GraphValidationError: For any structural problem; the specific
                subclasses are DuplicateConsumerError,
                MultipleStartConsumersError, NoStartConsumerError and
                UnreachableProducedTypeError.

        Returns:
            Self for chaining
        """
        if self.is_built:
            return self

        event_classes = self._collect_event_classes()

        consumers: Dict[Type[Event], List[Node]] = {}
        for node in self.nodes.values():
            for event_type in node.consumes:
                if event_type.is_terminal():
                    raise GraphValidationError(
                        f"Node '{node.name}' cannot consume terminal event "
                        f"'{event_type.event_type()}'"
                    )
                consumers.setdefault(event_type, []).append(node)
            if StartEvent in node.produces:
                raise GraphValidationError(
                    f"Node '{node.name}' cannot produce StartEvent; only the engine does"
                )

        start_consumers = consumers.get(StartEvent, [])
        if not start_consumers:
            raise NoStartConsumerError(f"No node in graph '{self.name}' consumes StartEvent")
        if len(start_consumers) > 1:
            raise MultipleStartConsumersError(
                StartEvent.event_type(), sorted(n.name for n in start_consumers)
            )

        for event_type, claimants in consumers.items():
            if len(claimants) > 1:
                raise DuplicateConsumerError(
                    event_type.event_type(), sorted(n.name for n in claimants)
                )

        for node in self.nodes.values():
            for event_type in node.produces:
                if event_type.is_terminal():
                    continue
                if event_type not in consumers:
                    raise UnreachableProducedTypeError(node.name, event_type.event_type())

        produced = {t for n in self.nodes.values() for t in n.produces}
        for event_type, claimants in consumers.items():
            if event_type is not StartEvent and event_type not in produced:
                logger.warning(
                    f"Node '{claimants[0].name}' consumes '{event_type.event_type()}' "
                    f"but no node produces it"
                )

        self._event_classes = event_classes
        self._routes = MappingProxyType(
            {event_type: claimants[0] for event_type, claimants in consumers.items()}
        )
        logger.debug(f"Built graph '{self.name}' with {len(self.nodes)} nodes")
        return self

    def _collect_event_classes(self) -> Dict[str, Type[Event]]:
        classes: Dict[str, Type[Event]] = {
            StartEvent.event_type(): StartEvent,
            StopEvent.event_type(): StopEvent,
        }
        for node in self.nodes.values():
            for event_type in node.consumes + node.produces:
                tag = event_type.event_type()
                known = classes.get(tag)
                if known is not None and known is not event_type:
                    raise GraphValidationError(
                        f"Event tag '{tag}' is used by two classes: "
                        f"{known.__module__}.{known.__qualname__} and "
                        f"{event_type.__module__}.{event_type.__qualname__}"
                    )
                classes[tag] = event_type
        return classes

    def _require_built(self) -> None:
        if not self.is_built:
            raise GraphValidationError(f"Graph '{self.name}' has not been built")

    def resolve(self, event_type: Type[Event]) -> Node:
        """
        Return the unique consumer of an event type.

        Raises:
            NoConsumerError: If no node consumes the type
        """
        self._require_built()
        node = self._routes.get(event_type)
        if node is None:
            raise NoConsumerError(
                f"No node in graph '{self.name}' consumes '{event_type.event_type()}'"
            )
        return node

    def get_node(self, name: str) -> Optional[Node]:
        return self.nodes.get(name)

    @property
    def entry_point(self) -> Optional[str]:
        """Name of the node that consumes StartEvent."""
        for node in self.nodes.values():
            if node.is_entry:
                return node.name
        return None

    def event_class(self, tag: str) -> Type[Event]:
        """Look up an event class by its routing tag (used to load snapshots)."""
        self._require_built()
        try:
            return self._event_classes[tag]
        except KeyError:
            raise NoConsumerError(
                f"Event type '{tag}' is not known to graph '{self.name}'"
            ) from None

    def routes(self) -> Dict[str, str]:
        """The routing table as tag -> node name."""
        self._require_built()
        return {t.event_type(): n.name for t, n in self._routes.items()}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the graph to a dictionary."""
        return {
            "graph_id": self.graph_id,
            "name": self.name,
            "description": self.description,
            "nodes": {name: node.to_dict() for name, node in self.nodes.items()},
            "routes": self.routes() if self.is_built else {},
            "entry_point": self.entry_point,
            "metadata": self.metadata,
        }

    def to_mermaid(self) -> str:
        """Generate a Mermaid diagram of the graph."""
        lines = ["graph TD"]
        lines.append(f'    {START}(("START"))')

        has_end = False
        for name, node in self.nodes.items():
            label = name.replace("_", " ").title()
            lines.append(f'    {name}["{label}"]')
            if any(t.is_terminal() for t in node.produces):
                has_end = True

        if has_end:
            lines.append(f'    {END}(("END"))')

        entry = self.entry_point
        if entry:
            lines.append(f"    {START} --> {entry}")

        for name, node in self.nodes.items():
            for event_type in node.produces:
                if event_type.is_terminal():
                    target = END
                elif self.is_built and event_type in self._routes:
                    target = self._routes[event_type].name
                else:
                    continue
                lines.append(f"    {name} -->|{event_type.event_type()}| {target}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"Graph(name='{self.name}', nodes={list(self.nodes.keys())}, "
            f"entry='{self.entry_point}')"
        )
