"""
Per-invocation capabilities handed to a node: interrupts and checkpoints.

A node that interrupts is re-run from the top when the workflow is woken
up. Everything it did before the interrupt runs again unless it was
wrapped in ``checkpoint``; the engine only guarantees that checkpointed
values are not recomputed. Write nodes so that the code before an
interrupt is either side-effect free or checkpointed.

Interrupt points are numbered in call order inside one invocation. Once
an interrupt point has been answered, the answer is kept with the
checkpoints, so a node that suspends twice replays its first answer on
the second resume instead of suspending at the same place again.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional
import asyncio
import inspect
import logging

from eventflow.engine.errors import WorkflowInterrupt
from eventflow.engine.events import Event

if TYPE_CHECKING:
    from eventflow.engine.state import WorkflowState
    from eventflow.engine.stream import EventStream


logger = logging.getLogger(__name__)

_MISSING = object()


def _ensure_json_native(label: str, value: Any) -> None:
    """Checkpoint values are persisted as JSON; only JSON types come back unchanged."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return
    if isinstance(value, list):
        for item in value:
            _ensure_json_native(label, item)
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(
                    f"Checkpoint '{label}' has a non-string key {key!r}; "
                    f"checkpoint values must be JSON types"
                )
            _ensure_json_native(label, item)
        return
    raise TypeError(
        f"Checkpoint '{label}' holds a {type(value).__name__}; checkpoint values must be "
        f"JSON types (None, bool, int, float, str, list, dict with str keys)"
    )


class NodeContext:
    """
    Interrupt and checkpoint capabilities for one node invocation.

    Attributes:
        node_name: The node being invoked
        workflow_id: Identifier of the run
        state: The shared workflow state (same object the node receives)
    """

    def __init__(
        self,
        node_name: str,
        workflow_id: str,
        state: "WorkflowState",
        checkpoints: Optional[Dict[str, Any]] = None,
        resolved_interrupts: Optional[List[Any]] = None,
        feedback: Any = _MISSING,
        stream: Optional["EventStream"] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.node_name = node_name
        self.workflow_id = workflow_id
        self.state = state
        self._checkpoints: Dict[str, Any] = dict(checkpoints or {})
        self._resolved: List[Any] = list(resolved_interrupts or [])
        self._feedback = feedback
        self._cursor = 0
        self._stream = stream
        self._loop = loop

    # ------------------------------------------------------------
    # Interrupts
    # ------------------------------------------------------------

    @property
    def is_resuming(self) -> bool:
        """True while resume feedback is waiting to be consumed."""
        return self._feedback is not _MISSING

    def interrupt(self, payload: Any = None) -> Any:
        """
        Suspend the workflow, or return the feedback it was resumed with.

        Suspending raises ``WorkflowInterrupt``, a BaseException that
        ``except Exception`` does not catch. Handlers that catch
        BaseException must re-raise it.

        Args:
            payload: Data surfaced to the caller with the suspension

        Returns:
            The feedback passed to ``wakeup`` for this interrupt point
        """
        index = self._cursor
        self._cursor += 1

        if index < len(self._resolved):
            return self._resolved[index]

        if self._feedback is not _MISSING:
            return self._resolve(self._take_feedback())

        raise WorkflowInterrupt(payload, index=index, node_name=self.node_name)

    def interrupt_if(self, condition: Any, payload: Any = None) -> Any:
        """
        Interrupt only when ``condition`` holds.

        ``condition`` may be a value or a zero-argument callable.
        Returns None when no interrupt happens.
        """
        if callable(condition):
            condition = condition()
        if not condition:
            return None
        return self.interrupt(payload)

    def consume_interrupt_feedback(self) -> Any:
        """
        Return resume feedback without ever suspending.

        Returns None on a first pass. When a value is returned it answers
        the current interrupt point, exactly like ``interrupt`` would.
        """
        index = self._cursor
        if index < len(self._resolved):
            self._cursor += 1
            return self._resolved[index]
        if self._feedback is _MISSING:
            return None
        self._cursor += 1
        return self._resolve(self._take_feedback())

    def _take_feedback(self) -> Any:
        feedback, self._feedback = self._feedback, _MISSING
        return feedback

    def _resolve(self, feedback: Any) -> Any:
        self._resolved.append(feedback)
        return feedback

    @property
    def resolved_interrupts(self) -> List[Any]:
        return list(self._resolved)

    # ------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------

    def checkpoint(self, label: str, compute: Callable[[], Any]) -> Any:
        """
        Run ``compute`` once per label for this invocation.

        The result is stored with the snapshot, so after a resume the same
        label returns the stored value and ``compute`` is not called again.
        Reusing a label for a different computation returns the first
        result.

        Values must be JSON types (None, bool, int, float, str, list and
        dict with string keys) so that they come back unchanged after a
        resume; anything else, such as a datetime or a tuple, raises
        TypeError. Convert first, e.g. ``dt.isoformat()``.
        """
        if label in self._checkpoints:
            logger.debug(f"Checkpoint hit: {self.node_name}/{label}")
            return self._checkpoints[label]

        value = compute()
        if inspect.isawaitable(value):
            if inspect.iscoroutine(value):
                value.close()
            raise TypeError(
                f"Checkpoint '{label}' returned an awaitable; use acheckpoint() in async nodes"
            )
        _ensure_json_native(label, value)
        self._checkpoints[label] = value
        return value

    async def acheckpoint(self, label: str, compute: Callable[[], Any]) -> Any:
        """Async variant of ``checkpoint``; ``compute`` may be sync or async."""
        if label in self._checkpoints:
            logger.debug(f"Checkpoint hit: {self.node_name}/{label}")
            return self._checkpoints[label]

        value = compute()
        if inspect.isawaitable(value):
            value = await value
        _ensure_json_native(label, value)
        self._checkpoints[label] = value
        return value

    def has_checkpoint(self, label: str) -> bool:
        return label in self._checkpoints

    @property
    def checkpoints(self) -> Dict[str, Any]:
        return dict(self._checkpoints)

    # ------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------

    def write_event_to_stream(self, event: Event) -> None:
        """
        Publish a progress event to the run's stream without routing it.

        Works from async nodes and from sync nodes running in a worker
        thread.
        """
        if self._stream is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None or self._loop is None:
            self._stream.publish_nowait(event)
        else:
            asyncio.run_coroutine_threadsafe(self._stream.publish(event), self._loop).result()
