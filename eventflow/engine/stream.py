"""
Event stream side channel.

Every event produced during a run is published here as well as routed.
The stream is a bounded ``asyncio.Queue``: a consumer may drain it live,
or start after the run has finished and still receive every buffered
event in production order. Consuming it never affects routing.

Backpressure: once a consumer is attached, ``publish`` waits at most
``put_timeout`` seconds for room in the buffer (``None`` waits
indefinitely, a blocking handoff). Until then nothing can drain the
buffer, so a full buffer drops immediately. A dropped event is counted;
the engine moves on.
A consumer that stops early detaches the stream and later events are
discarded.
"""

from typing import AsyncIterator, Optional
import asyncio
import logging

from eventflow.engine.events import Event


logger = logging.getLogger(__name__)

_END = object()


class EventStream:
    """
    Single-consumer, ordered, bounded event buffer for one run.

    Attributes:
        maxsize: Buffer capacity (0 = unbounded)
        put_timeout: Seconds to wait for buffer room before dropping
        dropped: Number of events dropped by the backpressure policy
    """

    def __init__(self, maxsize: int = 1024, put_timeout: Optional[float] = 1.0):
        self.maxsize = maxsize
        self.put_timeout = put_timeout
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._detached = False
        self._consumed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def attached(self) -> bool:
        """True once a consumer has started iterating."""
        return self._consumed and not self._detached

    async def publish(self, event: Event) -> None:
        """Buffer an event, honoring the backpressure policy."""
        if self._closed or self._detached:
            return
        if not self._consumed:
            self.publish_nowait(event)
            return
        try:
            if self.put_timeout is None:
                await self._queue.put(event)
            else:
                await asyncio.wait_for(self._queue.put(event), timeout=self.put_timeout)
        except asyncio.TimeoutError:
            self._drop(event)

    def publish_nowait(self, event: Event) -> None:
        """Buffer an event without waiting; drops it when the buffer is full."""
        if self._closed or self._detached:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._drop(event)

    def _drop(self, event: Event) -> None:
        self.dropped += 1
        logger.warning(
            f"Event stream full ({self.maxsize}); dropped {event.event_type()} "
            f"({self.dropped} dropped so far)"
        )

    def close(self) -> None:
        """Mark the end of the run. Buffered events stay readable."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_END)
        except asyncio.QueueFull:
            # The consumer notices the end once it drains the buffer.
            pass

    def detach(self) -> None:
        """Stop buffering: the consumer went away."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def __aiter__(self) -> AsyncIterator[Event]:
        """
        Yield buffered and live events until the run ends.

        Single pass: a second iteration raises RuntimeError.
        """
        if self._consumed:
            raise RuntimeError("Event stream can only be consumed once")
        self._consumed = True
        try:
            while True:
                if self._closed and self._queue.empty():
                    return
                item = await self._queue.get()
                if item is _END:
                    return
                yield item
        finally:
            if not self._closed:
                self.detach()
