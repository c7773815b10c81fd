import asyncio, logging, sys
from typing import Any, List, Optional, TextIO

from .stats import WatcherStats

_CLOSED = object()


class EventChannel:
    """Bounded FIFO between the receipt fan-out and a single output consumer.

    `send` waits while the channel is full, so a slow consumer throttles the
    producers instead of losing events.
    """

    def __init__(self, capacity: int = 100):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self._drained = False

    @property
    def closed(self) -> bool:
        return self._closed

    def empty(self) -> bool:
        return self._queue.empty()

    def qsize(self) -> int:
        return self._queue.qsize()

    async def send(self, event: Any) -> None:
        if self._closed:
            raise RuntimeError("send on a closed channel")
        await self._queue.put(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # the marker queues behind every pending event
        await self._queue.put(_CLOSED)

    async def recv(self) -> Optional[Any]:
        """Next event, or None once the channel is closed and drained."""
        if self._drained:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._drained = True
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> Any:
        item = await self.recv()
        if item is None:
            raise StopAsyncIteration
        return item


class OutputStage:
    def __init__(
        self,
        channel: EventChannel,
        stream: Optional[TextIO] = None,
        batch_size: int = 32,
        stats: Optional[WatcherStats] = None,
    ):
        self.channel = channel
        self.stream = stream if stream is not None else sys.stdout
        self.batch_size = batch_size
        self.stats = stats
        self.log = logging.getLogger("OutputStage")

    def _write(self, lines: List[str]) -> None:
        self.stream.write("\n".join(lines) + "\n")
        self.stream.flush()
        self.log.debug(f"Flushed {len(lines)} record(s)")
        if self.stats is not None:
            self.stats.events_emitted += len(lines)

    async def run(self) -> int:
        """Drain the channel until it is closed, returning the number of records written."""
        written = 0
        batch: List[str] = []
        async for event in self.channel:
            batch.append(event.to_record())
            # flush on a full batch or as soon as nothing else is waiting
            if len(batch) >= self.batch_size or self.channel.empty():
                self._write(batch)
                written += len(batch)
                batch = []
        if batch:
            self._write(batch)
            written += len(batch)
        return written
