import asyncio, logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TextIO

from .client import SubscriptionClosed
from .config import WatcherConfig
from .models import BlockHeader
from .pipeline import BlockPipeline
from .stats import WatcherStats


class BlockDispatcher:
    """Feeds new heads to a fixed pool of pipeline executors.

    Reading the subscription never waits on a pipeline: headers are queued and
    every one of them is processed once a worker is free. A `backlog` above
    zero opts into a drop policy where the oldest waiting header is discarded
    once that many are queued. Every pipeline belongs to the dispatch call
    that started it and is cancelled when that call exits.
    """

    def __init__(
        self,
        pipeline: BlockPipeline,
        workers: int = 8,
        backlog: int = 0,
        stats: Optional[WatcherStats] = None,
    ):
        self.pipeline = pipeline
        self.workers = workers
        self.backlog = backlog
        self.stats = stats or pipeline.stats
        self.log = logging.getLogger("BlockDispatcher")

    async def _worker(self, queue: asyncio.Queue) -> None:
        while True:
            header = await queue.get()
            try:
                await self.pipeline.run(header)
            except Exception as e:
                self.log.error(f"Block {header.number} pipeline error: {e}")
            finally:
                queue.task_done()

    def _enqueue(self, queue: asyncio.Queue, header: BlockHeader) -> None:
        if self.backlog and queue.qsize() >= self.backlog:
            dropped = queue.get_nowait()
            queue.task_done()
            self.stats.blocks_dropped += 1
            self.log.warning(f"Backlog full, dropping block {dropped.number}")
        queue.put_nowait(header)

    async def dispatch(self, headers: AsyncIterator[BlockHeader], drain: bool = False) -> None:
        """Run until the header stream fails or ends; always raises to the caller.

        With `drain`, a normally ending stream waits for queued blocks to
        finish before the pool is torn down.
        """
        queue: asyncio.Queue = asyncio.Queue()
        pool = [asyncio.create_task(self._worker(queue)) for _ in range(self.workers)]
        try:
            async for header in headers:
                self.stats.headers_seen += 1
                self._enqueue(queue, header)
            if drain:
                await queue.join()
            raise SubscriptionClosed("new heads stream ended")
        finally:
            for task in pool:
                task.cancel()
            await asyncio.gather(*pool, return_exceptions=True)


def block_session(
    config: WatcherConfig,
    stream: Optional[TextIO] = None,
    stats: Optional[WatcherStats] = None,
) -> Callable[[Any], Awaitable[None]]:
    """Session for the supervisor: subscribe to new heads and dispatch them."""
    stats = stats or WatcherStats()

    async def session(client: Any) -> None:
        pipeline = BlockPipeline(client, config, stream=stream, stats=stats)
        dispatcher = BlockDispatcher(
            pipeline, workers=config.pipeline_workers, backlog=config.block_backlog, stats=stats
        )
        await dispatcher.dispatch(client.subscribe_new_heads())

    return session
