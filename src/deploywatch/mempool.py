import asyncio, logging, math, sys
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Set, TextIO

from .client import SubscriptionClosed
from .config import WatcherConfig
from .models import PendingCreationEvent, Receipt, now_ms
from .stats import WatcherStats


class SeenTransactionSet:
    """Hashes already reported as contract creations. Only ever grows."""

    def __init__(self):
        self._hashes: Set[str] = set()
        self._lock = asyncio.Lock()

    async def add(self, tx_hash: str) -> bool:
        """Record `tx_hash`; False when it was already there."""
        async with self._lock:
            if tx_hash in self._hashes:
                return False
            self._hashes.add(tx_hash)
            return True

    def __contains__(self, tx_hash: str) -> bool:
        return tx_hash in self._hashes

    def __len__(self) -> int:
        return len(self._hashes)


class MempoolWatcher:
    """Watches the pending-transaction feed for contract deployments.

    A receipt only exists once a transaction is mined, so with the default
    single lookup this reports creations mined shortly after their hash was
    announced. A positive `receipt_timeout` polls for the receipt instead.
    """

    def __init__(
        self,
        client: Any,
        config: Optional[WatcherConfig] = None,
        stream: Optional[TextIO] = None,
        stats: Optional[WatcherStats] = None,
        seen: Optional[SeenTransactionSet] = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.config = config or WatcherConfig()
        self.stream = stream
        self.stats = stats or WatcherStats()
        self.seen = seen if seen is not None else SeenTransactionSet()
        self.clock = clock
        self.sleep = sleep
        self.log = logging.getLogger("MempoolWatcher")

    async def _receipt(self, tx_hash: str) -> Optional[Receipt]:
        receipt = await self.client.get_transaction_receipt(tx_hash)
        if receipt is not None or self.config.receipt_timeout <= 0:
            return receipt
        interval = self.config.receipt_poll_interval
        for _ in range(math.ceil(self.config.receipt_timeout / interval)):
            await self.sleep(interval)
            receipt = await self.client.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
        self.log.debug(f"No receipt for {tx_hash} within {self.config.receipt_timeout}s")
        return None

    def _emit(self, event: PendingCreationEvent) -> None:
        stream = self.stream if self.stream is not None else sys.stdout
        stream.write(event.to_record() + "\n")
        stream.flush()
        self.stats.events_emitted += 1

    async def handle(self, tx_hash: str, received_at_ms: int) -> Optional[PendingCreationEvent]:
        if tx_hash in self.seen:
            return None
        try:
            tx = await self.client.get_transaction(tx_hash)
            if tx is None or not tx.is_creation_attempt:
                return None
            receipt = await self._receipt(tx.hash)
        except Exception as e:
            self.log.debug(f"Lookup failed for pending {tx_hash}: {e}")
            return None
        if receipt is None or receipt.contract_address is None:
            return None
        processed_at_ms = self.clock()
        if not await self.seen.add(tx.hash):
            return None
        event = PendingCreationEvent.create(tx, receipt, received_at_ms, processed_at_ms)
        self.log.info(
            f"Contract creation {event.contract_address} by {event.sender} "
            f"(tx {event.transaction_hash}, delay {event.delay_ms} ms, seen {len(self.seen)})"
        )
        self._emit(event)
        return event

    async def _guarded(self, tx_hash: str, received_at_ms: int, slots: asyncio.Semaphore) -> None:
        try:
            await self.handle(tx_hash, received_at_ms)
        except Exception as e:
            self.log.error(f"Pending {tx_hash} handler error: {e}")
        finally:
            slots.release()

    async def watch(self, hashes: AsyncIterator[str], drain: bool = False) -> None:
        """Handle pending hashes until the feed fails or ends; always raises to the caller."""
        slots = asyncio.Semaphore(self.config.mempool_concurrency)
        tasks: Set[asyncio.Task] = set()
        try:
            async for tx_hash in hashes:
                received_at_ms = self.clock()
                self.stats.pending_seen += 1
                await slots.acquire()
                task = asyncio.create_task(self._guarded(tx_hash, received_at_ms, slots))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
            if drain and tasks:
                await asyncio.gather(*tasks)
            raise SubscriptionClosed("pending transaction stream ended")
        finally:
            pending = list(tasks)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


def mempool_session(
    config: WatcherConfig,
    stream: Optional[TextIO] = None,
    stats: Optional[WatcherStats] = None,
) -> Callable[[Any], Awaitable[None]]:
    """Session for the supervisor; the seen set outlives reconnects."""
    stats = stats or WatcherStats()
    seen = SeenTransactionSet()

    async def session(client: Any) -> None:
        watcher = MempoolWatcher(client, config, stream=stream, stats=stats, seen=seen)
        await watcher.watch(client.subscribe_pending_transactions())

    return session
