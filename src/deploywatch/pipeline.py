import asyncio, logging
from typing import Any, Callable, Iterator, Optional, TextIO

from attr import dataclass

from .config import WatcherConfig
from .models import Block, BlockHeader, ContractCreationEvent, Transaction, now_ms
from .output import EventChannel, OutputStage
from .stats import WatcherStats


@dataclass(frozen=True)
class BlockResult:
    number: int
    transactions: int = 0
    events: int = 0
    skipped: bool = False


async def fetch_block(client: Any, number: int) -> Optional[Block]:
    """Block with its full transaction list, or None when the node does not have it yet."""
    return await client.get_block_with_transactions(number)


class ReceiptFanout:
    """Scatter-gather over a block's receipts with a hard cap on in-flight lookups.

    A fixed set of workers pulls transactions from a shared iterator, so at
    most `concurrency` receipt requests are outstanding no matter how large
    the block is. A worker keeps its slot while a send on a full channel is
    waiting, which throttles the lookups to the pace of the output stage.
    """

    def __init__(
        self,
        client: Any,
        concurrency: int = 200,
        prefilter: bool = False,
        clock: Callable[[], int] = now_ms,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.client = client
        self.concurrency = concurrency
        self.prefilter = prefilter
        self.clock = clock
        self.log = logging.getLogger("ReceiptFanout")

    async def _lookup(self, block: Block, tx: Transaction, channel: EventChannel) -> bool:
        try:
            receipt = await self.client.get_transaction_receipt(tx.hash)
        except Exception as e:
            self.log.debug(f"Receipt lookup failed for {tx.hash} in block {block.number}: {e}")
            return False
        if receipt is None or receipt.contract_address is None:
            return False
        event = ContractCreationEvent.create(
            receipt.contract_address,
            block.timestamp_ms,
            self.clock(),
            transaction_hash=tx.hash,
            block_number=block.number,
        )
        await channel.send(event)
        return True

    async def _worker(self, block: Block, txs: Iterator[Transaction], channel: EventChannel) -> int:
        created = 0
        # the iterator is shared, each transaction is taken by exactly one worker
        for tx in txs:
            if await self._lookup(block, tx, channel):
                created += 1
        return created

    async def process(self, block: Block, channel: EventChannel) -> int:
        """Push one event per contract-creating receipt into `channel`, then close it."""
        txs = [tx for tx in block.transactions if not self.prefilter or tx.may_create_contract]
        shared = iter(txs)
        workers = [
            asyncio.create_task(self._worker(block, shared, channel))
            for _ in range(min(self.concurrency, len(txs)))
        ]
        try:
            created = sum(await asyncio.gather(*workers))
        except BaseException:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        await channel.close()
        return created


class BlockPipeline:
    """One self-contained block pass: fetch, receipt fan-out, channel, output."""

    def __init__(
        self,
        client: Any,
        config: Optional[WatcherConfig] = None,
        stream: Optional[TextIO] = None,
        stats: Optional[WatcherStats] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.client = client
        self.config = config or WatcherConfig()
        self.stream = stream
        self.stats = stats or WatcherStats()
        self.clock = clock
        self.fanout = ReceiptFanout(
            client,
            concurrency=self.config.receipt_concurrency,
            prefilter=self.config.prefilter_creations,
            clock=clock,
        )
        self.log = logging.getLogger("BlockPipeline")

    def _skip(self, number: int) -> BlockResult:
        self.stats.blocks_skipped += 1
        return BlockResult(number=number, skipped=True)

    @staticmethod
    async def _run_stages(fanout_task: asyncio.Task, output_task: asyncio.Task) -> int:
        """Wait for both stages; the first failure cancels the other one.

        A dead output stage would leave the fan-out blocked on a full channel,
        so neither stage is ever awaited on its own.
        """
        pending = {fanout_task, output_task}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                for task in done:
                    if task.exception() is not None:
                        raise task.exception()
        except BaseException:
            for task in (fanout_task, output_task):
                task.cancel()
            await asyncio.gather(fanout_task, output_task, return_exceptions=True)
            raise
        return output_task.result()

    async def run(self, header: BlockHeader) -> BlockResult:
        self.log.debug(
            f"Block {header.number} | Time difference: "
            f"{max(0, self.clock() - header.timestamp * 1000)} ms"
        )
        try:
            block = await fetch_block(self.client, header.number)
        except Exception as e:
            self.log.error(f"Failed to fetch block {header.number}: {e}")
            return self._skip(header.number)
        if block is None:
            self.log.warning(f"Block {header.number} not available, skipping")
            return self._skip(header.number)

        channel = EventChannel(self.config.channel_capacity)
        output = OutputStage(channel, self.stream, self.config.output_batch_size, self.stats)
        try:
            written = await self._run_stages(
                asyncio.create_task(self.fanout.process(block, channel)),
                asyncio.create_task(output.run()),
            )
        except Exception as e:
            self.log.error(f"Block {block.number} processing error: {e}")
            return self._skip(block.number)

        self.stats.blocks_processed += 1
        self.stats.last_block = max(self.stats.last_block or 0, block.number)
        self.log.debug(
            f"Block {block.number}: {len(block.transactions)} tx, {written} contract creation(s)"
        )
        return BlockResult(number=block.number, transactions=len(block.transactions), events=written)
