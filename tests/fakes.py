import asyncio
from typing import Dict, List, Optional

from deploywatch.models import Block, BlockHeader, Receipt, Transaction


def tx_hash(i: int) -> str:
    return "0x%064x" % i


def make_tx(i: int, to: Optional[str] = "0x" + "ab" * 20) -> Transaction:
    return Transaction(hash=tx_hash(i), sender="0x" + "01" * 20, to=to, gas_price=1_000_000_000)


def make_block(number: int, txs: List[Transaction], timestamp: int = 1_700_000_000) -> Block:
    return Block(number=number, timestamp=timestamp, transactions=tuple(txs))


def creation_receipt(h: str, address: str, block_number: int = 100) -> Receipt:
    return Receipt(transaction_hash=h, contract_address=address, block_number=block_number)


def plain_receipt(h: str, block_number: int = 100) -> Receipt:
    return Receipt(transaction_hash=h, contract_address=None, block_number=block_number)


class RecordingStream:
    def __init__(self):
        self.writes: List[str] = []

    def write(self, data: str) -> None:
        self.writes.append(data)

    def flush(self) -> None:
        pass

    @property
    def lines(self) -> List[str]:
        return "".join(self.writes).splitlines()


class BrokenStream(RecordingStream):
    """Fails the first `failures` writes, like a closed or non-blocking pipe."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures

    def write(self, data: str) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise OSError("EAGAIN")
        super().write(data)


class FakeClient:
    """In-memory stand-in for ChainClient that counts calls and in-flight lookups.

    Values in the lookup tables may be an exception (raised), a list (one item
    popped per call) or the plain value to return.
    """

    def __init__(
        self,
        blocks: Optional[Dict] = None,
        receipts: Optional[Dict] = None,
        txs: Optional[Dict] = None,
        headers: Optional[List[BlockHeader]] = None,
        pending: Optional[List[str]] = None,
        stream_error: Optional[Exception] = None,
        connect_error: Optional[Exception] = None,
        check_error: Optional[Exception] = None,
        disconnect_error: Optional[Exception] = None,
        receipt_delay: float = 0.0,
    ):
        self.blocks = blocks or {}
        self.receipts = receipts or {}
        self.txs = txs or {}
        self.headers = headers or []
        self.pending = pending or []
        self.stream_error = stream_error
        self.connect_error = connect_error
        self.check_error = check_error
        self.disconnect_error = disconnect_error
        self.receipt_delay = receipt_delay
        self.gates: Dict[str, asyncio.Event] = {}

        self.connects = 0
        self.checks = 0
        self.disconnects = 0
        self.receipt_calls: List[str] = []
        self.tx_calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @staticmethod
    def _resolve(table: Dict, key):
        value = table.get(key)
        if isinstance(value, list):
            value = value.pop(0) if value else None
        if isinstance(value, Exception):
            raise value
        return value

    async def connect(self):
        self.connects += 1
        if self.connect_error is not None:
            raise self.connect_error

    async def check_connection(self):
        self.checks += 1
        if self.check_error is not None:
            raise self.check_error

    async def disconnect(self):
        self.disconnects += 1
        if self.disconnect_error is not None:
            raise self.disconnect_error

    async def get_block_with_transactions(self, number):
        await asyncio.sleep(0)
        return self._resolve(self.blocks, number)

    async def get_transaction(self, h):
        self.tx_calls.append(h)
        await asyncio.sleep(0)
        return self._resolve(self.txs, h)

    async def get_transaction_receipt(self, h):
        self.receipt_calls.append(h)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.receipt_delay)
            if h in self.gates:
                await self.gates[h].wait()
            return self._resolve(self.receipts, h)
        finally:
            self.in_flight -= 1

    async def subscribe_new_heads(self):
        for header in self.headers:
            await asyncio.sleep(0)
            yield header
        if self.stream_error is not None:
            raise self.stream_error

    async def subscribe_pending_transactions(self):
        for h in self.pending:
            await asyncio.sleep(0)
            yield h
        if self.stream_error is not None:
            raise self.stream_error


class FakeClientFactory:
    def __init__(self, *clients: FakeClient):
        self.clients = list(clients)
        self.created: List[FakeClient] = []

    def __call__(self) -> FakeClient:
        client = self.clients.pop(0) if self.clients else FakeClient()
        self.created.append(client)
        return client


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)
