import time
from typing import Any, Mapping, Optional, Tuple

from attr import dataclass


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def to_hex(value: Any) -> str:
    """Normalise a hash given as str, bytes or HexBytes to 0x-prefixed lowercase hex."""
    if isinstance(value, str):
        value = value.lower()
        return value if value.startswith("0x") else f"0x{value}"
    return "0x" + bytes(value).hex()


def to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def _address(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else to_hex(value)


@dataclass(frozen=True)
class BlockHeader:
    number: int
    timestamp: int  # seconds

    @staticmethod
    def from_rpc(data: Mapping) -> "BlockHeader":
        return BlockHeader(number=to_int(data["number"]), timestamp=to_int(data["timestamp"]))


@dataclass(frozen=True)
class Transaction:
    hash: str
    sender: Optional[str]
    to: Optional[str]
    gas_price: int = 0
    # False for hash-only entries, whose sender and `to` were never fetched
    detailed: bool = True

    @property
    def is_creation_attempt(self) -> bool:
        # a missing `to` is the pre-receipt hint that the transaction deploys a contract
        return self.detailed and self.to is None

    @property
    def may_create_contract(self) -> bool:
        return not self.detailed or self.to is None

    @staticmethod
    def from_rpc(data: Mapping) -> "Transaction":
        gas_price = data.get("gasPrice")
        return Transaction(
            hash=to_hex(data["hash"]),
            sender=_address(data.get("from")),
            to=_address(data.get("to")),
            gas_price=to_int(gas_price) if gas_price is not None else 0,
        )


@dataclass(frozen=True)
class Block:
    number: int
    timestamp: int  # seconds
    transactions: Tuple[Transaction, ...] = ()

    @property
    def timestamp_ms(self) -> int:
        return self.timestamp * 1000

    @staticmethod
    def from_rpc(data: Mapping) -> "Block":
        txs = []
        for tx in data.get("transactions", []):
            # hashes only when the node was asked without full transactions
            if isinstance(tx, (str, bytes)):
                txs.append(Transaction(hash=to_hex(tx), sender=None, to=None, detailed=False))
            else:
                txs.append(Transaction.from_rpc(tx))
        return Block(
            number=to_int(data["number"]),
            timestamp=to_int(data["timestamp"]),
            transactions=tuple(txs),
        )


@dataclass(frozen=True)
class LogEntry:
    address: str
    topics: Tuple[str, ...] = ()
    data: str = "0x"

    @staticmethod
    def from_rpc(data: Mapping) -> "LogEntry":
        return LogEntry(
            address=_address(data.get("address")) or "",
            topics=tuple(to_hex(t) for t in data.get("topics", [])),
            data=to_hex(data.get("data", b"")),
        )


@dataclass(frozen=True)
class Receipt:
    transaction_hash: str
    contract_address: Optional[str]
    block_number: Optional[int]
    logs: Tuple[LogEntry, ...] = ()

    @property
    def created_contract(self) -> bool:
        return self.contract_address is not None

    @staticmethod
    def from_rpc(data: Mapping) -> "Receipt":
        block_number = data.get("blockNumber")
        return Receipt(
            transaction_hash=to_hex(data["transactionHash"]),
            contract_address=_address(data.get("contractAddress")),
            block_number=to_int(block_number) if block_number is not None else None,
            logs=tuple(LogEntry.from_rpc(log) for log in data.get("logs", [])),
        )


@dataclass(frozen=True)
class ContractCreationEvent:
    contract_address: str
    block_timestamp_ms: int
    observed_at_ms: int
    latency_ms: int
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None

    @staticmethod
    def create(
        contract_address: str,
        block_timestamp_ms: int,
        observed_at_ms: int,
        transaction_hash: Optional[str] = None,
        block_number: Optional[int] = None,
    ) -> "ContractCreationEvent":
        # local clocks running ahead of the block producer are clamped, never signed
        return ContractCreationEvent(
            contract_address=contract_address,
            block_timestamp_ms=block_timestamp_ms,
            observed_at_ms=observed_at_ms,
            latency_ms=max(0, observed_at_ms - block_timestamp_ms),
            transaction_hash=transaction_hash,
            block_number=block_number,
        )

    def to_record(self) -> str:
        return (
            f"CONTRACT|{self.contract_address}|{self.block_timestamp_ms}"
            f"|{self.observed_at_ms}|{self.latency_ms}"
        )


@dataclass(frozen=True)
class PendingCreationEvent:
    transaction_hash: str
    contract_address: str
    sender: Optional[str]
    gas_price: int
    received_at_ms: int
    processed_at_ms: int
    delay_ms: int

    @staticmethod
    def create(
        tx: Transaction, receipt: Receipt, received_at_ms: int, processed_at_ms: int
    ) -> "PendingCreationEvent":
        return PendingCreationEvent(
            transaction_hash=tx.hash,
            contract_address=receipt.contract_address or "",
            sender=tx.sender,
            gas_price=tx.gas_price,
            received_at_ms=received_at_ms,
            processed_at_ms=processed_at_ms,
            delay_ms=max(0, processed_at_ms - received_at_ms),
        )

    def to_record(self) -> str:
        return (
            f"PENDING|{self.transaction_hash}|{self.contract_address}|{self.sender or ''}"
            f"|{self.gas_price}|{self.received_at_ms}|{self.processed_at_ms}|{self.delay_ms}"
        )
