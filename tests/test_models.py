import pytest
from hexbytes import HexBytes
from web3.datastructures import AttributeDict

from deploywatch.models import (
    Block,
    BlockHeader,
    ContractCreationEvent,
    PendingCreationEvent,
    Receipt,
    Transaction,
    to_hex,
)


@pytest.mark.parametrize(
    "block_ms, observed_ms, expected",
    [
        (1_000, 1_250, 250),
        (1_000, 1_000, 0),
        (5_000, 4_000, 0),  # local clock behind the block producer
        (0, 0, 0),
    ],
)
def test_latency_is_clamped(block_ms, observed_ms, expected):
    event = ContractCreationEvent.create("0xAA", block_ms, observed_ms)
    assert event.latency_ms == expected
    assert event.latency_ms >= 0


def test_contract_record_format():
    event = ContractCreationEvent.create("0xAbC0000000000000000000000000000000000001", 1_700_000_000_000, 1_700_000_000_420)
    assert event.to_record() == (
        "CONTRACT|0xAbC0000000000000000000000000000000000001|1700000000000|1700000000420|420"
    )


def test_events_are_immutable():
    event = ContractCreationEvent.create("0xAA", 1, 2)
    with pytest.raises(Exception):
        event.latency_ms = 5


def test_pending_record_format():
    tx = Transaction(hash="0x01", sender="0xCreator", to=None, gas_price=7)
    receipt = Receipt(transaction_hash="0x01", contract_address="0xC0", block_number=9)
    event = PendingCreationEvent.create(tx, receipt, received_at_ms=100, processed_at_ms=90)
    assert event.delay_ms == 0
    assert event.to_record() == "PENDING|0x01|0xC0|0xCreator|7|100|90|0"


def test_to_hex_normalises_inputs():
    assert to_hex(HexBytes(b"\x0a\xff")) == "0x0aff"
    assert to_hex("0xABCD") == "0xabcd"
    assert to_hex("beef") == "0xbeef"


def test_header_from_rpc_accepts_hex_quantities():
    header = BlockHeader.from_rpc({"number": "0x64", "timestamp": "0x10"})
    assert header == BlockHeader(number=100, timestamp=16)


def test_block_from_web3_attribute_dict():
    raw = AttributeDict(
        {
            "number": 100,
            "timestamp": 1_700_000_000,
            "transactions": [
                AttributeDict(
                    {
                        "hash": HexBytes("0x" + "11" * 32),
                        "from": "0x" + "aa" * 20,
                        "to": None,
                        "gasPrice": 3,
                    }
                ),
                AttributeDict(
                    {
                        "hash": HexBytes("0x" + "22" * 32),
                        "from": "0x" + "aa" * 20,
                        "to": "0x" + "bb" * 20,
                        "gasPrice": 4,
                    }
                ),
            ],
        }
    )
    block = Block.from_rpc(raw)
    assert block.number == 100
    assert block.timestamp_ms == 1_700_000_000_000
    assert [tx.hash for tx in block.transactions] == ["0x" + "11" * 32, "0x" + "22" * 32]
    assert block.transactions[0].is_creation_attempt
    assert not block.transactions[1].is_creation_attempt


def test_hash_only_transactions_are_not_flagged_as_creations():
    block = Block.from_rpc({"number": 5, "timestamp": 1, "transactions": ["0x" + "11" * 32, HexBytes(b"\x22" * 32)]})
    assert [tx.hash for tx in block.transactions] == ["0x" + "11" * 32, "0x" + "22" * 32]
    for tx in block.transactions:
        assert not tx.detailed
        assert not tx.is_creation_attempt
        # `to` is unknown, so the receipt still has to be looked up
        assert tx.may_create_contract


def test_receipt_from_web3_attribute_dict():
    raw = AttributeDict(
        {
            "transactionHash": HexBytes("0x" + "33" * 32),
            "contractAddress": "0x" + "cc" * 20,
            "blockNumber": 101,
            "logs": [
                AttributeDict(
                    {"address": "0x" + "cc" * 20, "topics": [HexBytes(b"\x01" * 32)], "data": HexBytes(b"")}
                )
            ],
        }
    )
    receipt = Receipt.from_rpc(raw)
    assert receipt.created_contract
    assert receipt.contract_address == "0x" + "cc" * 20
    assert receipt.block_number == 101
    assert receipt.logs[0].topics == ("0x" + "01" * 32,)
    assert receipt.logs[0].data == "0x"


def test_receipt_without_contract_address():
    receipt = Receipt.from_rpc({"transactionHash": "0x44", "contractAddress": None, "blockNumber": None})
    assert not receipt.created_contract
    assert receipt.block_number is None
