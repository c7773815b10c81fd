import logging
from typing import Any, AsyncIterator, Optional

from web3 import AsyncWeb3, WebSocketProvider
from web3.exceptions import BlockNotFound, TransactionNotFound

from .models import Block, BlockHeader, Receipt, Transaction, to_hex


class SubscriptionClosed(RuntimeError):
    """The node stopped delivering a subscription without reporting an error."""


class ChainClient:
    """Thin async facade over a persistent web3 websocket connection.

    Everything the watchers need from the node goes through here, so the
    pipelines can be driven by any object exposing the same coroutines.
    """

    def __init__(self, ws_url: str, max_message_size: int = 20 * 1024 * 1024):
        self.ws_url = ws_url
        self.w3 = AsyncWeb3(
            WebSocketProvider(ws_url, websocket_kwargs={"max_size": max_message_size})
        )
        self.log = logging.getLogger("ChainClient")

    async def __aenter__(self) -> "ChainClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        await self.w3.provider.connect()
        self.log.info(f"Connected to {self.ws_url}")

    async def disconnect(self) -> None:
        await self.w3.provider.disconnect()

    async def get_block_number(self) -> int:
        return await self.w3.eth.block_number

    async def get_chain_id(self) -> int:
        return await self.w3.eth.chain_id

    async def check_connection(self) -> None:
        """Round-trip two cheap calls so a dead socket fails before subscribing."""
        block_number = await self.get_block_number()
        chain_id = await self.get_chain_id()
        self.log.info(f"Current block number: {block_number}, chain ID: {chain_id}")

    async def _subscribe(self, kind: str) -> AsyncIterator[Any]:
        sub_id = await self.w3.eth.subscribe(kind)
        self.log.info(f"Subscribed to {kind} ({sub_id})")
        async for response in self.w3.socket.process_subscriptions():
            if response.get("subscription") != sub_id:
                continue
            yield response["result"]
        raise SubscriptionClosed(f"{kind} subscription ended")

    async def subscribe_new_heads(self) -> AsyncIterator[BlockHeader]:
        async for head in self._subscribe("newHeads"):
            yield BlockHeader.from_rpc(head)

    async def subscribe_pending_transactions(self) -> AsyncIterator[str]:
        async for tx_hash in self._subscribe("newPendingTransactions"):
            yield to_hex(tx_hash)

    async def get_block_with_transactions(self, number: int) -> Optional[Block]:
        try:
            block = await self.w3.eth.get_block(number, full_transactions=True)
        except BlockNotFound:
            return None
        return Block.from_rpc(block)

    async def get_transaction(self, tx_hash: str) -> Optional[Transaction]:
        try:
            tx = await self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        return Transaction.from_rpc(tx)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return Receipt.from_rpc(receipt)
