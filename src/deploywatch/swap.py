import logging, time
from typing import Any, Optional, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3
from web3.types import TxParams

from .config import SwapConfig
from .models import to_hex

ROUTER_ABI = [
    {
        "name": "swapExactTokensForTokens",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    }
]


class SwapClient:
    """Submits a single router swap from the native token into a target token.

    Fees are set for fast inclusion: pending base fee plus a fixed priority
    tip, no minimum output and a very short deadline. The transaction is
    sent without waiting for it to be mined.
    """

    GAS_LIMIT = 300_000
    PRIORITY_FEE = Web3.to_wei(2, "gwei")
    FALLBACK_BASE_FEE = Web3.to_wei(50, "gwei")
    DEADLINE_SECONDS = 15

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        router_address: str,
        native_address: str,
        token_address: str,
        chain_id: int = 250,
        w3: Optional[Any] = None,
    ):
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 60}))
        self.account: LocalAccount = Account.from_key(private_key)
        self.chain_id = chain_id
        self.router = self.w3.eth.contract(
            address=Web3.to_checksum_address(router_address), abi=ROUTER_ABI
        )
        self.path = [
            Web3.to_checksum_address(native_address),
            Web3.to_checksum_address(token_address),
        ]
        self.log = logging.getLogger("SwapClient")

    @staticmethod
    def from_config(cfg: SwapConfig) -> "SwapClient":
        return SwapClient(
            cfg.rpc_url,
            cfg.private_key,
            cfg.router_address,
            cfg.native_address,
            cfg.token_address,
            chain_id=cfg.chain_id,
        )

    def _fees(self) -> Tuple[int, int]:
        pending = self.w3.eth.get_block("pending")
        base_fee = pending.get("baseFeePerGas") or self.FALLBACK_BASE_FEE
        return base_fee + self.PRIORITY_FEE, self.PRIORITY_FEE

    def build_swap(self, amount_in: int) -> TxParams:
        max_fee, priority_fee = self._fees()
        deadline = int(time.time()) + self.DEADLINE_SECONDS
        fn = self.router.functions.swapExactTokensForTokens(
            amount_in, 0, self.path, self.account.address, deadline
        )
        base: TxParams = {}
        base["from"] = self.account.address
        base["chainId"] = self.chain_id
        base["gas"] = self.GAS_LIMIT
        base["maxFeePerGas"] = max_fee
        base["maxPriorityFeePerGas"] = priority_fee
        base["nonce"] = self.w3.eth.get_transaction_count(self.account.address, "pending")
        return fn.build_transaction(base)

    def execute_swap(self, amount_in: int) -> Optional[HexBytes]:
        """Hash of the submitted swap, or None when building or sending failed."""
        try:
            tx = self.build_swap(amount_in)
            signed = self.account.sign_transaction(tx)  # type: ignore
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            self.log.error(f"Transaction failed: {e}")
            return None
        self.log.info(f"Transaction sent: {to_hex(tx_hash)}")
        return HexBytes(tx_hash)
