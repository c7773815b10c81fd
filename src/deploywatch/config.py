import os
from typing import Literal, Optional

import dotenv
from pydantic import BaseModel, Field, field_validator, model_validator


class SwapConfig(BaseModel):
    rpc_url: str
    private_key: str
    router_address: str
    native_address: str
    token_address: str
    chain_id: int = 250

    @staticmethod
    def from_env() -> "SwapConfig":
        dotenv.load_dotenv()
        return SwapConfig(
            rpc_url=os.getenv("SWAP_RPC_URL", ""),
            private_key=os.getenv("SWAP_PRIVATE_KEY", ""),
            router_address=os.getenv("SWAP_ROUTER_ADDRESS", ""),
            native_address=os.getenv("SWAP_NATIVE_ADDRESS", ""),
            token_address=os.getenv("SWAP_TOKEN_ADDRESS", ""),
            chain_id=int(os.getenv("SWAP_CHAIN_ID", "250")),
        )


class WatcherConfig(BaseModel):
    ws_url: str = ""

    # receipt fan-out and output
    receipt_concurrency: int = Field(default=200, ge=1, le=1000)
    channel_capacity: int = Field(default=100, ge=1, le=10_000)
    output_batch_size: int = Field(default=32, ge=1)
    prefilter_creations: bool = False

    # cross-block pipeline pool
    pipeline_workers: int = Field(default=8, ge=1, le=256)
    # 0 queues every header; above 0 the oldest waiting header is dropped at that depth
    block_backlog: int = Field(default=0, ge=0)

    # reconnect policy
    reconnect_delay: float = 5.0
    reconnect_backoff: Literal["fixed", "exponential"] = "fixed"
    reconnect_max_delay: float = 60.0

    # pending transaction feed
    mempool_concurrency: int = Field(default=50, ge=1, le=1000)
    receipt_timeout: float = Field(default=0.0, ge=0)
    receipt_poll_interval: float = Field(default=1.0, gt=0)

    log_level: str = "INFO"

    @field_validator("reconnect_delay")
    @classmethod
    def _positive_delay(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("reconnect_delay must be positive")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _max_delay_covers_delay(self) -> "WatcherConfig":
        if self.reconnect_max_delay < self.reconnect_delay:
            raise ValueError("reconnect_max_delay must not be smaller than reconnect_delay")
        return self

    @staticmethod
    def from_env(env: Optional[dict] = None) -> "WatcherConfig":
        """Build the config from the process environment (after loading .env).

        Unset variables keep their defaults; malformed ones raise a
        pydantic ValidationError.
        """
        if env is None:
            dotenv.load_dotenv()
            env = dict(os.environ)
        names = {
            "ws_url": "WS_URL",
            "receipt_concurrency": "RECEIPT_CONCURRENCY",
            "channel_capacity": "CHANNEL_CAPACITY",
            "output_batch_size": "OUTPUT_BATCH_SIZE",
            "prefilter_creations": "PREFILTER_CREATIONS",
            "pipeline_workers": "PIPELINE_WORKERS",
            "block_backlog": "BLOCK_BACKLOG",
            "reconnect_delay": "RECONNECT_DELAY",
            "reconnect_backoff": "RECONNECT_BACKOFF",
            "reconnect_max_delay": "RECONNECT_MAX_DELAY",
            "mempool_concurrency": "MEMPOOL_CONCURRENCY",
            "receipt_timeout": "RECEIPT_TIMEOUT",
            "receipt_poll_interval": "RECEIPT_POLL_INTERVAL",
            "log_level": "LOG_LEVEL",
        }
        values = {field: env[var] for field, var in names.items() if env.get(var)}
        return WatcherConfig(**values)
