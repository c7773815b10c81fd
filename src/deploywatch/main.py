from contextlib import asynccontextmanager
import argparse, asyncio, logging, os, sys
from typing import Optional

import dotenv
from fastapi import FastAPI, Request
from pydantic import BaseModel, ValidationError
import uvicorn

from .client import ChainClient
from .config import SwapConfig, WatcherConfig
from .dispatcher import block_session
from .logs import setup_logging
from .mempool import mempool_session
from .models import to_hex
from .stats import WatcherStats
from .supervisor import ConnectionSupervisor
from .swap import SwapClient

MODES = ("blocks", "mempool")


def load_config(log: logging.Logger) -> WatcherConfig:
    try:
        config = WatcherConfig.from_env()
    except ValidationError as e:
        log.error(f"Invalid configuration: {e}")
        sys.exit(1)
    if not config.ws_url:
        log.error("WS_URL not set")
        sys.exit(1)
    return config


def build_supervisor(
    mode: str, config: WatcherConfig, stats: WatcherStats, stream=None
) -> ConnectionSupervisor:
    if mode == "mempool":
        session = mempool_session(config, stream=stream, stats=stats)
    else:
        session = block_session(config, stream=stream, stats=stats)
    return ConnectionSupervisor(lambda: ChainClient(config.ws_url), session, config, stats)


@asynccontextmanager
async def lifespan(app: FastAPI):
    log = logging.getLogger("deploywatch")
    dotenv.load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    config = load_config(log)
    mode = os.getenv("MODE", "blocks").lower()
    if mode not in MODES:
        log.error(f"Unknown MODE {mode!r}, expected one of {MODES}")
        sys.exit(1)
    stats = WatcherStats()
    app.state.mode = mode
    app.state.stats = stats

    log.info(f"{mode} mode, starting watcher on {config.ws_url}...")
    supervisor_task = asyncio.create_task(build_supervisor(mode, config, stats).run())
    try:
        yield
    finally:
        # cancelling the supervisor tears down the current epoch and its pipelines
        supervisor_task.cancel()
        await asyncio.gather(supervisor_task, return_exceptions=True)
        log.info("Shutting down the application")


app = FastAPI(lifespan=lifespan)


class StatusResponse(BaseModel):
    mode: str
    uptime: float
    epoch: int
    connected: bool
    reconnects: int
    headers_seen: int
    blocks_processed: int
    blocks_skipped: int
    blocks_dropped: int
    events_emitted: int
    pending_seen: int
    last_block: Optional[int] = None


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/status", response_model=StatusResponse)
async def status(request: Request):
    stats = getattr(request.app.state, "stats", None) or WatcherStats()
    mode = getattr(request.app.state, "mode", "blocks")
    return StatusResponse(mode=mode, **stats.snapshot())


def run_swap(amount: int, log: logging.Logger) -> int:
    cfg = SwapConfig.from_env()
    if not cfg.private_key or not cfg.rpc_url:
        log.error("SWAP_RPC_URL and SWAP_PRIVATE_KEY must be set")
        return 1
    tx_hash = SwapClient.from_config(cfg).execute_swap(amount)
    if tx_hash is None:
        print("Swap failed, aborting.")
        return 1
    print(f"Swap executed successfully. Hash: {to_hex(tx_hash)}")
    return 0


def cli(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="deploywatch", description="Report contract deployments as they reach the chain head."
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("blocks", help="watch new heads (default)")
    sub.add_parser("mempool", help="watch the pending transaction feed")
    serve = sub.add_parser("serve", help="run the watcher behind a status API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    serve.add_argument("--mode", choices=MODES, default="blocks")
    swap = sub.add_parser("swap", help="submit one native-to-token swap")
    swap.add_argument("--amount", type=int, required=True, help="amount in wei")
    args = parser.parse_args(argv)

    dotenv.load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    log = logging.getLogger("deploywatch")
    command = args.command or "blocks"

    if command == "serve":
        os.environ["MODE"] = args.mode
        uvicorn.run("deploywatch.main:app", host=args.host, port=args.port)
        return 0
    if command == "swap":
        return run_swap(args.amount, log)

    config = load_config(log)
    log.info(f"{command} mode, starting watcher on {config.ws_url}...")
    try:
        asyncio.run(build_supervisor(command, config, WatcherStats()).run())
    except KeyboardInterrupt:
        log.info("Interrupted, exiting")
    return 0


if __name__ == "__main__":
    sys.exit(cli())
