import asyncio, logging
from typing import Any, Awaitable, Callable, Optional

from .config import WatcherConfig
from .stats import WatcherStats


class ConnectionSupervisor:
    """Owns the connect/subscribe loop and restarts it after any failure.

    Each pass builds a fresh client, connects, and hands it to `session`
    (the block dispatcher or the mempool watcher). Whatever ends the pass,
    an error or a stream that simply stops, the client is disconnected and
    the next pass starts after the reconnect delay. Only cancellation
    leaves `run`.
    """

    def __init__(
        self,
        client_factory: Callable[[], Any],
        session: Callable[[Any], Awaitable[None]],
        config: Optional[WatcherConfig] = None,
        stats: Optional[WatcherStats] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client_factory = client_factory
        self.session = session
        self.config = config or WatcherConfig()
        self.stats = stats or WatcherStats()
        self.sleep = sleep
        self.log = logging.getLogger("Supervisor")

    def next_delay(self, failures: int) -> float:
        """Delay before the next attempt after `failures` consecutive failed passes."""
        delay = self.config.reconnect_delay
        if self.config.reconnect_backoff == "fixed":
            return delay
        return min(delay * 2 ** max(failures - 1, 0), self.config.reconnect_max_delay)

    async def _disconnect(self, client: Any) -> None:
        try:
            await client.disconnect()
        except Exception as e:
            self.log.warning(f"Error while disconnecting: {e}")

    async def run_once(self) -> bool:
        """One connection epoch. Returns True when the connection was established and checked."""
        self.stats.epoch += 1
        connected = False
        streaming = False
        try:
            client = self.client_factory()
            await client.connect()
            connected = True
            await client.check_connection()
            streaming = True
            self.stats.connected = True
            self.log.info(f"Connection epoch {self.stats.epoch} started")
            await self.session(client)
            self.log.warning("Stream ended normally (this should not happen), restarting")
        except Exception as e:
            if streaming:
                self.log.error(f"Stream error: {e}")
            else:
                self.log.error(f"Connection error: {e}")
        finally:
            self.stats.connected = False
            if connected:
                await self._disconnect(client)
        return streaming

    async def run(self) -> None:
        failures = 0
        while True:
            if await self.run_once():
                failures = 0
            failures += 1
            self.stats.reconnects += 1
            delay = self.next_delay(failures)
            self.log.info(f"Reconnecting in {delay:g}s")
            await self.sleep(delay)
