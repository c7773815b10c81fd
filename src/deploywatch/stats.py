import time
from typing import Any, Dict, Optional


class WatcherStats:
    """Monotonic counters shared by every task on the event loop."""

    def __init__(self):
        self.started_at = time.time()
        self.epoch = 0
        self.connected = False
        self.reconnects = 0
        self.headers_seen = 0
        self.blocks_processed = 0
        self.blocks_skipped = 0
        self.blocks_dropped = 0
        self.events_emitted = 0
        self.pending_seen = 0
        self.last_block: Optional[int] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "uptime": round(time.time() - self.started_at, 3),
            "epoch": self.epoch,
            "connected": self.connected,
            "reconnects": self.reconnects,
            "headers_seen": self.headers_seen,
            "blocks_processed": self.blocks_processed,
            "blocks_skipped": self.blocks_skipped,
            "blocks_dropped": self.blocks_dropped,
            "events_emitted": self.events_emitted,
            "pending_seen": self.pending_seen,
            "last_block": self.last_block,
        }
