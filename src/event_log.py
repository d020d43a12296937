"""
Append-only JSON-lines store for ingested playback events.
"""

from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional

import orjson

from models import ReceivedBatch
from utils import iso_now


class EventLog:
    """Append every event of every batch to one log file per run."""

    def __init__(self, log_dir: str = "logs", started_at: Optional[datetime] = None):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

        started_at = started_at or datetime.now(timezone.utc)
        self.path = self.log_dir / f"events-{started_at.strftime('%Y-%m-%d-%H-%M-%S')}.log"
        self.path.touch()

    def log_batch(self, batch: ReceivedBatch, source: str = "batch") -> int:
        """Write one record per event, the event stored as received. Returns the number written."""
        received_at = iso_now()
        lines = [
            orjson.dumps({
                "receivedAt": received_at,
                "source": source,
                "clientId": batch.client_id,
                "sessionId": batch.session_id,
                "batchId": batch.batch_id,
                "isRetry": batch.is_retry,
                "event": event,
            }).decode("utf-8")
            for event in batch.events or []
        ]
        if not lines:
            return 0

        with self._lock:
            with open(self.path, "a", encoding="utf-8") as handle:
                handle.write("\n".join(lines) + "\n")
        return len(lines)
