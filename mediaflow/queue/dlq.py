"""
Dead Letter Queue (DLQ) for poison messages.

Messages that exceeded the delivery ceiling, or failed permanently, are
written here as one JSON file each for manual inspection.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from mediaflow.common.metrics import dead_letter_queue_depth

logger = logging.getLogger(__name__)


class DeadLetterQueue:
    """
    File-based dead letter store.

    File names are ``{queue}_{message_id}_{timestamp}.json``.
    """

    def __init__(self, storage_path: str = "./storage/dlq"):
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)

    def add(
        self,
        queue: str,
        message_id: str,
        body: Dict[str, Any],
        error: str,
        receive_count: int,
        original_timestamp: Optional[str] = None,
    ) -> Path:
        """
        Store a poison message.

        Raises:
            OSError: the entry could not be written; the caller must not
                delete the message from its live queue
        """
        entry = {
            "queue": queue,
            "message_id": message_id,
            "body": body,
            "error": error,
            "receive_count": receive_count,
            "original_timestamp": original_timestamp or datetime.utcnow().isoformat(),
            "dlq_timestamp": datetime.utcnow().isoformat(),
        }
        filename = f"{queue}_{message_id}_{datetime.utcnow().strftime('%Y%m%d_%H%M%S_%f')}.json"
        filepath = self.storage_path / filename

        with open(filepath, "w") as f:
            json.dump(entry, f, indent=2, default=str)

        logger.error(
            f"Message {message_id} from {queue} moved to DLQ after {receive_count} deliveries",
            extra={
                "extra_fields": {
                    "queue": queue,
                    "message_id": message_id,
                    "error": error,
                    "dlq_file": str(filepath),
                }
            },
        )
        self._update_metrics(queue)
        return filepath

    def list(self, queue: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """Newest entries first, optionally for one queue."""
        entries = []
        pattern = f"{queue}_*.json" if queue else "*.json"
        files = sorted(self.storage_path.glob(pattern),
                       key=lambda p: p.stat().st_mtime, reverse=True)
        for filepath in files[:limit]:
            try:
                with open(filepath, "r") as f:
                    entry = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to read DLQ entry {filepath}: {e}")
                continue
            entry["dlq_file"] = filepath.name
            entries.append(entry)
        return entries

    def get(self, message_id: str) -> Optional[Dict[str, Any]]:
        for filepath in self.storage_path.glob(f"*_{message_id}_*.json"):
            try:
                with open(filepath, "r") as f:
                    entry = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to read DLQ entry {filepath}: {e}")
                continue
            entry["dlq_file"] = filepath.name
            return entry
        return None

    def remove(self, message_id: str) -> bool:
        """Remove an entry after manual resolution."""
        removed = False
        for filepath in self.storage_path.glob(f"*_{message_id}_*.json"):
            queue = filepath.name.split(f"_{message_id}_")[0]
            filepath.unlink()
            removed = True
            logger.info(f"Removed message {message_id} from DLQ")
            self._update_metrics(queue)
        return removed

    def count(self, queue: Optional[str] = None) -> int:
        pattern = f"{queue}_*.json" if queue else "*.json"
        return len(list(self.storage_path.glob(pattern)))

    def _update_metrics(self, queue: str) -> None:
        dead_letter_queue_depth.labels(queue=queue).set(self.count(queue))
