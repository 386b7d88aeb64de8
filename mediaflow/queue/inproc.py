"""
In-process queue backend.

Thread-safe, single-process implementation with the same lease semantics
as the networked backends: a received message is hidden until it is
acked, nacked, or its visibility timeout runs out.
"""

import heapq
import itertools
import threading
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from mediaflow.queue.interface import QueueBackend, QueueMessage


class InProcessQueue(QueueBackend):
    """In-process queue with visibility timeouts."""

    def __init__(self, name: str, visibility_timeout: float = 60.0):
        """
        Args:
            name: Logical queue name
            visibility_timeout: Seconds a received message stays hidden
        """
        super().__init__(name)
        self.visibility_timeout = visibility_timeout
        # (visible_at, sequence, message_id)
        self._heap: List[Tuple[float, int, str]] = []
        self._messages: Dict[str, QueueMessage] = {}
        # message_id -> (receipt, lease deadline)
        self._leases: Dict[str, Tuple[str, float]] = {}
        self._sequence = itertools.count()
        self._condition = threading.Condition()
        self._closed = False

    def send(self, body: Dict[str, Any]) -> str:
        if self._closed:
            raise RuntimeError("Queue is closed")
        message_id = str(uuid.uuid4())
        with self._condition:
            self._messages[message_id] = QueueMessage(
                message_id=message_id, body=body, receive_count=0)
            heapq.heappush(self._heap, (time.monotonic(), next(self._sequence), message_id))
            self._condition.notify()
        return message_id

    def _release_expired_leases(self, now: float) -> None:
        expired = [mid for mid, (_, deadline) in self._leases.items() if deadline <= now]
        for message_id in expired:
            del self._leases[message_id]
            heapq.heappush(self._heap, (now, next(self._sequence), message_id))

    def _pop_visible(self, now: float) -> Optional[QueueMessage]:
        while self._heap and self._heap[0][0] <= now:
            _, _, message_id = heapq.heappop(self._heap)
            message = self._messages.get(message_id)
            if message is None or message_id in self._leases:
                continue
            message.receive_count += 1
            receipt = str(uuid.uuid4())
            self._leases[message_id] = (receipt, now + self.visibility_timeout)
            return QueueMessage(
                message_id=message.message_id,
                body=message.body,
                receipt=receipt,
                receive_count=message.receive_count,
                enqueued_at=message.enqueued_at,
            )
        return None

    def dequeue(self, timeout: Optional[float] = None) -> Optional[QueueMessage]:
        deadline = time.monotonic() + (timeout if timeout is not None else 1.0)
        with self._condition:
            while not self._closed:
                now = time.monotonic()
                self._release_expired_leases(now)
                message = self._pop_visible(now)
                if message is not None:
                    return message
                remaining = deadline - now
                if remaining <= 0:
                    return None
                # Wake up for the next delayed message or lease expiry
                self._condition.wait(min(remaining, 0.1))
        return None

    def _holds_lease(self, message: QueueMessage) -> bool:
        lease = self._leases.get(message.message_id)
        return lease is not None and lease[0] == message.receipt

    def ack(self, message: QueueMessage) -> None:
        with self._condition:
            if not self._holds_lease(message):
                # Lease expired and the message was redelivered elsewhere
                return
            del self._leases[message.message_id]
            self._messages.pop(message.message_id, None)

    def nack(self, message: QueueMessage, delay_seconds: Optional[float] = None) -> None:
        with self._condition:
            if not self._holds_lease(message):
                return
            del self._leases[message.message_id]
            delay = self.visibility_timeout if delay_seconds is None else delay_seconds
            heapq.heappush(
                self._heap,
                (time.monotonic() + max(0.0, delay), next(self._sequence), message.message_id))
            self._condition.notify()

    def size(self) -> int:
        with self._condition:
            return len(self._messages) - len(self._leases)

    def in_flight(self) -> int:
        with self._condition:
            return len(self._leases)

    def close(self) -> None:
        with self._condition:
            self._closed = True
            self._condition.notify_all()
