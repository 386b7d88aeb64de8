"""
Queue interface for notification delivery.

Delivery is at least once and unordered. A received message stays
invisible to other consumers for the visibility timeout; it is removed
only by ``ack``. ``nack`` makes it visible again after a delay.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class QueueMessage:
    """One delivery of a queued notification."""
    message_id: str
    body: Dict[str, Any]
    # Backend handle for ack/nack of this particular delivery
    receipt: Optional[str] = None
    # Number of times the message has been delivered, this one included
    receive_count: int = 1
    enqueued_at: datetime = field(default_factory=datetime.utcnow)


class QueueBackend(ABC):
    """
    Abstract base class for queue backends.

    All queue implementations must provide these methods for
    sending, receiving and acknowledging messages.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def send(self, body: Dict[str, Any]) -> str:
        """
        Add a message to the queue.

        Returns:
            Message id
        """
        pass

    @abstractmethod
    def dequeue(self, timeout: Optional[float] = None) -> Optional[QueueMessage]:
        """
        Receive the next visible message and lease it.

        Args:
            timeout: Seconds to wait for a message (None = backend default)

        Returns:
            QueueMessage if available, None if timeout
        """
        pass

    @abstractmethod
    def ack(self, message: QueueMessage) -> None:
        """Delete a handled message."""
        pass

    @abstractmethod
    def nack(self, message: QueueMessage, delay_seconds: Optional[float] = None) -> None:
        """
        Release a message for redelivery.

        Args:
            message: Delivery to release
            delay_seconds: Time before it becomes visible again
                (None = rest of the visibility timeout)
        """
        pass

    @abstractmethod
    def size(self) -> int:
        """Approximate number of messages waiting to be received."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the queue backend and cleanup resources."""
        pass
