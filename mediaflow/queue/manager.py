"""
Queue manager for application-wide queue access.

Holds one backend per queue name so that producers and the dispatcher
in the same process share in-process queues.
"""

import threading
from typing import Dict, Optional

from mediaflow.queue import create_queue
from mediaflow.queue.dispatcher import QueueDispatcher
from mediaflow.queue.interface import QueueBackend

# Global instances (initialized in main.py)
_queues: Dict[str, QueueBackend] = {}
_queues_lock = threading.Lock()
_dispatcher: Optional[QueueDispatcher] = None


def get_queue(name: str) -> QueueBackend:
    """Get the global backend for a queue, creating it on first use."""
    with _queues_lock:
        queue = _queues.get(name)
        if queue is None:
            queue = create_queue(name)
            _queues[name] = queue
        return queue


def get_dispatcher() -> Optional[QueueDispatcher]:
    """Get the global queue dispatcher instance."""
    return _dispatcher


def set_dispatcher(dispatcher: Optional[QueueDispatcher]) -> None:
    """Set the global queue dispatcher instance."""
    global _dispatcher
    _dispatcher = dispatcher


def close_queues() -> None:
    """Close and forget every queue backend."""
    with _queues_lock:
        for queue in _queues.values():
            queue.close()
        _queues.clear()
