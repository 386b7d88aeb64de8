"""
Queue module for notification delivery.

Provides queue backends (in-process, Redis, SQS) and a factory
selecting the backend configured for the deployment.
"""

from typing import Optional

from mediaflow.common.errors import ConfigurationError
from mediaflow.config.settings import Settings, get_settings
from mediaflow.queue.interface import QueueBackend, QueueMessage
from mediaflow.queue.inproc import InProcessQueue


def create_queue(name: str, settings: Optional[Settings] = None) -> QueueBackend:
    """
    Factory function to create a queue backend based on settings.

    Args:
        name: Logical queue name (SQS queue name or URL for the sqs backend)
        settings: Settings to read (defaults to the process settings)
    """
    settings = settings or get_settings()
    backend = settings.queue_backend

    if backend == "inproc":
        return InProcessQueue(name, visibility_timeout=settings.visibility_timeout_seconds)
    if backend == "redis":
        from mediaflow.queue.redis import RedisQueue
        return RedisQueue(name, redis_url=settings.redis_url,
                          visibility_timeout=settings.visibility_timeout_seconds)
    if backend == "sqs":
        from mediaflow.queue.sqs import SQSQueue
        return SQSQueue(name, region=settings.aws_region,
                        visibility_timeout=settings.visibility_timeout_seconds,
                        wait_seconds=settings.receive_wait_seconds)
    raise ConfigurationError(f"Unknown queue backend: {backend}")


__all__ = [
    "QueueBackend",
    "QueueMessage",
    "InProcessQueue",
    "create_queue",
]
