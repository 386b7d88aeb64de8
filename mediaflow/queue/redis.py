"""
Redis queue backend.

Key layout per queue name:
- queue:{name}:ready       sorted set, score = time the message becomes visible
- queue:{name}:processing  sorted set, score = lease deadline
- queue:{name}:meta:{id}   hash with the body, receive count and receipt

A lease is claimed with ZREM on the ready set, so exactly one consumer
wins each delivery.
"""

import json
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import redis
from redis.exceptions import ConnectionError as RedisConnectionError

from mediaflow.queue.interface import QueueBackend, QueueMessage

logger = logging.getLogger(__name__)


class RedisQueue(QueueBackend):
    """
    Redis-backed queue backend.

    Supports consumers spread across multiple instances.
    """

    def __init__(self, name: str, redis_url: str = "redis://localhost:6379/0",
                 visibility_timeout: float = 60.0, client: Optional[redis.Redis] = None):
        """
        Args:
            name: Logical queue name
            redis_url: Redis connection URL
            visibility_timeout: Seconds a received message stays hidden
            client: Preconfigured client (tests)
        """
        super().__init__(name)
        self.redis_url = redis_url
        self.visibility_timeout = visibility_timeout
        self._client = client
        self._closed = False
        self.ready_key = f"queue:{name}:ready"
        self.processing_key = f"queue:{name}:processing"

    def _meta_key(self, message_id: str) -> str:
        return f"queue:{self.name}:meta:{message_id}"

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            try:
                self._client = redis.Redis.from_url(
                    self.redis_url, decode_responses=True, socket_connect_timeout=5)
                self._client.ping()
            except RedisConnectionError as e:
                self._client = None
                raise ConnectionError(f"Failed to connect to Redis at {self.redis_url}: {e}")
        return self._client

    def send(self, body: Dict[str, Any]) -> str:
        if self._closed:
            raise RuntimeError("Queue is closed")
        client = self._get_client()
        message_id = str(uuid.uuid4())
        pipe = client.pipeline()
        pipe.hset(self._meta_key(message_id), mapping={
            "body": json.dumps(body),
            "receive_count": 0,
            "enqueued_at": datetime.utcnow().isoformat(),
        })
        pipe.zadd(self.ready_key, {message_id: time.time()})
        pipe.execute()
        return message_id

    def _requeue_expired(self, client: redis.Redis, now: float) -> None:
        for message_id in client.zrangebyscore(self.processing_key, "-inf", now):
            if client.zrem(self.processing_key, message_id):
                client.zadd(self.ready_key, {message_id: now})
                logger.debug(f"Lease on {message_id} expired, message visible again")

    def _claim(self, client: redis.Redis, now: float) -> Optional[QueueMessage]:
        for message_id in client.zrangebyscore(self.ready_key, "-inf", now, start=0, num=10):
            if not client.zrem(self.ready_key, message_id):
                continue  # Claimed by another consumer
            receipt = str(uuid.uuid4())
            pipe = client.pipeline()
            pipe.zadd(self.processing_key, {message_id: now + self.visibility_timeout})
            pipe.hincrby(self._meta_key(message_id), "receive_count", 1)
            pipe.hset(self._meta_key(message_id), "receipt", receipt)
            pipe.hgetall(self._meta_key(message_id))
            _, receive_count, _, meta = pipe.execute()
            if not meta.get("body"):
                client.zrem(self.processing_key, message_id)
                continue
            return QueueMessage(
                message_id=message_id,
                body=json.loads(meta["body"]),
                receipt=receipt,
                receive_count=int(receive_count),
                enqueued_at=datetime.fromisoformat(meta["enqueued_at"]),
            )
        return None

    def dequeue(self, timeout: Optional[float] = None) -> Optional[QueueMessage]:
        if self._closed:
            return None
        client = self._get_client()
        deadline = time.time() + (timeout if timeout is not None else 1.0)
        while not self._closed:
            now = time.time()
            self._requeue_expired(client, now)
            message = self._claim(client, now)
            if message is not None:
                return message
            remaining = deadline - time.time()
            if remaining <= 0:
                return None
            time.sleep(min(0.1, remaining))
        return None

    def _holds_lease(self, client: redis.Redis, message: QueueMessage) -> bool:
        return client.hget(self._meta_key(message.message_id), "receipt") == message.receipt

    def ack(self, message: QueueMessage) -> None:
        client = self._get_client()
        if not self._holds_lease(client, message):
            return
        pipe = client.pipeline()
        pipe.zrem(self.processing_key, message.message_id)
        pipe.delete(self._meta_key(message.message_id))
        pipe.execute()

    def nack(self, message: QueueMessage, delay_seconds: Optional[float] = None) -> None:
        client = self._get_client()
        if not self._holds_lease(client, message):
            return
        delay = self.visibility_timeout if delay_seconds is None else max(0.0, delay_seconds)
        if client.zrem(self.processing_key, message.message_id):
            client.zadd(self.ready_key, {message.message_id: time.time() + delay})

    def size(self) -> int:
        return self._get_client().zcard(self.ready_key)

    def close(self) -> None:
        self._closed = True
        if self._client:
            self._client.close()
            self._client = None
