"""
Redis job ledger.

Key layout:
- ledger:job:{job_id}       JSON record
- ledger:asset:{asset_id}   set of job ids for one asset
- ledger:open               set of job ids that are not terminal

Terminal records expire after ``terminal_ttl_seconds``; open records
never expire.
"""

import json
import logging
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
    WatchError,
)

from mediaflow.common.resilience import retry_ledger_operation
from mediaflow.ledger.interface import (
    ExternalJobRecord, JobKind, JobLedger, JobStatus, LedgerError
)

logger = logging.getLogger(__name__)

_MAX_CAS_ATTEMPTS = 10


def _ledger_call(func: Callable) -> Callable:
    """
    Retry connection failures, then surface anything left as LedgerError.
    """
    @retry_ledger_operation
    def attempt(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise ConnectionError(str(e)) from e

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return attempt(*args, **kwargs)
        except (ConnectionError, TimeoutError, RedisError) as e:
            raise LedgerError(f"Ledger {func.__name__} failed: {e}") from e
    return wrapper


class RedisJobLedger(JobLedger):
    """Job ledger backed by Redis."""

    JOB_KEY = "ledger:job"
    ASSET_KEY = "ledger:asset"
    OPEN_KEY = "ledger:open"

    def __init__(self, redis_url: str = "redis://localhost:6379/0",
                 terminal_ttl_seconds: int = 7 * 24 * 3600,
                 client: Optional[redis.Redis] = None):
        """
        Args:
            redis_url: Redis connection URL
            terminal_ttl_seconds: How long reconciled records are kept
            client: Preconfigured client (tests)
        """
        self.redis_url = redis_url
        self.terminal_ttl_seconds = terminal_ttl_seconds
        self._client = client

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=10,
            )
        return self._client

    def _job_key(self, job_id: str) -> str:
        return f"{self.JOB_KEY}:{job_id}"

    def _asset_key(self, asset_id: str) -> str:
        return f"{self.ASSET_KEY}:{asset_id}"

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[ExternalJobRecord]:
        if raw is None:
            return None
        return ExternalJobRecord.from_dict(json.loads(raw))

    def _load_many(self, job_ids) -> List[ExternalJobRecord]:
        job_ids = sorted(job_ids)
        if not job_ids:
            return []
        raws = self._get_client().mget([self._job_key(j) for j in job_ids])
        return [r for r in (self._decode(raw) for raw in raws) if r is not None]

    @_ledger_call
    def create(self, record: ExternalJobRecord) -> ExternalJobRecord:
        client = self._get_client()
        key = self._job_key(record.job_id)
        created = client.set(key, json.dumps(record.to_dict()), nx=True)
        if not created:
            existing = self._decode(client.get(key))
            if existing is not None:
                logger.info(f"Ledger already has job {record.job_id}, keeping existing record")
                return existing
            # Expired between SET NX and GET; write again
            client.set(key, json.dumps(record.to_dict()))

        pipe = client.pipeline()
        pipe.sadd(self._asset_key(record.asset_id), record.job_id)
        if not record.is_terminal:
            pipe.sadd(self.OPEN_KEY, record.job_id)
        pipe.execute()
        return record

    @_ledger_call
    def get(self, job_id: str) -> Optional[ExternalJobRecord]:
        return self._decode(self._get_client().get(self._job_key(job_id)))

    @_ledger_call
    def find_by_asset(self, asset_id: str) -> List[ExternalJobRecord]:
        return self._load_many(self._get_client().smembers(self._asset_key(asset_id)))

    @_ledger_call
    def list_open(self, kind: Optional[JobKind] = None) -> List[ExternalJobRecord]:
        client = self._get_client()
        job_ids = client.smembers(self.OPEN_KEY)
        records = self._load_many(job_ids)
        found = {r.job_id for r in records}
        stale = [j for j in job_ids if j not in found]
        if stale:
            client.srem(self.OPEN_KEY, *stale)
        return [r for r in records
                if not r.is_terminal and (kind is None or r.kind == kind)]

    def _has_open_sibling(self, pipe, record: ExternalJobRecord) -> bool:
        """
        Whether another job of the same asset is still open.

        The sibling keys join the WATCH, so a sibling settling concurrently
        aborts this transaction; the last job to settle starts the index TTL.
        """
        siblings = [j for j in pipe.smembers(self._asset_key(record.asset_id))
                    if j != record.job_id]
        if not siblings:
            return False
        keys = [self._job_key(j) for j in siblings]
        pipe.watch(*keys)
        return any(r is not None and not r.is_terminal
                   for r in (self._decode(pipe.get(k)) for k in keys))

    @_ledger_call
    def transition(self, job_id: str, status: JobStatus,
                   result: Optional[Dict[str, Any]] = None,
                   error: Optional[str] = None) -> Tuple[Optional[ExternalJobRecord], bool]:
        client = self._get_client()
        key = self._job_key(job_id)

        for _ in range(_MAX_CAS_ATTEMPTS):
            with client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    record = self._decode(pipe.get(key))
                    if record is None:
                        pipe.unwatch()
                        return None, False
                    if not record.status.can_move_to(status):
                        pipe.unwatch()
                        return record, False
                    keep_index = status.is_terminal and self._has_open_sibling(pipe, record)

                    record.status = status
                    if result is not None:
                        record.result = result
                    if error is not None:
                        record.error = error
                    record.updated_at = datetime.utcnow()

                    pipe.multi()
                    if status.is_terminal:
                        pipe.set(key, json.dumps(record.to_dict()), ex=self.terminal_ttl_seconds)
                        pipe.srem(self.OPEN_KEY, job_id)
                        if not keep_index:
                            pipe.expire(self._asset_key(record.asset_id), self.terminal_ttl_seconds)
                    else:
                        pipe.set(key, json.dumps(record.to_dict()))
                    pipe.execute()
                    return record, True
                except WatchError:
                    logger.debug(f"Concurrent update of job {job_id}, retrying")
                    continue
        raise LedgerError(f"Could not update job {job_id}: too much contention")

    @_ledger_call
    def delete(self, job_id: str) -> None:
        client = self._get_client()
        record = self._decode(client.get(self._job_key(job_id)))
        pipe = client.pipeline()
        pipe.delete(self._job_key(job_id))
        pipe.srem(self.OPEN_KEY, job_id)
        if record is not None:
            pipe.srem(self._asset_key(record.asset_id), job_id)
        pipe.execute()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
