"""Job Ledger: durable map from provider job id to asset and status."""

from mediaflow.common.errors import ConfigurationError
from mediaflow.config.settings import Settings
from mediaflow.ledger.interface import (
    ExternalJobRecord, JobKind, JobLedger, JobStatus, LedgerError
)


def create_job_ledger(settings: Settings) -> JobLedger:
    """Create the ledger backend selected by ``ledger_backend``."""
    backend = settings.ledger_backend.lower()
    if backend == "redis":
        from mediaflow.ledger.redis import RedisJobLedger
        return RedisJobLedger(
            redis_url=settings.redis_url,
            terminal_ttl_seconds=settings.ledger_terminal_ttl_seconds,
        )
    if backend == "memory":
        from mediaflow.ledger.memory import InMemoryJobLedger
        return InMemoryJobLedger()
    raise ConfigurationError(f"Unknown ledger backend: {settings.ledger_backend}")


__all__ = [
    "ExternalJobRecord",
    "JobKind",
    "JobLedger",
    "JobStatus",
    "LedgerError",
    "create_job_ledger",
]
