"""
Job Ledger interface.

The ledger is the only mapping from a provider job id back to an asset.
It is owned by the ledger backend, never by the relational store.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from mediaflow.common.errors import RetryableError


class LedgerError(RetryableError):
    """The ledger backend is unreachable or rejected the operation."""
    pass


class JobKind(str, enum.Enum):
    VIDEO_MODERATION = "video_moderation"
    VIDEO_TRANSCODE = "video_transcode"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)

    def can_move_to(self, status: "JobStatus") -> bool:
        """Terminal states are final and open states only move forward."""
        return not self.is_terminal and _STATUS_RANK[status] > _STATUS_RANK[self]


_STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.IN_PROGRESS: 1,
    JobStatus.SUCCEEDED: 2,
    JobStatus.FAILED: 2,
}


@dataclass
class ExternalJobRecord:
    """Correlation record for one outstanding provider job."""
    job_id: str
    asset_id: str
    kind: JobKind
    source_key: str
    status: JobStatus = JobStatus.PENDING
    # Outcome computed at reconciliation, reused on every replay
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "asset_id": self.asset_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "source_key": self.source_key,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExternalJobRecord":
        return cls(
            job_id=data["job_id"],
            asset_id=data["asset_id"],
            kind=JobKind(data["kind"]),
            status=JobStatus(data["status"]),
            source_key=data["source_key"],
            result=data.get("result"),
            error=data.get("error"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


class JobLedger(ABC):
    """
    Durable key-value store of external job state.

    Implementations must make ``transition`` atomic per job: once a record
    is terminal it never changes again.
    """

    @abstractmethod
    def create(self, record: ExternalJobRecord) -> ExternalJobRecord:
        """
        Store a new record unless one already exists for the job id.

        Returns:
            The stored record (the existing one on a duplicate submission)
        """
        pass

    @abstractmethod
    def get(self, job_id: str) -> Optional[ExternalJobRecord]:
        pass

    @abstractmethod
    def find_by_asset(self, asset_id: str) -> List[ExternalJobRecord]:
        pass

    @abstractmethod
    def list_open(self, kind: Optional[JobKind] = None) -> List[ExternalJobRecord]:
        """All pending or in-progress records, optionally of one kind."""
        pass

    @abstractmethod
    def transition(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Tuple[Optional[ExternalJobRecord], bool]:
        """
        Move a record to ``status`` if that moves it forward: a terminal
        record never changes and IN_PROGRESS never returns to PENDING.

        Returns:
            (record after the call, whether it changed). The record is None
            when the job id is unknown.
        """
        pass

    @abstractmethod
    def delete(self, job_id: str) -> None:
        pass

    def close(self) -> None:
        pass
