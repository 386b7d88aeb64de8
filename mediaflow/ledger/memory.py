"""
In-memory job ledger.

Thread-safe; used for tests and single-process development. State is
lost on restart, so it is not suitable for production.
"""

import copy
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from mediaflow.ledger.interface import ExternalJobRecord, JobKind, JobLedger, JobStatus


class InMemoryJobLedger(JobLedger):

    def __init__(self):
        self._records: Dict[str, ExternalJobRecord] = {}
        self._lock = threading.Lock()

    def create(self, record: ExternalJobRecord) -> ExternalJobRecord:
        with self._lock:
            existing = self._records.get(record.job_id)
            if existing is not None:
                return copy.deepcopy(existing)
            self._records[record.job_id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def get(self, job_id: str) -> Optional[ExternalJobRecord]:
        with self._lock:
            record = self._records.get(job_id)
            return copy.deepcopy(record) if record else None

    def find_by_asset(self, asset_id: str) -> List[ExternalJobRecord]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()
                    if r.asset_id == asset_id]

    def list_open(self, kind: Optional[JobKind] = None) -> List[ExternalJobRecord]:
        with self._lock:
            return [
                copy.deepcopy(r) for r in self._records.values()
                if not r.is_terminal and (kind is None or r.kind == kind)
            ]

    def transition(self, job_id: str, status: JobStatus,
                   result: Optional[Dict[str, Any]] = None,
                   error: Optional[str] = None) -> Tuple[Optional[ExternalJobRecord], bool]:
        with self._lock:
            record = self._records.get(job_id)
            if record is None:
                return None, False
            if not record.status.can_move_to(status):
                return copy.deepcopy(record), False
            record.status = status
            if result is not None:
                record.result = copy.deepcopy(result)
            if error is not None:
                record.error = error
            record.updated_at = datetime.utcnow()
            return copy.deepcopy(record), True

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._records.pop(job_id, None)
