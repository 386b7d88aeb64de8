"""
Periodic transcode status sweep.

MediaConvert completions may never be pushed, so every interval the sweep
polls each open transcode job and feeds status changes into
reconcile_external_job. Running it concurrently with push-based
reconciliation of the same job is safe because reconciliation is
idempotent.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from mediaflow.catalog.database import get_db_session
from mediaflow.catalog.models import AssetState, MediaAsset
from mediaflow.common.errors import MediaFlowError
from mediaflow.ledger.interface import JobKind, JobLedger
from mediaflow.pipeline.orchestrator import JobOutcome, ProcessingOrchestrator
from mediaflow.transcoding.interface import Transcoder

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    polled: int = 0
    reconciled: int = 0
    resumed: int = 0
    errors: List[str] = field(default_factory=list)


class TranscodeSweep:
    """Background thread that polls open transcode jobs."""

    def __init__(
        self,
        orchestrator: ProcessingOrchestrator,
        transcoder: Transcoder,
        ledger: JobLedger,
        interval_seconds: float = 120.0,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.orchestrator = orchestrator
        self.transcoder = transcoder
        self.ledger = ledger
        self.interval_seconds = interval_seconds
        self.session_factory = session_factory
        self._thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Transcode sweep already running")
            return
        self._shutdown_event.clear()
        self._thread = threading.Thread(target=self._loop, name="TranscodeSweep", daemon=True)
        self._thread.start()
        logger.info(f"Transcode sweep started (every {self.interval_seconds}s)")

    def stop(self, timeout: float = 10.0) -> None:
        if self._thread is None:
            return
        self._shutdown_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("Transcode sweep did not stop gracefully")
        self._thread = None
        logger.info("Transcode sweep stopped")

    def _loop(self) -> None:
        while not self._shutdown_event.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Transcode sweep pass failed: {e}", exc_info=True)

    def run_once(self) -> SweepReport:
        """Poll every open transcode job once, then resume stalled assets."""
        report = SweepReport()

        for record in self.ledger.list_open(JobKind.VIDEO_TRANSCODE):
            report.polled += 1
            try:
                status = self.transcoder.poll_status(record.job_id)
                if status.status == record.status:
                    continue
                self.orchestrator.reconcile_external_job(
                    record.job_id,
                    JobOutcome(status=status.status, error=status.error),
                    asset_hint=record.asset_id,
                )
                report.reconciled += 1
            except MediaFlowError as e:
                logger.warning(f"Sweep could not reconcile job {record.job_id}: {e}")
                report.errors.append(f"{record.job_id}: {e}")

        for asset_id in self._stalled_assets():
            try:
                self.orchestrator.resume_pending(asset_id)
                report.resumed += 1
            except MediaFlowError as e:
                logger.warning(f"Sweep could not resume asset {asset_id}: {e}")
                report.errors.append(f"{asset_id}: {e}")

        if report.polled or report.resumed:
            logger.info(
                f"Transcode sweep polled {report.polled} jobs, reconciled {report.reconciled}, "
                f"resumed {report.resumed}, errors {len(report.errors)}")
        return report

    def _stalled_assets(self):
        """Assets pending longer than one interval; their completions may have been lost mid-apply."""
        cutoff = datetime.utcnow() - timedelta(seconds=self.interval_seconds)
        with get_db_session(self.session_factory) as db:
            rows = (
                db.query(MediaAsset.id)
                .filter(
                    MediaAsset.state == AssetState.PENDING_EXTERNAL,
                    MediaAsset.updated_at < cutoff,
                    MediaAsset.deleted_at.is_(None),
                )
                .all()
            )
            return [row[0] for row in rows]
