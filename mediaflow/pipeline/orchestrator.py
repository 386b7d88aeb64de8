"""
Processing Orchestrator.

Drives one MediaAsset through

    RESERVED -> INGESTING -> COMPLETE | FLAGGED | PENDING_EXTERNAL -> COMPLETE | FLAGGED | FAILED

Every mutation of an asset happens inside a transaction that holds the
asset's row lock, so at most one ingest or reconcile changes a given asset
at a time. Ledger writes always precede the asset write that depends on
them; the asset row is the last thing updated.
"""

import logging
import posixpath
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from mediaflow.analysis.interface import ContentAnalyzer
from mediaflow.catalog.database import get_db_session
from mediaflow.catalog.models import (
    AssetState, MediaAsset, MediaKind, ModerationStatus, normalize_tags
)
from mediaflow.catalog.queries import get_active_album, lock_asset
from mediaflow.common.errors import PermanentError, RetryableError, SubmissionError
from mediaflow.common.logging_config import PerformanceTracker
from mediaflow.common.metrics import (
    external_jobs_submitted_total, ingest_duration_seconds, reconciliations_total
)
from mediaflow.common.resilience import retry_submission
from mediaflow.ledger.interface import (
    ExternalJobRecord, JobKind, JobLedger, JobStatus, LedgerError
)
from mediaflow.media.transforms import ImageTransformer
from mediaflow.media.video_probe import VideoProbe, VideoProbeError
from mediaflow.pipeline.profile import ProfileNotifier
from mediaflow.storage.adapter import ObjectStore, StorageError
from mediaflow.transcoding.interface import Transcoder, TranscoderError

logger = logging.getLogger(__name__)

VIDEO_JOB_KINDS = (JobKind.VIDEO_MODERATION, JobKind.VIDEO_TRANSCODE)


class IngestRejected(PermanentError):
    """The ingest request does not match the asset record."""
    pass


class JobRecordNotVisible(RetryableError):
    """A completion arrived before the ledger record of its just-submitted job."""
    pass


@dataclass
class IngestRequest:
    """Payload of an "upload ready" notification."""
    asset_id: UUID
    storage_key: str
    owner_id: Optional[str] = None
    album_id: Optional[UUID] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class JobOutcome:
    """Status reported for an external job, by push or by polling."""
    status: JobStatus
    # Moderation labels when the notification carries them
    labels: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None


class ProcessingOrchestrator:
    """
    Single authoritative driver of an asset's post-upload lifecycle.

    All collaborators are passed in; see mediaflow.pipeline.factory for the
    production wiring.
    """

    def __init__(
        self,
        store: ObjectStore,
        transformer: ImageTransformer,
        analyzer: ContentAnalyzer,
        transcoder: Transcoder,
        ledger: JobLedger,
        profile_notifier: ProfileNotifier,
        video_probe: Optional[VideoProbe] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        cache_control: Optional[str] = "max-age=31536000",
    ):
        self.store = store
        self.transformer = transformer
        self.analyzer = analyzer
        self.transcoder = transcoder
        self.ledger = ledger
        self.profile_notifier = profile_notifier
        self.video_probe = video_probe or VideoProbe()
        self.session_factory = session_factory
        self.cache_control = cache_control

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def begin_ingest(self, request: IngestRequest) -> AssetState:
        """
        Run the ingest pipeline for one uploaded object.

        Safe to call repeatedly for the same asset: once the asset has left
        INGESTING further calls change nothing.

        Returns:
            The asset state after this call

        Raises:
            IngestRejected: asset missing or request does not match it
            RetryableError: an adapter failed; the asset stays INGESTING
        """
        started = time.perf_counter()
        kind, state = self._claim(request)
        if kind is None:
            return state

        with get_db_session(self.session_factory) as db:
            asset = lock_asset(db, request.asset_id)
            if asset is None:
                raise IngestRejected(f"Asset {request.asset_id} disappeared during ingest")
            if asset.state != AssetState.INGESTING:
                logger.info(
                    f"Asset {asset.id} already {asset.state.value}, skipping duplicate ingest")
                return asset.state

            if kind == MediaKind.VIDEO:
                self._ingest_video(db, asset, request)
            else:
                self._ingest_image(db, asset, request)
            state = asset.state

        ingest_duration_seconds.labels(kind=kind.value).observe(time.perf_counter() - started)
        logger.info(f"Ingest of asset {request.asset_id} finished in state {state.value}")
        return state

    def _claim(self, request: IngestRequest) -> Tuple[Optional[MediaKind], AssetState]:
        """
        Validate the request and move RESERVED to INGESTING.

        Committed on its own so that a failed pipeline leaves the asset in
        INGESTING. The kind is None when there is nothing left to ingest.
        """
        with get_db_session(self.session_factory) as db:
            asset = lock_asset(db, request.asset_id)
            self._validate(db, asset, request)

            if asset.state == AssetState.PENDING_EXTERNAL:
                logger.info(f"Asset {asset.id} is waiting on external jobs, re-checking them")
                self._resume(asset)
                return None, asset.state
            if asset.state.is_terminal:
                logger.info(f"Asset {asset.id} already {asset.state.value}, nothing to ingest")
                return None, asset.state
            if asset.state == AssetState.RESERVED:
                asset.state = AssetState.INGESTING
                asset.failure_reason = None
            return asset.kind, asset.state

    def _validate(self, db: Session, asset: Optional[MediaAsset], request: IngestRequest) -> None:
        if asset is None:
            raise IngestRejected(f"Asset {request.asset_id} not found")
        if asset.storage_key != request.storage_key:
            raise IngestRejected(
                f"Storage key {request.storage_key} does not match asset {asset.id}")
        if request.owner_id is not None and request.owner_id != asset.owner_id:
            raise IngestRejected(f"Asset {asset.id} is not owned by {request.owner_id}")
        if request.album_id is not None and request.album_id != asset.album_id:
            if asset.state != AssetState.RESERVED:
                raise IngestRejected(f"Album of asset {asset.id} cannot change during ingest")
            album = get_active_album(db, request.album_id)
            if album is None or album.owner_id != asset.owner_id:
                raise IngestRejected(
                    f"Album {request.album_id} is not available to {asset.owner_id}")
            asset.album_id = album.id

    def _put(self, key: str, data: bytes, content_type: str) -> str:
        return self.store.put_object(key, data, content_type, cache_control=self.cache_control)

    def _ingest_image(self, db: Session, asset: MediaAsset, request: IngestRequest) -> None:
        key = asset.storage_key
        caller_tags = normalize_tags(asset.tags, request.tags)

        with PerformanceTracker("fetch_source", logger, asset_id=str(asset.id)):
            data = self.store.get_object(key)
        image = self.transformer.load(data)

        # Moderation failure propagates; a missing verdict is never "clean"
        with PerformanceTracker("moderate_image", logger, asset_id=str(asset.id)):
            verdict = self.analyzer.moderate_image(key)

        if verdict.flagged:
            asset.moderation = ModerationStatus.FLAGGED
            asset.state = AssetState.FLAGGED
            asset.tags = caller_tags
            asset.thumbnail_url = None
            asset.metadata_json = {"moderation_labels": verdict.matched}
            logger.warning(f"Asset {asset.id} flagged: {', '.join(verdict.matched)}")
            return

        enrichment_errors: Dict[str, str] = {}

        with PerformanceTracker("detect_objects", logger, asset_id=str(asset.id)):
            detected = self.analyzer.detect_objects(key)

        thumb = self.transformer.thumbnail(image, key)
        thumbnail_url = self._put(thumb.key, thumb.data, thumb.content_type)

        optimized = self.transformer.optimize(image, key)
        optimized_url = self._put(optimized.key, optimized.data, optimized.content_type)

        try:
            image_metadata = self.transformer.extract_metadata(image, data)
        except Exception as e:
            logger.warning(f"Metadata extraction failed for {key}: {e}")
            enrichment_errors["metadata"] = str(e)
            image_metadata = {}

        renditions: Dict[str, str] = {}
        try:
            derived = self.transformer.renditions(image, key)
        except Exception as e:
            logger.warning(f"Rendition generation failed for {key}: {e}")
            enrichment_errors["renditions"] = str(e)
            derived = []
        for rendition in derived:
            renditions[str(rendition.width)] = self._put(
                rendition.key, rendition.data, rendition.content_type)

        metadata: Dict[str, Any] = {
            "image": image_metadata,
            "original_url": asset.url,
            "optimized": {
                "key": optimized.key,
                "url": optimized_url,
                "width": optimized.width,
                "height": optimized.height,
            },
            "renditions": renditions,
            "detected_labels": sorted(detected),
        }
        if enrichment_errors:
            metadata["enrichment_errors"] = enrichment_errors

        asset.moderation = ModerationStatus.CLEAN
        asset.tags = normalize_tags(caller_tags, detected)
        asset.thumbnail_url = thumbnail_url
        asset.url = optimized_url
        asset.metadata_json = metadata
        asset.state = AssetState.COMPLETE

        if asset.kind == MediaKind.ALBUM_COVER:
            self._set_album_cover(db, asset)

        if asset.kind == MediaKind.PROFILE_IMAGE:
            # Constraint violations must surface before the external call
            db.flush()
            picture_url = asset.thumbnail_url or asset.url
            with PerformanceTracker("notify_profile", logger, user_id=asset.owner_id):
                self.profile_notifier.notify_profile_picture(asset.owner_id, picture_url)

    def _set_album_cover(self, db: Session, asset: MediaAsset) -> None:
        if asset.album_id is None:
            logger.info(f"Album cover {asset.id} has no album, skipping cover update")
            return
        album = get_active_album(db, asset.album_id)
        if album is None or album.owner_id != asset.owner_id:
            logger.warning(f"Album {asset.album_id} unavailable for cover {asset.id}")
            return
        album.cover_asset_id = asset.id

    def _ingest_video(self, db: Session, asset: MediaAsset, request: IngestRequest) -> None:
        records = {r.kind: r for r in self.ledger.find_by_asset(str(asset.id))}
        for kind in VIDEO_JOB_KINDS:
            if kind in records:
                logger.info(
                    f"Reusing {kind.value} job {records[kind].job_id} for asset {asset.id}")
                continue
            records[kind] = self._submit(kind, asset)

        asset.tags = normalize_tags(asset.tags, request.tags)
        asset.state = AssetState.PENDING_EXTERNAL

        # Completions may have been reconciled while the asset was INGESTING
        for record in records.values():
            if record.is_terminal:
                self._merge_result(asset, record)
        self._settle_if_done(asset, list(records.values()))

    @retry_submission
    def _submit_job(self, kind: JobKind, asset_id: UUID, key: str, attempt: str) -> str:
        if kind == JobKind.VIDEO_MODERATION:
            return self.analyzer.submit_video_moderation(asset_id, key)
        return self.transcoder.submit_transcode(asset_id, key, attempt=attempt)

    def _submit(self, kind: JobKind, asset: MediaAsset) -> ExternalJobRecord:
        """
        Submit one external job and record it in the ledger.

        The job only counts as submitted once the ledger write succeeds;
        otherwise it is compensated and the submission fails. Backoff
        retries inside this call share one attempt id; a redelivered ingest
        gets a new one, so it never adopts a job cancelled by compensation.
        """
        attempt = uuid4().hex[:12]
        with PerformanceTracker(f"submit_{kind.value}", logger, asset_id=str(asset.id)):
            job_id = self._submit_job(kind, asset.id, asset.storage_key, attempt)

        record = ExternalJobRecord(
            job_id=job_id,
            asset_id=str(asset.id),
            kind=kind,
            source_key=asset.storage_key,
        )
        try:
            stored = self.ledger.create(record)
        except LedgerError as e:
            self._compensate(kind, job_id)
            raise SubmissionError(
                f"Could not record {kind.value} job {job_id} for asset {asset.id}") from e

        external_jobs_submitted_total.labels(kind=kind.value).inc()
        logger.info(f"Recorded {kind.value} job {job_id} for asset {asset.id}")
        return stored

    def _compensate(self, kind: JobKind, job_id: str) -> None:
        if kind == JobKind.VIDEO_TRANSCODE:
            try:
                self.transcoder.cancel(job_id)
                return
            except TranscoderError as e:
                logger.error(f"Compensation failed, orphaned transcode job {job_id}: {e}")
                return
        # Moderation jobs cannot be cancelled; a retried submission reuses the same job
        logger.error(f"Orphaned video moderation job {job_id} has no ledger entry")

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_external_job(
        self,
        job_id: str,
        outcome: JobOutcome,
        asset_hint: Optional[str] = None,
    ) -> Optional[AssetState]:
        """
        Merge an external job's outcome into the ledger and then the asset.

        Idempotent: the first terminal outcome is stored on the ledger
        record and every replay applies that stored result again.

        Args:
            job_id: Provider job id
            outcome: Reported status and payload
            asset_hint: Asset id carried by the notification, if any

        Returns:
            The asset state afterwards, or None when the job is unknown

        Raises:
            JobRecordNotVisible: unknown job for an asset that is still ingesting
        """
        record = self.ledger.get(job_id)
        if record is None:
            if asset_hint and self._is_ingesting(asset_hint):
                raise JobRecordNotVisible(
                    f"Job {job_id} for asset {asset_hint} not in the ledger yet")
            logger.info(f"Discarding notification for unknown job {job_id}")
            reconciliations_total.labels(kind="unknown", outcome="discarded").inc()
            return None

        if not outcome.status.is_terminal:
            # The ledger ignores late or out-of-order progress reports
            _, changed = self.ledger.transition(job_id, outcome.status)
            if changed:
                reconciliations_total.labels(kind=record.kind.value, outcome="in_progress").inc()
            return None

        if record.is_terminal:
            if record.status != outcome.status:
                logger.warning(
                    f"Job {job_id} already {record.status.value}, "
                    f"discarding conflicting {outcome.status.value}")
            stored = record
        else:
            result = self._compute_result(record, outcome)
            stored, changed = self.ledger.transition(
                job_id, outcome.status, result=result, error=outcome.error)
            if stored is None:
                logger.info(f"Job {job_id} was removed from the ledger, discarding")
                return None
            if changed:
                reconciliations_total.labels(
                    kind=record.kind.value, outcome=stored.status.value).inc()

        return self._apply(stored)

    def _is_ingesting(self, asset_id: str) -> bool:
        try:
            asset_uuid = UUID(str(asset_id))
        except ValueError:
            return False
        with get_db_session(self.session_factory) as db:
            asset = db.get(MediaAsset, asset_uuid)
            return asset is not None and asset.state == AssetState.INGESTING

    def _compute_result(self, record: ExternalJobRecord, outcome: JobOutcome) -> Dict[str, Any]:
        if outcome.status == JobStatus.FAILED:
            return {"error": outcome.error or "job failed"}

        if record.kind == JobKind.VIDEO_MODERATION:
            labels = outcome.labels
            if labels is None:
                labels = self.analyzer.get_video_moderation_labels(record.job_id)
            matched = self.analyzer.flagged_labels(labels)
            return {"flagged": bool(matched), "labels": matched}

        result: Dict[str, Any] = {"manifest_url": self.transcoder.manifest_url(record.source_key)}
        try:
            with PerformanceTracker("probe_video", logger, job_id=record.job_id):
                data = self.store.get_object(record.source_key)
                suffix = posixpath.splitext(record.source_key)[1] or ".mp4"
                result["video"] = self.video_probe.probe_bytes(data, suffix=suffix)
        except (StorageError, VideoProbeError, OSError) as e:
            logger.warning(f"Video metadata unavailable for {record.source_key}: {e}")
            result["enrichment_errors"] = {"video_metadata": str(e)}
        return result

    def _apply(self, record: ExternalJobRecord) -> Optional[AssetState]:
        with get_db_session(self.session_factory) as db:
            asset = lock_asset(db, UUID(record.asset_id))
            if asset is None:
                logger.info(f"Asset {record.asset_id} of job {record.job_id} is gone, discarding")
                return None
            if asset.state.is_terminal:
                logger.info(
                    f"Asset {asset.id} already {asset.state.value}, job {record.job_id} is a replay")
                return asset.state
            if asset.state == AssetState.RESERVED:
                logger.warning(f"Job {record.job_id} completed for reserved asset {asset.id}")
                return asset.state

            self._merge_result(asset, record)
            if asset.state == AssetState.PENDING_EXTERNAL:
                records = {r.job_id: r for r in self.ledger.find_by_asset(record.asset_id)}
                records[record.job_id] = record
                self._settle_if_done(asset, list(records.values()))
            return asset.state

    def resume_pending(self, asset_id: UUID) -> Optional[AssetState]:
        """
        Re-apply every terminal ledger record of a PENDING_EXTERNAL asset.

        Used by the sweep to converge assets whose reconciliation was
        interrupted after the ledger write.
        """
        with get_db_session(self.session_factory) as db:
            asset = lock_asset(db, asset_id)
            if asset is None:
                return None
            if asset.state == AssetState.PENDING_EXTERNAL:
                self._resume(asset)
            return asset.state

    def _resume(self, asset: MediaAsset) -> None:
        records = self.ledger.find_by_asset(str(asset.id))
        for record in records:
            if record.is_terminal:
                self._merge_result(asset, record)
        self._settle_if_done(asset, records)

    def _merge_result(self, asset: MediaAsset, record: ExternalJobRecord) -> None:
        """
        Apply one terminal record to the asset. Assignments only, so
        applying the same record again changes nothing.
        """
        result = record.result or {}
        metadata = dict(asset.metadata_json or {})

        if record.kind == JobKind.VIDEO_MODERATION:
            if record.status == JobStatus.SUCCEEDED and result.get("flagged"):
                asset.moderation = ModerationStatus.FLAGGED
                metadata["moderation_labels"] = result.get("labels", [])
            elif record.status == JobStatus.SUCCEEDED and asset.moderation != ModerationStatus.FLAGGED:
                asset.moderation = ModerationStatus.CLEAN
            elif record.status == JobStatus.FAILED:
                metadata["moderation_error"] = result.get("error") or record.error

        elif record.kind == JobKind.VIDEO_TRANSCODE:
            if record.status == JobStatus.SUCCEEDED:
                asset.stream_url = result.get("manifest_url")
                if "video" in result:
                    metadata["video"] = result["video"]
                if result.get("enrichment_errors"):
                    errors = dict(metadata.get("enrichment_errors") or {})
                    errors.update(result["enrichment_errors"])
                    metadata["enrichment_errors"] = errors
            else:
                metadata["transcode_error"] = result.get("error") or record.error

        if asset.moderation == ModerationStatus.FLAGGED:
            # Flagged content never presents enrichment
            asset.stream_url = None
            asset.thumbnail_url = None
            metadata.pop("video", None)

        asset.metadata_json = metadata or None

    def _settle_if_done(self, asset: MediaAsset, records: List[ExternalJobRecord]) -> None:
        kinds = {r.kind for r in records}
        if not all(kind in kinds for kind in VIDEO_JOB_KINDS):
            return
        if not all(r.is_terminal for r in records):
            return

        flagged = any(
            r.kind == JobKind.VIDEO_MODERATION and (r.result or {}).get("flagged")
            for r in records
        )
        failed = [r for r in records if r.status == JobStatus.FAILED]

        if flagged:
            asset.state = AssetState.FLAGGED
        elif failed:
            asset.state = AssetState.FAILED
            asset.failure_reason = "; ".join(
                f"{r.kind.value}: {(r.result or {}).get('error') or r.error or 'failed'}"
                for r in failed
            )
        else:
            asset.state = AssetState.COMPLETE
        logger.info(f"Asset {asset.id} settled as {asset.state.value}")
