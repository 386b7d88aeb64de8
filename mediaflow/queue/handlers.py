"""
Message handlers: translate queue payloads into orchestrator calls.

Accepted "upload ready" payloads:
- ``{"assetId", "key", "userId", "albumId", "tags"}`` from the ingest trigger
- S3 ObjectCreated event notifications (asset looked up by key)

Accepted "job result" payloads:
- Rekognition video completion (``JobId``, ``Status``, ``JobTag``)
- MediaConvert job state change events (``detail.jobId``, ``detail.status``)
- ``{"job_id", "status", "asset_id", "labels", "error"}``

Any of them may arrive SNS-wrapped (``{"Message": "<json>"}``).
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import unquote_plus
from uuid import UUID

from sqlalchemy.orm import Session

from mediaflow.catalog.database import get_db_session
from mediaflow.catalog.queries import find_asset_id_by_key
from mediaflow.common.errors import PermanentError
from mediaflow.ledger.interface import JobStatus
from mediaflow.pipeline.orchestrator import IngestRequest, JobOutcome, ProcessingOrchestrator
from mediaflow.transcoding.mediaconvert import map_mediaconvert_status

logger = logging.getLogger(__name__)

_REKOGNITION_STATUS = {
    "SUCCEEDED": JobStatus.SUCCEEDED,
    "FAILED": JobStatus.FAILED,
    "ERROR": JobStatus.FAILED,
    "IN_PROGRESS": JobStatus.IN_PROGRESS,
}


class MalformedMessageError(PermanentError):
    """The message body cannot be understood; redelivery will not help."""
    pass


def unwrap_envelope(body: Any) -> Dict[str, Any]:
    """Strip SNS envelopes (possibly nested) and return the inner JSON object."""
    for _ in range(3):
        if isinstance(body, dict) and "_raw" in body:
            body = body["_raw"]
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except ValueError as e:
                raise MalformedMessageError(f"Message is not JSON: {e}") from e
            continue
        if isinstance(body, dict) and isinstance(body.get("Message"), str) and (
                body.get("Type") == "Notification" or "TopicArn" in body or len(body) == 1):
            body = body["Message"]
            continue
        break
    if not isinstance(body, dict):
        raise MalformedMessageError(f"Expected a JSON object, got {type(body).__name__}")
    return body


def _first(payload: Dict[str, Any], *names: str) -> Any:
    for name in names:
        if payload.get(name) is not None:
            return payload[name]
    return None


def _uuid(value: Any, field: str) -> Optional[UUID]:
    if value in (None, ""):
        return None
    try:
        return UUID(str(value))
    except ValueError as e:
        raise MalformedMessageError(f"Invalid {field}: {value}") from e


def parse_ingest_request(payload: Dict[str, Any]) -> IngestRequest:
    """Build an IngestRequest from a trigger payload (asset id required)."""
    asset_id = _uuid(_first(payload, "assetId", "asset_id", "mediaId"), "asset id")
    key = _first(payload, "key", "storageKey", "storage_key")
    if asset_id is None or not key:
        raise MalformedMessageError("Upload notification needs an asset id and a key")
    tags = payload.get("tags") or []
    if not isinstance(tags, list):
        raise MalformedMessageError("tags must be a list")
    return IngestRequest(
        asset_id=asset_id,
        storage_key=str(key),
        owner_id=_first(payload, "userId", "owner_id", "ownerId"),
        album_id=_uuid(_first(payload, "albumId", "album_id"), "album id"),
        tags=[str(t) for t in tags],
    )


class UploadReadyHandler:
    """Routes upload-ready notifications to begin_ingest."""

    def __init__(self, orchestrator: ProcessingOrchestrator,
                 session_factory: Optional[Callable[[], Session]] = None):
        self.orchestrator = orchestrator
        self.session_factory = session_factory

    def __call__(self, body: Dict[str, Any]) -> None:
        payload = unwrap_envelope(body)
        if payload.get("Event") == "s3:TestEvent":
            logger.info("Ignoring S3 test event")
            return
        if "Records" in payload:
            for request in self._requests_from_s3_event(payload["Records"]):
                self.orchestrator.begin_ingest(request)
            return
        self.orchestrator.begin_ingest(parse_ingest_request(payload))

    def _requests_from_s3_event(self, records: List[Dict[str, Any]]) -> List[IngestRequest]:
        requests = []
        for record in records:
            try:
                key = unquote_plus(record["s3"]["object"]["key"])
            except (KeyError, TypeError) as e:
                raise MalformedMessageError(f"Malformed S3 event record: {e}") from e
            with get_db_session(self.session_factory) as db:
                asset_id = find_asset_id_by_key(db, key)
            if asset_id is None:
                # Derived objects written by the pipeline also trigger events
                logger.info(f"No asset reserved for {key}, ignoring store event")
                continue
            requests.append(IngestRequest(asset_id=asset_id, storage_key=key))
        return requests


class JobResultHandler:
    """Routes external job completions to reconcile_external_job."""

    def __init__(self, orchestrator: ProcessingOrchestrator):
        self.orchestrator = orchestrator

    def __call__(self, body: Dict[str, Any]) -> None:
        payload = unwrap_envelope(body)
        job_id, outcome, asset_hint = self.parse(payload)
        self.orchestrator.reconcile_external_job(job_id, outcome, asset_hint=asset_hint)

    @staticmethod
    def parse(payload: Dict[str, Any]):
        if "JobId" in payload:
            status = str(payload.get("Status") or "").upper()
            if status not in _REKOGNITION_STATUS:
                raise MalformedMessageError(f"Unknown moderation status: {status}")
            outcome = JobOutcome(
                status=_REKOGNITION_STATUS[status],
                labels=payload.get("ModerationLabels"),
                error=payload.get("Message") or payload.get("StatusMessage"),
            )
            return str(payload["JobId"]), outcome, payload.get("JobTag")

        detail = payload.get("detail")
        if isinstance(detail, dict) and "jobId" in detail:
            outcome = JobOutcome(
                status=map_mediaconvert_status(detail.get("status")),
                error=detail.get("errorMessage"),
            )
            asset_hint = (detail.get("userMetadata") or {}).get("assetId")
            return str(detail["jobId"]), outcome, asset_hint

        if "job_id" in payload:
            try:
                status = JobStatus(str(payload.get("status")).lower())
            except ValueError as e:
                raise MalformedMessageError(f"Unknown job status: {payload.get('status')}") from e
            outcome = JobOutcome(status=status, labels=payload.get("labels"),
                                 error=payload.get("error"))
            return str(payload["job_id"]), outcome, payload.get("asset_id")

        raise MalformedMessageError("Unrecognised job result payload")
