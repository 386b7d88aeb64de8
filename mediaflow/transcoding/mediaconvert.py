"""
AWS Elemental MediaConvert transcoder.

The account-specific endpoint is discovered once with
``describe_endpoints`` and cached unless configured explicitly.
"""

import logging
import threading
from typing import Optional
from uuid import UUID, uuid4

import boto3  # type: ignore
from botocore.config import Config as BotoConfig  # type: ignore
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

from mediaflow.common.errors import ConfigurationError, SubmissionError, SubmissionRejected
from mediaflow.ledger.interface import JobStatus
from mediaflow.transcoding.interface import (
    TranscodeStatus, Transcoder, TranscoderError, output_stem
)

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "SUBMITTED": JobStatus.PENDING,
    "PROGRESSING": JobStatus.IN_PROGRESS,
    "COMPLETE": JobStatus.SUCCEEDED,
    "ERROR": JobStatus.FAILED,
    "CANCELED": JobStatus.FAILED,
}

_REJECTED_CODES = {"BadRequestException", "ForbiddenException", "NotFoundException"}


def map_mediaconvert_status(status: str) -> JobStatus:
    return _STATUS_MAP.get((status or "").upper(), JobStatus.IN_PROGRESS)


class MediaConvertTranscoder(Transcoder):
    """HLS transcoding through MediaConvert."""

    def __init__(
        self,
        bucket: str,
        role_arn: Optional[str],
        region: str = "us-east-1",
        endpoint: Optional[str] = None,
        template: Optional[str] = None,
        input_prefix: str = "video",
        output_prefix: str = "video/transcoded",
        segment_seconds: int = 6,
        stream_base_url: Optional[str] = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        client=None,
    ):
        self.bucket = bucket
        self.role_arn = role_arn
        self.region = region
        self.template = template
        self.input_prefix = input_prefix.strip("/")
        self.output_prefix = output_prefix.strip("/")
        self.segment_seconds = segment_seconds
        self.stream_base_url = (
            stream_base_url.rstrip("/") if stream_base_url
            else f"https://{bucket}.s3.{region}.amazonaws.com"
        )
        self._boto_config = BotoConfig(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"max_attempts": 2, "mode": "standard"},
        )
        self._endpoint = endpoint
        self._client = client
        self._lock = threading.Lock()

    def _get_client(self):
        with self._lock:
            if self._client is not None:
                return self._client
            if not self._endpoint:
                probe = boto3.client("mediaconvert", region_name=self.region,
                                     config=self._boto_config)
                try:
                    response = probe.describe_endpoints(MaxResults=1)
                except (BotoCoreError, ClientError) as e:
                    raise SubmissionError(f"Cannot discover MediaConvert endpoint: {e}") from e
                endpoints = response.get("Endpoints") or []
                url = endpoints[0].get("Url") if endpoints else None
                if not url:
                    raise ConfigurationError(
                        "No MediaConvert endpoint found; set mediaconvert_endpoint")
                logger.info(f"Discovered MediaConvert endpoint: {url}")
                self._endpoint = url
            self._client = boto3.client("mediaconvert", region_name=self.region,
                                        endpoint_url=self._endpoint, config=self._boto_config)
            return self._client

    def _destination(self, key: str) -> str:
        return f"s3://{self.bucket}/{self.output_prefix}/{output_stem(key)}/"

    def build_job_settings(self, key: str) -> dict:
        return {
            "Inputs": [{
                "FileInput": f"s3://{self.bucket}/{key}",
                "AudioSelectors": {"Audio Selector 1": {"DefaultSelection": "DEFAULT"}},
            }],
            "OutputGroups": [{
                "Name": "Apple HLS",
                "OutputGroupSettings": {
                    "Type": "HLS_GROUP_SETTINGS",
                    "HlsGroupSettings": {
                        "Destination": self._destination(key),
                        "SegmentLength": self.segment_seconds,
                        "MinSegmentLength": 0,
                    },
                },
            }],
        }

    def submit_transcode(self, asset_id: UUID, key: str, attempt: Optional[str] = None) -> str:
        if not self.role_arn:
            raise ConfigurationError("Transcoding requires mediaconvert_role_arn")
        if not key.startswith(f"{self.input_prefix}/"):
            raise SubmissionRejected(
                f"Video key {key} must live under '{self.input_prefix}/'")

        params = {
            "Role": self.role_arn,
            "Settings": self.build_job_settings(key),
            "StatusUpdateInterval": "SECONDS_10",
            "UserMetadata": {"assetId": str(asset_id), "sourceKey": key},
            # A cancelled job is never handed back to a later submission
            "ClientRequestToken": f"transcode-{asset_id}-{attempt or uuid4().hex[:12]}",
        }
        if self.template:
            params["JobTemplate"] = self.template

        try:
            response = self._get_client().create_job(**params)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _REJECTED_CODES:
                raise SubmissionRejected(f"MediaConvert rejected job for {key}: {e}") from e
            raise SubmissionError(f"MediaConvert submission failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise SubmissionError(f"MediaConvert submission failed for {key}: {e}") from e

        job_id = (response.get("Job") or {}).get("Id")
        if not job_id:
            raise SubmissionError("MediaConvert returned no job id")
        logger.info(f"MediaConvert job {job_id} created for asset {asset_id}")
        return job_id

    def poll_status(self, job_id: str) -> TranscodeStatus:
        try:
            response = self._get_client().get_job(Id=job_id)
        except (BotoCoreError, ClientError) as e:
            raise TranscoderError(f"Cannot fetch MediaConvert job {job_id}: {e}") from e
        job = response.get("Job") or {}
        status = map_mediaconvert_status(job.get("Status"))
        error = job.get("ErrorMessage") if status == JobStatus.FAILED else None
        return TranscodeStatus(job_id=job_id, status=status, error=error)

    def cancel(self, job_id: str) -> None:
        try:
            self._get_client().cancel_job(Id=job_id)
        except (BotoCoreError, ClientError) as e:
            raise TranscoderError(f"Cannot cancel MediaConvert job {job_id}: {e}") from e
        logger.info(f"Cancelled MediaConvert job {job_id}")

    def manifest_url(self, key: str) -> str:
        stem = output_stem(key)
        return f"{self.stream_base_url}/{self.output_prefix}/{stem}/{stem}.m3u8"
