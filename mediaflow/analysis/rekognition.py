"""
Amazon Rekognition implementation of the content analyzer.

Images and videos are referenced in place (S3Object); nothing is
downloaded here.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import UUID

import boto3  # type: ignore
from botocore.config import Config as BotoConfig  # type: ignore
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

from mediaflow.analysis.interface import (
    ContentAnalyzer, DetectionError, ModerationError, ModerationVerdict, match_taxonomy
)
from mediaflow.common.errors import ConfigurationError, SubmissionError, SubmissionRejected
from mediaflow.common.resilience import CircuitBreakerError, get_circuit_breaker

logger = logging.getLogger(__name__)

# Client errors that describe a bad request rather than an outage
_REJECTED_CODES = {
    "InvalidParameterException",
    "InvalidS3ObjectException",
    "VideoTooLargeException",
    "AccessDeniedException",
}


class RekognitionAnalyzer(ContentAnalyzer):
    """
    Detection and moderation backed by Rekognition.

    Object detection runs behind a circuit breaker so that an outage
    degrades to empty tag sets without waiting on every call.
    """

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        taxonomy: Optional[List[str]] = None,
        max_labels: int = 10,
        min_confidence: float = 70.0,
        moderation_min_confidence: float = 70.0,
        sns_topic_arn: Optional[str] = None,
        role_arn: Optional[str] = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        client=None,
    ):
        self.bucket = bucket
        self.taxonomy = list(taxonomy or ["Explicit Nudity", "Violence"])
        self.max_labels = max_labels
        self.min_confidence = min_confidence
        self.moderation_min_confidence = moderation_min_confidence
        self.sns_topic_arn = sns_topic_arn
        self.role_arn = role_arn
        if client is None:
            client = boto3.client(
                "rekognition",
                region_name=region,
                config=BotoConfig(
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={"max_attempts": 2, "mode": "standard"},
                ),
            )
        self.client = client
        self.detection_breaker = get_circuit_breaker(
            "rekognition-detect-labels",
            failure_threshold=5,
            recovery_timeout=60.0,
            expected_exception=DetectionError,
        )

    def _s3_object(self, key: str) -> Dict[str, Any]:
        return {"S3Object": {"Bucket": self.bucket, "Name": key}}

    def _detect_labels(self, key: str) -> Set[str]:
        try:
            response = self.client.detect_labels(
                Image=self._s3_object(key),
                MaxLabels=self.max_labels,
                MinConfidence=self.min_confidence,
            )
        except (BotoCoreError, ClientError) as e:
            raise DetectionError(str(e)) from e
        names = (str(label.get("Name") or "").strip().lower()
                 for label in response.get("Labels", []))
        return {name for name in names if name}

    def detect_objects(self, key: str) -> Set[str]:
        try:
            tags = self.detection_breaker.call(self._detect_labels, key)
        except (DetectionError, CircuitBreakerError) as e:
            logger.warning(f"Object detection unavailable for {key}: {e}")
            return set()
        logger.info(f"Objects detected in {key}: {', '.join(sorted(tags)) or 'none'}")
        return tags

    def moderate_image(self, key: str) -> ModerationVerdict:
        try:
            response = self.client.detect_moderation_labels(
                Image=self._s3_object(key),
                MinConfidence=self.moderation_min_confidence,
            )
        except (BotoCoreError, ClientError) as e:
            raise ModerationError(f"Moderation failed for {key}: {e}") from e

        labels = response.get("ModerationLabels") or []
        matched = match_taxonomy(labels, self.taxonomy)
        if matched:
            logger.warning(f"Content flagged for {key}. Labels: {', '.join(matched)}")
        return ModerationVerdict(flagged=bool(matched), labels=labels, matched=matched)

    def submit_video_moderation(self, asset_id: UUID, key: str) -> str:
        if not self.sns_topic_arn or not self.role_arn:
            raise ConfigurationError(
                "Video moderation requires video_moderation_sns_topic_arn "
                "and video_moderation_role_arn")
        try:
            response = self.client.start_content_moderation(
                Video=self._s3_object(key),
                MinConfidence=self.moderation_min_confidence,
                # Same token for the same asset: a retried start returns the same job
                ClientRequestToken=f"moderation-{asset_id}",
                NotificationChannel={
                    "SNSTopicArn": self.sns_topic_arn,
                    "RoleArn": self.role_arn,
                },
                JobTag=str(asset_id),
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _REJECTED_CODES:
                raise SubmissionRejected(f"Video moderation rejected for {key}: {e}") from e
            raise SubmissionError(f"Video moderation submission failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise SubmissionError(f"Video moderation submission failed for {key}: {e}") from e

        job_id = response["JobId"]
        logger.info(f"Started video moderation job {job_id} for asset {asset_id}")
        return job_id

    def get_video_moderation_labels(self, job_id: str) -> List[Dict[str, Any]]:
        labels: List[Dict[str, Any]] = []
        next_token = None
        try:
            while True:
                params = {"JobId": job_id, "SortBy": "TIMESTAMP"}
                if next_token:
                    params["NextToken"] = next_token
                response = self.client.get_content_moderation(**params)
                status = response.get("JobStatus")
                if status == "IN_PROGRESS":
                    raise ModerationError(f"Moderation job {job_id} still in progress")
                labels.extend(response.get("ModerationLabels") or [])
                next_token = response.get("NextToken")
                if not next_token:
                    break
        except (BotoCoreError, ClientError) as e:
            raise ModerationError(f"Cannot fetch moderation labels for {job_id}: {e}") from e
        return labels

    def flagged_labels(self, labels: Iterable[Dict[str, Any]]) -> List[str]:
        return match_taxonomy(labels, self.taxonomy)
