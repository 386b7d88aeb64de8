"""
Amazon SQS queue backend.

Visibility and receive counting are native to SQS; nack shortens the
visibility timeout of the received message.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import boto3  # type: ignore
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

from mediaflow.queue.interface import QueueBackend, QueueMessage

logger = logging.getLogger(__name__)

# SQS caps ChangeMessageVisibility at 12 hours
_MAX_VISIBILITY = 12 * 3600


class SQSQueue(QueueBackend):
    """Queue backend backed by an SQS queue URL or name."""

    def __init__(self, name: str, region: str = "us-east-1",
                 visibility_timeout: int = 60, wait_seconds: int = 20, client=None):
        is_url = name.startswith("https://")
        # Queue names label metrics and DLQ files; keep URLs out of them
        super().__init__(name.rstrip("/").rsplit("/", 1)[-1] if is_url else name)
        self.visibility_timeout = visibility_timeout
        self.wait_seconds = wait_seconds
        self.sqs = client or boto3.client("sqs", region_name=region)
        self._queue_url: Optional[str] = name if is_url else None

    @property
    def queue_url(self) -> str:
        if self._queue_url is None:
            self._queue_url = self.sqs.get_queue_url(QueueName=self.name)["QueueUrl"]
        return self._queue_url

    def send(self, body: Dict[str, Any]) -> str:
        response = self.sqs.send_message(QueueUrl=self.queue_url, MessageBody=json.dumps(body))
        return response["MessageId"]

    def dequeue(self, timeout: Optional[float] = None) -> Optional[QueueMessage]:
        wait = self.wait_seconds if timeout is None else int(min(max(timeout, 0), 20))
        try:
            response = self.sqs.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=1,
                WaitTimeSeconds=wait,
                VisibilityTimeout=self.visibility_timeout,
                AttributeNames=["ApproximateReceiveCount", "SentTimestamp"],
            )
        except (BotoCoreError, ClientError) as e:
            raise ConnectionError(f"SQS receive from {self.name} failed: {e}") from e

        messages = response.get("Messages") or []
        if not messages:
            return None
        raw = messages[0]
        attributes = raw.get("Attributes") or {}
        sent = attributes.get("SentTimestamp")
        try:
            body = json.loads(raw["Body"])
        except ValueError:
            body = {"_raw": raw["Body"]}
        return QueueMessage(
            message_id=raw["MessageId"],
            body=body,
            receipt=raw["ReceiptHandle"],
            receive_count=int(attributes.get("ApproximateReceiveCount", 1)),
            enqueued_at=(datetime.utcfromtimestamp(int(sent) / 1000)
                         if sent else datetime.utcnow()),
        )

    def ack(self, message: QueueMessage) -> None:
        try:
            self.sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=message.receipt)
        except ClientError as e:
            # An expired receipt means the message is already visible to others
            logger.warning(f"Could not delete SQS message {message.message_id}: {e}")

    def nack(self, message: QueueMessage, delay_seconds: Optional[float] = None) -> None:
        if delay_seconds is None:
            return  # Becomes visible when the current visibility timeout ends
        try:
            self.sqs.change_message_visibility(
                QueueUrl=self.queue_url,
                ReceiptHandle=message.receipt,
                VisibilityTimeout=int(min(max(delay_seconds, 0), _MAX_VISIBILITY)),
            )
        except ClientError as e:
            logger.warning(f"Could not release SQS message {message.message_id}: {e}")

    def size(self) -> int:
        response = self.sqs.get_queue_attributes(
            QueueUrl=self.queue_url, AttributeNames=["ApproximateNumberOfMessages"])
        return int(response["Attributes"]["ApproximateNumberOfMessages"])

    def close(self) -> None:
        pass
