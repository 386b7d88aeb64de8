"""
Unit tests for the SQS queue backend with a mocked boto3 client.
"""

import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from mediaflow.queue.interface import QueueMessage
from mediaflow.queue.sqs import SQSQueue

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123/media-upload-ready"


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def queue(client):
    return SQSQueue(QUEUE_URL, client=client)


class TestSQSQueue:

    def test_url_is_not_used_as_name(self, queue):
        assert queue.name == "media-upload-ready"
        assert queue.queue_url == QUEUE_URL

    def test_name_is_resolved_to_url(self, client):
        client.get_queue_url.return_value = {"QueueUrl": QUEUE_URL}

        assert SQSQueue("media-upload-ready", client=client).queue_url == QUEUE_URL

    def test_receive(self, queue, client):
        client.receive_message.return_value = {"Messages": [{
            "MessageId": "m-1",
            "ReceiptHandle": "r-1",
            "Body": json.dumps({"assetId": "a"}),
            "Attributes": {"ApproximateReceiveCount": "3", "SentTimestamp": "1700000000000"},
        }]}

        message = queue.dequeue(timeout=5)

        assert message.body == {"assetId": "a"}
        assert message.receive_count == 3
        assert message.enqueued_at.year == 2023
        assert client.receive_message.call_args.kwargs["WaitTimeSeconds"] == 5

    def test_receive_non_json(self, queue, client):
        client.receive_message.return_value = {"Messages": [
            {"MessageId": "m-1", "ReceiptHandle": "r-1", "Body": "plain text"}]}

        assert queue.dequeue(timeout=0).body == {"_raw": "plain text"}

    def test_empty_receive(self, queue, client):
        client.receive_message.return_value = {}

        assert queue.dequeue(timeout=0) is None

    def test_receive_failure(self, queue, client):
        client.receive_message.side_effect = ClientError(
            {"Error": {"Code": "AWS.SimpleQueueService.NonExistentQueue"}}, "ReceiveMessage")

        with pytest.raises(ConnectionError):
            queue.dequeue(timeout=0)

    def test_nack_changes_visibility(self, queue, client):
        message = QueueMessage(message_id="m-1", body={}, receipt="r-1")

        queue.nack(message, delay_seconds=8.5)

        client.change_message_visibility.assert_called_once_with(
            QueueUrl=QUEUE_URL, ReceiptHandle="r-1", VisibilityTimeout=8)

    def test_ack(self, queue, client):
        queue.ack(QueueMessage(message_id="m-1", body={}, receipt="r-1"))

        client.delete_message.assert_called_once_with(QueueUrl=QUEUE_URL, ReceiptHandle="r-1")
