"""
Unit tests for the Rekognition analyzer with a mocked boto3 client.
"""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from botocore.exceptions import ClientError

from mediaflow.analysis.interface import ModerationError, match_taxonomy
from mediaflow.analysis.rekognition import RekognitionAnalyzer
from mediaflow.common.errors import ConfigurationError, SubmissionError, SubmissionRejected
from mediaflow.common.resilience import CircuitState


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def analyzer(client):
    analyzer = RekognitionAnalyzer(
        bucket="media",
        taxonomy=["Explicit Nudity", "Violence"],
        sns_topic_arn="arn:aws:sns:us-east-1:1:moderation",
        role_arn="arn:aws:iam::1:role/rekognition",
        client=client,
    )
    analyzer.detection_breaker.reset()
    yield analyzer
    analyzer.detection_breaker.reset()


class TestMatchTaxonomy:

    def test_matches_name_or_parent(self):
        labels = [
            {"Name": "Graphic Violence", "ParentName": "Violence"},
            {"Name": "Explicit Nudity", "ParentName": ""},
            {"Name": "Smoking", "ParentName": "Tobacco"},
        ]

        assert match_taxonomy(labels, ["violence", "Explicit Nudity"]) == [
            "Explicit Nudity", "Graphic Violence"]

    def test_unwraps_video_labels(self):
        labels = [{"Timestamp": 1000, "ModerationLabel": {"Name": "Weapons", "ParentName": "Violence"}}]

        assert match_taxonomy(labels, ["Violence"]) == ["Weapons"]


class TestObjectDetection:

    def test_labels_are_lower_cased(self, analyzer, client):
        client.detect_labels.return_value = {"Labels": [{"Name": "Dog"}, {"Name": "Park"}]}

        assert analyzer.detect_objects("images/a.jpg") == {"dog", "park"}
        client.detect_labels.assert_called_once_with(
            Image={"S3Object": {"Bucket": "media", "Name": "images/a.jpg"}},
            MaxLabels=10, MinConfidence=70.0)

    def test_failure_degrades_to_empty_set(self, analyzer, client):
        client.detect_labels.side_effect = client_error("ThrottlingException", "DetectLabels")

        assert analyzer.detect_objects("images/a.jpg") == set()

    def test_breaker_opens_after_repeated_failures(self, analyzer, client):
        client.detect_labels.side_effect = client_error("ThrottlingException", "DetectLabels")

        for _ in range(6):
            assert analyzer.detect_objects("images/a.jpg") == set()

        assert analyzer.detection_breaker.state == CircuitState.OPEN
        assert client.detect_labels.call_count == 5


class TestImageModeration:

    def test_flagged_verdict(self, analyzer, client):
        client.detect_moderation_labels.return_value = {"ModerationLabels": [
            {"Name": "Graphic Violence", "ParentName": "Violence", "Confidence": 91.0}]}

        verdict = analyzer.moderate_image("images/a.jpg")

        assert verdict.flagged is True
        assert verdict.matched == ["Graphic Violence"]

    def test_clean_verdict(self, analyzer, client):
        client.detect_moderation_labels.return_value = {"ModerationLabels": []}

        assert analyzer.moderate_image("images/a.jpg").flagged is False

    def test_failure_raises(self, analyzer, client):
        client.detect_moderation_labels.side_effect = client_error(
            "InternalServerError", "DetectModerationLabels")

        with pytest.raises(ModerationError):
            analyzer.moderate_image("images/a.jpg")


class TestVideoModeration:

    def test_submission(self, analyzer, client):
        asset_id = uuid4()
        client.start_content_moderation.return_value = {"JobId": "job-123"}

        assert analyzer.submit_video_moderation(asset_id, "video/a.mp4") == "job-123"
        kwargs = client.start_content_moderation.call_args.kwargs
        assert kwargs["ClientRequestToken"] == f"moderation-{asset_id}"
        assert kwargs["JobTag"] == str(asset_id)
        assert kwargs["NotificationChannel"]["SNSTopicArn"] == "arn:aws:sns:us-east-1:1:moderation"

    def test_bad_request_is_rejected(self, analyzer, client):
        client.start_content_moderation.side_effect = client_error(
            "InvalidS3ObjectException", "StartContentModeration")

        with pytest.raises(SubmissionRejected):
            analyzer.submit_video_moderation(uuid4(), "video/a.mp4")

    def test_outage_is_retryable(self, analyzer, client):
        client.start_content_moderation.side_effect = client_error(
            "ThrottlingException", "StartContentModeration")

        with pytest.raises(SubmissionError):
            analyzer.submit_video_moderation(uuid4(), "video/a.mp4")

    def test_requires_notification_channel(self, client):
        analyzer = RekognitionAnalyzer(bucket="media", client=client)

        with pytest.raises(ConfigurationError):
            analyzer.submit_video_moderation(uuid4(), "video/a.mp4")

    def test_labels_are_paged(self, analyzer, client):
        client.get_content_moderation.side_effect = [
            {"JobStatus": "SUCCEEDED", "ModerationLabels": [{"Timestamp": 1}], "NextToken": "t"},
            {"JobStatus": "SUCCEEDED", "ModerationLabels": [{"Timestamp": 2}]},
        ]

        labels = analyzer.get_video_moderation_labels("job-123")

        assert [l["Timestamp"] for l in labels] == [1, 2]
        assert client.get_content_moderation.call_args_list[1].kwargs["NextToken"] == "t"

    def test_labels_of_running_job(self, analyzer, client):
        client.get_content_moderation.return_value = {"JobStatus": "IN_PROGRESS"}

        with pytest.raises(ModerationError):
            analyzer.get_video_moderation_labels("job-123")
