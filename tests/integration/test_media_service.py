"""
Integration tests for upload reservation, ingest trigger and retrieval.
"""

from uuid import UUID, uuid4

import pytest

from mediaflow.catalog.models import AssetState, MediaAsset, MediaKind, Visibility
from mediaflow.catalog.queries import AssetAccessDenied, AssetNotFound
from mediaflow.media.service import (
    AlbumNotAvailable, InvalidUploadRequest, MediaService, MediaServiceError
)
from mediaflow.pipeline.orchestrator import IngestRequest
from mediaflow.queue.handlers import UploadReadyHandler
from mediaflow.queue.inproc import InProcessQueue
from tests.fakes import moderation_label


@pytest.fixture
def upload_queue():
    return InProcessQueue("upload-ready")


@pytest.fixture
def service(store, upload_queue, session_factory, test_settings):
    return MediaService(store, upload_queue, session_factory, settings=test_settings)


class TestUploadCredential:

    def test_reserves_asset(self, service, session_factory):
        result = service.issue_upload_credential(
            MediaKind.IMAGE, "image/png", "user-1", tags=["Beach", "beach"])

        assert result["storage_key"].startswith("images/")
        assert result["storage_key"].endswith(".png")
        assert result["method"] == "PUT"
        with session_factory() as db:
            asset = db.get(MediaAsset, UUID(result["asset_id"]))
            assert asset.state == AssetState.RESERVED
            assert asset.owner_id == "user-1"
            assert asset.tags == ["beach"]

    def test_video_keys_use_transcoder_prefix(self, service):
        result = service.issue_upload_credential(MediaKind.VIDEO, "video/mp4", "user-1")

        assert result["storage_key"].startswith("video/")
        assert result["storage_key"].endswith(".mp4")

    @pytest.mark.parametrize("kind,content_type", [
        (MediaKind.VIDEO, "image/jpeg"),
        (MediaKind.IMAGE, "video/mp4"),
        (MediaKind.PROFILE_IMAGE, "application/pdf"),
        (MediaKind.IMAGE, "image/heic"),
        (MediaKind.ALBUM_COVER, "image/svg+xml"),
    ])
    def test_kind_and_content_type_must_match(self, service, kind, content_type):
        with pytest.raises(InvalidUploadRequest):
            service.issue_upload_credential(kind, content_type, "user-1")

    def test_album_must_belong_to_requester(self, service, make_album):
        album_id = make_album(owner_id="user-2")

        with pytest.raises(AlbumNotAvailable):
            service.issue_upload_credential(
                MediaKind.IMAGE, "image/jpeg", "user-1", album_id=album_id)

    def test_deleted_album_is_unavailable(self, service, make_album, session_factory):
        from datetime import datetime
        from mediaflow.catalog.models import Album

        album_id = make_album(owner_id="user-1")
        with session_factory() as db:
            db.get(Album, album_id).deleted_at = datetime.utcnow()
            db.commit()

        with pytest.raises(AlbumNotAvailable):
            service.issue_upload_credential(
                MediaKind.IMAGE, "image/jpeg", "user-1", album_id=album_id)


class TestIngestTrigger:

    def test_request_ingest_enqueues_notification(self, service, upload_queue):
        reserved = service.issue_upload_credential(MediaKind.IMAGE, "image/jpeg", "user-1")

        result = service.request_ingest(
            reserved["asset_id"], reserved["storage_key"], "user-1", tags=["sun"])

        assert result == {"status": "processing"}
        message = upload_queue.dequeue(timeout=0)
        assert message.body["assetId"] == reserved["asset_id"]
        assert message.body["key"] == reserved["storage_key"]
        assert message.body["userId"] == "user-1"
        assert message.body["tags"] == ["sun"]

    def test_request_ingest_checks_owner(self, service, upload_queue):
        reserved = service.issue_upload_credential(MediaKind.IMAGE, "image/jpeg", "user-1")

        with pytest.raises(MediaServiceError):
            service.request_ingest(reserved["asset_id"], reserved["storage_key"], "intruder")
        assert upload_queue.size() == 0

    def test_request_ingest_checks_key(self, service):
        reserved = service.issue_upload_credential(MediaKind.IMAGE, "image/jpeg", "user-1")

        with pytest.raises(MediaServiceError):
            service.request_ingest(reserved["asset_id"], "images/elsewhere.jpg", "user-1")

    def test_upload_to_completion(self, service, upload_queue, store, orchestrator,
                                  session_factory, jpeg_bytes):
        """Reserve, upload, trigger and handle the notification end to end."""
        reserved = service.issue_upload_credential(MediaKind.IMAGE, "image/jpeg", "user-1")
        store.put_object(reserved["storage_key"], jpeg_bytes, "image/jpeg")
        service.request_ingest(reserved["asset_id"], reserved["storage_key"], "user-1",
                               tags=["Trip"])

        message = upload_queue.dequeue(timeout=0)
        UploadReadyHandler(orchestrator, session_factory)(message.body)

        asset = service.get_asset(reserved["asset_id"], "user-1")
        assert asset["state"] == "complete"
        assert asset["tags"] == ["trip"]


class TestRetrieval:

    @pytest.fixture
    def flagged_asset(self, service, store, orchestrator, analyzer, jpeg_bytes, make_album):
        album_id = make_album(owner_id="user-1", visibility=Visibility.PUBLIC)
        reserved = service.issue_upload_credential(
            MediaKind.IMAGE, "image/jpeg", "user-1", album_id=album_id)
        key = reserved["storage_key"]
        store.put_object(key, jpeg_bytes, "image/jpeg")
        analyzer.image_labels[key] = [moderation_label("Violence")]
        orchestrator.begin_ingest(
            IngestRequest(asset_id=UUID(reserved["asset_id"]), storage_key=key))
        return reserved["asset_id"]

    def test_flagged_asset_hides_enrichment_from_others(self, service, flagged_asset):
        public_view = service.get_asset(flagged_asset, "user-2")
        owner_view = service.get_asset(flagged_asset, "user-1")

        assert public_view["state"] == "flagged"
        assert public_view["metadata"] is None
        assert public_view["thumbnail_url"] is None
        assert owner_view["metadata"] == {"moderation_labels": ["Violence"]}

    def test_private_asset_hidden_from_others(self, service):
        reserved = service.issue_upload_credential(MediaKind.IMAGE, "image/jpeg", "user-1")

        assert service.get_asset(reserved["asset_id"], "user-1")["id"] == reserved["asset_id"]
        with pytest.raises(AssetAccessDenied):
            service.get_asset(reserved["asset_id"], "user-2")

    def test_missing_asset(self, service):
        with pytest.raises(AssetNotFound):
            service.get_asset(uuid4(), "user-1")

    def test_listing_is_newest_first(self, service):
        first = service.issue_upload_credential(MediaKind.IMAGE, "image/jpeg", "user-1")
        second = service.issue_upload_credential(MediaKind.IMAGE, "image/jpeg", "user-1")
        service.issue_upload_credential(MediaKind.IMAGE, "image/jpeg", "user-2")

        page = service.list_assets("user-1")

        assert page.total == 2
        assert {item["id"] for item in page.items} == {first["asset_id"], second["asset_id"]}
