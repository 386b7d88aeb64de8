"""
Media service.

Front half of the asset lifecycle: reserves an asset and hands out an
upload credential, then turns the client's "upload finished" call into
an upload-ready notification for the orchestrator. Also serves asset
retrieval with the visibility check.
"""

import logging
from typing import Any, Callable, Dict, Iterable, Optional
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from mediaflow.catalog.database import get_db_session
from mediaflow.catalog.models import AssetState, MediaAsset, MediaKind, normalize_tags
from mediaflow.catalog.queries import (
    AssetPage, get_active_album, get_asset, list_owner_assets, retrieve_asset
)
from mediaflow.common.errors import PermanentError
from mediaflow.config.settings import Settings, get_settings
from mediaflow.media.transforms import IMAGE_CONTENT_TYPES
from mediaflow.queue.interface import QueueBackend
from mediaflow.storage.adapter import ObjectStore

logger = logging.getLogger(__name__)

KEY_PREFIXES = {
    MediaKind.PROFILE_IMAGE: "profile",
    MediaKind.ALBUM_COVER: "album-cover",
    MediaKind.IMAGE: "images",
}

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/webm": ".webm",
    "video/x-matroska": ".mkv",
}


class MediaServiceError(PermanentError):
    """Request cannot be served as given."""
    pass


class InvalidUploadRequest(MediaServiceError):
    """Kind, content type or album do not fit together."""
    pass


class AlbumNotAvailable(MediaServiceError):
    """Album is missing, deleted or owned by someone else."""
    pass


def extension_for(content_type: str) -> str:
    content_type = content_type.split(";")[0].strip().lower()
    ext = _EXTENSIONS.get(content_type)
    if not ext:
        raise InvalidUploadRequest(f"Unsupported content type: {content_type}")
    return ext


class MediaService:
    """Upload reservation, ingest trigger and asset retrieval."""

    def __init__(
        self,
        store: ObjectStore,
        upload_queue: QueueBackend,
        session_factory: Optional[Callable[[], Session]] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.upload_queue = upload_queue
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def _key_prefix(self, kind: MediaKind) -> str:
        if kind == MediaKind.VIDEO:
            # The transcoder only accepts sources under this prefix
            return self.settings.video_input_prefix.strip("/")
        return KEY_PREFIXES[kind]

    def _check_album(self, db: Session, album_id: UUID, owner_id: str) -> None:
        album = get_active_album(db, album_id)
        if album is None or album.owner_id != owner_id:
            raise AlbumNotAvailable(f"Album {album_id} is not available to {owner_id}")

    def issue_upload_credential(
        self,
        kind: MediaKind,
        content_type: str,
        owner_id: str,
        album_id: Optional[UUID] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Dict[str, Any]:
        """
        Reserve an asset and return a presigned upload for it.

        Args:
            kind: Media kind of the upload
            content_type: Content type the client will upload
            owner_id: Requesting identity
            album_id: Optional album the asset belongs to
            tags: Caller-supplied tags

        Returns:
            Dictionary with asset_id, storage_key and the upload credential

        Raises:
            InvalidUploadRequest: kind and content type do not match
            AlbumNotAvailable: album missing, deleted or not owned
        """
        kind = MediaKind(kind)
        album_id = UUID(str(album_id)) if album_id else None
        base_type = content_type.split(";")[0].strip().lower()
        if kind == MediaKind.VIDEO and not base_type.startswith("video/"):
            raise InvalidUploadRequest(f"Video uploads must be video/*, got {content_type}")
        if kind != MediaKind.VIDEO and base_type not in IMAGE_CONTENT_TYPES:
            raise InvalidUploadRequest(
                f"{kind.value} uploads must be one of "
                f"{', '.join(sorted(IMAGE_CONTENT_TYPES))}, got {content_type}")

        asset_id = uuid4()
        storage_key = f"{self._key_prefix(kind)}/{asset_id}{extension_for(content_type)}"
        expires_in = self.settings.upload_url_expiry_seconds

        with get_db_session(self.session_factory) as db:
            if album_id is not None:
                self._check_album(db, album_id, owner_id)

            credential = self.store.generate_upload_credential(storage_key, content_type, expires_in)
            db.add(MediaAsset(
                id=asset_id,
                storage_key=storage_key,
                url=self.store.public_url(storage_key),
                content_type=content_type,
                kind=kind,
                owner_id=owner_id,
                album_id=album_id,
                state=AssetState.RESERVED,
                tags=normalize_tags(tags),
            ))

        logger.info(
            f"Reserved {kind.value} asset {asset_id} for {owner_id}",
            extra={"extra_fields": {"asset_id": str(asset_id), "storage_key": storage_key}},
        )
        return {
            "asset_id": str(asset_id),
            "storage_key": storage_key,
            "upload_url": credential.url,
            "method": credential.method,
            "headers": credential.headers,
            "expires_at": credential.expires_at.isoformat(),
        }

    def request_ingest(
        self,
        asset_id: UUID,
        storage_key: str,
        owner_id: str,
        album_id: Optional[UUID] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Dict[str, str]:
        """
        Queue the ingest of an uploaded object.

        Raises:
            MediaServiceError: asset, key or owner do not match the reservation
            AlbumNotAvailable: album missing, deleted or not owned
        """
        asset_id = UUID(str(asset_id))
        album_id = UUID(str(album_id)) if album_id else None
        with get_db_session(self.session_factory) as db:
            asset = get_asset(db, asset_id)
            if asset is None:
                raise MediaServiceError(f"Asset {asset_id} not found")
            if asset.owner_id != owner_id:
                raise MediaServiceError(f"Asset {asset_id} is not owned by {owner_id}")
            if asset.storage_key != storage_key:
                raise MediaServiceError(f"Storage key {storage_key} does not match asset {asset_id}")
            if album_id is not None and album_id != asset.album_id:
                self._check_album(db, album_id, owner_id)

        message_id = self.upload_queue.send({
            "assetId": str(asset_id),
            "key": storage_key,
            "userId": owner_id,
            "albumId": str(album_id) if album_id else None,
            "tags": list(tags or []),
        })
        logger.info(f"Queued ingest of asset {asset_id} as message {message_id}")
        return {"status": "processing"}

    def get_asset(self, asset_id: UUID, requester_id: Optional[str]) -> Dict[str, Any]:
        asset_id = UUID(str(asset_id))
        with get_db_session(self.session_factory) as db:
            return retrieve_asset(db, asset_id, requester_id)

    def list_assets(self, owner_id: str, album_id: Optional[UUID] = None,
                    limit: int = 20, offset: int = 0) -> AssetPage:
        with get_db_session(self.session_factory) as db:
            return list_owner_assets(db, owner_id, album_id=album_id, limit=limit, offset=offset)
