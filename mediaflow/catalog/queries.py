"""
Read-side queries for the media catalog.

This module handles:
- Row-locked asset lookup used by the orchestrator as its serialization point
- Asset retrieval with the visibility check
- Owner listing, newest first
- Serialization that never exposes enrichment of flagged assets to others
"""

import logging
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import desc
from sqlalchemy.orm import Session

from mediaflow.catalog.models import (
    Album, AssetState, MediaAsset, MediaKind, ModerationStatus, Visibility
)
from mediaflow.common.errors import MediaFlowError

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD_MS = 150
MAX_PAGE_SIZE = 100


def log_query_time(func: Callable) -> Callable:
    """Log execution time of a query and warn when it is slow."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        duration_ms = (time.perf_counter() - start) * 1000

        logger.debug(f"Query {func.__name__} took {duration_ms:.2f}ms")
        if duration_ms > SLOW_QUERY_THRESHOLD_MS:
            logger.warning(
                f"SLOW QUERY: {func.__name__} exceeded {SLOW_QUERY_THRESHOLD_MS}ms "
                f"(took {duration_ms:.2f}ms)"
            )
        return result
    return wrapper


class AssetNotFound(MediaFlowError):
    """Asset does not exist or has been soft-deleted."""
    pass


class AssetAccessDenied(MediaFlowError):
    """Requester may not see this asset."""
    pass


@dataclass
class AssetPage:
    items: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int


def lock_asset(db: Session, asset_id: UUID) -> Optional[MediaAsset]:
    """
    Load an asset with a row-level write lock held until the transaction ends.

    Every ingest and reconcile mutation starts here so that at most one of
    them changes a given asset at a time.
    """
    return (
        db.query(MediaAsset)
        .filter(MediaAsset.id == asset_id, MediaAsset.deleted_at.is_(None))
        .with_for_update()
        .one_or_none()
    )


def get_asset(db: Session, asset_id: UUID) -> Optional[MediaAsset]:
    return (
        db.query(MediaAsset)
        .filter(MediaAsset.id == asset_id, MediaAsset.deleted_at.is_(None))
        .one_or_none()
    )


def get_active_album(db: Session, album_id: UUID) -> Optional[Album]:
    return (
        db.query(Album)
        .filter(Album.id == album_id, Album.deleted_at.is_(None))
        .one_or_none()
    )


def is_publicly_visible(asset: MediaAsset) -> bool:
    """
    Profile pictures are public; other assets inherit their album's
    visibility and are private outside an album.
    """
    if asset.kind == MediaKind.PROFILE_IMAGE:
        return True
    album = asset.album
    return (
        album is not None
        and album.deleted_at is None
        and album.visibility == Visibility.PUBLIC
    )


def can_view(asset: MediaAsset, requester_id: Optional[str]) -> bool:
    if requester_id is not None and asset.owner_id == requester_id:
        return True
    if asset.state not in (AssetState.COMPLETE, AssetState.FLAGGED):
        return False
    return is_publicly_visible(asset)


def serialize_asset(asset: MediaAsset, requester_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Convert an asset to a response dict.

    Reserved and in-flight assets have no enrichment yet, so every
    enrichment field may be None. Flagged assets keep their enrichment
    private to the owner.
    """
    is_owner = requester_id is not None and asset.owner_id == requester_id
    metadata = dict(asset.metadata_json or {})
    thumbnail_url = asset.thumbnail_url
    stream_url = asset.stream_url
    tags = list(asset.tags or [])

    if asset.moderation == ModerationStatus.FLAGGED and not is_owner:
        thumbnail_url = None
        stream_url = None
        metadata = {}

    return {
        "id": str(asset.id),
        "kind": asset.kind.value,
        "state": asset.state.value,
        "moderation": asset.moderation.value,
        "storage_key": asset.storage_key,
        "url": asset.url,
        "content_type": asset.content_type,
        "owner_id": asset.owner_id,
        "album_id": str(asset.album_id) if asset.album_id else None,
        "tags": tags,
        "thumbnail_url": thumbnail_url,
        "stream_url": stream_url,
        "metadata": metadata or None,
        "failure_reason": asset.failure_reason if is_owner else None,
        "created_at": asset.created_at.isoformat() if asset.created_at else None,
        "updated_at": asset.updated_at.isoformat() if asset.updated_at else None,
    }


@log_query_time
def retrieve_asset(db: Session, asset_id: UUID, requester_id: Optional[str]) -> Dict[str, Any]:
    """
    Return the asset if it is public or owned by the requester.

    Raises:
        AssetNotFound: no such live asset
        AssetAccessDenied: asset exists but is not visible to the requester
    """
    asset = get_asset(db, asset_id)
    if asset is None:
        raise AssetNotFound(f"Asset {asset_id} not found")
    if not can_view(asset, requester_id):
        raise AssetAccessDenied(f"Asset {asset_id} is not visible to {requester_id}")
    return serialize_asset(asset, requester_id)


@log_query_time
def list_owner_assets(
    db: Session,
    owner_id: str,
    album_id: Optional[UUID] = None,
    limit: int = 20,
    offset: int = 0,
) -> AssetPage:
    """List an owner's live assets, newest first."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)

    query = db.query(MediaAsset).filter(
        MediaAsset.owner_id == owner_id,
        MediaAsset.deleted_at.is_(None),
    )
    if album_id is not None:
        query = query.filter(MediaAsset.album_id == album_id)

    total = query.count()
    rows = (
        query.order_by(desc(MediaAsset.created_at), desc(MediaAsset.id))
        .offset(offset)
        .limit(limit)
        .all()
    )
    return AssetPage(
        items=[serialize_asset(asset, owner_id) for asset in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


def find_asset_id_by_key(db: Session, storage_key: str) -> Optional[UUID]:
    row = (
        db.query(MediaAsset.id)
        .filter(MediaAsset.storage_key == storage_key, MediaAsset.deleted_at.is_(None))
        .one_or_none()
    )
    return row[0] if row else None
