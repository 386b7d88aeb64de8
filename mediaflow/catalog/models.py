"""
Database models for the media catalog.

The relational store owns MediaAsset and Album. External job state lives
in the job ledger (see mediaflow.ledger), never here.
"""

import enum
from datetime import datetime
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import (  # type: ignore
    String, DateTime, Text, ForeignKey, JSON, Enum as SQLEnum, Index, Uuid
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column  # type: ignore


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class MediaKind(str, enum.Enum):
    PROFILE_IMAGE = "profile_image"
    ALBUM_COVER = "album_cover"
    IMAGE = "image"
    VIDEO = "video"

    @property
    def is_image(self) -> bool:
        return self is not MediaKind.VIDEO


class AssetState(str, enum.Enum):
    RESERVED = "reserved"
    INGESTING = "ingesting"
    PENDING_EXTERNAL = "pending_external"
    COMPLETE = "complete"
    FLAGGED = "flagged"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AssetState.COMPLETE, AssetState.FLAGGED, AssetState.FAILED)


class ModerationStatus(str, enum.Enum):
    PENDING = "pending"
    CLEAN = "clean"
    FLAGGED = "flagged"


class Visibility(str, enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Album(Base):
    """
    Named collection of assets owned by one identity.

    The cover is a plain back-reference into media_asset; deleting the
    cover asset clears it instead of cascading.
    """
    __tablename__ = "album"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    visibility: Mapped[Visibility] = mapped_column(
        SQLEnum(Visibility, name="album_visibility", values_callable=_enum_values),
        default=Visibility.PRIVATE,
        nullable=False,
    )
    cover_asset_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("media_asset.id", ondelete="SET NULL", use_alter=True,
                   name="fk_album_cover_asset"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    assets: Mapped[List["MediaAsset"]] = relationship(
        "MediaAsset", back_populates="album", foreign_keys="MediaAsset.album_id")

    __table_args__ = (
        Index("idx_album_owner_id", "owner_id"),
    )


class MediaAsset(Base):
    """
    Canonical record of one uploaded file.

    Reserved when the upload credential is issued, before the binary
    exists; enrichment columns stay empty until ingest completes.
    """
    __tablename__ = "media_asset"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    storage_key: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    kind: Mapped[MediaKind] = mapped_column(
        SQLEnum(MediaKind, name="media_kind", values_callable=_enum_values),
        nullable=False,
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    album_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("album.id", ondelete="SET NULL"), nullable=True, index=True)

    state: Mapped[AssetState] = mapped_column(
        SQLEnum(AssetState, name="asset_state", values_callable=_enum_values),
        default=AssetState.RESERVED,
        nullable=False,
    )
    moderation: Mapped[ModerationStatus] = mapped_column(
        SQLEnum(ModerationStatus, name="moderation_status", values_callable=_enum_values),
        default=ModerationStatus.PENDING,
        nullable=False,
    )

    # Lower-cased, deduplicated, sorted for stable output
    tags: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    stream_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # EXIF / probe results, renditions, video metadata, enrichment errors
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    album: Mapped[Optional["Album"]] = relationship(
        "Album", back_populates="assets", foreign_keys=[album_id])

    __table_args__ = (
        Index("idx_media_asset_owner_created", "owner_id", "created_at"),
        Index("idx_media_asset_state", "state"),
    )


def normalize_tags(*tag_groups) -> List[str]:
    """
    Merge tag collections into one case-folded, deduplicated, sorted list.

    None groups and blank tags are ignored.
    """
    merged = set()
    for group in tag_groups:
        for tag in group or ():
            if tag is None:
                continue
            cleaned = str(tag).strip().lower()
            if cleaned:
                merged.add(cleaned)
    return sorted(merged)
