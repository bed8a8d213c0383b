"""Pydantic schemas for object API endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from tgvault.domain.crypto import ObjectMetadata


class ObjectInfoOut(BaseModel):
    """Metadata of a stored object."""

    id: str
    url: str
    size: int
    content_type: str
    created_at: datetime

    @classmethod
    def from_metadata(
        cls, public_id: str, metadata: ObjectMetadata, *, url: str
    ) -> "ObjectInfoOut":
        return cls(
            id=public_id,
            url=url,
            size=metadata.size_bytes,
            content_type=metadata.content_type,
            created_at=datetime.fromtimestamp(metadata.created_at, tz=timezone.utc),
        )


class UploadOut(ObjectInfoOut):
    """Response body of a successful upload."""

    info_url: str
    chunks: int = Field(ge=1)


class UrlUploadIn(BaseModel):
    """Request body for uploading from a remote URL."""

    url: str = Field(min_length=1, max_length=2048)


class DeleteOut(BaseModel):
    id: str
    deleted: bool
    chunks: int
