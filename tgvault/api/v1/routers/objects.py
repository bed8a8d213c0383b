"""Object API router.

This module provides the REST endpoints for uploading encrypted objects and
reading them back by public ID.
"""

from __future__ import annotations

import logging
import mimetypes

from fastapi import (
    APIRouter,
    Depends,
    File,
    Header,
    HTTPException,
    Request,
    Response,
    UploadFile,
    status,
)

from tgvault.api.v1.deps import get_object_service
from tgvault.api.v1.schemas.objects import ObjectInfoOut, UploadOut, UrlUploadIn
from tgvault.api.v1.utils import etag_for, etag_matches, to_http_exception
from tgvault.app.services.object_service import (
    ObjectService,
    ObjectTooLargeError,
    StoredObject,
)
from tgvault.domain.errors import VaultError

router = APIRouter()
logger = logging.getLogger("tgvault.objects")

CACHE_CONTROL = "public, max-age=3600, immutable"


def _urls(request: Request, public_id: str) -> tuple[str, str]:
    return (
        request.app.url_path_for("get_image", public_id=public_id),
        request.app.url_path_for("get_image_info", public_id=public_id),
    )


def _upload_out(request: Request, stored: StoredObject) -> UploadOut:
    url, info_url = _urls(request, stored.public_id)
    info = ObjectInfoOut.from_metadata(stored.public_id, stored.metadata, url=url)
    return UploadOut(**info.model_dump(), info_url=info_url, chunks=stored.chunk_count)


def _read_upload(upload: UploadFile, limit: int) -> bytes:
    # Read one byte past the limit so oversize bodies are detected without buffering them.
    data = upload.file.read(limit + 1)
    if len(data) > limit:
        raise ObjectTooLargeError(limit)
    return data


@router.post(
    "/upload",
    response_model=UploadOut,
    status_code=status.HTTP_201_CREATED,
    summary="Upload an image",
    description="Encrypt a multipart `file` (or `image`) field and store it remotely.",
)
def upload_image(
    request: Request,
    file: UploadFile | None = File(default=None),
    image: UploadFile | None = File(default=None),
    service: ObjectService = Depends(get_object_service),
) -> UploadOut:
    upload = image or file
    if upload is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "No image found", "error_code": "invalid_object"},
        )

    content_type = upload.content_type
    if not content_type or content_type == "application/octet-stream":
        guessed, _ = mimetypes.guess_type(upload.filename or "")
        content_type = guessed or content_type

    try:
        data = _read_upload(upload, service.max_object_bytes)
        stored = service.put_object(data, content_type)
    except VaultError as exc:
        raise to_http_exception(exc) from exc

    logger.info(
        "object_stored size=%s content_type=%s chunks=%s",
        stored.metadata.size_bytes,
        stored.metadata.content_type,
        stored.chunk_count,
        extra={
            "extra": {
                "size": stored.metadata.size_bytes,
                "content_type": stored.metadata.content_type,
                "chunks": stored.chunk_count,
            }
        },
    )
    return _upload_out(request, stored)


@router.post(
    "/upload_from_url",
    response_model=UploadOut,
    status_code=status.HTTP_201_CREATED,
    summary="Upload an image from a URL",
)
def upload_from_url(
    request: Request,
    payload: UrlUploadIn,
    service: ObjectService = Depends(get_object_service),
) -> UploadOut:
    try:
        stored = service.put_object_from_url(payload.url)
    except VaultError as exc:
        raise to_http_exception(exc) from exc
    return _upload_out(request, stored)


@router.get(
    "/image/{public_id}",
    name="get_image",
    response_class=Response,
    summary="Download an image",
    responses={200: {"content": {"image/*": {}}}, 304: {"description": "Not modified"}},
)
def get_image(
    public_id: str,
    if_none_match: str | None = Header(default=None),
    service: ObjectService = Depends(get_object_service),
) -> Response:
    try:
        service.get_info(public_id)
    except VaultError as exc:
        raise to_http_exception(exc) from exc

    etag = etag_for(public_id)
    if etag_matches(if_none_match, etag):
        return Response(
            status_code=status.HTTP_304_NOT_MODIFIED,
            headers={"ETag": etag, "Cache-Control": CACHE_CONTROL},
        )

    try:
        data, metadata = service.get_object(public_id)
    except VaultError as exc:
        raise to_http_exception(exc) from exc

    return Response(
        content=data,
        media_type=metadata.content_type,
        headers={"ETag": etag, "Cache-Control": CACHE_CONTROL},
    )


@router.get(
    "/info/{public_id}",
    name="get_image_info",
    response_model=ObjectInfoOut,
    summary="Get image metadata",
    description="Metadata is read from the ID itself; no remote transfer happens.",
)
def get_image_info(
    request: Request,
    public_id: str,
    service: ObjectService = Depends(get_object_service),
) -> ObjectInfoOut:
    try:
        metadata = service.get_info(public_id)
    except VaultError as exc:
        raise to_http_exception(exc) from exc
    url, _ = _urls(request, public_id)
    return ObjectInfoOut.from_metadata(public_id, metadata, url=url)
