import hashlib

from fastapi import HTTPException, status

from tgvault.app.services.object_service import (
    InvalidObjectError,
    ObjectTooLargeError,
    UnsupportedContentTypeError,
)
from tgvault.domain.errors import (
    IntegrityError,
    MalformedIDError,
    RateLimitedError,
    TruncatedObjectError,
    UnsupportedVersionError,
    VaultError,
)
from tgvault.infra.transport.client import (
    NotFoundError,
    PermanentTransportError,
    TransientTransportError,
)

# Most specific first; the first isinstance match wins.
_ERROR_MAP: tuple[tuple[type[VaultError], int, str, str | None], ...] = (
    (MalformedIDError, status.HTTP_400_BAD_REQUEST, "malformed_id", "Invalid image ID"),
    (IntegrityError, status.HTTP_400_BAD_REQUEST, "integrity_check_failed", "Image failed integrity check"),
    (UnsupportedVersionError, status.HTTP_400_BAD_REQUEST, "unsupported_version", None),
    (UnsupportedContentTypeError, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, "unsupported_media_type", None),
    (InvalidObjectError, status.HTTP_400_BAD_REQUEST, "invalid_object", None),
    (ObjectTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "payload_too_large", None),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found", "Image not found"),
    (TruncatedObjectError, status.HTTP_502_BAD_GATEWAY, "truncated_object", "Stored image is incomplete"),
    (TransientTransportError, status.HTTP_503_SERVICE_UNAVAILABLE, "storage_unavailable", "External service error"),
    (PermanentTransportError, status.HTTP_502_BAD_GATEWAY, "storage_rejected", "External service error"),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS, "rate_limited", "Rate limit exceeded"),
)


def to_http_exception(exc: VaultError) -> HTTPException:
    """Map a store error onto the HTTPException the API returns for it."""
    for error_type, status_code, error_code, public_message in _ERROR_MAP:
        if isinstance(exc, error_type):
            headers = None
            if isinstance(exc, RateLimitedError):
                headers = {"Retry-After": str(exc.retry_after)}
            elif isinstance(exc, TransientTransportError) and exc.retry_after:
                headers = {"Retry-After": str(int(exc.retry_after))}
            return HTTPException(
                status_code=status_code,
                detail={
                    "message": public_message or str(exc),
                    "error_code": error_code,
                },
                headers=headers,
            )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": "Internal server error", "error_code": "internal_error"},
    )


def etag_for(public_id: str) -> str:
    """Strong ETag for an object; IDs are write-once so the ID is enough."""
    digest = hashlib.sha256(public_id.encode("ascii")).digest()
    return f'"{digest[:8].hex()}"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    if not if_none_match:
        return False
    candidates = [item.strip() for item in if_none_match.split(",")]
    return "*" in candidates or etag in candidates or f"W/{etag}" in candidates
