from .bundle import ServiceBundle, get_service_bundle
from .object_service import (
    InvalidObjectError,
    ObjectService,
    ObjectTooLargeError,
    StoredObject,
    UnsupportedContentTypeError,
    normalize_content_type,
)

__all__ = [
    "InvalidObjectError",
    "ObjectService",
    "ObjectTooLargeError",
    "ServiceBundle",
    "StoredObject",
    "UnsupportedContentTypeError",
    "get_service_bundle",
    "normalize_content_type",
]
