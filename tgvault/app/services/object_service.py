"""Object service for encrypted upload and retrieval.

This module composes the crypto codec, the public ID codec and the chunked
transport into the store's four operations. It owns no mutable state: every
call is independent and may be retried by the caller.
"""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass
from io import BytesIO
from typing import Callable

from PIL import Image, UnidentifiedImageError

from tgvault.domain.crypto import CryptoCodec, EncryptedPayload, ObjectMetadata
from tgvault.domain.errors import IntegrityError, MalformedIDError, VaultError
from tgvault.domain.identifiers import decode_public_id, encode_public_id
from tgvault.infra.transport.chunked import ChunkedTransport
from tgvault.infra.transport.client import PermanentTransportError
from tgvault.infra.url_fetcher import UrlFetcher, UrlFetchError, UrlTooLargeError

DEFAULT_CONTENT_TYPE = "application/octet-stream"
# Text formats Pillow cannot decode; stored without a parse check.
VECTOR_IMAGE_TYPES = frozenset({"image/svg+xml"})


class InvalidObjectError(VaultError):
    """Raised when an upload is rejected before anything is stored."""


class UnsupportedContentTypeError(InvalidObjectError):
    """Raised when the declared content type is not on the allow list."""

    def __init__(self, content_type: str, allowed: tuple[str, ...]) -> None:
        super().__init__(
            f"Unsupported type: {content_type}. Allowed: {', '.join(allowed)}"
        )
        self.content_type = content_type
        self.allowed = allowed


class ObjectTooLargeError(VaultError):
    """Raised when an upload exceeds the configured maximum size."""

    def __init__(self, max_size: int) -> None:
        super().__init__(f"File too large. Maximum size: {max_size} bytes")
        self.max_size = max_size


@dataclass(frozen=True, slots=True)
class StoredObject:
    """Result of a successful upload."""

    public_id: str
    metadata: ObjectMetadata
    chunk_count: int


def normalize_content_type(value: str | None) -> str:
    """Lower-case a content type and drop any parameters."""
    if not value:
        return DEFAULT_CONTENT_TYPE
    cleaned = value.split(";", 1)[0].strip().lower()
    return cleaned or DEFAULT_CONTENT_TYPE


def verify_image(payload: bytes) -> None:
    """Raise :class:`InvalidObjectError` unless Pillow can parse ``payload``."""
    try:
        with Image.open(BytesIO(payload)) as image:
            image.verify()
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        EOFError,
        OSError,
        SyntaxError,
        ValueError,
        struct.error,
    ) as exc:
        raise InvalidObjectError(f"Invalid image data: {exc}") from exc


class ObjectService:
    """Application service for the encrypted object lifecycle."""

    def __init__(
        self,
        *,
        crypto: CryptoCodec,
        transport: ChunkedTransport,
        max_object_bytes: int,
        allowed_content_types: tuple[str, ...] | None = None,
        url_fetcher: UrlFetcher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._crypto = crypto
        self._transport = transport
        self._max_object_bytes = int(max_object_bytes)
        self._allowed = (
            tuple(normalize_content_type(t) for t in allowed_content_types)
            if allowed_content_types
            else None
        )
        self._url_fetcher = url_fetcher
        self._clock = clock

    @property
    def max_object_bytes(self) -> int:
        return self._max_object_bytes

    def put_object(self, payload: bytes, content_type: str | None) -> StoredObject:
        """Encrypt, upload and return a public ID for ``payload``.

        A public ID is only returned once every chunk is stored; any failure
        aborts the whole operation.

        Raises:
            InvalidObjectError: If the payload is empty, the type is not allowed
                or an image payload does not parse.
            ObjectTooLargeError: If the payload exceeds the size limit.
            TransientTransportError: If the remote stays unavailable.
            PermanentTransportError: If the remote rejects the upload.
        """
        payload = bytes(payload)
        if not payload:
            raise InvalidObjectError("No file content found")
        if len(payload) > self._max_object_bytes:
            raise ObjectTooLargeError(self._max_object_bytes)
        normalized_type = normalize_content_type(content_type)
        if self._allowed is not None and normalized_type not in self._allowed:
            raise UnsupportedContentTypeError(normalized_type, self._allowed)
        if normalized_type.startswith("image/") and normalized_type not in VECTOR_IMAGE_TYPES:
            verify_image(payload)

        metadata = ObjectMetadata(
            content_type=normalized_type,
            size_bytes=len(payload),
            created_at=int(self._clock()),
        )
        encrypted = self._crypto.encrypt(
            payload, associated_data=metadata.associated_data()
        )
        locator = self._transport.put(encrypted.sealed_bytes())
        try:
            public_id = encode_public_id(
                locator, encrypted.nonce, encrypted.version, metadata
            )
        except ValueError as exc:
            self._transport.delete(locator)
            raise PermanentTransportError(
                f"Remote handles cannot be encoded: {exc}"
            ) from exc
        return StoredObject(
            public_id=public_id, metadata=metadata, chunk_count=locator.chunk_count
        )

    def put_object_from_url(self, url: str) -> StoredObject:
        """Download ``url`` and store its body like :meth:`put_object`.

        Raises:
            InvalidObjectError: If the URL cannot be fetched.
            ObjectTooLargeError: If the body exceeds the size limit.
        """
        if self._url_fetcher is None:
            raise InvalidObjectError("Uploading from a URL is disabled")
        try:
            fetched = self._url_fetcher.fetch(url, max_bytes=self._max_object_bytes)
        except UrlTooLargeError as exc:
            raise ObjectTooLargeError(self._max_object_bytes) from exc
        except UrlFetchError as exc:
            raise InvalidObjectError(str(exc)) from exc
        return self.put_object(fetched.data, fetched.content_type)

    def get_object(self, public_id: str) -> tuple[bytes, ObjectMetadata]:
        """Fetch and decrypt the object behind ``public_id``.

        Raises:
            MalformedIDError: If the ID does not decode or names an object
                larger than uploads allow (no remote call is made).
            NotFoundError: If the remote chunks are gone.
            TruncatedObjectError: If the reassembled ciphertext has the wrong length.
            IntegrityError: If decryption fails or the size does not match.
        """
        decoded = decode_public_id(public_id)
        if decoded.metadata.size_bytes > self._max_object_bytes:
            raise MalformedIDError("Public ID size exceeds the upload limit")
        sealed = self._transport.get(decoded.locator)
        payload = EncryptedPayload.from_sealed_bytes(
            sealed, nonce=decoded.nonce, version=decoded.version
        )
        plaintext = self._crypto.decrypt(
            payload, associated_data=decoded.metadata.associated_data()
        )
        if len(plaintext) != decoded.metadata.size_bytes:
            raise IntegrityError("Decrypted size does not match the recorded size")
        return plaintext, decoded.metadata

    def get_info(self, public_id: str) -> ObjectMetadata:
        """Return the metadata carried in ``public_id`` without remote I/O.

        The values are only authenticated when the object itself is fetched.

        Raises:
            MalformedIDError: If the ID does not decode.
        """
        return decode_public_id(public_id).metadata

    def delete_object(self, public_id: str) -> int:
        """Remove every remote chunk of the object and return how many there were.

        Raises:
            MalformedIDError: If the ID does not decode.
            TransientTransportError: If the remote stays unavailable.
            PermanentTransportError: If the remote refuses a delete.
        """
        decoded = decode_public_id(public_id)
        self._transport.delete(decoded.locator)
        return decoded.locator.chunk_count

    def ping(self) -> None:
        self._transport.ping()
