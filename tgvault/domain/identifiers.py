"""Public ID encoding.

A public ID is a self-contained, URL-safe token. It carries the locator of
the ciphertext, the nonce and cipher version needed to open it, and the
object metadata, so no lookup table is needed on read. Binary layout
(big-endian)::

    u8   version
    12B  nonce
    u64  created_at (unix seconds)
    u64  size_bytes (plaintext)
    u64  total_length (ciphertext incl. tag)
    u8   content type length, then ASCII content type
    u16  chunk count, then per chunk:
         i64 message_id, u8 file_id length, ASCII file_id

The result is base64url without padding. Decoding is strict: anything that
does not re-encode to the exact same text is rejected.

The token is not authenticated on its own. Edited metadata is caught by the
crypto codec (metadata is associated data), an edited locator surfaces as a
transport ``NotFoundError`` or an ``IntegrityError``.
"""

from __future__ import annotations

import base64
import binascii
import re
import struct
from dataclasses import dataclass

from tgvault.domain.crypto import (
    NONCE_SIZE_BYTES,
    SUPPORTED_CIPHER_VERSIONS,
    TAG_SIZE_BYTES,
    ObjectMetadata,
)
from tgvault.domain.errors import MalformedIDError
from tgvault.domain.locator import ChunkHandle, Locator

MAX_CHUNKS = 1024
MAX_FIELD_LENGTH = 255
# 9999-12-31T23:59:59Z, the last instant datetime can represent
MAX_CREATED_AT = 253402300799
# Upper bound on the text form; checked before any base64 work.
MAX_PUBLIC_ID_LENGTH = 4 * (
    (
        1
        + NONCE_SIZE_BYTES
        + 24
        + 1
        + MAX_FIELD_LENGTH
        + 2
        + MAX_CHUNKS * (8 + 1 + MAX_FIELD_LENGTH)
    )
    // 3
    + 1
)

_HEADER = struct.Struct(f">B{NONCE_SIZE_BYTES}sQQQ")
_U8 = struct.Struct(">B")
_U16 = struct.Struct(">H")
_I64 = struct.Struct(">q")
_ALPHABET = re.compile(r"^[A-Za-z0-9_-]+$")
_CONTENT_TYPE = re.compile(r"^[\x21-\x7e]+$")
_FILE_ID = re.compile(r"^[\x21-\x7e]+$")


@dataclass(frozen=True, slots=True)
class DecodedId:
    locator: Locator
    nonce: bytes
    version: int
    metadata: ObjectMetadata


def _encode_field(value: str, *, what: str, pattern: re.Pattern[str]) -> bytes:
    if not pattern.match(value):
        raise ValueError(f"{what} must be non-empty printable ASCII")
    raw = value.encode("ascii")
    if len(raw) > MAX_FIELD_LENGTH:
        raise ValueError(f"{what} exceeds {MAX_FIELD_LENGTH} bytes")
    return _U8.pack(len(raw)) + raw


def encode_public_id(
    locator: Locator,
    nonce: bytes,
    version: int,
    metadata: ObjectMetadata,
) -> str:
    """Serialize a locator and its decryption parameters into a public ID.

    Raises:
        ValueError: If any field cannot be represented.
    """
    if version not in SUPPORTED_CIPHER_VERSIONS:
        raise ValueError(f"Unsupported cipher version: {version}")
    if len(nonce) != NONCE_SIZE_BYTES:
        raise ValueError(f"Nonce must be {NONCE_SIZE_BYTES} bytes")
    if not 1 <= locator.chunk_count <= MAX_CHUNKS:
        raise ValueError(f"Locator must hold between 1 and {MAX_CHUNKS} chunks")
    if locator.total_length != metadata.size_bytes + TAG_SIZE_BYTES:
        raise ValueError("Locator length does not match the object size")
    if not 0 <= metadata.created_at <= MAX_CREATED_AT:
        raise ValueError("Creation time is out of range")

    parts = [
        _HEADER.pack(
            version,
            nonce,
            metadata.created_at,
            metadata.size_bytes,
            locator.total_length,
        ),
        _encode_field(metadata.content_type, what="content type", pattern=_CONTENT_TYPE),
        _U16.pack(locator.chunk_count),
    ]
    for handle in locator.chunks:
        parts.append(_I64.pack(handle.message_id))
        parts.append(_encode_field(handle.file_id, what="file_id", pattern=_FILE_ID))

    return base64.urlsafe_b64encode(b"".join(parts)).rstrip(b"=").decode("ascii")


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def take(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise MalformedIDError("Public ID is truncated")
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk

    def unpack(self, fmt: struct.Struct) -> tuple:
        return fmt.unpack(self.take(fmt.size))

    def text(self, *, what: str, pattern: re.Pattern[str]) -> str:
        (length,) = self.unpack(_U8)
        raw = self.take(length)
        try:
            value = raw.decode("ascii")
        except UnicodeDecodeError as exc:
            raise MalformedIDError(f"Public ID {what} is not ASCII") from exc
        if not pattern.match(value):
            raise MalformedIDError(f"Public ID {what} is invalid")
        return value

    @property
    def exhausted(self) -> bool:
        return self._offset == len(self._data)


def _b64decode(public_id: str) -> bytes:
    if not isinstance(public_id, str) or not public_id:
        raise MalformedIDError("Public ID is empty")
    if len(public_id) > MAX_PUBLIC_ID_LENGTH:
        raise MalformedIDError("Public ID is too long")
    if not _ALPHABET.match(public_id) or len(public_id) % 4 == 1:
        raise MalformedIDError("Public ID is not valid base64url")
    padded = public_id + "=" * (-len(public_id) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise MalformedIDError("Public ID is not valid base64url") from exc
    # Reject non-canonical spellings (stray low bits in the last symbol).
    if base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") != public_id:
        raise MalformedIDError("Public ID is not canonically encoded")
    return raw


def decode_public_id(public_id: str) -> DecodedId:
    """Parse and structurally validate a public ID.

    Raises:
        MalformedIDError: On any decoding, length, or version problem.
    """
    reader = _Reader(_b64decode(public_id))

    version, nonce, created_at, size_bytes, total_length = reader.unpack(_HEADER)
    if version not in SUPPORTED_CIPHER_VERSIONS:
        raise MalformedIDError(f"Unknown public ID version: {version}")
    if total_length != size_bytes + TAG_SIZE_BYTES:
        raise MalformedIDError("Public ID lengths are inconsistent")
    if created_at > MAX_CREATED_AT:
        raise MalformedIDError("Public ID creation time is out of range")

    content_type = reader.text(what="content type", pattern=_CONTENT_TYPE)

    (chunk_count,) = reader.unpack(_U16)
    if not 1 <= chunk_count <= MAX_CHUNKS:
        raise MalformedIDError("Public ID has an invalid chunk count")
    if chunk_count > total_length:
        raise MalformedIDError("Public ID has more chunks than bytes")

    chunks = []
    for _ in range(chunk_count):
        (message_id,) = reader.unpack(_I64)
        file_id = reader.text(what="file_id", pattern=_FILE_ID)
        chunks.append(ChunkHandle(file_id=file_id, message_id=message_id))

    if not reader.exhausted:
        raise MalformedIDError("Public ID has trailing bytes")

    return DecodedId(
        locator=Locator(chunks=tuple(chunks), total_length=total_length),
        nonce=nonce,
        version=version,
        metadata=ObjectMetadata(
            content_type=content_type,
            size_bytes=size_bytes,
            created_at=created_at,
        ),
    )
