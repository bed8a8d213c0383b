"""Authenticated encryption of object payloads.

Objects are sealed with AES-256-GCM under a single process-wide key. Each
call to :meth:`CryptoCodec.encrypt` draws a fresh 96-bit random nonce, so the
same key never sees the same nonce twice at any realistic volume.

Object metadata (content type, size, creation time) is not encrypted but is
bound to the ciphertext as associated data: a public ID whose metadata was
edited decrypts to :class:`IntegrityError` instead of mislabelled bytes.

Dependencies:
    - cryptography
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tgvault.domain.errors import IntegrityError, UnsupportedVersionError

KEY_SIZE_BYTES = 32
NONCE_SIZE_BYTES = 12
TAG_SIZE_BYTES = 16

# 1: AES-256-GCM, 96-bit nonce, 128-bit tag, metadata as associated data
CIPHER_VERSION_AES256_GCM = 1
CURRENT_CIPHER_VERSION = CIPHER_VERSION_AES256_GCM
SUPPORTED_CIPHER_VERSIONS = frozenset({CIPHER_VERSION_AES256_GCM})


@dataclass(frozen=True, slots=True)
class ObjectMetadata:
    """Recoverable attributes of a stored object."""

    content_type: str
    size_bytes: int
    created_at: int

    def associated_data(self) -> bytes:
        """Canonical byte form fed to the AEAD as associated data."""
        return (
            f"{self.content_type}\n{self.size_bytes}\n{self.created_at}"
        ).encode("utf-8")


@dataclass(frozen=True, slots=True)
class EncryptedPayload:
    """Sealed object bytes plus everything needed to open them."""

    ciphertext: bytes
    tag: bytes
    nonce: bytes
    version: int

    def sealed_bytes(self) -> bytes:
        """Ciphertext followed by the tag, as stored remotely."""
        return self.ciphertext + self.tag

    @classmethod
    def from_sealed_bytes(
        cls, data: bytes, *, nonce: bytes, version: int
    ) -> "EncryptedPayload":
        if len(data) < TAG_SIZE_BYTES:
            raise IntegrityError("Sealed payload is shorter than its tag")
        return cls(
            ciphertext=data[:-TAG_SIZE_BYTES],
            tag=data[-TAG_SIZE_BYTES:],
            nonce=nonce,
            version=version,
        )


class CryptoCodec:
    """Encrypts and decrypts payloads with a fixed AES-256-GCM key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE_BYTES:
            raise ValueError(
                f"Encryption key must be {KEY_SIZE_BYTES} bytes, got {len(key)}"
            )
        self._aead = AESGCM(bytes(key))

    def encrypt(
        self, plaintext: bytes, *, associated_data: bytes | None = None
    ) -> EncryptedPayload:
        nonce = os.urandom(NONCE_SIZE_BYTES)
        sealed = self._aead.encrypt(nonce, bytes(plaintext), associated_data)
        return EncryptedPayload(
            ciphertext=sealed[:-TAG_SIZE_BYTES],
            tag=sealed[-TAG_SIZE_BYTES:],
            nonce=nonce,
            version=CURRENT_CIPHER_VERSION,
        )

    def decrypt(
        self, payload: EncryptedPayload, *, associated_data: bytes | None = None
    ) -> bytes:
        """Open a payload, failing closed.

        Raises:
            UnsupportedVersionError: If the payload version is unknown.
            IntegrityError: If the nonce is malformed or the tag does not verify.
        """
        if payload.version not in SUPPORTED_CIPHER_VERSIONS:
            raise UnsupportedVersionError(payload.version)
        if len(payload.nonce) != NONCE_SIZE_BYTES:
            raise IntegrityError("Nonce has the wrong length")
        if len(payload.tag) != TAG_SIZE_BYTES:
            raise IntegrityError("Authentication tag has the wrong length")
        try:
            return self._aead.decrypt(
                payload.nonce, payload.sealed_bytes(), associated_data
            )
        except InvalidTag as exc:
            raise IntegrityError("Authentication tag did not verify") from exc


def generate_key() -> bytes:
    """Return a fresh random key suitable for :class:`CryptoCodec`."""
    return AESGCM.generate_key(bit_length=KEY_SIZE_BYTES * 8)
