"""
Domain layer package housing the crypto and public ID codecs.
"""

from .crypto import CryptoCodec, EncryptedPayload, ObjectMetadata
from .errors import (
    IntegrityError,
    MalformedIDError,
    RateLimitedError,
    TruncatedObjectError,
    UnsupportedVersionError,
    VaultError,
)
from .identifiers import DecodedId, decode_public_id, encode_public_id
from .locator import ChunkHandle, Locator

__all__ = [
    "ChunkHandle",
    "CryptoCodec",
    "DecodedId",
    "EncryptedPayload",
    "IntegrityError",
    "Locator",
    "MalformedIDError",
    "ObjectMetadata",
    "RateLimitedError",
    "TruncatedObjectError",
    "UnsupportedVersionError",
    "VaultError",
    "decode_public_id",
    "encode_public_id",
]
