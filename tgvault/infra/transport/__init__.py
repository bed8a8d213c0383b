"""Remote blob transport layer.

This module provides a protocol-based abstraction over the chat platform used
as blob storage, plus the chunking and retry adapter that drives it.
"""

from .chunked import ChunkedTransport, RetryPolicy, split_chunks
from .client import (
    BlobTransport,
    NotFoundError,
    PermanentTransportError,
    TransientTransportError,
    TransportError,
)

__all__ = [
    "BlobTransport",
    "ChunkedTransport",
    "NotFoundError",
    "PermanentTransportError",
    "RetryPolicy",
    "TransientTransportError",
    "TransportError",
    "split_chunks",
]
