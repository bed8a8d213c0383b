"""Blob transport protocol and error types.

This module defines the abstract interface the chunking adapter drives:
single-message uploads and downloads against a remote that hands back its
own handles. Every failure is classified as transient (worth retrying) or
permanent (propagated immediately).
"""

from __future__ import annotations

from typing import Protocol

from tgvault.domain.errors import VaultError
from tgvault.domain.locator import ChunkHandle


class TransportError(VaultError):
    """Raised when a remote transport operation fails."""

    def __init__(self, message: str, *, handle: ChunkHandle | None = None) -> None:
        super().__init__(message)
        self.handle = handle
        self.orphaned_handles: tuple[ChunkHandle, ...] = ()


class TransientTransportError(TransportError):
    """Network failure, remote throttling, or a 5xx-class response.

    ``retry_after`` carries the remote's own hint in seconds, when it sent one.
    ``attempts`` is filled in once the retry budget is spent.
    """

    def __init__(
        self,
        message: str,
        *,
        handle: ChunkHandle | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, handle=handle)
        self.retry_after = retry_after
        self.attempts = 0


class PermanentTransportError(TransportError):
    """The remote rejected the request; retrying will not help."""


class NotFoundError(PermanentTransportError):
    """The referenced chunk does not exist on the remote."""


class BlobTransport(Protocol):
    """Protocol defining a single-message blob transport.

    Implementations never retry on their own; they classify failures and
    leave the retry policy to the caller.
    """

    @property
    def max_message_bytes(self) -> int:
        """Largest payload a single ``upload_chunk`` call accepts."""
        ...

    def upload_chunk(self, data: bytes, *, filename: str) -> ChunkHandle:
        """Upload one chunk.

        Args:
            data: Chunk bytes, at most ``max_message_bytes`` long.
            filename: Name shown on the remote side.

        Returns:
            Handle that can later be passed to ``download_chunk``.

        Raises:
            TransientTransportError: If the upload may succeed on retry.
            PermanentTransportError: If the remote rejected the payload.
        """
        ...

    def download_chunk(self, handle: ChunkHandle) -> bytes:
        """Download one chunk.

        Raises:
            NotFoundError: If the handle does not resolve to a chunk.
            TransientTransportError: If the download may succeed on retry.
            PermanentTransportError: On any other rejection.
        """
        ...

    def delete_chunk(self, handle: ChunkHandle) -> None:
        """Delete one chunk from the remote.

        Raises:
            NotFoundError: If the handle does not resolve to a chunk.
            TransientTransportError: If the delete may succeed on retry.
            PermanentTransportError: On any other rejection.
        """
        ...

    def ping(self) -> None:
        """Check that the remote is reachable and credentials are valid.

        Raises:
            TransportError: If the check fails.
        """
        ...
