"""Chunked put/get over a single-message blob transport.

Payloads larger than the transport's message limit are split into ordered
chunks. Every chunk call is retried on transient failures with exponential
backoff; permanent failures propagate at once. A put that fails midway
deletes what it already uploaded and never yields a partial locator.
"""

from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, TypeVar

from tgvault.domain.errors import MalformedIDError, TruncatedObjectError
from tgvault.domain.locator import ChunkHandle, Locator
from tgvault.infra.observability.metrics import TRANSPORT_CALLS
from tgvault.infra.transport.client import (
    BlobTransport,
    NotFoundError,
    PermanentTransportError,
    TransientTransportError,
    TransportError,
)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_BACKOFF_BASE_SECONDS = 0.5
DEFAULT_BACKOFF_MAX_SECONDS = 8.0


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff for transient transport failures.

    ``max_attempts`` counts the first try. The delay before retry ``n``
    (1-based) is ``base * 2**(n-1)``; a server ``retry_after`` hint replaces
    it. Either way the delay is capped at ``max_delay_seconds``.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    max_delay_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("backoff delays must not be negative")

    def delay_for(self, retry_number: int, retry_after: float | None = None) -> float:
        if retry_after is not None and retry_after >= 0:
            delay = retry_after
        else:
            delay = self.base_delay_seconds * (2 ** max(retry_number - 1, 0))
        return min(delay, self.max_delay_seconds)


def split_chunks(data: bytes, limit: int) -> list[bytes]:
    """Split ``data`` into ``ceil(len/limit)`` consecutive slices."""
    if limit <= 0:
        raise ValueError("chunk limit must be positive")
    return [data[offset : offset + limit] for offset in range(0, len(data), limit)]


def expected_chunk_sizes(total_length: int, limit: int) -> list[int]:
    """Chunk lengths that ``split_chunks`` produces for ``total_length`` bytes."""
    if limit <= 0:
        raise ValueError("chunk limit must be positive")
    full, rest = divmod(total_length, limit)
    return [limit] * full + ([rest] if rest else [])


class ChunkedTransport:
    """Drives a :class:`BlobTransport` with chunking and retries.

    Stateless apart from its collaborators; safe to share between threads.
    """

    def __init__(
        self,
        transport: BlobTransport,
        *,
        retry_policy: RetryPolicy | None = None,
        fetch_concurrency: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._transport = transport
        self._policy = retry_policy or RetryPolicy()
        self._fetch_concurrency = max(1, int(fetch_concurrency))
        self._sleep = sleep

    @property
    def transport(self) -> BlobTransport:
        return self._transport

    @property
    def chunk_limit(self) -> int:
        return int(self._transport.max_message_bytes)

    def put(self, data: bytes) -> Locator:
        """Upload ``data`` as ordered chunks and return their locator.

        Raises:
            TransientTransportError: If a chunk still fails after all attempts.
            PermanentTransportError: If the remote rejects a chunk.
        """
        if not data:
            raise ValueError("Cannot store an empty payload")

        object_tag = uuid.uuid4().hex
        handles: list[ChunkHandle] = []
        try:
            for index, chunk in enumerate(split_chunks(data, self.chunk_limit)):
                filename = f"{object_tag}.part{index:04d}"
                handles.append(
                    self._with_retries(
                        "upload",
                        lambda chunk=chunk, filename=filename: self._transport.upload_chunk(
                            chunk, filename=filename
                        ),
                    )
                )
        except Exception as exc:
            orphaned = self._discard(handles)
            if isinstance(exc, TransportError):
                exc.orphaned_handles = tuple(orphaned)
            raise

        return Locator(chunks=tuple(handles), total_length=len(data))

    def get(self, locator: Locator) -> bytes:
        """Fetch all chunks of ``locator`` and reassemble them in order.

        The locator's shape is checked against the chunk limit before any
        remote call, and each chunk is checked as soon as it arrives.

        Raises:
            MalformedIDError: If the chunk count cannot match the recorded length.
            NotFoundError: If a chunk no longer exists.
            TruncatedObjectError: If a chunk or the reassembled object has the wrong length.
            TransientTransportError: If a chunk still fails after all attempts.
            PermanentTransportError: On any other rejection.
        """
        limit = self.chunk_limit
        expected_count = -(-locator.total_length // limit)
        if locator.chunk_count != expected_count:
            raise MalformedIDError(
                f"Locator has {locator.chunk_count} chunks, "
                f"{expected_count} expected for {locator.total_length} bytes"
            )
        sizes = expected_chunk_sizes(locator.total_length, limit)

        workers = min(self._fetch_concurrency, locator.chunk_count)
        if workers <= 1:
            parts = [
                self._download(handle, size)
                for handle, size in zip(locator.chunks, sizes)
            ]
        else:
            executor = ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="chunk-fetch"
            )
            try:
                # map() yields in submission order regardless of completion order
                parts = list(executor.map(self._download, locator.chunks, sizes))
            except BaseException:
                # Queued downloads are dropped; ones already running finish unobserved.
                executor.shutdown(wait=False, cancel_futures=True)
                raise
            executor.shutdown()

        data = b"".join(parts)
        if len(data) != locator.total_length:
            raise TruncatedObjectError(expected=locator.total_length, actual=len(data))
        return data

    def delete(self, locator: Locator) -> None:
        """Delete every chunk of ``locator``; chunks already gone are skipped."""
        for handle in locator.chunks:
            try:
                self._with_retries(
                    "delete", lambda handle=handle: self._transport.delete_chunk(handle)
                )
            except NotFoundError:
                continue

    def ping(self) -> None:
        self._transport.ping()

    def _download(self, handle: ChunkHandle, expected_size: int) -> bytes:
        data = self._with_retries(
            "download", lambda: self._transport.download_chunk(handle)
        )
        if len(data) != expected_size:
            raise TruncatedObjectError(expected=expected_size, actual=len(data))
        return data

    def _discard(self, handles: list[ChunkHandle]) -> list[ChunkHandle]:
        """Delete already uploaded chunks once each; return those left behind."""
        orphaned: list[ChunkHandle] = []
        for handle in handles:
            try:
                self._transport.delete_chunk(handle)
            except NotFoundError:
                continue
            except TransportError:
                orphaned.append(handle)
        return orphaned

    def _with_retries(self, operation: str, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                result = call()
            except TransientTransportError as exc:
                TRANSPORT_CALLS.labels(operation, "transient").inc()
                if attempt >= self._policy.max_attempts:
                    exc.attempts = attempt
                    raise
                self._sleep(self._policy.delay_for(attempt, exc.retry_after))
                continue
            except PermanentTransportError:
                TRANSPORT_CALLS.labels(operation, "permanent").inc()
                raise
            TRANSPORT_CALLS.labels(operation, "ok").inc()
            return result
