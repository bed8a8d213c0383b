"""Tests for the chunking and retry adapter."""

from __future__ import annotations

import threading
import time

import pytest

from tgvault.domain.errors import MalformedIDError, TruncatedObjectError
from tgvault.domain.locator import ChunkHandle, Locator
from tgvault.infra.transport.chunked import (
    ChunkedTransport,
    RetryPolicy,
    expected_chunk_sizes,
    split_chunks,
)
from tgvault.infra.transport.client import (
    NotFoundError,
    PermanentTransportError,
    TransientTransportError,
)
from tests.services.mock_transport import MockTransport


@pytest.fixture()
def sleeps() -> list[float]:
    return []


def _adapter(
    transport: MockTransport,
    sleeps: list[float],
    *,
    max_attempts: int = 4,
    fetch_concurrency: int = 1,
) -> ChunkedTransport:
    return ChunkedTransport(
        transport,
        retry_policy=RetryPolicy(
            max_attempts=max_attempts, base_delay_seconds=0.5, max_delay_seconds=8.0
        ),
        fetch_concurrency=fetch_concurrency,
        sleep=sleeps.append,
    )


class TestSplitChunks:
    def test_exact_and_partial_slices(self) -> None:
        assert split_chunks(b"hello world", 5) == [b"hello", b" worl", b"d"]
        assert split_chunks(b"abcdef", 3) == [b"abc", b"def"]
        assert split_chunks(b"ab", 10) == [b"ab"]

    def test_rejects_non_positive_limit(self) -> None:
        with pytest.raises(ValueError):
            split_chunks(b"abc", 0)

    def test_expected_sizes_match_split(self) -> None:
        for total in (1, 4, 5, 6, 27):
            data = bytes(total)
            assert expected_chunk_sizes(total, 5) == [len(c) for c in split_chunks(data, 5)]


class TestRetryPolicy:
    def test_exponential_delays_are_capped(self) -> None:
        policy = RetryPolicy(max_attempts=6, base_delay_seconds=0.5, max_delay_seconds=3.0)
        assert [policy.delay_for(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]

    def test_retry_after_hint_replaces_backoff(self) -> None:
        policy = RetryPolicy(base_delay_seconds=0.5, max_delay_seconds=8.0)
        assert policy.delay_for(1, retry_after=5) == 5
        assert policy.delay_for(1, retry_after=30) == 8.0

    def test_validation(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(base_delay_seconds=-1)


class TestPut:
    def test_splits_into_ordered_chunks(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=5)
        adapter = _adapter(transport, sleeps)

        locator = adapter.put(b"hello world")

        assert locator.chunk_count == 3
        assert locator.total_length == 11
        assert transport.stored_bytes() == [b"hello", b" worl", b"d"]
        assert [name.rsplit(".", 1)[1] for name in transport.uploaded_names] == [
            "part0000",
            "part0001",
            "part0002",
        ]

    def test_single_chunk_when_under_limit(self, sleeps: list[float]) -> None:
        adapter = _adapter(MockTransport(max_message_bytes=1024), sleeps)
        assert adapter.put(b"small").chunk_count == 1

    def test_empty_payload_rejected(self, sleeps: list[float]) -> None:
        with pytest.raises(ValueError):
            _adapter(MockTransport(), sleeps).put(b"")

    def test_transient_failures_below_budget_succeed(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=5)
        transport.upload_failures = [
            TransientTransportError("flaky"),
            TransientTransportError("flaky"),
            TransientTransportError("flaky"),
        ]
        adapter = _adapter(transport, sleeps, max_attempts=4)

        locator = adapter.put(b"hello world")

        assert locator.chunk_count == 3
        assert sleeps == [0.5, 1.0, 2.0]

    def test_retry_after_hint_is_honoured(self, sleeps: list[float]) -> None:
        transport = MockTransport()
        transport.upload_failures = [TransientTransportError("slow down", retry_after=3)]
        _adapter(transport, sleeps).put(b"abc")
        assert sleeps == [3]

    def test_exhausted_budget_raises_and_cleans_up(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=5)
        adapter = _adapter(transport, sleeps, max_attempts=2)

        # first chunk succeeds, then every attempt at the second one fails
        original_upload = transport.upload_chunk
        calls = {"n": 0}

        def flaky_upload(data: bytes, *, filename: str) -> ChunkHandle:
            calls["n"] += 1
            if calls["n"] > 1:
                raise TransientTransportError("down")
            return original_upload(data, filename=filename)

        transport.upload_chunk = flaky_upload  # type: ignore[method-assign]

        with pytest.raises(TransientTransportError) as excinfo:
            adapter.put(b"hello world")

        assert excinfo.value.attempts == 2
        assert excinfo.value.orphaned_handles == ()
        assert transport.chunks == {}
        assert transport.messages == {}

    def test_permanent_error_is_not_retried(self, sleeps: list[float]) -> None:
        transport = MockTransport()
        transport.upload_failures = [PermanentTransportError("rejected")]

        with pytest.raises(PermanentTransportError):
            _adapter(transport, sleeps).put(b"abc")

        assert transport.calls.count("upload") == 1
        assert sleeps == []

    def test_cleanup_failure_reports_orphans(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=5)
        transport.delete_failures = [TransientTransportError("cannot delete")]
        original_upload = transport.upload_chunk

        def fail_second(data: bytes, *, filename: str) -> ChunkHandle:
            if transport.uploaded_names:
                raise PermanentTransportError("rejected")
            return original_upload(data, filename=filename)

        transport.upload_chunk = fail_second  # type: ignore[method-assign]

        with pytest.raises(PermanentTransportError) as excinfo:
            _adapter(transport, sleeps).put(b"hello world")

        assert len(excinfo.value.orphaned_handles) == 1
        assert excinfo.value.orphaned_handles[0].file_id == "mock-file-1"


class TestGet:
    def test_reassembles_in_order(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=4)
        adapter = _adapter(transport, sleeps)
        payload = bytes(range(50))

        assert adapter.get(adapter.put(payload)) == payload

    def test_concurrent_fetch_preserves_order(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=3)
        adapter = _adapter(transport, sleeps, fetch_concurrency=4)
        payload = b"abcdefghijklmnopqrstuvwxyz"
        locator = adapter.put(payload)

        # make early chunks finish last
        original_download = transport.download_chunk
        barrier = threading.Event()

        def slow_first(handle: ChunkHandle) -> bytes:
            if handle == locator.chunks[0]:
                barrier.wait(timeout=1.0)
                time.sleep(0.01)
            else:
                barrier.set()
            return original_download(handle)

        transport.download_chunk = slow_first  # type: ignore[method-assign]

        assert adapter.get(locator) == payload

    def test_transient_download_retried(self, sleeps: list[float]) -> None:
        transport = MockTransport()
        adapter = _adapter(transport, sleeps)
        locator = adapter.put(b"payload")
        transport.download_failures = [TransientTransportError("blip")]

        assert adapter.get(locator) == b"payload"
        assert sleeps == [0.5]

    def test_not_found_propagates_without_retry(self, sleeps: list[float]) -> None:
        transport = MockTransport()
        adapter = _adapter(transport, sleeps)
        locator = Locator(chunks=(ChunkHandle("missing", 1),), total_length=3)

        with pytest.raises(NotFoundError):
            adapter.get(locator)
        assert transport.calls.count("download") == 1

    def test_truncated_object(self, sleeps: list[float]) -> None:
        transport = MockTransport()
        adapter = _adapter(transport, sleeps)
        locator = adapter.put(b"abcdef")
        short = Locator(chunks=locator.chunks, total_length=10)

        with pytest.raises(TruncatedObjectError) as excinfo:
            adapter.get(short)
        assert excinfo.value.expected == 10
        assert excinfo.value.actual == 6

    def test_chunk_count_must_match_length(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=5)
        adapter = _adapter(transport, sleeps)
        locator = adapter.put(b"hello world")
        transport.calls.clear()

        repeated = Locator(chunks=locator.chunks[:1] * 1024, total_length=11)
        missing = Locator(chunks=locator.chunks[:2], total_length=11)

        for forged in (repeated, missing):
            with pytest.raises(MalformedIDError):
                adapter.get(forged)
        assert transport.calls == []

    def test_forged_length_is_rejected_without_downloading(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=5)
        adapter = _adapter(transport, sleeps, fetch_concurrency=4)
        (handle,) = adapter.put(b"abc").chunks
        transport.calls.clear()

        with pytest.raises(MalformedIDError):
            adapter.get(Locator(chunks=(handle,) * 1024, total_length=10**12))
        assert transport.calls == []

    def test_oversized_chunk_stops_the_fetch(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=5)
        adapter = _adapter(transport, sleeps)
        locator = adapter.put(b"hello world")
        transport.chunks[locator.chunks[0].file_id] = b"x" * 7000
        transport.calls.clear()

        with pytest.raises(TruncatedObjectError) as excinfo:
            adapter.get(locator)
        assert excinfo.value.expected == 5
        assert excinfo.value.actual == 7000
        assert transport.calls == ["download"]

    def test_short_middle_chunk_is_reported(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=5)
        adapter = _adapter(transport, sleeps)
        locator = adapter.put(b"hello world")
        transport.chunks[locator.chunks[1].file_id] = b"wo"

        with pytest.raises(TruncatedObjectError) as excinfo:
            adapter.get(locator)
        assert (excinfo.value.expected, excinfo.value.actual) == (5, 2)

    def test_failed_fetch_cancels_queued_downloads(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=2)
        adapter = _adapter(transport, sleeps, fetch_concurrency=2)
        locator = adapter.put(b"abcdefghijkl")
        assert locator.chunk_count == 6

        original_download = transport.download_chunk
        release = threading.Event()
        started: list[ChunkHandle] = []
        started_lock = threading.Lock()

        def gated(handle: ChunkHandle) -> bytes:
            with started_lock:
                started.append(handle)
            if handle == locator.chunks[0]:
                raise PermanentTransportError("rejected")
            release.wait(timeout=5.0)
            return original_download(handle)

        transport.download_chunk = gated  # type: ignore[method-assign]

        try:
            began = time.monotonic()
            with pytest.raises(PermanentTransportError):
                adapter.get(locator)
            # the caller is not held until in-flight downloads finish
            assert time.monotonic() - began < 4.0
            with started_lock:
                # chunk 0 plus at most one in-flight download per other worker slot
                assert len(started) <= 3
        finally:
            release.set()


class TestDelete:
    def test_deletes_every_chunk(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=2)
        adapter = _adapter(transport, sleeps)
        locator = adapter.put(b"abcdef")

        adapter.delete(locator)

        assert transport.chunks == {}

    def test_missing_chunks_are_skipped(self, sleeps: list[float]) -> None:
        transport = MockTransport(max_message_bytes=2)
        adapter = _adapter(transport, sleeps)
        locator = adapter.put(b"abcdef")
        adapter.delete(locator)

        adapter.delete(locator)
