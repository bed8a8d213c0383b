from __future__ import annotations

import threading
from dataclasses import dataclass, field
from functools import lru_cache

from tgvault.common.config import Settings, get_settings
from tgvault.common.rate_limit import RateLimitConfig, RateLimiter
from tgvault.domain.crypto import CryptoCodec
from tgvault.infra.transport.chunked import ChunkedTransport, RetryPolicy
from tgvault.infra.transport.client import BlobTransport
from tgvault.infra.transport.telegram_client import TelegramTransport
from tgvault.infra.url_fetcher import UrlFetcher

from .object_service import ObjectService


@dataclass
class ServiceBundle:
    """Lazily constructs the process-wide collaborators from one settings object.

    ``blob_transport`` may be supplied up front to replace the Telegram backend.
    Sync routes run on a thread pool, so each collaborator is built under a lock
    and exactly once.
    """

    settings: Settings
    blob_transport: BlobTransport | None = None
    _objects: ObjectService | None = field(default=None, init=False, repr=False)
    _rate_limiter: RateLimiter | None = field(default=None, init=False, repr=False)
    # Re-entrant: objects() builds the transport while holding it.
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def transport(self) -> BlobTransport:
        if self.blob_transport is None:
            with self._lock:
                if self.blob_transport is None:
                    self.blob_transport = TelegramTransport(settings=self.settings)
        return self.blob_transport

    def objects(self) -> ObjectService:
        if self._objects is None:
            with self._lock:
                if self._objects is None:
                    self._objects = self._build_objects()
        return self._objects

    def rate_limiter(self) -> RateLimiter:
        if self._rate_limiter is None:
            with self._lock:
                if self._rate_limiter is None:
                    settings = self.settings
                    self._rate_limiter = RateLimiter(
                        RateLimitConfig(
                            capacity=settings.RATE_LIMIT_CAPACITY,
                            refill_per_second=settings.RATE_LIMIT_REFILL_PER_SECOND,
                            stale_after_seconds=settings.RATE_LIMIT_STALE_SECONDS,
                            sweep_interval_seconds=settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
                        )
                    )
        return self._rate_limiter

    def _build_objects(self) -> ObjectService:
        settings = self.settings
        chunked = ChunkedTransport(
            self.transport(),
            retry_policy=RetryPolicy(
                max_attempts=settings.TRANSPORT_MAX_ATTEMPTS,
                base_delay_seconds=settings.TRANSPORT_BACKOFF_BASE_SECONDS,
                max_delay_seconds=settings.TRANSPORT_BACKOFF_MAX_SECONDS,
            ),
            fetch_concurrency=settings.TRANSPORT_FETCH_CONCURRENCY,
        )
        url_fetcher = None
        if settings.URL_UPLOAD_ENABLED:
            url_fetcher = UrlFetcher(timeout_seconds=settings.TRANSPORT_TIMEOUT_SECONDS)
        return ObjectService(
            crypto=CryptoCodec(settings.encryption_key_bytes()),
            transport=chunked,
            max_object_bytes=settings.MAX_FILE_SIZE,
            allowed_content_types=tuple(settings.ALLOWED_CONTENT_TYPES),
            url_fetcher=url_fetcher,
        )


@lru_cache(maxsize=1)
def get_service_bundle() -> ServiceBundle:
    return ServiceBundle(settings=get_settings())
