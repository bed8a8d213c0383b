from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

ENV_FILE = Path(".env")

DEFAULT_ALLOWED_CONTENT_TYPES: tuple[str, ...] = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
)
ENCRYPTION_KEY_BYTES = 32


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _decode_key(value: str) -> bytes:
    try:
        return base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("ENCRYPTION_KEY must be valid base64") from exc


@dataclass
class Settings:
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: int = 0
    TELEGRAM_API_BASE_URL: str = "https://api.telegram.org"
    ENCRYPTION_KEY: str = ""
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    ALLOWED_CONTENT_TYPES: list[str] = field(
        default_factory=lambda: list(DEFAULT_ALLOWED_CONTENT_TYPES)
    )
    RATE_LIMIT_CAPACITY: int = 60
    RATE_LIMIT_REFILL_PER_SECOND: float = 1.0
    RATE_LIMIT_STALE_SECONDS: float = 300.0
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: float = 60.0
    TRUST_FORWARDED_FOR: bool = False
    # Bot API downloads are capped at 20 MB
    TRANSPORT_CHUNK_SIZE_BYTES: int = 19 * 1024 * 1024
    TRANSPORT_MAX_ATTEMPTS: int = 4
    TRANSPORT_BACKOFF_BASE_SECONDS: float = 0.5
    TRANSPORT_BACKOFF_MAX_SECONDS: float = 8.0
    TRANSPORT_TIMEOUT_SECONDS: float = 30.0
    TRANSPORT_FETCH_CONCURRENCY: int = 4
    URL_UPLOAD_ENABLED: bool = True
    ADMIN_SECRET: str | None = None
    ENABLE_METRICS: bool = True
    CORS_ENABLED: bool = False
    CORS_ORIGINS: list[str] = field(default_factory=list)
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    def __post_init__(self) -> None:
        if self.ENCRYPTION_KEY:
            key = _decode_key(self.ENCRYPTION_KEY)
            if len(key) != ENCRYPTION_KEY_BYTES:
                raise ValueError(
                    "ENCRYPTION_KEY must decode to 32 bytes (256 bits)."
                )
        if self.MAX_FILE_SIZE <= 0:
            raise ValueError("MAX_FILE_SIZE must be positive.")
        if self.TRANSPORT_CHUNK_SIZE_BYTES <= 0:
            raise ValueError("TRANSPORT_CHUNK_SIZE_BYTES must be positive.")
        if self.TRANSPORT_MAX_ATTEMPTS < 1:
            raise ValueError("TRANSPORT_MAX_ATTEMPTS must be at least 1.")

    def encryption_key_bytes(self) -> bytes:
        if not self.ENCRYPTION_KEY:
            raise ValueError("ENCRYPTION_KEY is required.")
        return _decode_key(self.ENCRYPTION_KEY)

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        allowed_env = os.environ.get("ALLOWED_CONTENT_TYPES")
        if allowed_env is None:
            allowed_content_types = list(DEFAULT_ALLOWED_CONTENT_TYPES)
        else:
            allowed_content_types = [t.lower() for t in _as_list(allowed_env)]

        return cls(
            TELEGRAM_BOT_TOKEN=os.environ.get("TELEGRAM_BOT_TOKEN", ""),
            TELEGRAM_CHAT_ID=int(
                os.environ.get("TELEGRAM_CHAT_ID", cls.TELEGRAM_CHAT_ID)
            ),
            TELEGRAM_API_BASE_URL=os.environ.get(
                "TELEGRAM_API_BASE_URL", cls.TELEGRAM_API_BASE_URL
            ),
            ENCRYPTION_KEY=os.environ.get("ENCRYPTION_KEY", ""),
            MAX_FILE_SIZE=int(os.environ.get("MAX_FILE_SIZE", cls.MAX_FILE_SIZE)),
            ALLOWED_CONTENT_TYPES=allowed_content_types,
            RATE_LIMIT_CAPACITY=int(
                os.environ.get("RATE_LIMIT_CAPACITY", cls.RATE_LIMIT_CAPACITY)
            ),
            RATE_LIMIT_REFILL_PER_SECOND=float(
                os.environ.get(
                    "RATE_LIMIT_REFILL_PER_SECOND", cls.RATE_LIMIT_REFILL_PER_SECOND
                )
            ),
            RATE_LIMIT_STALE_SECONDS=float(
                os.environ.get("RATE_LIMIT_STALE_SECONDS", cls.RATE_LIMIT_STALE_SECONDS)
            ),
            RATE_LIMIT_SWEEP_INTERVAL_SECONDS=float(
                os.environ.get(
                    "RATE_LIMIT_SWEEP_INTERVAL_SECONDS",
                    cls.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
                )
            ),
            TRUST_FORWARDED_FOR=_as_bool(
                os.environ.get("TRUST_FORWARDED_FOR"), cls.TRUST_FORWARDED_FOR
            ),
            TRANSPORT_CHUNK_SIZE_BYTES=int(
                os.environ.get(
                    "TRANSPORT_CHUNK_SIZE_BYTES", cls.TRANSPORT_CHUNK_SIZE_BYTES
                )
            ),
            TRANSPORT_MAX_ATTEMPTS=int(
                os.environ.get("TRANSPORT_MAX_ATTEMPTS", cls.TRANSPORT_MAX_ATTEMPTS)
            ),
            TRANSPORT_BACKOFF_BASE_SECONDS=float(
                os.environ.get(
                    "TRANSPORT_BACKOFF_BASE_SECONDS", cls.TRANSPORT_BACKOFF_BASE_SECONDS
                )
            ),
            TRANSPORT_BACKOFF_MAX_SECONDS=float(
                os.environ.get(
                    "TRANSPORT_BACKOFF_MAX_SECONDS", cls.TRANSPORT_BACKOFF_MAX_SECONDS
                )
            ),
            TRANSPORT_TIMEOUT_SECONDS=float(
                os.environ.get("TRANSPORT_TIMEOUT_SECONDS", cls.TRANSPORT_TIMEOUT_SECONDS)
            ),
            TRANSPORT_FETCH_CONCURRENCY=int(
                os.environ.get(
                    "TRANSPORT_FETCH_CONCURRENCY", cls.TRANSPORT_FETCH_CONCURRENCY
                )
            ),
            URL_UPLOAD_ENABLED=_as_bool(
                os.environ.get("URL_UPLOAD_ENABLED"), cls.URL_UPLOAD_ENABLED
            ),
            ADMIN_SECRET=os.environ.get("ADMIN_SECRET") or None,
            ENABLE_METRICS=_as_bool(
                os.environ.get("ENABLE_METRICS"), cls.ENABLE_METRICS
            ),
            CORS_ENABLED=_as_bool(os.environ.get("CORS_ENABLED"), cls.CORS_ENABLED),
            CORS_ORIGINS=_as_list(os.environ.get("CORS_ORIGINS")),
            HOST=os.environ.get("HOST", cls.HOST),
            PORT=int(os.environ.get("PORT", cls.PORT)),
            LOG_LEVEL=os.environ.get("LOG_LEVEL", cls.LOG_LEVEL).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
