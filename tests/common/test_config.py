from __future__ import annotations

import base64

import pytest

from tgvault.common import config as config_mod
from tgvault.common.config import Settings, get_settings

_ENV_KEYS = (
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "ENCRYPTION_KEY",
    "MAX_FILE_SIZE",
    "ALLOWED_CONTENT_TYPES",
    "RATE_LIMIT_CAPACITY",
    "TRANSPORT_MAX_ATTEMPTS",
    "URL_UPLOAD_ENABLED",
    "ADMIN_SECRET",
    "CORS_ORIGINS",
    "PORT",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config_mod, "ENV_FILE", tmp_path / ".env")
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield monkeypatch
    get_settings.cache_clear()  # type: ignore[attr-defined]


def test_defaults(clean_env):
    settings = Settings.from_environment()
    assert settings.MAX_FILE_SIZE == 10 * 1024 * 1024
    assert settings.ALLOWED_CONTENT_TYPES == [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
    ]
    assert settings.RATE_LIMIT_CAPACITY == 60
    assert settings.RATE_LIMIT_STALE_SECONDS == 300
    assert settings.PORT == 3000
    assert settings.ADMIN_SECRET is None
    assert settings.URL_UPLOAD_ENABLED is True


def test_reads_environment(clean_env):
    key = base64.b64encode(b"k" * 32).decode()
    clean_env.setenv("TELEGRAM_BOT_TOKEN", "1:abc")
    clean_env.setenv("TELEGRAM_CHAT_ID", "-100500")
    clean_env.setenv("ENCRYPTION_KEY", key)
    clean_env.setenv("ALLOWED_CONTENT_TYPES", "Image/PNG, image/avif")
    clean_env.setenv("URL_UPLOAD_ENABLED", "no")
    clean_env.setenv("CORS_ORIGINS", "https://a.test,https://b.test")
    clean_env.setenv("ADMIN_SECRET", "s3cret")

    settings = get_settings()

    assert settings.TELEGRAM_CHAT_ID == -100500
    assert settings.encryption_key_bytes() == b"k" * 32
    assert settings.ALLOWED_CONTENT_TYPES == ["image/png", "image/avif"]
    assert settings.URL_UPLOAD_ENABLED is False
    assert settings.CORS_ORIGINS == ["https://a.test", "https://b.test"]
    assert settings.ADMIN_SECRET == "s3cret"


def test_env_file_does_not_override_environment(clean_env, tmp_path):
    (tmp_path / ".env").write_text(
        "# comment\nTELEGRAM_BOT_TOKEN='from-file'\nPORT=8080\n", encoding="utf-8"
    )
    clean_env.setenv("PORT", "9000")

    settings = Settings.from_environment()

    assert settings.TELEGRAM_BOT_TOKEN == "from-file"
    assert settings.PORT == 9000


@pytest.mark.parametrize(
    "value",
    ["not base64!", base64.b64encode(b"short").decode()],
)
def test_rejects_bad_encryption_key(value):
    with pytest.raises(ValueError):
        Settings(ENCRYPTION_KEY=value)


def test_missing_key_fails_on_use():
    settings = Settings()
    with pytest.raises(ValueError):
        settings.encryption_key_bytes()


@pytest.mark.parametrize(
    "field",
    ["MAX_FILE_SIZE", "TRANSPORT_CHUNK_SIZE_BYTES", "TRANSPORT_MAX_ATTEMPTS"],
)
def test_rejects_non_positive_limits(field):
    with pytest.raises(ValueError):
        Settings(**{field: 0})
