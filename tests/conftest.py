from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient

from tests.factories import TEST_CHAT_ID, TEST_KEY_B64, TEST_TOKEN, make_settings

# tgvault.main builds a module-level app from the environment on import.
os.environ["ENCRYPTION_KEY"] = TEST_KEY_B64
os.environ.setdefault("TELEGRAM_BOT_TOKEN", TEST_TOKEN)
os.environ.setdefault("TELEGRAM_CHAT_ID", str(TEST_CHAT_ID))

from tgvault.app.services.bundle import ServiceBundle, get_service_bundle  # noqa: E402
from tgvault.common.config import Settings, get_settings  # noqa: E402
from tgvault.main import create_app  # noqa: E402
from tests.services.mock_transport import MockTransport  # noqa: E402

get_settings.cache_clear()  # type: ignore[attr-defined]
get_service_bundle.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def mock_transport() -> MockTransport:
    return MockTransport(max_message_bytes=1024)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def bundle(settings: Settings, mock_transport: MockTransport) -> ServiceBundle:
    return ServiceBundle(settings=settings, blob_transport=mock_transport)


@pytest.fixture()
def client(bundle: ServiceBundle) -> TestClient:
    return TestClient(create_app(bundle))
