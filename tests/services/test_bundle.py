"""ServiceBundle builds each collaborator once, even when requests race."""

from __future__ import annotations

import threading
import time

import pytest

from tgvault.app.services import bundle as bundle_mod
from tgvault.app.services.bundle import ServiceBundle
from tests.factories import make_settings
from tests.services.mock_transport import MockTransport

THREADS = 8


def _race(call) -> list:
    barrier = threading.Barrier(THREADS)
    results: list = []
    results_lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        value = call()
        with results_lock:
            results.append(value)

    threads = [threading.Thread(target=worker) for _ in range(THREADS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    assert len(results) == THREADS
    return results


def _slow(factory, built: list):
    def build(*args, **kwargs):
        built.append(None)
        time.sleep(0.05)
        return factory(*args, **kwargs)

    return build


def test_rate_limiter_is_built_once(monkeypatch: pytest.MonkeyPatch, bundle: ServiceBundle):
    built: list = []
    monkeypatch.setattr(bundle_mod, "RateLimiter", _slow(bundle_mod.RateLimiter, built))

    results = _race(bundle.rate_limiter)

    assert len(built) == 1
    assert all(limiter is results[0] for limiter in results)


def test_object_service_is_built_once(monkeypatch: pytest.MonkeyPatch, bundle: ServiceBundle):
    built: list = []
    monkeypatch.setattr(bundle_mod, "ObjectService", _slow(bundle_mod.ObjectService, built))

    results = _race(bundle.objects)

    assert len(built) == 1
    assert all(service is results[0] for service in results)


def test_default_transport_is_built_once(monkeypatch: pytest.MonkeyPatch):
    built: list = []
    monkeypatch.setattr(
        bundle_mod, "TelegramTransport", _slow(lambda **_: MockTransport(), built)
    )
    bundle = ServiceBundle(settings=make_settings())

    services = _race(bundle.objects)

    assert len(built) == 1
    assert all(service is services[0] for service in services)
    assert isinstance(bundle.transport(), MockTransport)
