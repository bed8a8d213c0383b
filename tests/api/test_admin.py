from fastapi.testclient import TestClient

from tgvault.app.services.bundle import ServiceBundle
from tgvault.main import create_app
from tests.factories import ADMIN_SECRET, chunks_for, make_image, make_settings
from tests.services.mock_transport import MockTransport


# Spans several 1024 byte messages.
IMAGE = make_image((32, 32), noisy=True)


def _admin_headers():
    return {"X-Admin-Key": ADMIN_SECRET}


def _stored_id(client: TestClient) -> str:
    r = client.post("/api/v1/upload", files={"file": ("a.png", IMAGE, "image/png")})
    assert r.status_code == 201
    return r.json()["id"]


def test_admin_delete_removes_object(client: TestClient, mock_transport: MockTransport):
    public_id = _stored_id(client)

    r = client.delete(f"/api/v1/admin/objects/{public_id}", headers=_admin_headers())
    assert r.status_code == 200
    assert r.json() == {"id": public_id, "deleted": True, "chunks": chunks_for(len(IMAGE), 1024)}
    assert mock_transport.chunks == {}

    gone = client.get(f"/api/v1/image/{public_id}")
    assert gone.status_code == 404


def test_admin_delete_is_idempotent(client: TestClient):
    public_id = _stored_id(client)
    client.delete(f"/api/v1/admin/objects/{public_id}", headers=_admin_headers())

    r = client.delete(f"/api/v1/admin/objects/{public_id}", headers=_admin_headers())
    assert r.status_code == 200


def test_admin_requires_key(client: TestClient, mock_transport: MockTransport):
    public_id = _stored_id(client)

    missing = client.delete(f"/api/v1/admin/objects/{public_id}")
    wrong = client.delete(
        f"/api/v1/admin/objects/{public_id}", headers={"X-Admin-Key": "nope"}
    )

    assert missing.status_code == 403
    assert wrong.status_code == 403
    assert wrong.json()["error_code"] == "forbidden"
    assert "delete" not in mock_transport.calls


def test_admin_disabled_without_secret(mock_transport: MockTransport):
    settings = make_settings(ADMIN_SECRET=None)
    client = TestClient(create_app(ServiceBundle(settings=settings, blob_transport=mock_transport)))

    r = client.delete("/api/v1/admin/objects/anything", headers=_admin_headers())
    assert r.status_code == 503


def test_admin_delete_malformed_id(client: TestClient):
    r = client.delete("/api/v1/admin/objects/bad*id", headers=_admin_headers())
    assert r.status_code == 400
    assert r.json()["error_code"] == "malformed_id"
