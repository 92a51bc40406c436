import pytest
from fastapi.testclient import TestClient

from flowvault.core.rate_limit import SlidingWindowLimiter
from flowvault.main import app, build_orchestrator
from flowvault.services.storage import LocalStorage, StoredObject

HOST = "https://storage.googleapis.com"
SYNC_HEADERS = {"X-Sync-Token": "test-sync-secret"}


@pytest.fixture
def env(tmp_path, image_host):
    with TestClient(app) as client:
        store = LocalStorage(str(tmp_path), "flow-images", "https://cdn.test/storage")
        app.state.orchestrator = build_orchestrator(image_host.client(), store)
        app.state.sync_store = store
        app.state.admission_limiter = SlidingWindowLimiter(max_requests=10, window_seconds=60)
        app.state.limiter.reset()
        yield client, image_host, store


def test_health_endpoint(env):
    client, _, _ = env
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_openapi_json(env):
    client, _, _ = env
    data = client.get("/openapi.json").json()
    assert "/api/upload-flow-images" in data["paths"]
    assert "/api/sync-storage-to-db" in data["paths"]


def test_metrics_endpoint(env):
    client, _, _ = env
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "text" in resp.headers.get("content-type", "").lower()


def test_db_health(env):
    client, _, _ = env
    assert client.get("/ops/db-health").json() == {"db_ok": True}


def test_upload_batch_with_duplicate(env, make_png):
    client, host, _ = env
    host.add("/x/a.png", make_png(2400, 1200))
    resp = client.post("/api/upload-flow-images", json={
        "images": [f"{HOST}/x/a.png?sig=1", f"{HOST}/x/a.png?sig=2"],
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert (data["total"], data["successful"], data["failed"]) == (2, 2, 0)
    first, second = data["results"]
    assert first["id"] == second["id"]
    assert first["fileName"] == f"flow_{first['id']}.jpg"
    assert second["duplicate"] is True
    assert first["dimensions"] == {"width": 2400, "height": 1200, "format": "png"}
    compression = data["compression"]
    assert compression["totalSaved"] == compression["totalOriginalSize"] - compression["totalCompressedSize"]


def test_upload_reports_item_failures(env, make_png):
    client, host, _ = env
    host.add("/x/a.png", make_png())
    host.add("/x/page.png", b"<html/>", content_type="text/html")
    resp = client.post("/api/upload-flow-images", json={
        "images": [f"{HOST}/x/a.png", f"{HOST}/x/page.png"],
        "compressQuality": 60,
        "maxWidth": 100,
        "maxHeight": 100,
    })
    assert resp.status_code == 200
    results = resp.json()["results"]
    assert results[0]["success"] is True
    assert results[1] == {"success": False, "error": "Invalid file type", "originalUrl": f"{HOST}/x/page.png"}


@pytest.mark.parametrize("body,error", [
    ({}, "Images array required"),
    ({"images": "nope"}, "Images array required"),
    ({"images": []}, "At least one image URL is required"),
    ({"images": [f"{HOST}/x/{i}.png" for i in range(51)]}, "Maximum 50 images allowed per request"),
])
def test_upload_rejects_bad_batches(env, body, error):
    client, host, _ = env
    resp = client.post("/api/upload-flow-images", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": error}
    assert host.requests == []


def test_upload_rejects_invalid_urls(env):
    client, host, _ = env
    resp = client.post("/api/upload-flow-images", json={
        "images": [f"{HOST}/x/a.png", "http://127.0.0.1/admin.png"],
    })
    assert resp.status_code == 400
    assert resp.json()["invalidCount"] == 1
    assert host.requests == []


def test_upload_rate_limited_per_client(env):
    client, _, _ = env
    headers = {"X-Forwarded-For": "198.51.100.23"}
    for _ in range(10):
        assert client.post("/api/upload-flow-images", json={"images": []}, headers=headers).status_code == 400
    resp = client.post("/api/upload-flow-images", json={"images": []}, headers=headers)
    assert resp.status_code == 429
    assert resp.json()["error"] == "Too many requests. Please try again later."

    other = client.post("/api/upload-flow-images", json={"images": []}, headers={"X-Forwarded-For": "198.51.100.24"})
    assert other.status_code == 400


def test_upload_without_storage_configuration(env):
    client, _, _ = env
    app.state.orchestrator = None
    resp = client.post("/api/upload-flow-images", json={"images": [f"{HOST}/x/a.png"]})
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Server configuration error"}


def test_upload_rejects_get(env):
    client, _, _ = env
    assert client.get("/api/upload-flow-images").status_code == 405


def test_cors_preflight(env):
    client, _, _ = env
    resp = client.options("/api/upload-flow-images", headers={
        "Origin": "https://labs.google",
        "Access-Control-Request-Method": "POST",
    })
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"


def test_sync_requires_secret(env):
    client, _, _ = env
    assert client.post("/api/sync-storage-to-db").status_code == 401
    assert client.post("/api/sync-storage-to-db", headers={"X-Sync-Token": "wrong"}).status_code == 401


@pytest.mark.parametrize("kwargs", [
    {"headers": {"X-Sync-Token": "test-sync-secret"}},
    {"headers": {"Authorization": "Bearer test-sync-secret"}},
    {"params": {"token": "test-sync-secret"}},
])
def test_sync_accepts_each_credential_form(env, kwargs):
    client, _, _ = env
    assert client.post("/api/sync-storage-to-db", **kwargs).status_code == 200


def test_sync_dry_run_then_real_run(env, make_png):
    client, host, _ = env
    host.add("/x/a.png", make_png())
    host.add("/x/b.png", make_png(20, 20))
    client.post("/api/upload-flow-images", json={"images": [f"{HOST}/x/a.png", f"{HOST}/x/b.png"]})

    dry = client.post("/api/sync-storage-to-db", params={"dryRun": "1"}, headers=SYNC_HEADERS).json()
    assert dry["dryRun"] is True
    assert (dry["scanned"], dry["candidates"], dry["inserted"], dry["wouldInsert"]) == (4, 2, 0, 2)
    assert (dry["bucket"], dry["table"], dry["folder"]) == ("flow-images", "flow_images", "")

    real = client.post("/api/sync-storage-to-db", headers=SYNC_HEADERS).json()
    assert real["candidates"] == dry["candidates"]
    assert real["inserted"] == 2

    again = client.post("/api/sync-storage-to-db", headers=SYNC_HEADERS).json()
    assert again["inserted"] == 0


def test_sync_failure_is_generic(env, monkeypatch):
    client, _, _ = env

    async def broken_insert(self, rows):
        raise RuntimeError("connection reset by peer")

    monkeypatch.setattr("flowvault.services.reconcile.TortoiseCatalog.insert_rows", broken_insert)
    app.state.sync_store = _StoreWithOneImage()
    resp = client.post("/api/sync-storage-to-db", headers=SYNC_HEADERS)
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Sync failed"}


class _StoreWithOneImage:
    bucket = "flow-images"

    async def list(self, folder="", limit=100, offset=0):
        return [StoredObject("flow_z.jpg", "flow_z.jpg")] if offset == 0 else []

    def public_url(self, key):
        return f"https://cdn.test/{key}"



def test_security_headers_and_request_id(env):
    client, _, _ = env
    resp = client.get("/health", headers={"x-request-id": "abc123"})
    assert resp.headers["x-frame-options"] == "DENY"
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert resp.headers["x-request-id"] == "abc123"
    assert "default-src 'none'" in resp.headers["content-security-policy"]


def test_upload_with_out_of_range_numbers_uses_defaults(env, make_png):
    client, host, _ = env
    host.add("/x/a.png", make_png(40, 20))
    body = '{"images": ["%s/x/a.png"], "compressQuality": 1e999, "maxWidth": -1e999, "maxHeight": 1e999}' % HOST
    resp = client.post(
        "/api/upload-flow-images",
        content=body,
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 200
    assert resp.json()["results"][0]["success"] is True
