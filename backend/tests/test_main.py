def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    body = resp.json()
    assert body["status"] == "error"
    assert body["error"] == "Not found"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_request_id_is_echoed(client):
    resp = client.get("/api/config", headers={"X-Request-Id": "req-123"})
    assert resp.headers["X-Request-Id"] == "req-123"


def test_public_config_shape(client):
    data = client.get("/api/config").json()["data"]
    assert set(data) == {"apiBaseUrl", "anonKey", "version", "env"}


def test_health_ok(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["db"] == "ok"


def test_health_degraded_when_store_is_down(client, store):
    store.fail("select", "branches")
    resp = client.get("/api/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"


def test_branches_are_public(client, store):
    store.seed("branches", name="Harbor")
    store.seed("branches", name="Downtown")
    names = [b["name"] for b in client.get("/api/branches").json()["data"]]
    assert names == ["Downtown", "Harbor"]


def test_malformed_branch_id_is_400(client):
    resp = client.get("/api/branches/not-a-uuid")
    assert resp.status_code == 400
    assert resp.json()["message"] == "invalid branch_id"
