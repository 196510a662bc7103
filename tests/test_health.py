async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["x-request-id"]


async def test_health_ready(client):
    r = await client.get("/health/ready")
    assert r.status_code == 200
    assert r.json()["database"] == "up"


async def test_health_ready_database_down(client, monkeypatch):
    import app.main

    async def down():
        return False

    monkeypatch.setattr(app.main, "ping_db", down)
    r = await client.get("/health/ready")
    assert r.status_code == 503


async def test_request_id_is_propagated(client):
    r = await client.get("/health", headers={"X-Request-ID": "req-42"})
    assert r.headers["x-request-id"] == "req-42"
