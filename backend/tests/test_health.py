from shop.api.api_v1.endpoints import health


async def test_health_reports_checks(client):
    response = await client.get("/api/health")
    body = response.json()
    assert body["status"] in ("healthy", "degraded", "unhealthy")
    assert set(body["checks"]) == {"database", "redis", "memory"}
    assert body["checks"]["database"]["status"] == "healthy"
    assert body["checks"]["redis"]["status"] == "healthy"


async def test_health_unavailable_database_is_503(client, monkeypatch):
    async def broken():
        raise RuntimeError("ligação recusada")

    monkeypatch.setattr(health, "measure_database_latency", broken)
    response = await client.get("/api/health")
    assert response.status_code == 503
    assert response.json()["checks"]["database"]["error"] == "ligação recusada"


def test_overall_status():
    assert health.overall_status({"a": {"status": "healthy"}}) == "healthy"
    assert health.overall_status({"a": {"status": "healthy"}, "b": {"status": "degraded"}}) == "degraded"
    assert health.overall_status({"a": {"status": "degraded"}, "b": {"status": "unhealthy"}}) == "unhealthy"


async def test_ready(client, monkeypatch):
    response = await client.get("/api/ready")
    assert response.status_code == 200
    assert response.json() == {"ready": True}

    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET")
    response = await client.get("/api/ready")
    assert response.status_code == 503
    assert response.json()["missing_env"] == ["STRIPE_WEBHOOK_SECRET"]


async def test_metrics(client):
    await client.get("/api/health")
    response = await client.get("/api/metrics")
    assert response.status_code == 200
    body = response.json()
    assert body["requests"] >= 1
    assert set(body["circuit_breakers"]) == {"stripe", "email", "database", "redis"}
