from sqlalchemy import select

from shop.core.rate_limit import RateLimiter
from shop.models.audit_log import AuditLog

from conftest import auth_headers


async def test_register_and_me(client):
    response = await client.post("/api/auth/register", json={
        "email": "Nova@Example.com", "password": "password123", "name": "Nova"})
    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "nova@example.com"
    assert body["user"]["role"] == "USER"

    response = await client.get(
        "/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert response.status_code == 200
    assert response.json()["name"] == "Nova"


async def test_register_duplicate_email(client, customer):
    response = await client.post("/api/auth/register", json={
        "email": customer.email, "password": "password123"})
    assert response.status_code == 400


async def test_register_validation_error_format(client):
    response = await client.post("/api/auth/register", json={"email": "nao-e-email", "password": "123"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "输入数据无效"
    assert {d["field"] for d in body["details"]} == {"email", "password"}


async def test_login_success_and_failure(client, customer, db):
    response = await client.post("/api/auth/login", json={
        "email": customer.email, "password": "password123"})
    assert response.status_code == 200
    assert response.json()["access_token"]

    response = await client.post("/api/auth/login", json={
        "email": customer.email, "password": "errada"})
    assert response.status_code == 401

    logs = (await db.execute(select(AuditLog).order_by(AuditLog.id))).scalars().all()
    assert [log.event_type for log in logs] == ["LOGIN_SUCCESS", "LOGIN_FAILED"]
    assert logs[1].severity == "HIGH"
    assert logs[1].success is False


async def test_me_requires_token(client):
    assert (await client.get("/api/auth/me")).status_code == 401
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer invalido"})
    assert response.status_code == 401


async def test_inactive_user_token_rejected(client, customer, db):
    customer.is_active = False
    await db.commit()
    response = await client.get("/api/auth/me", headers=auth_headers(customer))
    assert response.status_code == 401


async def test_login_rate_limited(client, customer):
    for _ in range(10):
        response = await client.post("/api/auth/login", json={
            "email": customer.email, "password": "errada"})
        assert response.status_code == 401

    response = await client.post("/api/auth/login", json={
        "email": customer.email, "password": "password123"})
    assert response.status_code == 429
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert int(response.headers["Retry-After"]) > 0


def test_rate_limiter_sweeps_expired_windows(monkeypatch):
    monkeypatch.setattr(RateLimiter, "SWEEP_THRESHOLD", 3)
    limiter = RateLimiter("teste", max_requests=5, window_seconds=60)
    for i in range(3):
        limiter.hit(f"ip:10.0.0.{i}", now=1000.0)

    limiter.hit("ip:10.0.0.9", now=2000.0)
    assert list(limiter._store) == ["ip:10.0.0.9"]

    limiter.hit("ip:10.0.0.8", now=2001.0)
    assert len(limiter._store) == 2
