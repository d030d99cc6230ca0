from sqlalchemy import select

from shop.models.inventory_log import InventoryLog
from shop.models.product import Product

from conftest import auth_headers, create_product


async def test_dashboard_requires_admin(client, customer, admin):
    assert (await client.get("/api/admin/dashboard")).status_code == 401
    response = await client.get("/api/admin/dashboard", headers=auth_headers(customer))
    assert response.status_code == 403

    response = await client.get("/api/admin/dashboard", headers=auth_headers(admin))
    assert response.status_code == 200
    body = response.json()
    for key in ("total_orders", "total_revenue", "total_customers", "total_products",
                "pending_orders", "low_stock_products", "recent_orders"):
        assert key in body
    assert body["total_customers"] == 1


async def test_create_product_logs_initial_stock(client, admin, db):
    payload = {"name": "Casaco", "slug": "casaco", "price": 59.9, "inventory": 12, "status": "ACTIVE"}
    response = await client.post("/api/admin/products", json=payload, headers=auth_headers(admin))
    assert response.status_code == 201
    product_id = response.json()["id"]
    assert response.json()["inventory"] == 12

    logs = (await db.execute(
        select(InventoryLog).where(InventoryLog.product_id == product_id))).scalars().all()
    assert [(log.type, log.quantity, log.quantity_after) for log in logs] == [("PURCHASE", 12, 12)]

    response = await client.post("/api/admin/products", json=payload, headers=auth_headers(admin))
    assert response.status_code == 409


async def test_delete_product_without_orders(client, admin, product, db):
    response = await client.delete(f"/api/admin/products/{product.id}", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["archived"] is False
    remaining = await db.execute(select(Product.id).where(Product.id == product.id))
    assert remaining.scalar_one_or_none() is None


async def test_adjust_inventory(client, admin, product):
    headers = auth_headers(admin)
    response = await client.post("/api/admin/inventory/adjust", json={
        "product_id": product.id, "quantity": -7, "reason": "Quebra"}, headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["previous"] == 10
    assert body["inventory"] == 3
    assert body["stock_status"] == "low_stock"

    response = await client.post("/api/admin/inventory/adjust", json={
        "product_id": product.id, "quantity": -5}, headers=headers)
    assert response.status_code == 400


async def test_adjust_inventory_rejects_bad_input(client, admin, product):
    headers = auth_headers(admin)
    response = await client.post("/api/admin/inventory/adjust", json={
        "product_id": product.id, "quantity": 0}, headers=headers)
    assert response.status_code == 400

    response = await client.post("/api/admin/inventory/adjust", json={
        "product_id": product.id, "quantity": -1, "type": "PURCHASE"}, headers=headers)
    assert response.status_code == 400

    response = await client.post("/api/admin/inventory/adjust", json={
        "product_id": 999, "quantity": 1}, headers=headers)
    assert response.status_code == 404


async def test_create_discount(client, admin):
    headers = auth_headers(admin)
    response = await client.post("/api/admin/discounts", json={
        "code": "verao20", "type": "PERCENTAGE", "value": 20}, headers=headers)
    assert response.status_code == 201
    assert response.json()["code"] == "VERAO20"

    response = await client.post("/api/admin/discounts", json={
        "code": "VERAO20", "type": "FIXED_AMOUNT", "value": 5}, headers=headers)
    assert response.status_code == 409

    response = await client.post("/api/admin/discounts", json={
        "code": "TUDO", "type": "PERCENTAGE", "value": 120}, headers=headers)
    assert response.status_code == 400


async def test_admin_cannot_demote_self(client, admin, customer):
    headers = auth_headers(admin)
    response = await client.put(f"/api/admin/users/{admin.id}", json={"role": "USER"}, headers=headers)
    assert response.status_code == 400

    response = await client.put(f"/api/admin/users/{customer.id}", json={"is_active": False}, headers=headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is False


async def test_audit_logs_listing(client, admin, customer):
    await client.post("/api/auth/login", json={"email": customer.email, "password": "errada"})
    headers = auth_headers(admin)

    response = await client.get("/api/admin/audit-logs", params={"event_type": "LOGIN_FAILED"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["total"] == 1

    response = await client.get("/api/admin/audit-logs", params={"start_date": "ontem"}, headers=headers)
    assert response.status_code == 400


async def test_circuit_breaker_control(client, admin):
    headers = auth_headers(admin)
    response = await client.post("/api/admin/circuit-breakers",
                                 json={"action": "open", "service": "stripe"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["circuit_breaker"]["state"] == "OPEN"

    response = await client.get("/api/admin/circuit-breakers", headers=headers)
    assert response.json()["summary"]["failed"] == 1

    response = await client.post("/api/admin/circuit-breakers",
                                 json={"action": "open", "service": "paypal"}, headers=headers)
    assert response.status_code == 404

    response = await client.post("/api/admin/circuit-breakers",
                                 json={"action": "explodir", "service": "stripe"}, headers=headers)
    assert response.status_code == 400


async def test_alert_configuration(client, admin):
    headers = auth_headers(admin)
    response = await client.post("/api/admin/alerts", json={
        "action": "configure", "name": "high_error_rate", "threshold": 10}, headers=headers)
    assert response.status_code == 200
    config = next(c for c in response.json()["configs"] if c["name"] == "high_error_rate")
    assert config["threshold"] == 10

    response = await client.post("/api/admin/alerts", json={
        "action": "configure", "name": "high_error_rate", "severity": "URGENTE"}, headers=headers)
    assert response.status_code == 400

    response = await client.post("/api/admin/alerts", json={
        "action": "disable", "name": "inexistente"}, headers=headers)
    assert response.status_code == 404


async def test_integrity_check_endpoint(client, admin, db):
    headers = auth_headers(admin)
    product = await create_product(db, slug="verificado", inventory=0)

    response = await client.post("/api/admin/integrity-check",
                                 json={"type": "inventory", "entity_id": product.id}, headers=headers)
    assert response.status_code == 200
    assert response.json()["valid"] is True

    response = await client.post("/api/admin/integrity-check",
                                 json={"type": "cliente", "entity_id": 1}, headers=headers)
    assert response.status_code == 400

    response = await client.get("/api/admin/integrity-check", headers=headers)
    assert response.status_code == 200
    assert "recommendations" in response.json()
