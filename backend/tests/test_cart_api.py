from decimal import Decimal

import httpx

from shop.main import app
from shop.models.discount import Discount
from shop.services.cache import CacheKeys

from conftest import auth_headers, create_product


async def test_guest_cart_flow(client, product):
    response = await client.post("/api/cart", json={"product_id": product.id, "quantity": 2})
    assert response.status_code == 201
    assert "guest_session_id" in response.cookies
    body = response.json()
    assert body["count"] == 2
    assert body["total"] == 40.0
    item_id = body["items"][0]["id"]

    # 相同商品合并数量
    response = await client.post("/api/cart", json={"product_id": product.id, "quantity": 1})
    assert response.json()["items"][0]["quantity"] == 3

    response = await client.put(f"/api/cart/{item_id}", json={"quantity": 5})
    assert response.status_code == 200
    assert response.json()["total"] == 100.0

    response = await client.delete(f"/api/cart/{item_id}")
    assert response.json()["items"] == []


async def test_cart_quantity_limited_by_stock(client, db):
    product = await create_product(db, slug="limitado", inventory=2)
    response = await client.post("/api/cart", json={"product_id": product.id, "quantity": 3})
    assert response.status_code == 400
    assert "库存不足" in response.json()["detail"]


async def test_inactive_product_cannot_be_added(client, db):
    product = await create_product(db, slug="rascunho", status="DRAFT")
    response = await client.post("/api/cart", json={"product_id": product.id})
    assert response.status_code == 400

    response = await client.post("/api/cart", json={"product_id": 999})
    assert response.status_code == 404


async def test_other_session_cannot_touch_item(client, product):
    response = await client.post("/api/cart", json={"product_id": product.id})
    item_id = response.json()["items"][0]["id"]

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as stranger:
        assert (await stranger.get("/api/cart")).json()["items"] == []
        assert (await stranger.delete(f"/api/cart/{item_id}")).status_code == 404


async def test_user_cart_is_cached_and_invalidated(client, customer, product, fake_redis):
    headers = auth_headers(customer)
    await client.get("/api/cart", headers=headers)
    assert CacheKeys.user_cart(customer.id) in fake_redis.store

    await client.post("/api/cart", json={"product_id": product.id}, headers=headers)
    assert CacheKeys.user_cart(customer.id) not in fake_redis.store
    assert (await client.get("/api/cart", headers=headers)).json()["count"] == 1


async def test_apply_and_remove_coupon(client, db, product, fake_redis):
    db.add(Discount(code="SAVE10", type="PERCENTAGE", value=Decimal("10"), is_active=True, used_count=0))
    await db.commit()
    await client.post("/api/cart", json={"product_id": product.id, "quantity": 2})

    response = await client.post("/api/cart/apply-coupon", json={"code": "save10"})
    assert response.status_code == 200
    body = response.json()
    assert body["code"] == "SAVE10"
    assert body["discount"] == 4.0
    assert body["total"] == 36.0
    assert any(key.startswith("coupon:session:") for key in fake_redis.store)

    response = await client.delete("/api/cart/apply-coupon")
    assert response.status_code == 200
    assert not any(key.startswith("coupon:session:") for key in fake_redis.store)


async def test_unknown_coupon(client, product):
    await client.post("/api/cart", json={"product_id": product.id})
    response = await client.post("/api/cart/apply-coupon", json={"code": "NADA"})
    assert response.status_code == 404


async def test_clear_cart(client, product):
    await client.post("/api/cart", json={"product_id": product.id})
    response = await client.delete("/api/cart")
    assert response.json() == {"items": [], "total": 0.0, "count": 0}
