from decimal import Decimal

import httpx
import pytest
import stripe
from sqlalchemy import select

from shop.main import app
from shop.models.cart import CartItem
from shop.models.discount import Discount
from shop.models.inventory_log import InventoryLog
from shop.models.order import Order
from shop.models.payment import Refund
from shop.models.product import Product
from shop.services import payment_gateway

from conftest import SHIPPING_ADDRESS, auth_headers, create_product

SIGNATURE = {"stripe-signature": "t=1,v1=assinatura"}


async def checkout(client, product, quantity=2, **extra):
    await client.post("/api/cart", json={"product_id": product.id, "quantity": quantity})
    payload = {"shipping_address": SHIPPING_ADDRESS, "email": "ana@example.com", **extra}
    return await client.post("/api/payments/create-intent", json=payload)


async def reload(db, model, id_):
    return await db.get(model, id_, populate_existing=True)


async def test_create_intent_creates_pending_order(client, db, product, stripe_calls):
    response = await checkout(client, product)
    assert response.status_code == 200
    body = response.json()
    assert body["client_secret"] == "pi_test_1_secret"
    # 40 + 23% IVA + 5.99 运费
    assert body["amount"] == 55.19

    [call] = stripe_calls["intents"]
    assert str(call["amount"]) == "55.19"
    assert call["metadata"]["orderNumber"] == body["order_number"]
    assert call["metadata"]["userId"] == "guest"

    order = await client.get(f"/api/orders/{body['order_number']}")
    assert order.status_code == 200
    assert order.json()["payment_status"] == "PENDING"
    assert order.json()["payments"][0]["stripe_payment_id"] == "pi_test_1"

    # 支付成功前购物车保留
    assert (await client.get("/api/cart")).json()["count"] == 2
    assert (await reload(db, Product, product.id)).inventory == 10


async def test_create_intent_with_empty_cart(client, stripe_calls):
    response = await client.post("/api/payments/create-intent", json={
        "shipping_address": SHIPPING_ADDRESS, "email": "ana@example.com"})
    assert response.status_code == 400
    assert stripe_calls["intents"] == []


async def test_guest_checkout_requires_email(client, product, stripe_calls):
    await client.post("/api/cart", json={"product_id": product.id})
    response = await client.post("/api/payments/create-intent", json={"shipping_address": SHIPPING_ADDRESS})
    assert response.status_code == 400


async def test_gateway_error_rolls_back_order(client, db, product, monkeypatch):
    async def failing_intent(*args, **kwargs):
        raise payment_gateway.PaymentGatewayError("Stripe indisponível")

    monkeypatch.setattr(payment_gateway, "create_payment_intent", failing_intent)
    response = await checkout(client, product)
    assert response.status_code == 502
    assert (await db.execute(select(Order))).scalars().all() == []


async def test_checkout_with_shipping_option_and_coupon(client, product, stripe_calls, fake_redis, db):
    db.add(Discount(code="FIXO5", type="FIXED_AMOUNT", value=Decimal("5"), is_active=True, used_count=0))
    await db.commit()
    await client.post("/api/cart", json={"product_id": product.id, "quantity": 2})
    await client.post("/api/cart/apply-coupon", json={"code": "FIXO5"})

    response = await client.post("/api/payments/create-intent", json={
        "shipping_address": SHIPPING_ADDRESS, "email": "ana@example.com", "shipping_option": "domestic_express"})
    assert response.status_code == 200
    order = (await client.get(f"/api/orders/{response.json()['order_number']}")).json()
    assert order["discount"] == 5.0
    assert order["discount_code"] == "FIXO5"
    assert order["shipping"] == 6.99
    assert order["tax"] == 8.05
    assert order["total"] == 50.04


async def test_webhook_payment_succeeded_is_idempotent(client, db, product, stripe_calls, webhook_event):
    body = (await checkout(client, product)).json()
    webhook_event("payment_intent.succeeded", {"id": body["payment_intent_id"]})

    for _ in range(2):
        response = await client.post("/api/payments/webhook", content=b"{}", headers=SIGNATURE)
        assert response.status_code == 200
        assert response.json() == {"received": True}

    order = await reload(db, Order, body["order_id"])
    assert order.payment_status == "PAID"
    assert order.status == "CONFIRMED"
    assert order.paid_at is not None
    assert (await reload(db, Product, product.id)).inventory == 8

    sales = (await db.execute(select(InventoryLog).where(InventoryLog.type == "SALE"))).scalars().all()
    assert len(sales) == 1
    assert sales[0].quantity == 2
    assert (await db.execute(select(CartItem))).scalars().all() == []


async def test_webhook_requires_signature(client):
    response = await client.post("/api/payments/webhook", content=b"{}")
    assert response.status_code == 400


async def test_webhook_invalid_signature(client, monkeypatch):
    def bad_signature(payload, signature):
        raise stripe.SignatureVerificationError("assinatura inválida", signature)

    monkeypatch.setattr(payment_gateway, "construct_webhook_event", bad_signature)
    response = await client.post("/api/payments/webhook", content=b"{}", headers=SIGNATURE)
    assert response.status_code == 400


async def test_webhook_payment_failed(client, db, product, stripe_calls, webhook_event):
    body = (await checkout(client, product)).json()
    webhook_event("payment_intent.payment_failed", {
        "id": body["payment_intent_id"], "last_payment_error": {"message": "cartão recusado"}})
    await client.post("/api/payments/webhook", content=b"{}", headers=SIGNATURE)

    order = await reload(db, Order, body["order_id"])
    assert order.payment_status == "FAILED"
    assert (await reload(db, Product, product.id)).inventory == 10


async def test_webhook_unknown_event_acknowledged(client, webhook_event):
    webhook_event("customer.created", {"id": "cus_1"})
    response = await client.post("/api/payments/webhook", content=b"{}", headers=SIGNATURE)
    assert response.json() == {"received": True}


async def paid_order(client, product, webhook_event):
    body = (await checkout(client, product)).json()
    webhook_event("payment_intent.succeeded", {"id": body["payment_intent_id"]})
    await client.post("/api/payments/webhook", content=b"{}", headers=SIGNATURE)
    return body


async def test_partial_then_full_refund(client, db, admin, product, stripe_calls, webhook_event):
    body = await paid_order(client, product, webhook_event)
    headers = auth_headers(admin)

    response = await client.post("/api/payments/refund",
                                 json={"order_id": body["order_id"], "amount": 10}, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "SUCCEEDED"
    order = await reload(db, Order, body["order_id"])
    assert order.payment_status == "PARTIALLY_REFUNDED"

    response = await client.post("/api/payments/refund",
                                 json={"order_id": body["order_id"], "amount": 100}, headers=headers)
    assert response.status_code == 400

    response = await client.post("/api/payments/refund", json={"order_id": body["order_id"]}, headers=headers)
    assert response.status_code == 200
    assert response.json()["amount"] == 45.19
    assert stripe_calls["refunds"][1]["amount"] is None

    order = await reload(db, Order, body["order_id"])
    assert order.payment_status == "REFUNDED"
    assert order.status == "REFUNDED"
    assert (await reload(db, Product, product.id)).inventory == 10
    assert len((await db.execute(select(Refund))).scalars().all()) == 2


async def test_refund_requires_paid_order(client, admin, product, stripe_calls):
    body = (await checkout(client, product)).json()
    response = await client.post("/api/payments/refund", json={"order_id": body["order_id"]},
                                 headers=auth_headers(admin))
    assert response.status_code == 400


async def test_refund_requires_admin(client, customer):
    response = await client.post("/api/payments/refund", json={"order_id": 1}, headers=auth_headers(customer))
    assert response.status_code == 403


async def test_charge_refunded_webhook(client, db, product, stripe_calls, webhook_event):
    body = await paid_order(client, product, webhook_event)
    webhook_event("charge.refunded", {
        "payment_intent": body["payment_intent_id"], "amount_refunded": 5519, "amount": 5519})
    await client.post("/api/payments/webhook", content=b"{}", headers=SIGNATURE)

    order = await reload(db, Order, body["order_id"])
    assert order.payment_status == "REFUNDED"
    assert (await reload(db, Product, product.id)).inventory == 10


async def test_list_enabled_payment_methods(client):
    response = await client.get("/api/payments/methods")
    methods = [m["method"] for m in response.json()]
    assert methods[0] == "card"
    assert "mbway" in methods


# ---------- 手动支付 ----------

async def manual_order(client, product, method="mbway"):
    await client.post("/api/cart", json={"product_id": product.id, "quantity": 1})
    return await client.post("/api/orders", json={
        "shipping_address": SHIPPING_ADDRESS, "email": "ana@example.com", "payment_method": method})


async def test_manual_order_and_admin_acceptance(client, db, admin, product):
    response = await manual_order(client, product)
    assert response.status_code == 201
    order = response.json()
    assert order["payment_method"] == "mbway"
    assert order["payment_status"] == "PENDING"
    assert (await client.get("/api/cart")).json()["count"] == 0

    headers = auth_headers(admin)
    response = await client.post(f"/api/admin/orders/{order['id']}/accept-payment", headers=headers)
    assert response.status_code == 200
    assert response.json()["payment_status"] == "PAID"
    assert response.json()["status"] == "CONFIRMED"
    assert response.json()["payments"][0]["method"] == "mbway"
    assert (await reload(db, Product, product.id)).inventory == 9

    response = await client.post(f"/api/admin/orders/{order['id']}/accept-payment", headers=headers)
    assert response.status_code == 400


async def test_accept_payment_keeps_new_cart(client, db, admin, product):
    order = (await manual_order(client, product)).json()
    other = await create_product(db, name="Meias", slug="meias", price="5.00")
    await client.post("/api/cart", json={"product_id": other.id, "quantity": 3})

    response = await client.post(f"/api/admin/orders/{order['id']}/accept-payment",
                                 headers=auth_headers(admin))
    assert response.status_code == 200
    assert (await client.get("/api/cart")).json()["count"] == 3


async def test_payment_after_cancel_keeps_stock(client, db, product, stripe_calls, webhook_event):
    body = (await checkout(client, product)).json()
    response = await client.post(f"/api/orders/{body['order_number']}/cancel")
    assert response.status_code == 200

    webhook_event("payment_intent.succeeded", {"id": body["payment_intent_id"]})
    response = await client.post("/api/payments/webhook", content=b"{}", headers=SIGNATURE)
    assert response.status_code == 200

    order = await reload(db, Order, body["order_id"])
    assert order.status == "CANCELLED"
    assert order.payment_status == "PAID"
    assert (await reload(db, Product, product.id)).inventory == 10
    sales = (await db.execute(select(InventoryLog).where(InventoryLog.type == "SALE"))).scalars().all()
    assert sales == []
    assert (await client.get("/api/cart")).json()["count"] == 2


async def test_manual_order_rejects_card(client, product):
    response = await manual_order(client, product, method="card")
    assert response.status_code == 400


async def test_accept_payment_rejects_card_orders(client, admin, product, stripe_calls):
    body = (await checkout(client, product)).json()
    response = await client.post(f"/api/admin/orders/{body['order_id']}/accept-payment",
                                 headers=auth_headers(admin))
    assert response.status_code == 400


# ---------- 订单查询与状态 ----------

async def test_order_hidden_from_other_sessions(client, product):
    order = (await manual_order(client, product)).json()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as stranger:
        response = await stranger.get(f"/api/orders/{order['order_number']}")
    assert response.status_code == 404


async def test_user_order_list(client, customer, product):
    headers = auth_headers(customer)
    await client.post("/api/cart", json={"product_id": product.id}, headers=headers)
    response = await client.post("/api/orders", json={
        "shipping_address": SHIPPING_ADDRESS, "payment_method": "multibanco"}, headers=headers)
    assert response.status_code == 201
    assert response.json()["email"] == customer.email

    response = await client.get("/api/orders", headers=headers)
    body = response.json()
    assert body["pagination"]["total"] == 1
    assert body["orders"][0]["user_id"] == customer.id


async def test_cancel_pending_order(client, product):
    order = (await manual_order(client, product)).json()
    response = await client.post(f"/api/orders/{order['order_number']}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"

    response = await client.post(f"/api/orders/{order['order_number']}/cancel")
    assert response.status_code == 400


@pytest.mark.parametrize("status", ["SHIPPED", "DELIVERED"])
async def test_unpaid_order_cannot_ship(client, admin, product, status):
    order = (await manual_order(client, product)).json()
    response = await client.put(f"/api/admin/orders/{order['id']}", json={"status": status},
                                headers=auth_headers(admin))
    assert response.status_code == 400


async def test_admin_ships_paid_order(client, admin, product):
    order = (await manual_order(client, product)).json()
    headers = auth_headers(admin)
    await client.post(f"/api/admin/orders/{order['id']}/accept-payment", headers=headers)

    response = await client.put(f"/api/admin/orders/{order['id']}",
                                json={"status": "SHIPPED", "tracking_number": "CTT123PT"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "SHIPPED"
    assert response.json()["tracking_number"] == "CTT123PT"


async def test_admin_cancel_restores_stock(client, db, admin, product):
    order = (await manual_order(client, product)).json()
    headers = auth_headers(admin)
    await client.post(f"/api/admin/orders/{order['id']}/accept-payment", headers=headers)
    assert (await reload(db, Product, product.id)).inventory == 9

    response = await client.put(f"/api/admin/orders/{order['id']}", json={"status": "CANCELLED"}, headers=headers)
    assert response.status_code == 200
    assert (await reload(db, Product, product.id)).inventory == 10
