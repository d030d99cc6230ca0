from shop.services.notification_hub import notification_hub

from conftest import auth_headers, create_user

ADDRESS = {
    "first_name": "Ana",
    "last_name": "Silva",
    "address1": "Rua Augusta 1",
    "city": "Lisboa",
    "postal_code": "1100-048",
    "country": "pt",
}


async def test_first_address_becomes_default(client, customer):
    headers = auth_headers(customer)
    first = (await client.post("/api/addresses", json=ADDRESS, headers=headers)).json()
    assert first["is_default"] is True
    assert first["country"] == "PT"

    second = (await client.post("/api/addresses", json={**ADDRESS, "city": "Porto"}, headers=headers)).json()
    assert second["is_default"] is False

    response = await client.post(f"/api/addresses/{second['id']}/set-default", headers=headers)
    assert response.json()["is_default"] is True

    defaults = (await client.get("/api/addresses/defaults", headers=headers)).json()
    assert defaults["shipping"]["id"] == second["id"]
    assert defaults["billing"] is None

    listed = (await client.get("/api/addresses", headers=headers)).json()
    assert [a["id"] for a in listed] == [second["id"], first["id"]]


async def test_billing_address_requires_vat(client, customer):
    headers = auth_headers(customer)
    response = await client.post("/api/addresses", json={**ADDRESS, "type": "BILLING"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "vat_number"

    response = await client.post("/api/addresses", json={
        **ADDRESS, "type": "BILLING", "vat_number": "123456789"}, headers=headers)
    assert response.status_code == 201

    response = await client.put(f"/api/addresses/{response.json()['id']}",
                                json={"vat_number": " "}, headers=headers)
    assert response.status_code == 400


async def test_address_of_other_user_is_hidden(client, customer, db):
    address = (await client.post("/api/addresses", json=ADDRESS, headers=auth_headers(customer))).json()
    stranger = await create_user(db, email="outro@example.com")
    headers = auth_headers(stranger)

    assert (await client.get(f"/api/addresses/{address['id']}", headers=headers)).status_code == 404
    assert (await client.delete(f"/api/addresses/{address['id']}", headers=headers)).status_code == 404

    response = await client.delete(f"/api/addresses/{address['id']}", headers=auth_headers(customer))
    assert response.status_code == 200


async def test_addresses_require_login(client):
    assert (await client.get("/api/addresses")).status_code == 401


async def test_wishlist_flow(client, customer, product):
    headers = auth_headers(customer)
    response = await client.post("/api/wishlist", json={"product_id": product.id}, headers=headers)
    assert response.status_code == 201
    assert response.json()["count"] == 1

    response = await client.post("/api/wishlist", json={"product_id": product.id}, headers=headers)
    assert response.status_code == 400

    response = await client.get("/api/wishlist/check", params={"product_id": product.id}, headers=headers)
    assert response.json() == {"in_wishlist": True}

    response = await client.delete("/api/wishlist", params={"product_id": product.id}, headers=headers)
    assert response.json()["count"] == 0

    response = await client.delete("/api/wishlist", params={"product_id": product.id}, headers=headers)
    assert response.status_code == 404


async def test_shared_wishlist(client, customer, product):
    headers = auth_headers(customer)
    wishlist = (await client.post("/api/wishlist", json={"product_id": product.id}, headers=headers)).json()
    token = wishlist["share_token"]

    assert (await client.get(f"/api/wishlists/shared/{token}")).status_code == 404

    response = await client.put("/api/wishlist/share", json={"is_public": True}, headers=headers)
    assert response.json()["is_public"] is True

    response = await client.get(f"/api/wishlists/shared/{token}")
    assert response.status_code == 200
    assert response.json()["items"][0]["product_id"] == product.id


async def test_move_wishlist_item_to_cart(client, customer, product):
    headers = auth_headers(customer)
    await client.post("/api/wishlist", json={"product_id": product.id}, headers=headers)

    response = await client.post("/api/wishlist/move-to-cart",
                                 json={"product_id": product.id, "quantity": 2}, headers=headers)
    assert response.status_code == 200

    cart = (await client.get("/api/cart", headers=headers)).json()
    assert cart["count"] == 2
    wishlist = (await client.get("/api/wishlist", headers=headers)).json()
    assert wishlist["count"] == 0


async def test_notification_settings(client, customer):
    headers = auth_headers(customer)
    response = await client.get("/api/user/notification-settings", headers=headers)
    assert response.status_code == 200
    assert response.json()["promotional_emails"] is False

    response = await client.put("/api/user/notification-settings",
                                json={"promotional_emails": True, "order_updates": False}, headers=headers)
    body = response.json()
    assert body["promotional_emails"] is True
    assert body["order_updates"] is False
    assert body["order_confirmations"] is True


async def test_inbox_after_registration(client):
    response = await client.post("/api/auth/register", json={
        "email": "inbox@example.com", "password": "password123", "name": "Inês"})
    headers = {"Authorization": f"Bearer {response.json()['access_token']}"}

    inbox = (await client.get("/api/notifications", headers=headers)).json()
    assert inbox["total"] == 1
    assert inbox["unread"] == 1
    assert inbox["data"][0]["type"] == "WELCOME"

    notification_id = inbox["data"][0]["id"]
    response = await client.post(f"/api/notifications/{notification_id}/read", headers=headers)
    assert response.status_code == 200
    assert (await client.get("/api/notifications", headers=headers)).json()["unread"] == 0

    response = await client.post("/api/notifications/read-all", headers=headers)
    assert response.json() == {"updated": 0}


async def test_admin_push_notification(client, admin, customer):
    notification_hub.connect(customer.id, is_admin=False)
    notification_hub.connect(admin.id, is_admin=True)

    response = await client.post("/api/notifications/send", json={
        "type": "system_message", "title": "Manutenção", "message": "Loja em manutenção às 02:00"},
        headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["delivered"] == 2

    response = await client.post("/api/notifications/send", json={
        "type": "system_message", "title": "x", "message": "y"}, headers=auth_headers(customer))
    assert response.status_code == 403

    stats = (await client.get("/api/notifications/stats", headers=auth_headers(admin))).json()
    assert stats["total_connections"] == 2
