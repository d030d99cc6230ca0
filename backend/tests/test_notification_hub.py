import json
import time

from shop.services.notification_hub import NotificationHub


def drain(conn):
    messages = []
    while not conn.queue.empty():
        messages.append(conn.queue.get_nowait())
    return messages


def test_connect_sends_welcome_message():
    hub = NotificationHub()
    conn = hub.connect(user_id=1)
    [message] = drain(conn)
    assert message["type"] == "system_message"
    assert message["data"]["connection_id"] == conn.id


def test_publish_routing():
    hub = NotificationHub()
    customer = hub.connect(user_id=1)
    other = hub.connect(user_id=2)
    admin = hub.connect(user_id=3, is_admin=True)
    for conn in (customer, other, admin):
        drain(conn)

    assert hub.publish("admin_alert", "Alerta", "memória alta", admin_only=True) == 1
    assert hub.publish("order_update", "Encomenda", "enviada", user_id=1) == 1
    assert hub.publish("system_message", "Manutenção", "às 3h") == 3

    assert [m["type"] for m in drain(customer)] == ["order_update", "system_message"]
    assert [m["type"] for m in drain(other)] == ["system_message"]
    assert [m["type"] for m in drain(admin)] == ["admin_alert", "system_message"]


async def test_stream_yields_events_until_disconnect():
    hub = NotificationHub()
    conn = hub.connect(user_id=1)
    stream = hub.stream(conn)

    first = await stream.__anext__()
    assert first.startswith("data: ")
    assert json.loads(first[len("data: "):])["type"] == "system_message"

    hub.publish("payment_update", "Pagamento", "confirmado", user_id=1)
    hub.disconnect(conn.id)
    remaining = [chunk async for chunk in stream]
    assert len(remaining) == 1
    assert "payment_update" in remaining[0]
    assert conn.id not in hub.connections


def test_cleanup_stale_connections():
    hub = NotificationHub(stale_timeout=10)
    hub.connect(user_id=1)
    fresh = hub.connect(user_id=2)
    fresh.last_heartbeat = time.time() + 100

    assert hub.cleanup_stale(now=time.time() + 20) == 1
    assert list(hub.connections) == [fresh.id]


def test_stats():
    hub = NotificationHub()
    hub.connect(user_id=1)
    hub.connect(user_id=2, is_admin=True)
    stats = hub.get_stats()
    assert stats["total_connections"] == 2
    assert stats["admin_connections"] == 1
    assert stats["user_connections"] == 1
    assert len(stats["connections"]) == 2
