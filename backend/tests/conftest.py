import fnmatch
import os
import tempfile
from decimal import Decimal
from types import SimpleNamespace

import pytest

# 环境变量必须在导入 shop 之前设置
TEST_DIR = tempfile.mkdtemp(prefix="shop-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(TEST_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_dummy"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["AUTO_BACKUP_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["LOG_DIR"] = os.path.join(TEST_DIR, "logs")
os.environ["BACKUP_DIR"] = os.path.join(TEST_DIR, "backups")

import httpx  # noqa: E402

from shop.core.rate_limit import auth_rate_limit, coupon_rate_limit  # noqa: E402
from shop.core.metrics import request_metrics  # noqa: E402
from shop.core.security import create_access_token, hash_password  # noqa: E402
from shop.db import session as db_session  # noqa: E402
from shop.db.init_db import drop_all_tables, ensure_tables_exist, seed_payment_methods  # noqa: E402
from shop.main import app  # noqa: E402
from shop.models.product import Product  # noqa: E402
from shop.models.user import User, NotificationSettings  # noqa: E402
from shop.services import payment_gateway  # noqa: E402
from shop.services.alerts import alert_manager  # noqa: E402
from shop.services.cache import cache  # noqa: E402
from shop.services.circuit_breaker import reset_all_circuit_breakers  # noqa: E402
from shop.services.notification_hub import notification_hub  # noqa: E402


class FakeRedis:
    """内存版 Redis 客户端，只实现缓存服务用到的命令"""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatch(key, match):
                yield key

    async def exists(self, key):
        return int(key in self.store)

    async def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, ttl):
        return key in self.store

    async def ping(self):
        return True

    async def aclose(self):
        return None


@pytest.fixture(autouse=True)
async def database():
    await drop_all_tables()
    await ensure_tables_exist()
    async with db_session.SessionLocal() as db:
        await seed_payment_methods(db)
    yield
    await db_session.engine.dispose()


@pytest.fixture(autouse=True)
def reset_state():
    auth_rate_limit.reset()
    coupon_rate_limit.reset()
    reset_all_circuit_breakers()
    alert_manager.reset()
    notification_hub.connections.clear()
    request_metrics.reset()
    yield
    notification_hub.connections.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    client = FakeRedis()
    cache.client = client
    yield client
    cache.client = None


@pytest.fixture
async def db():
    async with db_session.SessionLocal() as session:
        yield session


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def stripe_calls(monkeypatch):
    """替换 Stripe 调用，记录参数并返回固定结果"""
    calls = {"intents": [], "refunds": []}

    async def fake_create_payment_intent(amount, metadata, receipt_email=None, currency=None):
        intent_id = f"pi_test_{len(calls['intents']) + 1}"
        calls["intents"].append({"amount": amount, "metadata": metadata, "receipt_email": receipt_email})
        return SimpleNamespace(id=intent_id, client_secret=f"{intent_id}_secret")

    async def fake_create_refund(payment_intent_id, amount=None, reason=None):
        calls["refunds"].append({"payment_intent": payment_intent_id, "amount": amount, "reason": reason})
        return SimpleNamespace(id=f"re_test_{len(calls['refunds'])}", status="succeeded")

    monkeypatch.setattr(payment_gateway, "create_payment_intent", fake_create_payment_intent)
    monkeypatch.setattr(payment_gateway, "create_refund", fake_create_refund)
    return calls


@pytest.fixture
def webhook_event(monkeypatch):
    """让 Webhook 签名校验直接返回指定事件"""
    holder = {}

    def fake_construct(payload, signature):
        return holder["event"]

    monkeypatch.setattr(payment_gateway, "construct_webhook_event", fake_construct)

    def set_event(event_type, obj):
        holder["event"] = {"type": event_type, "data": {"object": obj}}

    return set_event


async def create_user(db, email="cliente@example.com", role="USER", password="password123", name="Cliente"):
    user = User(email=email, name=name, password=hash_password(password), role=role)
    user.notification_settings = NotificationSettings()
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


async def create_product(db, name="Camisola", slug="camisola", price="20.00", inventory=10, status="ACTIVE", **kwargs):
    product = Product(name=name, slug=slug, price=Decimal(price), inventory=inventory, status=status, **kwargs)
    db.add(product)
    await db.commit()
    await db.refresh(product)
    return product


@pytest.fixture
async def customer(db):
    return await create_user(db)


@pytest.fixture
async def admin(db):
    return await create_user(db, email="admin@example.com", role="ADMIN", name="Admin")


@pytest.fixture
async def product(db):
    return await create_product(db)


SHIPPING_ADDRESS = {
    "type": "SHIPPING",
    "first_name": "Ana",
    "last_name": "Silva",
    "address1": "Rua das Flores 10",
    "city": "Lisboa",
    "postal_code": "1000-100",
    "country": "PT",
}
