from decimal import Decimal

import pytest
from sqlalchemy import select

from shop.models.audit_log import AuditLog
from shop.models.inventory_log import InventoryLog
from shop.models.order import Order, OrderItem
from shop.models.payment import Payment
from shop.services import integrity_validator
from shop.services.integrity_validator import IntegrityError

from conftest import create_product


async def make_order(db, product, items=None, **overrides):
    values = dict(
        order_number="ORD-1-TEST01",
        email="ana@example.com",
        status="PENDING",
        payment_status="PENDING",
        subtotal=Decimal("40.00"),
        discount=Decimal("0.00"),
        tax=Decimal("9.20"),
        shipping=Decimal("5.99"),
        total=Decimal("55.19"),
    )
    values.update(overrides)
    order = Order(**values)
    if items is None:
        items = [OrderItem(product_id=product.id, quantity=2, price=Decimal("20.00"))]
    order.items = items
    db.add(order)
    await db.commit()
    return order


async def test_valid_order(db, product):
    order = await make_order(db, product)
    report = await integrity_validator.validate_order(db, order.id)
    assert report.valid
    assert report.errors == []


async def test_total_mismatch_is_error(db, product):
    order = await make_order(db, product, total=Decimal("60.00"))
    report = await integrity_validator.validate_order(db, order.id)
    assert not report.valid
    assert any("订单总额" in e for e in report.errors)


async def test_item_sum_must_match_subtotal(db, product):
    order = await make_order(db, product, subtotal=Decimal("45.00"), total=Decimal("60.19"))
    report = await integrity_validator.validate_order(db, order.id)
    assert any("明细合计" in e for e in report.errors)


async def test_delivered_unpaid_is_error(db, product):
    order = await make_order(db, product, status="DELIVERED")
    report = await integrity_validator.validate_order(db, order.id)
    assert "订单已送达但未支付" in report.errors


async def test_validate_before_payment_rejects_paid_order(db, product):
    order = await make_order(db, product, payment_status="PAID", status="CONFIRMED")
    with pytest.raises(IntegrityError):
        await integrity_validator.validate_before_payment(db, order.id)


async def test_missing_order(db):
    report = await integrity_validator.validate_order(db, 999)
    assert not report.valid


async def test_payment_status_consistency(db, product):
    order = await make_order(db, product, payment_status="PENDING")
    db.add(Payment(order_id=order.id, stripe_payment_id="pi_123", amount=Decimal("55.19"), status="PAID"))
    await db.commit()
    report = await integrity_validator.validate_payment(db, "pi_123")
    assert report.valid
    assert "支付已成功但订单仍为待支付" in report.warnings

    order.status = "CANCELLED"
    await db.commit()
    report = await integrity_validator.validate_payment(db, "pi_123")
    assert "订单已取消但支付已成功" in report.errors


async def test_inventory_replay(db):
    product = await create_product(db, slug="meias", inventory=7)
    db.add(InventoryLog(product_id=product.id, type="PURCHASE", quantity=10,
                        quantity_before=0, quantity_after=10))
    db.add(InventoryLog(product_id=product.id, type="SALE", quantity=3,
                        quantity_before=10, quantity_after=7))
    await db.commit()
    assert (await integrity_validator.validate_inventory(db, product.id)).valid

    product.inventory = 9
    await db.commit()
    assert not (await integrity_validator.validate_inventory(db, product.id)).valid


async def test_system_check_summary(db, product):
    await make_order(db, product, total=Decimal("1.00"))
    result = await integrity_validator.run_system_integrity_check(db)
    await db.commit()
    assert not result["overall_valid"]
    assert result["summary"]["critical_issues"] >= 1
    recommendations = integrity_validator.build_recommendations(result)
    assert any("订单" in r for r in recommendations)


async def test_order_without_items(db, product):
    order = await make_order(db, product, items=[], subtotal=Decimal("0.00"), tax=Decimal("0.00"),
                             shipping=Decimal("0.00"), total=Decimal("0.00"))
    report = await integrity_validator.validate_order(db, order.id, audit=False)
    assert "订单没有明细" in report.errors
    assert "订单总额必须大于0" in report.errors


async def test_non_positive_total_is_error(db, product):
    order = await make_order(db, product, discount=Decimal("55.19"), total=Decimal("0.00"))
    report = await integrity_validator.validate_order(db, order.id, audit=False)
    assert report.errors == ["订单总额必须大于0"]


@pytest.mark.parametrize("field,value,message", [
    ("status", "PERDIDA", "无效的订单状态: PERDIDA"),
    ("payment_status", "TALVEZ", "无效的支付状态: TALVEZ"),
])
async def test_unknown_status_is_error(db, product, field, value, message):
    order = await make_order(db, product, **{field: value})
    report = await integrity_validator.validate_order(db, order.id, audit=False)
    assert message in report.errors


async def test_order_for_missing_user(db, product):
    order = await make_order(db, product, user_id=4242)
    report = await integrity_validator.validate_order(db, order.id, audit=False)
    assert "订单关联的用户 4242 不存在" in report.errors


async def test_issues_are_audited_by_severity(db, product):
    broken = await make_order(db, product, total=Decimal("60.00"))
    cancelled = await make_order(db, product, order_number="ORD-1-TEST02",
                                 status="CANCELLED", payment_status="PAID")
    clean = await make_order(db, product, order_number="ORD-1-TEST03")

    for order in (broken, cancelled, clean):
        await integrity_validator.validate_order(db, order.id)
    await db.commit()

    logs = (await db.execute(
        select(AuditLog).where(AuditLog.event_type == "SUSPICIOUS_ACTIVITY")
    )).scalars().all()
    severities = {log.resource_id: log.severity for log in logs}
    assert severities == {str(broken.id): "HIGH", str(cancelled.id): "MEDIUM"}


async def test_refunded_payment_on_open_order(db, product):
    order = await make_order(db, product, status="CONFIRMED", payment_status="REFUNDED")
    db.add(Payment(order_id=order.id, stripe_payment_id="pi_refund", amount=Decimal("55.19"), status="REFUNDED"))
    await db.commit()
    report = await integrity_validator.validate_payment(db, "pi_refund")
    assert report.valid
    assert "支付已退款但订单状态未更新" in report.warnings


async def test_payment_amount_mismatch_is_warning(db, product):
    order = await make_order(db, product, status="CONFIRMED", payment_status="PAID")
    db.add(Payment(order_id=order.id, stripe_payment_id="pi_short", amount=Decimal("50.00"), status="PAID"))
    await db.commit()
    report = await integrity_validator.validate_payment(db, "pi_short")
    assert report.valid
    assert report.warnings == ["支付金额 50.00 与订单总额 55.19 不一致"]


async def test_negative_inventory_is_error(db):
    product = await create_product(db, slug="meias", inventory=-2)
    db.add(InventoryLog(product_id=product.id, type="ADJUSTMENT", quantity=-2,
                        quantity_before=0, quantity_after=-2))
    await db.commit()
    report = await integrity_validator.validate_inventory(db, product.id)
    assert report.errors == ["库存为负数: -2"]


async def test_low_inventory_is_warning(db):
    product = await create_product(db, slug="meias", inventory=3)
    db.add(InventoryLog(product_id=product.id, type="PURCHASE", quantity=3,
                        quantity_before=0, quantity_after=3))
    await db.commit()
    report = await integrity_validator.validate_inventory(db, product.id)
    assert report.valid
    assert report.warnings == ["库存偏低: 3"]
