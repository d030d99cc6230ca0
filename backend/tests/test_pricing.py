from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from shop.models.discount import Discount
from shop.services.pricing import (
    CouponError, calculate_coupon_discount, calculate_order_totals, calculate_shipping_cost, money, validate_coupon
)


def make_discount(**kwargs):
    values = dict(code="SAVE10", type="PERCENTAGE", value=Decimal("10"), is_active=True, used_count=0)
    values.update(kwargs)
    return Discount(**values)


def test_money_rounds_half_up():
    assert money("10.005") == Decimal("10.01")
    assert money(3) == Decimal("3.00")
    assert money(None) == Decimal("0.00")


def test_percentage_discount_with_cap():
    discount = make_discount(value=Decimal("50"), max_amount=Decimal("15"))
    assert calculate_coupon_discount(discount, Decimal("100")) == Decimal("15.00")
    assert calculate_coupon_discount(make_discount(), Decimal("45.50")) == Decimal("4.55")


def test_fixed_discount_never_exceeds_subtotal():
    discount = make_discount(type="FIXED_AMOUNT", value=Decimal("30"))
    assert calculate_coupon_discount(discount, Decimal("20")) == Decimal("20.00")


@pytest.mark.parametrize("discount, message", [
    (None, "优惠券不存在"),
    (make_discount(is_active=False), "优惠券已停用"),
    (make_discount(valid_until=datetime.utcnow() - timedelta(days=1)), "优惠券已过期"),
    (make_discount(valid_from=datetime.utcnow() + timedelta(days=1)), "优惠券尚未生效"),
    (make_discount(max_uses=5, used_count=5), "优惠券已达到使用上限"),
    (make_discount(min_amount=Decimal("100")), "才能使用此优惠券"),
])
def test_validate_coupon_rejections(discount, message):
    with pytest.raises(CouponError) as exc_info:
        validate_coupon(discount, Decimal("50"), 1)
    assert message in exc_info.value.message


def test_validate_coupon_missing_is_404():
    with pytest.raises(CouponError) as exc_info:
        validate_coupon(None, Decimal("50"), 1)
    assert exc_info.value.status_code == 404


def test_validate_coupon_empty_cart():
    with pytest.raises(CouponError):
        validate_coupon(make_discount(), Decimal("0"), 0)


def test_default_shipping_threshold():
    assert calculate_shipping_cost(Decimal("50.00")) == Decimal("5.99")
    assert calculate_shipping_cost(Decimal("50.01")) == Decimal("0.00")


def test_order_totals_tax_after_discount():
    totals = calculate_order_totals(Decimal("100"), Decimal("10"))
    assert totals.tax == Decimal("20.70")
    assert totals.shipping == Decimal("0.00")
    assert totals.total == Decimal("110.70")


def test_order_totals_explicit_shipping_and_discount_cap():
    totals = calculate_order_totals(Decimal("20"), Decimal("30"), shipping=Decimal("3.99"))
    assert totals.discount == Decimal("20.00")
    assert totals.tax == Decimal("0.00")
    assert totals.total == Decimal("3.99")
