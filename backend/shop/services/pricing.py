"""
价格计算
- 金额取整（四舍五入到分）
- 优惠券校验与优惠金额
- 订单合计：小计 − 优惠 + 税 + 运费
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from shop.core.config import settings
from shop.models.discount import Discount

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """转换为两位小数的 Decimal"""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class CouponError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def validate_coupon(
    discount: Optional[Discount],
    subtotal: Decimal,
    item_count: int,
    now: Optional[datetime] = None) -> None:
    """按顺序校验优惠券，不可用时抛出 CouponError"""
    now = now or datetime.utcnow()
    if discount is None:
        raise CouponError("优惠券不存在", 404)
    if not discount.is_active:
        raise CouponError("优惠券已停用")
    if discount.valid_until and discount.valid_until < now:
        raise CouponError("优惠券已过期")
    if discount.valid_from and discount.valid_from > now:
        raise CouponError("优惠券尚未生效")
    if discount.max_uses is not None and (discount.used_count or 0) >= discount.max_uses:
        raise CouponError("优惠券已达到使用上限")
    if item_count <= 0:
        raise CouponError("购物车为空")
    if discount.min_amount is not None and money(subtotal) < money(discount.min_amount):
        raise CouponError(f"订单金额需满 €{money(discount.min_amount)} 才能使用此优惠券")


def calculate_coupon_discount(discount: Discount, subtotal: Decimal) -> Decimal:
    """计算优惠金额

    百分比券按 max_amount 封顶；固定金额券不超过小计
    """
    subtotal = money(subtotal)
    value = money(discount.value)
    if discount.type == "PERCENTAGE":
        amount = subtotal * value / Decimal("100")
        if discount.max_amount is not None:
            amount = min(amount, money(discount.max_amount))
    else:
        amount = min(value, subtotal)
    return money(max(amount, Decimal("0")))


def calculate_shipping_cost(subtotal: Decimal) -> Decimal:
    """默认运费：超过免运费门槛免运费"""
    if money(subtotal) > money(settings.FREE_SHIPPING_THRESHOLD):
        return Decimal("0.00")
    return money(settings.DEFAULT_SHIPPING_COST)


def calculate_tax(taxable_amount: Decimal) -> Decimal:
    return money(money(taxable_amount) * Decimal(str(settings.TAX_RATE)))


@dataclass
class OrderTotals:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal

    def as_dict(self) -> dict:
        return {
            "subtotal": float(self.subtotal),
            "discount": float(self.discount),
            "tax": float(self.tax),
            "shipping": float(self.shipping),
            "total": float(self.total),
        }


def calculate_order_totals(
    subtotal: Decimal,
    discount: Decimal = Decimal("0.00"),
    shipping: Optional[Decimal] = None) -> OrderTotals:
    """订单合计

    税额按优惠后金额计算；未指定运费时使用默认运费规则
    """
    subtotal = money(subtotal)
    discount = min(money(discount), subtotal)
    tax = calculate_tax(subtotal - discount)
    shipping = calculate_shipping_cost(subtotal) if shipping is None else money(shipping)
    total = money(max(subtotal - discount + tax + shipping, Decimal("0")))
    return OrderTotals(subtotal=subtotal, discount=discount, tax=tax, shipping=shipping, total=total)
