"""
数据完整性校验
- 订单：金额、明细、状态组合、关联用户
- 支付：支付记录与订单状态、金额一致性
- 库存：库存流水回放与当前库存一致性
- 全量检查：最近30天订单 + 全部商品

按需调用（管理后台接口、下单/支付前置校验），不做定时执行
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shop.models.inventory_log import InventoryLog
from shop.models.order import Order, ORDER_STATUSES, PAYMENT_STATUSES
from shop.models.payment import Payment
from shop.models.product import Product
from shop.models.user import User
from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType, AuditSeverity

logger = logging.getLogger(__name__)

TOLERANCE = Decimal("0.01")
LOW_STOCK_WARNING = 5
RECENT_ORDER_DAYS = 30


@dataclass
class IntegrityReport:
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.valid = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    @property
    def has_issues(self) -> bool:
        return bool(self.errors or self.warnings)

    def as_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


class IntegrityError(Exception):
    """完整性校验未通过"""

    def __init__(self, report: IntegrityReport):
        self.report = report
        super().__init__("; ".join(report.errors) or "数据完整性校验失败")


def _dec(value) -> Decimal:
    return Decimal(str(value if value is not None else 0))


async def validate_order(db: AsyncSession, order_id: int, audit: bool = True) -> IntegrityReport:
    """校验单个订单"""
    report = IntegrityReport()

    result = await db.execute(
        select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
    )
    order = result.scalar_one_or_none()
    if order is None:
        report.add_error(f"订单 {order_id} 不存在")
        return report

    items = list(order.items)
    if not items:
        report.add_error("订单没有明细")

    # 金额
    item_sum = sum((_dec(i.price) * i.quantity for i in items), Decimal("0"))
    if abs(item_sum - _dec(order.subtotal)) > TOLERANCE:
        report.add_error(f"明细合计 {item_sum} 与小计 {order.subtotal} 不一致")

    expected_total = _dec(order.subtotal) - _dec(order.discount) + _dec(order.tax) + _dec(order.shipping)
    if abs(expected_total - _dec(order.total)) > TOLERANCE:
        report.add_error(f"订单总额 {order.total} 与计算值 {expected_total} 不一致")

    if _dec(order.total) <= 0:
        report.add_error("订单总额必须大于0")

    # 明细商品
    for item in items:
        if item.product_id is None:
            report.add_error(f"明细 {item.id} 缺少商品")
            continue
        product = await db.get(Product, item.product_id)
        if product is None:
            report.add_error(f"明细商品 {item.product_id} 不存在")
            continue
        if product.status != "ACTIVE":
            report.add_warning(f"商品「{product.name}」当前状态为 {product.status}")
        if abs(_dec(product.price) - _dec(item.price)) > TOLERANCE:
            report.add_warning(f"商品「{product.name}」现价 {product.price} 与成交价 {item.price} 不同")

    # 状态
    if order.status not in ORDER_STATUSES:
        report.add_error(f"无效的订单状态: {order.status}")
    if order.payment_status not in PAYMENT_STATUSES:
        report.add_error(f"无效的支付状态: {order.payment_status}")
    if order.status == "DELIVERED" and order.payment_status != "PAID":
        report.add_error("订单已送达但未支付")
    if order.status == "CANCELLED" and order.payment_status == "PAID":
        report.add_warning("订单已取消但已支付，请确认是否需要退款")

    # 用户
    if order.user_id is not None:
        user = await db.get(User, order.user_id)
        if user is None:
            report.add_error(f"订单关联的用户 {order.user_id} 不存在")

    if audit and report.has_issues:
        await audit_logger.log_event(
            AuditEventType.SUSPICIOUS_ACTIVITY, "order", "integrity_check",
            severity=AuditSeverity.MEDIUM if report.valid else AuditSeverity.HIGH,
            resource_id=order_id, details=report.as_dict(), success=report.valid,
            db=db,
        )
    return report


async def validate_payment(db: AsyncSession, payment_intent_id: str, audit: bool = True) -> IntegrityReport:
    """校验支付记录与订单状态"""
    report = IntegrityReport()

    result = await db.execute(select(Payment).where(Payment.stripe_payment_id == payment_intent_id))
    payment = result.scalar_one_or_none()
    if payment is None:
        report.add_error(f"支付记录 {payment_intent_id} 不存在")
        return report

    order = await db.get(Order, payment.order_id)
    if order is None:
        report.add_error(f"支付关联的订单 {payment.order_id} 不存在")
    else:
        if payment.status == "PAID" and order.payment_status == "PENDING":
            report.add_warning("支付已成功但订单仍为待支付")
        if order.status == "CANCELLED" and payment.status == "PAID":
            report.add_error("订单已取消但支付已成功")
        if payment.status == "REFUNDED" and order.status not in ("CANCELLED", "REFUNDED"):
            report.add_warning("支付已退款但订单状态未更新")
        if abs(_dec(payment.amount) - _dec(order.total)) > TOLERANCE:
            report.add_warning(f"支付金额 {payment.amount} 与订单总额 {order.total} 不一致")

    if audit and not report.valid:
        await audit_logger.log_event(
            AuditEventType.PAYMENT_FAILED, "payment", "integrity_check",
            severity=AuditSeverity.HIGH, resource_id=payment_intent_id,
            details=report.as_dict(), success=False, db=db,
        )
    return report


async def validate_inventory(db: AsyncSession, product_id: int) -> IntegrityReport:
    """回放库存流水并与当前库存比较"""
    report = IntegrityReport()

    product = await db.get(Product, product_id)
    if product is None:
        report.add_error(f"商品 {product_id} 不存在")
        return report

    result = await db.execute(select(InventoryLog).where(InventoryLog.product_id == product_id))
    replayed = sum(log.signed_quantity for log in result.scalars().all())
    inventory = product.inventory or 0

    if replayed != inventory:
        report.add_error(f"库存不一致: 流水合计 {replayed}，当前库存 {inventory}")
    if inventory < 0:
        report.add_error(f"库存为负数: {inventory}")
    elif 0 < inventory < LOW_STOCK_WARNING:
        report.add_warning(f"库存偏低: {inventory}")
    return report


async def run_system_integrity_check(db: AsyncSession) -> Dict[str, Any]:
    """全量检查：最近30天的订单和全部商品"""
    since = datetime.utcnow() - timedelta(days=RECENT_ORDER_DAYS)
    orders = (await db.execute(
        select(Order).where(Order.created_at >= since).order_by(Order.id)
    )).scalars().all()
    products = (await db.execute(select(Product).order_by(Product.id))).scalars().all()

    order_checks = []
    for order in orders:
        report = await validate_order(db, order.id, audit=False)
        order_checks.append({"order_id": order.id, "order_number": order.order_number, **report.as_dict()})

    inventory_checks = []
    for product in products:
        report = await validate_inventory(db, product.id)
        inventory_checks.append({"product_id": product.id, "name": product.name, **report.as_dict()})

    checks = order_checks + inventory_checks
    critical_issues = sum(len(c["errors"]) for c in checks)
    total_issues = critical_issues + sum(len(c["warnings"]) for c in checks)
    summary = {
        "total_checked": len(checks),
        "total_issues": total_issues,
        "critical_issues": critical_issues,
    }

    await audit_logger.log_event(
        AuditEventType.CONFIGURATION_CHANGED, "system", "integrity_check",
        severity=AuditSeverity.HIGH if critical_issues else AuditSeverity.LOW,
        details=summary, db=db,
    )
    logger.info(f"🔍 完整性检查完成: 检查 {summary['total_checked']} 项, 问题 {total_issues}, 严重 {critical_issues}")

    return {
        "overall_valid": critical_issues == 0,
        "order_checks": order_checks,
        "inventory_checks": inventory_checks,
        "summary": summary,
        "checked_at": datetime.utcnow().isoformat(),
    }


def build_recommendations(result: Dict[str, Any]) -> List[str]:
    """根据全量检查结果给出处理建议"""
    recommendations = []
    bad_orders = [c for c in result["order_checks"] if not c["valid"]]
    bad_inventory = [c for c in result["inventory_checks"] if not c["valid"]]
    low_stock = [c for c in result["inventory_checks"] if c["valid"] and c["warnings"]]

    if bad_orders:
        recommendations.append(f"🧾 {len(bad_orders)} 个订单金额或状态异常，请人工核对")
    if bad_inventory:
        recommendations.append(f"📦 {len(bad_inventory)} 个商品库存与流水不一致，请盘点后调整库存")
    if low_stock:
        recommendations.append(f"⚠️ {len(low_stock)} 个商品库存偏低，建议补货")
    if not recommendations:
        recommendations.append("✅ 未发现问题")
    return recommendations


async def validate_new_order(db: AsyncSession, order_id: int) -> IntegrityReport:
    """新订单提交前校验，失败抛出 IntegrityError"""
    report = await validate_order(db, order_id, audit=False)
    if not report.valid:
        logger.warning(f"🚫 新订单 {order_id} 完整性校验失败: {report.errors}")
        raise IntegrityError(report)
    return report


async def validate_before_payment(db: AsyncSession, order_id: int) -> IntegrityReport:
    """创建支付前校验，失败抛出 IntegrityError"""
    report = await validate_order(db, order_id, audit=False)
    order: Optional[Order] = await db.get(Order, order_id)
    if order is not None and order.payment_status not in ("PENDING", "FAILED"):
        report.add_error(f"订单支付状态为 {order.payment_status}，不能再次支付")
    if not report.valid:
        logger.warning(f"🚫 订单 {order_id} 支付前校验失败: {report.errors}")
        raise IntegrityError(report)
    return report
