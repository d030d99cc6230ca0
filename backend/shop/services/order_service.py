"""
订单业务模块
- 订单号生成
- 购物车读取与价格计算
- 从购物车创建订单（卡支付与手动支付共用）
- 支付成功/失败处理（Webhook 与人工确认共用）
- 库存扣减与回滚
- 响应构建

本模块的函数只修改会话，不提交；由接口层统一 commit
"""

import logging
import secrets
import string
import time
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shop.core.deps import CartOwner
from shop.models.address import Address
from shop.models.cart import CartItem
from shop.models.discount import Discount
from shop.models.inventory_log import InventoryLog
from shop.models.order import Order, OrderItem
from shop.models.payment import Payment
from shop.models.product import Product, ProductVariant, StockItem
from shop.schemas.address import AddressInput, AddressResponse
from shop.schemas.cart import CartItemResponse, CartResponse
from shop.schemas.order import CheckoutBase, OrderItemResponse, OrderResponse, PaymentSummary
from shop.services import notification_service, shipping as shipping_service
from shop.services.cache import cache, CacheKeys
from shop.services.notification_hub import notification_hub
from shop.services.pricing import (
    CouponError, calculate_coupon_discount, calculate_order_totals, money, validate_coupon
)

logger = logging.getLogger(__name__)


class CheckoutError(Exception):
    """下单失败（业务规则），由接口层转换为 HTTP 错误"""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def generate_order_number() -> str:
    """生成订单号：ORD-毫秒时间戳-6位随机码"""
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


# ---------- 购物车 ----------

def cart_owner_filter(user_id: Optional[int], session_id: Optional[str]):
    if user_id is not None:
        return CartItem.user_id == user_id
    return and_(CartItem.user_id.is_(None), CartItem.session_id == session_id)


async def load_cart_items(
    db: AsyncSession,
    user_id: Optional[int],
    session_id: Optional[str]) -> List[CartItem]:
    if user_id is None and not session_id:
        return []
    result = await db.execute(
        select(CartItem).options(
            selectinload(CartItem.product).selectinload(Product.images),
            selectinload(CartItem.variant),
            selectinload(CartItem.stock_item),
        ).where(cart_owner_filter(user_id, session_id))
        .order_by(CartItem.created_at, CartItem.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def unit_price(product: Product, variant: Optional[ProductVariant] = None) -> Decimal:
    """单价 = 商品价格 + 变体加价"""
    extra = variant.price_extra if variant is not None else Decimal("0")
    return money(product.price) + money(extra)


def available_quantity(product: Product, stock_item: Optional[StockItem] = None) -> int:
    if stock_item is not None:
        return stock_item.quantity or 0
    return product.inventory or 0


def cart_subtotal(items: List[CartItem]) -> Decimal:
    total = Decimal("0.00")
    for item in items:
        total += unit_price(item.product, item.variant) * item.quantity
    return money(total)


def build_cart_item_response(item: CartItem) -> CartItemResponse:
    product = item.product
    price = unit_price(product, item.variant)
    return CartItemResponse(
        id=item.id,
        product_id=product.id,
        product_name=product.name,
        product_slug=product.slug,
        image=product.images[0].url if product.images else None,
        variant_id=item.variant_id,
        variant_name=item.variant.name if item.variant else None,
        stock_item_id=item.stock_item_id,
        size=item.stock_item.size if item.stock_item else None,
        color=item.stock_item.color if item.stock_item else None,
        quantity=item.quantity,
        unit_price=float(price),
        line_total=float(money(price * item.quantity)),
        available=available_quantity(product, item.stock_item),
    )


def build_cart_response(items: List[CartItem]) -> CartResponse:
    return CartResponse(
        items=[build_cart_item_response(i) for i in items],
        total=float(cart_subtotal(items)),
        count=sum(i.quantity for i in items),
    )


async def clear_cart(db: AsyncSession, user_id: Optional[int], session_id: Optional[str]) -> None:
    if user_id is None and not session_id:
        return
    await db.execute(delete(CartItem).where(cart_owner_filter(user_id, session_id)))


async def add_cart_item(
    db: AsyncSession,
    owner: CartOwner,
    product_id: int,
    quantity: int,
    variant_id: Optional[int] = None,
    stock_item_id: Optional[int] = None) -> CartItem:
    """加入购物车：相同商品/变体/规格合并数量，不超过可用库存"""
    product = await db.get(Product, product_id)
    if product is None:
        raise CheckoutError("商品不存在", 404)
    if product.status != "ACTIVE":
        raise CheckoutError("商品当前不可购买")

    variant = None
    if variant_id is not None:
        variant = await db.get(ProductVariant, variant_id)
        if variant is None or variant.product_id != product.id:
            raise CheckoutError("商品规格不存在")
    stock_item = None
    if stock_item_id is not None:
        stock_item = await db.get(StockItem, stock_item_id)
        if stock_item is None or stock_item.product_id != product.id:
            raise CheckoutError("商品库存项不存在")

    result = await db.execute(
        select(CartItem).where(
            cart_owner_filter(owner.user_id, owner.session_id),
            CartItem.product_id == product.id,
            CartItem.variant_id.is_(None) if variant_id is None else CartItem.variant_id == variant_id,
            CartItem.stock_item_id.is_(None) if stock_item_id is None else CartItem.stock_item_id == stock_item_id,
        )
    )
    line = result.scalars().first()
    new_quantity = quantity + (line.quantity if line else 0)
    if new_quantity > available_quantity(product, stock_item):
        raise CheckoutError(f"商品「{product.name}」库存不足")

    if line is None:
        line = CartItem(
            user_id=owner.user_id,
            session_id=None if owner.user_id is not None else owner.session_id,
            product_id=product.id,
            variant_id=variant_id,
            stock_item_id=stock_item_id,
            quantity=new_quantity,
        )
        db.add(line)
    else:
        line.quantity = new_quantity
    await db.flush()
    return line


async def invalidate_cart_cache(user_id: Optional[int]) -> None:
    if user_id is not None:
        await cache.delete(CacheKeys.user_cart(user_id))


# ---------- 优惠券 ----------

async def find_discount(db: AsyncSession, code: str) -> Optional[Discount]:
    result = await db.execute(select(Discount).where(Discount.code == code.strip().upper()))
    return result.scalar_one_or_none()


async def resolve_coupon(
    db: AsyncSession,
    code: str,
    subtotal: Decimal,
    item_count: int) -> Tuple[Discount, Decimal]:
    """校验优惠券并计算优惠金额，失败抛出 CouponError"""
    discount = await find_discount(db, code)
    validate_coupon(discount, subtotal, item_count)
    return discount, calculate_coupon_discount(discount, subtotal)


def coupon_cache_key(owner: CartOwner) -> str:
    """已应用优惠券的缓存键"""
    if owner.user_id is not None:
        return f"coupon:user:{owner.user_id}"
    return f"coupon:session:{owner.session_id}"


async def applied_coupon_code(owner: CartOwner) -> Optional[str]:
    """购物车页面已应用的优惠券（未启用缓存时为 None）"""
    return await cache.get(coupon_cache_key(owner))


# ---------- 下单 ----------

def _address_from_input(data: AddressInput, address_type: str, user_id: Optional[int]) -> Address:
    values = data.model_dump(exclude={"type"})
    return Address(user_id=user_id, type=address_type, is_default=False, **values)


def _shipping_items(items: List[CartItem]) -> List[shipping_service.ShippingItem]:
    return [
        shipping_service.ShippingItem(
            quantity=item.quantity,
            weight=item.product.weight,
            length=item.product.length,
            width=item.product.width,
            height=item.product.height,
        )
        for item in items
    ]


async def create_order_from_cart(
    db: AsyncSession,
    owner: CartOwner,
    checkout: CheckoutBase,
    payment_method: str) -> Order:
    """从购物车创建待支付订单（不清空购物车，支付成功后清空）"""
    items = await load_cart_items(db, owner.user_id, owner.session_id)
    if not items:
        raise CheckoutError("购物车为空")

    for item in items:
        product = item.product
        if product.status != "ACTIVE":
            raise CheckoutError(f"商品「{product.name}」已下架")
        if item.quantity > available_quantity(product, item.stock_item):
            raise CheckoutError(f"商品「{product.name}」库存不足")

    email = checkout.email or (owner.user.email if owner.user else None)
    if not email:
        raise CheckoutError("游客下单必须填写邮箱")

    billing_input = checkout.billing_address
    if billing_input is not None and not (billing_input.vat_number or "").strip():
        raise CheckoutError("账单地址必须填写税号")

    subtotal = cart_subtotal(items)

    # 优惠券：请求中指定的优先，否则使用购物车已应用的
    coupon_code = checkout.coupon_code or await applied_coupon_code(owner)
    discount_amount = Decimal("0.00")
    discount_code = None
    if coupon_code:
        try:
            discount, discount_amount = await resolve_coupon(
                db, coupon_code, subtotal, len(items))
        except CouponError as e:
            raise CheckoutError(e.message, e.status_code)
        discount_code = discount.code

    # 运费：指定配送方式时按运费表计算，否则使用默认规则
    shipping_cost = None
    shipping_method = "standard"
    if checkout.shipping_option:
        address = checkout.shipping_address
        try:
            quote = shipping_service.calculate_shipping_options(
                address.country, _shipping_items(items), subtotal,
                state=address.state, postal_code=address.postal_code)
        except shipping_service.ShippingError as e:
            raise CheckoutError(str(e))
        option = shipping_service.find_option(quote, checkout.shipping_option)
        if option is None:
            raise CheckoutError("所选配送方式不可用")
        shipping_cost = Decimal(str(option["price"]))
        shipping_method = option["id"]

    totals = calculate_order_totals(subtotal, discount_amount, shipping_cost)

    shipping_address = _address_from_input(checkout.shipping_address, "SHIPPING", owner.user_id)
    db.add(shipping_address)
    billing_address = None
    if billing_input is not None:
        billing_address = _address_from_input(billing_input, "BILLING", owner.user_id)
        db.add(billing_address)
    await db.flush()

    order = Order(
        order_number=generate_order_number(),
        user_id=owner.user_id,
        session_id=owner.session_id if owner.is_guest else None,
        email=email,
        status="PENDING",
        payment_status="PENDING",
        payment_method=payment_method,
        subtotal=totals.subtotal,
        discount=totals.discount,
        tax=totals.tax,
        shipping=totals.shipping,
        total=totals.total,
        discount_code=discount_code,
        shipping_address_id=shipping_address.id,
        billing_address_id=billing_address.id if billing_address else None,
        shipping_method=shipping_method,
        notes=checkout.notes,
        stock_deducted=False,
    )
    order.items = [
        OrderItem(
            product_id=item.product_id,
            variant_id=item.variant_id,
            stock_item_id=item.stock_item_id,
            quantity=item.quantity,
            price=unit_price(item.product, item.variant),
            size=item.stock_item.size if item.stock_item else (
                item.variant.value if item.variant and item.variant.type == "SIZE" else None),
            color=item.stock_item.color if item.stock_item else (
                item.variant.value if item.variant and item.variant.type == "COLOR" else None),
        )
        for item in items
    ]
    db.add(order)
    await db.flush()

    logger.info(f"🧾 订单已创建: {order.order_number} 合计 €{order.total} ({payment_method})")
    return order


# ---------- 查询 ----------

def base_order_query():
    """基础查询（预加载明细、支付和地址）"""
    return select(Order).options(
        selectinload(Order.items).selectinload(OrderItem.product),
        selectinload(Order.payments),
        selectinload(Order.shipping_address),
        selectinload(Order.billing_address),
    )


async def load_order(db: AsyncSession, order_id: int) -> Optional[Order]:
    result = await db.execute(
        base_order_query().where(Order.id == order_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def load_order_by_number(db: AsyncSession, order_number: str) -> Optional[Order]:
    result = await db.execute(
        base_order_query().where(Order.order_number == order_number).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ---------- 库存 ----------

async def deduct_stock_for_order(db: AsyncSession, order: Order, user_id: Optional[int] = None) -> None:
    """支付成功后扣减库存并写入 SALE 流水（数量记为正数）"""
    if order.stock_deducted:
        return
    for item in order.items:
        if item.product_id is None:
            continue
        product = await db.get(Product, item.product_id)
        if product is None:
            logger.warning(f"订单 {order.order_number} 明细商品 {item.product_id} 不存在，跳过扣减")
            continue

        before = product.inventory or 0
        product.inventory = before - item.quantity
        if item.variant_id:
            variant = await db.get(ProductVariant, item.variant_id)
            if variant is not None:
                variant.stock = (variant.stock or 0) - item.quantity
        if item.stock_item_id:
            stock_item = await db.get(StockItem, item.stock_item_id)
            if stock_item is not None:
                stock_item.quantity = (stock_item.quantity or 0) - item.quantity

        db.add(InventoryLog(
            product_id=product.id,
            variant_id=item.variant_id,
            type="SALE",
            quantity=item.quantity,
            quantity_before=before,
            quantity_after=product.inventory,
            reason="订单支付成功",
            reference=order.order_number,
            created_by=user_id,
        ))
        if product.inventory < 0:
            logger.warning(f"⚠️ 商品 {product.name} 库存为负: {product.inventory}")

    order.stock_deducted = True


async def restore_stock_for_order(
    db: AsyncSession,
    order: Order,
    reason: str,
    user_id: Optional[int] = None) -> None:
    """取消/全额退款时回滚库存并写入 RETURN 流水"""
    if not order.stock_deducted:
        return
    for item in order.items:
        if item.product_id is None:
            continue
        product = await db.get(Product, item.product_id)
        if product is None:
            continue

        before = product.inventory or 0
        product.inventory = before + item.quantity
        if item.variant_id:
            variant = await db.get(ProductVariant, item.variant_id)
            if variant is not None:
                variant.stock = (variant.stock or 0) + item.quantity
        if item.stock_item_id:
            stock_item = await db.get(StockItem, item.stock_item_id)
            if stock_item is not None:
                stock_item.quantity = (stock_item.quantity or 0) + item.quantity

        db.add(InventoryLog(
            product_id=product.id,
            variant_id=item.variant_id,
            type="RETURN",
            quantity=item.quantity,
            quantity_before=before,
            quantity_after=product.inventory,
            reason=reason,
            reference=order.order_number,
            created_by=user_id,
        ))

    order.stock_deducted = False


# ---------- 支付结果 ----------

async def mark_order_paid(
    db: AsyncSession,
    order: Order,
    payment: Optional[Payment] = None,
    empty_cart: bool = True) -> bool:
    """支付成功处理（幂等），返回是否发生变更

    - 支付记录、订单支付状态 → PAID，订单状态 PENDING → CONFIRMED
    - 扣减库存
    - 清空下单人的购物车（人工收款时下单已清空，传 empty_cart=False）
    - 优惠券使用次数 +1

    已取消的订单只记录收款，不扣库存也不动购物车，需人工退款
    """
    if order.payment_status == "PAID" and (payment is None or payment.status == "PAID"):
        return False

    already_paid = order.payment_status == "PAID"
    if payment is not None:
        payment.status = "PAID"
    if already_paid:
        return True

    order.payment_status = "PAID"
    order.paid_at = datetime.utcnow()
    if order.status == "CANCELLED":
        logger.warning(f"⚠️ 订单 {order.order_number} 已取消但收到付款，需人工退款")
        return True

    if order.status == "PENDING":
        order.status = "CONFIRMED"
    await deduct_stock_for_order(db, order)
    if empty_cart:
        await clear_cart(db, order.user_id, order.session_id)

    if order.discount_code:
        discount = await find_discount(db, order.discount_code)
        if discount is not None:
            discount.used_count = (discount.used_count or 0) + 1

    return True


def mark_order_payment_failed(order: Order, payment: Optional[Payment] = None) -> bool:
    """支付失败处理；已支付的订单不受影响"""
    if payment is not None and payment.status != "PAID":
        payment.status = "FAILED"
    if order.payment_status == "PAID":
        return False
    order.payment_status = "FAILED"
    return True


async def invalidate_order_caches(order: Order) -> None:
    """支付/取消后清理相关缓存"""
    await cache.delete(CacheKeys.order(order.id))
    await cache.delete(CacheKeys.order_by_number(order.order_number))
    await invalidate_cart_cache(order.user_id)
    await cache.delete(coupon_cache_key(CartOwner(user_id=order.user_id, session_id=order.session_id)))
    for item in order.items:
        if item.product_id:
            await cache.delete(CacheKeys.product(item.product_id))
    await cache.invalidate_pattern("products:*")
    await cache.delete(CacheKeys.admin_stats())


async def after_payment_succeeded(order: Order) -> None:
    """支付成功提交后的通知：清理缓存、推送 SSE、发送确认邮件"""
    await invalidate_order_caches(order)
    data = {"order_id": order.id, "order_number": order.order_number, "total": float(order.total or 0)}
    if order.user_id is not None:
        notification_hub.publish(
            "payment_update", "Pagamento confirmado",
            f"O pagamento da encomenda {order.order_number} foi confirmado",
            data=data, user_id=order.user_id,
        )
    notification_hub.publish(
        "admin_alert", "Novo pagamento",
        f"Encomenda {order.order_number} paga (€{order.total})",
        data=data, admin_only=True,
    )
    await notification_service.send_order_confirmation(order.id)


def publish_payment_failed(order: Order) -> None:
    if order.user_id is not None:
        notification_hub.publish(
            "payment_update", "Pagamento falhou",
            f"O pagamento da encomenda {order.order_number} não foi concluído",
            data={"order_id": order.id, "order_number": order.order_number}, user_id=order.user_id,
        )


# ---------- 响应 ----------

def _address_response(address: Optional[Address]) -> Optional[AddressResponse]:
    if address is None:
        return None
    return AddressResponse.model_validate(address)


def build_order_response(order: Order) -> OrderResponse:
    """构建订单响应"""
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        email=order.email,
        status=order.status,
        status_display=order.status_display,
        payment_status=order.payment_status,
        payment_status_display=order.payment_status_display,
        payment_method=order.payment_method,
        subtotal=float(order.subtotal or 0),
        discount=float(order.discount or 0),
        tax=float(order.tax or 0),
        shipping=float(order.shipping or 0),
        total=float(order.total or 0),
        discount_code=order.discount_code,
        shipping_method=order.shipping_method,
        tracking_number=order.tracking_number,
        notes=order.notes,
        shipping_address=_address_response(order.shipping_address),
        billing_address=_address_response(order.billing_address),
        items=[
            OrderItemResponse(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product.name if item.product else "",
                product_slug=item.product.slug if item.product else None,
                variant_id=item.variant_id,
                stock_item_id=item.stock_item_id,
                size=item.size,
                color=item.color,
                quantity=item.quantity,
                price=float(item.price),
                line_total=float(money(item.line_total)),
            )
            for item in order.items
        ],
        payments=[
            PaymentSummary(
                id=p.id,
                stripe_payment_id=p.stripe_payment_id,
                amount=float(p.amount or 0),
                currency=p.currency,
                status=p.status,
                method=p.method,
                created_at=p.created_at,
            )
            for p in order.payments
        ],
        created_at=order.created_at,
        updated_at=order.updated_at,
        paid_at=order.paid_at,
    )
