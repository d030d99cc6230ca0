"""
订单模型 - 订单头和订单明细
订单属于登录用户或游客会话，明细价格在下单时冻结
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, DECIMAL, Boolean
from sqlalchemy.orm import relationship
from shop.db.base import Base


ORDER_STATUSES = [
    "PENDING", "CONFIRMED", "PROCESSING", "SHIPPED", "DELIVERED", "CANCELLED", "REFUNDED"
]
PAYMENT_STATUSES = ["PENDING", "PAID", "FAILED", "REFUNDED", "PARTIALLY_REFUNDED"]


class Order(Base):
    """订单

    状态流转：
    PENDING → CONFIRMED（支付成功）→ PROCESSING → SHIPPED → DELIVERED
    任意未发货状态 → CANCELLED，已支付 → REFUNDED
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True, comment="订单号")

    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    session_id = Column(String(64), nullable=True, index=True, comment="游客会话ID")
    email = Column(String(255), nullable=True, comment="联系邮箱")

    status = Column(String(20), nullable=False, default="PENDING", index=True)
    payment_status = Column(String(20), nullable=False, default="PENDING", index=True)
    payment_method = Column(String(30), nullable=True, comment="支付方式")

    # 金额
    subtotal = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="商品小计")
    discount = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="优惠金额")
    tax = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="税额")
    shipping = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="运费")
    total = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="应付总额")
    discount_code = Column(String(50), nullable=True)

    shipping_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=True)
    billing_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=True)
    shipping_method = Column(String(50), nullable=True, comment="配送方式")
    tracking_number = Column(String(100), nullable=True, comment="物流单号")
    notes = Column(Text, nullable=True)

    # 库存是否已扣减（支付成功时扣减）
    stock_deducted = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    paid_at = Column(DateTime, nullable=True)

    # 关系
    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="order", cascade="all, delete-orphan")
    refunds = relationship("Refund", back_populates="order", cascade="all, delete-orphan")
    shipping_address = relationship("Address", foreign_keys=[shipping_address_id])
    billing_address = relationship("Address", foreign_keys=[billing_address_id])

    @property
    def status_display(self) -> str:
        status_map = {
            "PENDING": "待处理",
            "CONFIRMED": "已确认",
            "PROCESSING": "处理中",
            "SHIPPED": "已发货",
            "DELIVERED": "已送达",
            "CANCELLED": "已取消",
            "REFUNDED": "已退款",
        }
        return status_map.get(self.status, self.status)

    @property
    def payment_status_display(self) -> str:
        status_map = {
            "PENDING": "待支付",
            "PAID": "已支付",
            "FAILED": "支付失败",
            "REFUNDED": "已退款",
            "PARTIALLY_REFUNDED": "部分退款",
        }
        return status_map.get(self.payment_status, self.payment_status)

    def __repr__(self):
        return f"<Order {self.order_number} {self.status}/{self.payment_status}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    stock_item_id = Column(Integer, ForeignKey("stock_items.id"), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(DECIMAL(12, 2), nullable=False, comment="成交单价（含变体加价）")
    size = Column(String(50), nullable=True)
    color = Column(String(50), nullable=True)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")
    stock_item = relationship("StockItem")

    @property
    def line_total(self) -> Decimal:
        return (self.price or Decimal("0")) * (self.quantity or 0)
