"""
支付记录与退款记录
Payment 对应一次 Stripe PaymentIntent（或人工确认的 Multibanco / MB WAY 收款）
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, DECIMAL
from sqlalchemy.orm import relationship
from shop.db.base import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    stripe_payment_id = Column(String(255), unique=True, nullable=True, index=True,
                               comment="PaymentIntent / Source ID")
    amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(10), nullable=False, default="eur")
    # PENDING / PAID / FAILED / REFUNDED / PARTIALLY_REFUNDED
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    method = Column(String(30), nullable=False, default="card", comment="支付方式")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = relationship("Order", back_populates="payments")
    refunds = relationship("Refund", back_populates="payment")


class Refund(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    stripe_refund_id = Column(String(255), nullable=True, unique=True)
    amount = Column(DECIMAL(12, 2), nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="PENDING")
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="refunds")
    payment = relationship("Payment", back_populates="refunds")
