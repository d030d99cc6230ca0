"""支付、退款与支付方式配置Schema"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field

from shop.schemas.order import CheckoutBase


class CreateIntentRequest(CheckoutBase):
    pass


class CreateIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    order_id: int
    order_number: str
    amount: float


class RefundRequest(BaseModel):
    order_id: int
    amount: Optional[float] = Field(None, gt=0, description="为空表示全额退款")
    reason: Optional[str] = Field(None, max_length=500)


class RefundResponse(BaseModel):
    id: int
    order_id: int
    stripe_refund_id: Optional[str] = None
    amount: float
    reason: Optional[str] = None
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentMethodBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(None, max_length=20)
    enabled: bool = True
    processing_mode: str = Field("AUTO", pattern="^(AUTO|MANUAL)$")
    description: Optional[str] = None
    display_order: int = Field(0, ge=0)


class PaymentMethodCreate(PaymentMethodBase):
    method: str = Field(..., min_length=1, max_length=30, pattern=r"^[a-z0-9_]+$")


class PaymentMethodUpdate(BaseModel):
    id: Optional[int] = None
    method: Optional[str] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    icon: Optional[str] = None
    enabled: Optional[bool] = None
    processing_mode: Optional[str] = Field(None, pattern="^(AUTO|MANUAL)$")
    description: Optional[str] = None
    display_order: Optional[int] = Field(None, ge=0)


class PaymentMethodResponse(PaymentMethodBase):
    id: int
    method: str
    mode_display: str
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentMethodSummary(BaseModel):
    total: int
    enabled: int
    auto: int
    manual: int


class PaymentMethodListResponse(BaseModel):
    data: List[PaymentMethodResponse]
    summary: PaymentMethodSummary
