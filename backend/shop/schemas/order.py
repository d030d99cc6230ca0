"""订单Schema"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from shop.schemas.address import AddressInput, AddressResponse
from shop.schemas.product import Pagination


class OrderItemResponse(BaseModel):
    id: int
    product_id: Optional[int] = None
    product_name: str = ""
    product_slug: Optional[str] = None
    variant_id: Optional[int] = None
    stock_item_id: Optional[int] = None
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int
    price: float
    line_total: float


class PaymentSummary(BaseModel):
    id: int
    stripe_payment_id: Optional[str] = None
    amount: float
    currency: str
    status: str
    method: str
    created_at: datetime


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: Optional[int] = None
    email: Optional[str] = None
    status: str
    status_display: str
    payment_status: str
    payment_status_display: str
    payment_method: Optional[str] = None
    subtotal: float
    discount: float
    tax: float
    shipping: float
    total: float
    discount_code: Optional[str] = None
    shipping_method: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    shipping_address: Optional[AddressResponse] = None
    billing_address: Optional[AddressResponse] = None
    items: List[OrderItemResponse] = []
    payments: List[PaymentSummary] = []
    created_at: datetime
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    pagination: Pagination


class AdminOrderListResponse(BaseModel):
    data: List[OrderResponse]
    total: int
    page: int
    limit: int


class CheckoutBase(BaseModel):
    shipping_address: AddressInput
    billing_address: Optional[AddressInput] = None
    email: Optional[EmailStr] = None
    notes: Optional[str] = Field(None, max_length=1000)
    coupon_code: Optional[str] = Field(None, max_length=50)
    shipping_option: Optional[str] = Field(None, description="运费计算返回的配送方式ID，如 domestic_express")


class OrderCreate(CheckoutBase):
    """手动支付下单（Multibanco / MB WAY）"""
    payment_method: str = Field(..., min_length=1, max_length=30)


class AdminOrderUpdate(BaseModel):
    status: str = Field(..., pattern="^(PENDING|CONFIRMED|PROCESSING|SHIPPED|DELIVERED|CANCELLED|REFUNDED)$")
    tracking_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
