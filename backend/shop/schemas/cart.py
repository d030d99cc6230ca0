from typing import Optional, List
from pydantic import BaseModel, Field


class CartItemAdd(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1, le=99)
    variant_id: Optional[int] = None
    stock_item_id: Optional[int] = None


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1, le=99)


class CartItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_slug: str
    image: Optional[str] = None
    variant_id: Optional[int] = None
    variant_name: Optional[str] = None
    stock_item_id: Optional[int] = None
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int
    unit_price: float
    line_total: float
    available: int


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    total: float
    count: int


class ApplyCouponRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)


class ApplyCouponResponse(BaseModel):
    code: str
    type: str
    value: float
    discount: float
    subtotal: float
    total: float
    message: str
