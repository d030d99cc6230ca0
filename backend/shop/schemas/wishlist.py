from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class WishlistAdd(BaseModel):
    product_id: int


class MoveToCartRequest(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1, le=99)
    variant_id: Optional[int] = None
    stock_item_id: Optional[int] = None


class WishlistItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_slug: str
    price: float
    image: Optional[str] = None
    in_stock: bool
    added_at: datetime


class WishlistResponse(BaseModel):
    id: int
    name: str
    is_public: bool
    share_token: str
    items: List[WishlistItemResponse]
    count: int


class WishlistShareUpdate(BaseModel):
    is_public: bool
