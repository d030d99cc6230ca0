"""库存Schema"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class InventoryAdjust(BaseModel):
    product_id: int
    quantity: int = Field(..., description="变动数量，正数入库，负数出库")
    type: str = Field("ADJUSTMENT", pattern="^(PURCHASE|ADJUSTMENT|RETURN)$")
    reason: Optional[str] = Field(None, max_length=255)


class InventoryItem(BaseModel):
    id: int
    name: str
    sku: Optional[str] = None
    inventory: int
    status: str
    stock_status: str
    category_name: Optional[str] = None


class InventorySummary(BaseModel):
    total_products: int
    out_of_stock: int
    low_stock: int
    in_stock: int
    overstocked: int
    total_units: int


class InventoryListResponse(BaseModel):
    data: List[InventoryItem]
    summary: InventorySummary
    total: int
    page: int
    limit: int


class InventoryLogResponse(BaseModel):
    id: int
    product_id: int
    product_name: str = ""
    type: str
    type_display: str
    quantity: int
    quantity_before: Optional[int] = None
    quantity_after: Optional[int] = None
    reason: Optional[str] = None
    reference: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime


class InventoryLogListResponse(BaseModel):
    data: List[InventoryLogResponse]
    total: int
    page: int
    limit: int
