"""优惠券Schema"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class DiscountBase(BaseModel):
    description: Optional[str] = None
    type: str = Field(..., description="PERCENTAGE 或 FIXED_AMOUNT")
    value: float = Field(..., gt=0)
    min_amount: Optional[float] = Field(None, ge=0)
    max_amount: Optional[float] = Field(None, gt=0)
    max_uses: Optional[int] = Field(None, ge=1)
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class DiscountCreate(DiscountBase):
    code: str = Field(..., min_length=3, max_length=50)


class DiscountUpdate(BaseModel):
    id: Optional[int] = None
    code: Optional[str] = Field(None, min_length=3, max_length=50)
    description: Optional[str] = None
    type: Optional[str] = None
    value: Optional[float] = Field(None, gt=0)
    min_amount: Optional[float] = Field(None, ge=0)
    max_amount: Optional[float] = Field(None, gt=0)
    max_uses: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class DiscountResponse(DiscountBase):
    id: int
    code: str
    type_display: str
    used_count: int
    remaining_uses: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class DiscountListResponse(BaseModel):
    data: List[DiscountResponse]
    total: int
    page: int
    limit: int
