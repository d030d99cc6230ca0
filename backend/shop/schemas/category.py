"""商品分类Schema（店面导航用，slug 出现在分类页 URL 中）"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class CategoryFields(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="分类名称")
    slug: str = Field(..., min_length=1, max_length=120, pattern=SLUG_PATTERN, description="URL 标识")
    parent_id: Optional[int] = Field(None, description="上级分类")
    description: Optional[str] = Field(None, max_length=1000)
    image: Optional[str] = Field(None, max_length=500, description="分类横幅图片")
    sort_order: int = Field(0, ge=0, description="导航排序，越小越靠前")


class CategoryCreate(CategoryFields):
    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=120, pattern=SLUG_PATTERN)
    parent_id: Optional[int] = None
    description: Optional[str] = Field(None, max_length=1000)
    image: Optional[str] = Field(None, max_length=500)
    sort_order: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class CategoryResponse(CategoryFields):
    id: int
    is_active: bool
    parent_name: Optional[str] = None
    children_count: int = 0
    products_count: int = 0
    created_at: datetime


class CategoryTreeNode(CategoryResponse):
    children: List["CategoryTreeNode"] = []
