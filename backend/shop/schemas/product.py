"""商品Schema"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class ProductImageSchema(BaseModel):
    url: str = Field(..., max_length=500)
    alt: Optional[str] = None
    position: int = 0

    class Config:
        from_attributes = True


class ProductVariantSchema(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field("SIZE", pattern="^(SIZE|COLOR|MATERIAL|STYLE)$")
    value: str = Field(..., min_length=1, max_length=100)
    price_extra: float = Field(0, ge=0)
    stock: int = Field(0, ge=0)
    sku: Optional[str] = None


class ProductVariantResponse(ProductVariantSchema):
    id: int

    class Config:
        from_attributes = True


class StockItemSchema(BaseModel):
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int = Field(0, ge=0)
    sku: Optional[str] = None


class StockItemResponse(StockItemSchema):
    id: int

    class Config:
        from_attributes = True


class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="商品名称")
    slug: str = Field(..., min_length=1, max_length=220, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None
    price: float = Field(..., gt=0, description="售价")
    compare_price: Optional[float] = Field(None, gt=0)
    sku: Optional[str] = Field(None, max_length=100)
    weight: Optional[float] = Field(None, gt=0, description="重量(kg)")
    length: Optional[float] = Field(None, gt=0)
    width: Optional[float] = Field(None, gt=0)
    height: Optional[float] = Field(None, gt=0)
    status: str = Field("DRAFT", pattern="^(DRAFT|ACTIVE|ARCHIVED)$")
    featured: bool = False
    category_id: Optional[int] = None


class ProductCreate(ProductBase):
    inventory: int = Field(0, ge=0)
    images: List[ProductImageSchema] = []
    variants: List[ProductVariantSchema] = []
    stock_items: List[StockItemSchema] = []


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    slug: Optional[str] = Field(None, min_length=1, max_length=220, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    compare_price: Optional[float] = Field(None, gt=0)
    sku: Optional[str] = None
    weight: Optional[float] = Field(None, gt=0)
    length: Optional[float] = Field(None, gt=0)
    width: Optional[float] = Field(None, gt=0)
    height: Optional[float] = Field(None, gt=0)
    status: Optional[str] = Field(None, pattern="^(DRAFT|ACTIVE|ARCHIVED)$")
    featured: Optional[bool] = None
    category_id: Optional[int] = None
    images: Optional[List[ProductImageSchema]] = None


class ProductResponse(ProductBase):
    id: int
    inventory: int
    status_display: str
    category_name: Optional[str] = None
    images: List[ProductImageSchema] = []
    variants: List[ProductVariantResponse] = []
    stock_items: List[StockItemResponse] = []
    created_at: datetime
    updated_at: Optional[datetime] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    pagination: Pagination


class AdminProductListResponse(BaseModel):
    data: List[ProductResponse]
    total: int
    page: int
    limit: int
