"""运费计算 API"""
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db
from shop.models.product import Product
from shop.services import shipping as shipping_service

router = APIRouter()


class Dimensions(BaseModel):
    length: float = Field(..., gt=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class ShippingItemIn(BaseModel):
    product_id: Optional[int] = None
    quantity: int = Field(1, ge=1)
    weight: Optional[float] = Field(None, gt=0, description="单件重量(kg)")
    dimensions: Optional[Dimensions] = None


class ShippingCalculateRequest(BaseModel):
    country: str = Field(..., min_length=2, max_length=2)
    state: Optional[str] = None
    postal_code: Optional[str] = None
    items: List[ShippingItemIn] = Field(..., min_length=1)
    subtotal: float = Field(0, ge=0)


@router.post("/calculate")
async def calculate_shipping(
    *,
    db: AsyncSession = Depends(get_db),
    request_in: ShippingCalculateRequest) -> Any:
    """按目的地、重量和金额计算可选配送方式"""
    product_ids = [i.product_id for i in request_in.items if i.product_id]
    products = {}
    if product_ids:
        result = await db.execute(select(Product).where(Product.id.in_(product_ids)))
        products = {p.id: p for p in result.scalars().all()}

    items = []
    for item in request_in.items:
        product = products.get(item.product_id)
        weight = item.weight
        length = width = height = None
        if item.dimensions:
            length, width, height = item.dimensions.length, item.dimensions.width, item.dimensions.height
        if product is not None:
            weight = product.weight if product.weight is not None else weight
            length = product.length or length
            width = product.width or width
            height = product.height or height
        items.append(shipping_service.ShippingItem(
            quantity=item.quantity, weight=weight, length=length, width=width, height=height))

    try:
        return shipping_service.calculate_shipping_options(
            request_in.country, items, request_in.subtotal,
            state=request_in.state, postal_code=request_in.postal_code)
    except shipping_service.ShippingError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/calculate")
async def get_shipping_zones() -> Any:
    """区域与费率表"""
    return {
        "zones": shipping_service.describe_zones(),
        "currency": "EUR",
        "notes": [
            "Portugal Continental: envio grátis a partir de €50",
            "Açores e Madeira são calculados como zona ISLANDS",
            f"Peso acima de {shipping_service.HEAVY_THRESHOLD_KG:g}kg: "
            f"+€{shipping_service.HEAVY_STEP_FEE} por cada {shipping_service.HEAVY_STEP_KG:g}kg",
            f"Dimensão acima de {shipping_service.OVERSIZE_THRESHOLD_CM:g}cm: +€{shipping_service.OVERSIZE_FEE}",
        ],
    }
