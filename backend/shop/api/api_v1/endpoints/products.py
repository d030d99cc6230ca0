"""商品 API（前台）"""
import math
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shop.core.deps import get_db
from shop.models.category import Category
from shop.models.product import Product
from shop.schemas.product import (
    ProductResponse, ProductListResponse, Pagination,
    ProductImageSchema, ProductVariantResponse, StockItemResponse)
from shop.services.cache import cache, CacheKeys, CacheTTL

router = APIRouter()

SORT_OPTIONS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "price_asc": (Product.price.asc(), Product.id),
    "price_desc": (Product.price.desc(), Product.id),
    "name": (Product.name.asc(), Product.id),
}


def base_product_query():
    return select(Product).options(
        selectinload(Product.images),
        selectinload(Product.variants),
        selectinload(Product.stock_items),
        selectinload(Product.category),
    )


def build_product_response(product: Product) -> ProductResponse:
    """构建响应对象"""
    return ProductResponse(
        id=product.id,
        name=product.name,
        slug=product.slug,
        description=product.description,
        price=float(product.price),
        compare_price=float(product.compare_price) if product.compare_price is not None else None,
        sku=product.sku,
        inventory=product.inventory or 0,
        weight=product.weight,
        length=product.length,
        width=product.width,
        height=product.height,
        status=product.status,
        status_display=product.status_display,
        featured=bool(product.featured),
        category_id=product.category_id,
        category_name=product.category.name if product.category else None,
        images=[ProductImageSchema.model_validate(i) for i in product.images],
        variants=[
            ProductVariantResponse(
                id=v.id, name=v.name, type=v.type, value=v.value,
                price_extra=float(v.price_extra or 0), stock=v.stock or 0, sku=v.sku)
            for v in product.variants
        ],
        stock_items=[StockItemResponse.model_validate(s) for s in product.stock_items],
        created_at=product.created_at,
        updated_at=product.updated_at,
    )


async def _resolve_category_id(db: AsyncSession, category: str) -> Optional[int]:
    if category.isdigit():
        return int(category)
    result = await db.execute(select(Category.id).where(Category.slug == category))
    return result.scalar_one_or_none()


@router.get("", response_model=ProductListResponse)
async def list_products(
    *,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[str] = Query(None, description="分类ID或标识"),
    search: Optional[str] = Query(None, description="搜索关键词"),
    featured: Optional[bool] = Query(None),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort: str = Query("newest", pattern="^(newest|price_asc|price_desc|name)$")) -> Any:
    """获取在售商品列表"""
    params = f"page={page}&limit={limit}&category={category}&search={search}&featured={featured}" \
             f"&min={min_price}&max={max_price}&sort={sort}"
    cache_key = CacheKeys.products(params)
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    query = base_product_query().where(Product.status == "ACTIVE")
    if category:
        category_id = await _resolve_category_id(db, category)
        if category_id is None:
            return ProductListResponse(products=[], pagination=Pagination(page=page, limit=limit, total=0, pages=0))
        query = query.where(Product.category_id == category_id)
    if search:
        query = query.where(
            or_(
                Product.name.ilike(f"%{search}%"),
                Product.description.ilike(f"%{search}%"),
                Product.sku.ilike(f"%{search}%"))
        )
    if featured is not None:
        query = query.where(Product.featured == featured)
    if min_price is not None:
        query = query.where(Product.price >= min_price)
    if max_price is not None:
        query = query.where(Product.price <= max_price)

    # 计算总数
    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar_one()

    # 分页和排序
    query = query.order_by(*SORT_OPTIONS[sort]).offset((page - 1) * limit).limit(limit)
    products = (await db.execute(query)).scalars().all()

    response = ProductListResponse(
        products=[build_product_response(p) for p in products],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )
    await cache.set(cache_key, response.model_dump(mode="json"), CacheTTL.MEDIUM)
    return response


@router.get("/{product_ref}", response_model=ProductResponse)
async def get_product(product_ref: str, db: AsyncSession = Depends(get_db)) -> Any:
    """获取商品详情（ID 或标识），非在售商品返回 404"""
    query = base_product_query()
    if product_ref.isdigit():
        cached = await cache.get(CacheKeys.product(product_ref))
        if cached is not None:
            return cached
        query = query.where(Product.id == int(product_ref))
    else:
        query = query.where(Product.slug == product_ref)

    product = (await db.execute(query)).scalar_one_or_none()
    if not product or product.status != "ACTIVE":
        raise HTTPException(status_code=404, detail="商品不存在")

    response = build_product_response(product)
    await cache.set(CacheKeys.product(product.id), response.model_dump(mode="json"), CacheTTL.MEDIUM)
    return response


@router.get("/{product_id}/related", response_model=List[ProductResponse])
async def get_related_products(product_id: int, db: AsyncSession = Depends(get_db)) -> Any:
    """同分类的其他在售商品（最多4个）"""
    product = await db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="商品不存在")
    if product.category_id is None:
        return []

    query = (
        base_product_query()
        .where(
            Product.category_id == product.category_id,
            Product.id != product_id,
            Product.status == "ACTIVE",
        )
        .order_by(Product.featured.desc(), Product.created_at.desc())
        .limit(4)
    )
    return [build_product_response(p) for p in (await db.execute(query)).scalars().all()]
