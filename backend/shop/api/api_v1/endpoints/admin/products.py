"""商品管理（管理员）"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func, or_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, require_admin
from shop.models.cart import CartItem
from shop.models.category import Category
from shop.models.inventory_log import InventoryLog
from shop.models.order import OrderItem
from shop.models.product import Product, ProductImage, ProductVariant, StockItem
from shop.models.user import User
from shop.models.wishlist import WishlistItem
from shop.schemas.product import ProductCreate, ProductUpdate, ProductResponse, AdminProductListResponse
from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType, AuditSeverity
from shop.services.cache import cache, CacheKeys
from shop.services.pricing import money
from shop.api.api_v1.endpoints.products import base_product_query, build_product_response

router = APIRouter()


async def invalidate_product_cache(product_id: Optional[int] = None) -> None:
    if product_id is not None:
        await cache.delete(CacheKeys.product(product_id))
    await cache.invalidate_pattern("product:*")
    await cache.invalidate_pattern("products:*")
    await cache.delete(CacheKeys.admin_stats())


async def _load_product(db: AsyncSession, product_id: int) -> Optional[Product]:
    result = await db.execute(
        base_product_query().where(Product.id == product_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _ensure_unique(db: AsyncSession, slug: Optional[str], sku: Optional[str], exclude_id: int = None) -> None:
    if slug:
        query = select(Product.id).where(Product.slug == slug)
        if exclude_id:
            query = query.where(Product.id != exclude_id)
        if (await db.execute(query)).first():
            raise HTTPException(status_code=409, detail="商品标识已存在")
    if sku:
        query = select(Product.id).where(Product.sku == sku)
        if exclude_id:
            query = query.where(Product.id != exclude_id)
        if (await db.execute(query)).first():
            raise HTTPException(status_code=409, detail="SKU 已存在")


@router.get("", response_model=AdminProductListResponse)
async def list_products(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    status: Optional[str] = Query(None, pattern="^(DRAFT|ACTIVE|ARCHIVED)$"),
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)) -> Any:
    """全部商品（含草稿和归档）"""
    query = base_product_query()
    if status:
        query = query.where(Product.status == status)
    if category_id:
        query = query.where(Product.category_id == category_id)
    if search:
        query = query.where(or_(Product.name.ilike(f"%{search}%"), Product.sku.ilike(f"%{search}%")))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    query = query.order_by(Product.created_at.desc(), Product.id.desc()).offset((page - 1) * limit).limit(limit)
    products = (await db.execute(query)).scalars().all()
    return AdminProductListResponse(
        data=[build_product_response(p) for p in products], total=total, page=page, limit=limit)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    product_id: int) -> Any:
    product = await _load_product(db, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="商品不存在")
    return build_product_response(product)


@router.post("", response_model=ProductResponse, status_code=201)
async def create_product(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    product_in: ProductCreate) -> Any:
    """创建商品（变体、规格库存一次提交，初始库存记一笔采购入库）"""
    await _ensure_unique(db, product_in.slug, product_in.sku)
    if product_in.category_id and not await db.get(Category, product_in.category_id):
        raise HTTPException(status_code=400, detail="分类不存在")

    data = product_in.model_dump(exclude={"images", "variants", "stock_items"})
    data["price"] = money(data["price"])
    if data.get("compare_price") is not None:
        data["compare_price"] = money(data["compare_price"])
    product = Product(**data)
    product.images = [ProductImage(**i.model_dump()) for i in product_in.images]
    product.variants = [
        ProductVariant(**{**v.model_dump(), "price_extra": money(v.price_extra)}) for v in product_in.variants
    ]
    product.stock_items = [StockItem(**s.model_dump()) for s in product_in.stock_items]
    db.add(product)
    await db.flush()

    if product.inventory:
        db.add(InventoryLog(
            product_id=product.id,
            type="PURCHASE",
            quantity=product.inventory,
            quantity_before=0,
            quantity_after=product.inventory,
            reason="初始库存",
            created_by=admin.id,
        ))

    await audit_logger.log_event(
        AuditEventType.PRODUCT_CREATED, "product", "create",
        user_id=admin.id, user_email=admin.email, resource_id=product.id,
        details={"name": product.name, "slug": product.slug, "inventory": product.inventory},
        request=request, db=db,
    )
    await db.commit()
    await invalidate_product_cache(product.id)
    return build_product_response(await _load_product(db, product.id))


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    product_id: int,
    product_in: ProductUpdate) -> Any:
    """更新商品（库存请通过库存调整接口修改）"""
    product = await _load_product(db, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="商品不存在")

    update_data = product_in.model_dump(exclude_unset=True, exclude={"images"})
    await _ensure_unique(db, update_data.get("slug"), update_data.get("sku"), exclude_id=product_id)
    if update_data.get("category_id") and not await db.get(Category, update_data["category_id"]):
        raise HTTPException(status_code=400, detail="分类不存在")

    for field in ("price", "compare_price"):
        if update_data.get(field) is not None:
            update_data[field] = money(update_data[field])
    for field, value in update_data.items():
        setattr(product, field, value)
    if product_in.images is not None:
        product.images = [ProductImage(**i.model_dump()) for i in product_in.images]

    await audit_logger.log_event(
        AuditEventType.PRODUCT_UPDATED, "product", "update",
        user_id=admin.id, user_email=admin.email, resource_id=product_id,
        details={k: str(v) for k, v in update_data.items()}, request=request, db=db,
    )
    await db.commit()
    await invalidate_product_cache(product_id)
    return build_product_response(await _load_product(db, product_id))


@router.delete("/{product_id}")
async def delete_product(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    product_id: int) -> Any:
    """删除商品；已有订单引用的商品改为归档"""
    product = await db.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="商品不存在")

    ordered = (await db.execute(
        select(func.count(OrderItem.id)).where(OrderItem.product_id == product_id)
    )).scalar_one()

    if ordered:
        product.status = "ARCHIVED"
        action, message = "archive", "商品已有订单，已归档"
    else:
        for model in (InventoryLog, CartItem, WishlistItem):
            await db.execute(delete(model).where(model.product_id == product_id))
        await db.delete(product)
        action, message = "delete", "商品已删除"

    await audit_logger.log_event(
        AuditEventType.PRODUCT_DELETED, "product", action,
        severity=AuditSeverity.MEDIUM, user_id=admin.id, user_email=admin.email, resource_id=product_id,
        details={"name": product.name, "order_items": ordered}, request=request, db=db,
    )
    await db.commit()
    await invalidate_product_cache(product_id)
    return {"message": message, "archived": bool(ordered)}
