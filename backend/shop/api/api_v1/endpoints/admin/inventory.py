"""库存管理（管理员）- 库存状态、手工调整、库存流水"""
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shop.core.deps import get_db, require_admin
from shop.models.inventory_log import InventoryLog
from shop.models.product import Product
from shop.models.user import User
from shop.schemas.inventory import (
    InventoryAdjust, InventoryItem, InventorySummary, InventoryListResponse,
    InventoryLogResponse, InventoryLogListResponse)
from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType, AuditSeverity
from shop.services.cache import cache, CacheKeys
from shop.services.notification_hub import notification_hub

logger = logging.getLogger(__name__)

router = APIRouter()

LOW_STOCK_THRESHOLD = 10
OVERSTOCK_THRESHOLD = 100


def stock_status(inventory: int) -> str:
    """库存状态分档"""
    if inventory <= 0:
        return "out_of_stock"
    if inventory <= LOW_STOCK_THRESHOLD:
        return "low_stock"
    if inventory >= OVERSTOCK_THRESHOLD:
        return "overstocked"
    return "in_stock"


def summarize(products: List[Product]) -> InventorySummary:
    counts = {"out_of_stock": 0, "low_stock": 0, "in_stock": 0, "overstocked": 0}
    for p in products:
        counts[stock_status(p.inventory or 0)] += 1
    return InventorySummary(
        total_products=len(products),
        total_units=sum(max(p.inventory or 0, 0) for p in products),
        **counts,
    )


@router.get("", response_model=InventoryListResponse)
async def list_inventory(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    filter: Optional[str] = Query(None, pattern="^(out_of_stock|low_stock|in_stock|overstocked)$"),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200)) -> Any:
    """商品库存一览（归档商品除外）"""
    query = (
        select(Product)
        .options(selectinload(Product.category))
        .where(Product.status != "ARCHIVED")
        .order_by(Product.inventory.asc(), Product.name)
    )
    if search:
        query = query.where(Product.name.ilike(f"%{search}%") | Product.sku.ilike(f"%{search}%"))
    products = list((await db.execute(query)).scalars().all())

    summary = summarize(products)
    if filter:
        products = [p for p in products if stock_status(p.inventory or 0) == filter]

    total = len(products)
    page_items = products[(page - 1) * limit: page * limit]
    return InventoryListResponse(
        data=[
            InventoryItem(
                id=p.id,
                name=p.name,
                sku=p.sku,
                inventory=p.inventory or 0,
                status=p.status,
                stock_status=stock_status(p.inventory or 0),
                category_name=p.category.name if p.category else None,
            )
            for p in page_items
        ],
        summary=summary,
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/adjust")
async def adjust_inventory(
    *,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    adjust_in: InventoryAdjust) -> Any:
    """手工调整库存（结果不能为负）"""
    if adjust_in.quantity == 0:
        raise HTTPException(status_code=400, detail="调整数量不能为0")
    if adjust_in.type in ("PURCHASE", "RETURN") and adjust_in.quantity < 0:
        raise HTTPException(status_code=400, detail="入库数量必须为正数")

    product = await db.get(Product, adjust_in.product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="商品不存在")

    before = product.inventory or 0
    after = before + adjust_in.quantity
    if after < 0:
        raise HTTPException(status_code=400, detail=f"库存不足：当前 {before}，调整 {adjust_in.quantity}")

    product.inventory = after
    log = InventoryLog(
        product_id=product.id,
        type=adjust_in.type,
        quantity=adjust_in.quantity,
        quantity_before=before,
        quantity_after=after,
        reason=adjust_in.reason,
        created_by=admin.id,
    )
    db.add(log)
    await audit_logger.log_event(
        AuditEventType.INVENTORY_ADJUSTED, "product", "adjust_inventory",
        severity=AuditSeverity.MEDIUM, user_id=admin.id, user_email=admin.email, resource_id=product.id,
        details={"type": adjust_in.type, "quantity": adjust_in.quantity, "before": before, "after": after,
                 "reason": adjust_in.reason},
        request=request, db=db,
    )
    await db.commit()
    logger.info(f"📦 商品 {product.name} 库存 {before} → {after}（{adjust_in.type}）")

    await cache.delete(CacheKeys.product(product.id))
    await cache.invalidate_pattern("products:*")
    await cache.delete(CacheKeys.admin_stats())

    status = stock_status(after)
    if status in ("out_of_stock", "low_stock"):
        notification_hub.publish(
            "stock_alert", "Stock baixo", f"{product.name}: {after} unidades",
            data={"product_id": product.id, "inventory": after, "status": status},
            admin_only=True,
        )
    return {
        "product_id": product.id,
        "previous": before,
        "inventory": after,
        "stock_status": status,
        "log_id": log.id,
    }


@router.get("/logs", response_model=InventoryLogListResponse)
async def list_inventory_logs(
    *,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    product_id: Optional[int] = Query(None),
    type: Optional[str] = Query(None, pattern="^(PURCHASE|SALE|RETURN|ADJUSTMENT)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200)) -> Any:
    """库存流水"""
    query = select(InventoryLog).options(selectinload(InventoryLog.product))
    if product_id:
        query = query.where(InventoryLog.product_id == product_id)
    if type:
        query = query.where(InventoryLog.type == type)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    query = query.order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc()).offset((page - 1) * limit).limit(limit)
    logs = (await db.execute(query)).scalars().all()
    return InventoryLogListResponse(
        data=[
            InventoryLogResponse(
                id=log.id,
                product_id=log.product_id,
                product_name=log.product.name if log.product else "",
                type=log.type,
                type_display=log.type_display,
                quantity=log.quantity,
                quantity_before=log.quantity_before,
                quantity_after=log.quantity_after,
                reason=log.reason,
                reference=log.reference,
                created_by=log.created_by,
                created_at=log.created_at,
            )
            for log in logs
        ],
        total=total, page=page, limit=limit,
    )
