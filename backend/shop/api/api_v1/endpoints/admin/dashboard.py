"""管理后台首页统计"""
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, require_admin
from shop.models.order import Order
from shop.models.product import Product
from shop.models.user import User
from shop.services.cache import cache, CacheKeys, CacheTTL

router = APIRouter()

LOW_STOCK_THRESHOLD = 10


async def collect_dashboard_stats(db: AsyncSession) -> dict:
    total_orders = (await db.execute(select(func.count(Order.id)))).scalar_one()
    revenue = (await db.execute(
        select(func.coalesce(func.sum(Order.total), 0)).where(Order.payment_status == "PAID")
    )).scalar_one()
    customers = (await db.execute(select(func.count(User.id)).where(User.role == "USER"))).scalar_one()
    products = (await db.execute(
        select(func.count(Product.id)).where(Product.status != "ARCHIVED")
    )).scalar_one()
    pending = (await db.execute(
        select(func.count(Order.id)).where(Order.status == "PENDING")
    )).scalar_one()
    low_stock = (await db.execute(
        select(func.count(Product.id)).where(
            Product.status == "ACTIVE", Product.inventory <= LOW_STOCK_THRESHOLD)
    )).scalar_one()

    recent = (await db.execute(
        select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(5)
    )).scalars().all()

    return {
        "total_orders": total_orders,
        "total_revenue": float(Decimal(str(revenue)).quantize(Decimal("0.01"))),
        "total_customers": customers,
        "total_products": products,
        "pending_orders": pending,
        "low_stock_products": low_stock,
        "recent_orders": [
            {
                "id": o.id,
                "order_number": o.order_number,
                "email": o.email,
                "status": o.status,
                "payment_status": o.payment_status,
                "total": float(o.total or 0),
                "created_at": o.created_at.isoformat() if o.created_at else None,
            }
            for o in recent
        ],
    }


@router.get("")
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)) -> Any:
    """营业概况（短时缓存）"""
    return await cache.get_or_set(
        CacheKeys.admin_stats(), lambda: collect_dashboard_stats(db), CacheTTL.SHORT)
