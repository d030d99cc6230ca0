"""购物车与优惠券 API（登录用户或游客会话）"""
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, get_cart_owner, CartOwner
from shop.core.rate_limit import coupon_rate_limit
from shop.models.cart import CartItem
from shop.models.product import Product, StockItem
from shop.schemas.cart import (
    CartItemAdd, CartItemUpdate, CartResponse, ApplyCouponRequest, ApplyCouponResponse)
from shop.services import order_service
from shop.services.cache import cache, CacheKeys
from shop.services.order_service import CheckoutError, coupon_cache_key
from shop.services.pricing import CouponError, money

router = APIRouter()

CART_CACHE_TTL = 120
COUPON_CACHE_TTL = 60 * 60 * 24


async def _cart_response(db: AsyncSession, owner: CartOwner) -> CartResponse:
    items = await order_service.load_cart_items(db, owner.user_id, owner.session_id)
    return order_service.build_cart_response(items)


async def _owned_item(db: AsyncSession, owner: CartOwner, item_id: int) -> CartItem:
    item = await db.get(CartItem, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="购物车项不存在")
    if owner.user_id is not None:
        owned = item.user_id == owner.user_id
    else:
        owned = item.user_id is None and item.session_id == owner.session_id
    if not owned:
        raise HTTPException(status_code=404, detail="购物车项不存在")
    return item


async def _after_change(owner: CartOwner) -> None:
    await order_service.invalidate_cart_cache(owner.user_id)


@router.get("", response_model=CartResponse)
async def get_cart(
    db: AsyncSession = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner)) -> Any:
    """获取购物车"""
    if owner.user_id is not None:
        cached = await cache.get(CacheKeys.user_cart(owner.user_id))
        if cached is not None:
            return cached

    response = await _cart_response(db, owner)
    if owner.user_id is not None:
        await cache.set(CacheKeys.user_cart(owner.user_id), response.model_dump(mode="json"), CART_CACHE_TTL)
    return response


@router.post("", response_model=CartResponse, status_code=201)
async def add_to_cart(
    *,
    db: AsyncSession = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    item_in: CartItemAdd) -> Any:
    """加入购物车"""
    try:
        await order_service.add_cart_item(
            db, owner, item_in.product_id, item_in.quantity,
            variant_id=item_in.variant_id, stock_item_id=item_in.stock_item_id)
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await db.commit()
    await _after_change(owner)
    return await _cart_response(db, owner)


@router.post("/apply-coupon", response_model=ApplyCouponResponse,
             dependencies=[Depends(coupon_rate_limit)])
async def apply_coupon(
    *,
    db: AsyncSession = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    coupon_in: ApplyCouponRequest) -> Any:
    """应用优惠券"""
    items = await order_service.load_cart_items(db, owner.user_id, owner.session_id)
    subtotal = order_service.cart_subtotal(items)
    try:
        discount, amount = await order_service.resolve_coupon(db, coupon_in.code, subtotal, len(items))
    except CouponError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    await cache.set(coupon_cache_key(owner), discount.code, COUPON_CACHE_TTL)
    return ApplyCouponResponse(
        code=discount.code,
        type=discount.type,
        value=float(discount.value),
        discount=float(amount),
        subtotal=float(subtotal),
        total=float(money(max(subtotal - amount, money(0)))),
        message="优惠券已应用",
    )


@router.delete("/apply-coupon")
async def remove_coupon(owner: CartOwner = Depends(get_cart_owner)) -> Any:
    """移除已应用的优惠券"""
    await cache.delete(coupon_cache_key(owner))
    return {"message": "优惠券已移除"}


@router.put("/{item_id}", response_model=CartResponse)
async def update_cart_item(
    *,
    db: AsyncSession = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    item_id: int,
    item_in: CartItemUpdate) -> Any:
    """修改数量"""
    item = await _owned_item(db, owner, item_id)
    product = await db.get(Product, item.product_id)
    stock_item = await db.get(StockItem, item.stock_item_id) if item.stock_item_id else None
    if item_in.quantity > order_service.available_quantity(product, stock_item):
        raise HTTPException(status_code=400, detail=f"商品「{product.name}」库存不足")

    item.quantity = item_in.quantity
    await db.commit()
    await _after_change(owner)
    return await _cart_response(db, owner)


@router.delete("/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    *,
    db: AsyncSession = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    item_id: int) -> Any:
    """删除购物车项"""
    item = await _owned_item(db, owner, item_id)
    await db.delete(item)
    await db.commit()
    await _after_change(owner)
    return await _cart_response(db, owner)


@router.delete("", response_model=CartResponse)
async def clear_cart(
    db: AsyncSession = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner)) -> Any:
    """清空购物车"""
    await order_service.clear_cart(db, owner.user_id, owner.session_id)
    await db.commit()
    await _after_change(owner)
    await cache.delete(coupon_cache_key(owner))
    return CartResponse(items=[], total=0, count=0)
