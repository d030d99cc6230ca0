"""心愿单 API"""
import secrets
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shop.core.deps import get_db, get_current_user, CartOwner
from shop.models.product import Product
from shop.models.user import User
from shop.models.wishlist import Wishlist, WishlistItem
from shop.schemas.wishlist import (
    WishlistAdd, MoveToCartRequest, WishlistItemResponse, WishlistResponse, WishlistShareUpdate)
from shop.services import order_service
from shop.services.order_service import CheckoutError

router = APIRouter()
shared_router = APIRouter()


def _wishlist_query():
    return select(Wishlist).options(
        selectinload(Wishlist.items).selectinload(WishlistItem.product).selectinload(Product.images)
    )


async def get_or_create_wishlist(db: AsyncSession, user: User) -> Wishlist:
    """获取默认心愿单，不存在则创建"""
    result = await db.execute(
        _wishlist_query()
        .where(Wishlist.user_id == user.id, Wishlist.is_default == True)
        .execution_options(populate_existing=True)
    )
    wishlist = result.scalars().first()
    if wishlist is not None:
        return wishlist

    db.add(Wishlist(user_id=user.id, is_default=True, share_token=secrets.token_urlsafe(24)))
    await db.commit()
    return await get_or_create_wishlist(db, user)


def build_wishlist_response(wishlist: Wishlist) -> WishlistResponse:
    items = []
    for item in sorted(wishlist.items, key=lambda i: i.added_at, reverse=True):
        product = item.product
        image = product.images[0].url if product.images else None
        items.append(WishlistItemResponse(
            id=item.id,
            product_id=product.id,
            product_name=product.name,
            product_slug=product.slug,
            price=float(product.price),
            image=image,
            in_stock=product.status == "ACTIVE" and (product.inventory or 0) > 0,
            added_at=item.added_at,
        ))
    return WishlistResponse(
        id=wishlist.id,
        name=wishlist.name,
        is_public=bool(wishlist.is_public),
        share_token=wishlist.share_token,
        items=items,
        count=len(items),
    )


def _find_item(wishlist: Wishlist, product_id: int):
    return next((i for i in wishlist.items if i.product_id == product_id), None)


@router.get("", response_model=WishlistResponse)
async def get_wishlist(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user)) -> Any:
    """我的心愿单"""
    return build_wishlist_response(await get_or_create_wishlist(db, user))


@router.post("", response_model=WishlistResponse, status_code=201)
async def add_to_wishlist(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    item_in: WishlistAdd) -> Any:
    """加入心愿单"""
    product = await db.get(Product, item_in.product_id)
    if product is None or product.status != "ACTIVE":
        raise HTTPException(status_code=404, detail="商品不存在")

    wishlist = await get_or_create_wishlist(db, user)
    if _find_item(wishlist, product.id) is not None:
        raise HTTPException(status_code=400, detail="商品已在心愿单中")

    db.add(WishlistItem(wishlist_id=wishlist.id, product_id=product.id))
    await db.commit()
    return build_wishlist_response(await get_or_create_wishlist(db, user))


@router.delete("", response_model=WishlistResponse)
async def remove_from_wishlist(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    product_id: int = Query(...)) -> Any:
    """移出心愿单"""
    wishlist = await get_or_create_wishlist(db, user)
    item = _find_item(wishlist, product_id)
    if item is None:
        raise HTTPException(status_code=404, detail="商品不在心愿单中")

    await db.delete(item)
    await db.commit()
    return build_wishlist_response(await get_or_create_wishlist(db, user))


@router.get("/check")
async def check_in_wishlist(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    product_id: int = Query(...)) -> Any:
    wishlist = await get_or_create_wishlist(db, user)
    return {"in_wishlist": _find_item(wishlist, product_id) is not None}


@router.put("/share", response_model=WishlistResponse)
async def update_sharing(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    share_in: WishlistShareUpdate) -> Any:
    """公开或取消公开心愿单"""
    wishlist = await get_or_create_wishlist(db, user)
    wishlist.is_public = share_in.is_public
    await db.commit()
    return build_wishlist_response(await get_or_create_wishlist(db, user))


@router.post("/move-to-cart")
async def move_to_cart(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    move_in: MoveToCartRequest) -> Any:
    """从心愿单移入购物车"""
    wishlist = await get_or_create_wishlist(db, user)
    item = _find_item(wishlist, move_in.product_id)
    if item is None:
        raise HTTPException(status_code=404, detail="商品不在心愿单中")

    owner = CartOwner(user_id=user.id, session_id=None, user=user)
    try:
        await order_service.add_cart_item(
            db, owner, move_in.product_id, move_in.quantity,
            variant_id=move_in.variant_id, stock_item_id=move_in.stock_item_id)
    except CheckoutError as e:
        await db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)

    await db.delete(item)
    await db.commit()
    await order_service.invalidate_cart_cache(user.id)
    return {"message": "已移入购物车", "product_id": move_in.product_id}


@shared_router.get("/shared/{token}", response_model=WishlistResponse)
async def get_shared_wishlist(
    *,
    db: AsyncSession = Depends(get_db),
    token: str) -> Any:
    """公开分享的心愿单（只读）"""
    result = await db.execute(_wishlist_query().where(Wishlist.share_token == token))
    wishlist = result.scalars().first()
    if wishlist is None or not wishlist.is_public:
        raise HTTPException(status_code=404, detail="心愿单不存在")
    return build_wishlist_response(wishlist)
