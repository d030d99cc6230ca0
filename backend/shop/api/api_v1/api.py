"""API 路由聚合"""
from fastapi import APIRouter

from shop.api.api_v1.endpoints import (
    auth, categories, products, cart, shipping, orders, payments,
    addresses, wishlist, notifications, user, health
)
# 管理后台按功能拆分的子模块
from shop.api.api_v1.endpoints.admin import router as admin_router

api_router = APIRouter()

# 账户
api_router.include_router(auth.router, prefix="/auth", tags=["登录注册"])
api_router.include_router(user.router, prefix="/user", tags=["用户中心"])
api_router.include_router(addresses.router, prefix="/addresses", tags=["地址簿"])

# 商品目录
api_router.include_router(categories.router, prefix="/categories", tags=["商品分类"])
api_router.include_router(products.router, prefix="/products", tags=["商品"])

# 购物与下单
api_router.include_router(cart.router, prefix="/cart", tags=["购物车"])
api_router.include_router(wishlist.router, prefix="/wishlist", tags=["心愿单"])
api_router.include_router(wishlist.shared_router, prefix="/wishlists", tags=["心愿单"])
api_router.include_router(shipping.router, prefix="/shipping", tags=["运费"])
api_router.include_router(orders.router, prefix="/orders", tags=["订单"])
api_router.include_router(payments.router, prefix="/payments", tags=["支付"])

# 通知
api_router.include_router(notifications.router, prefix="/notifications", tags=["通知"])

# 管理后台
api_router.include_router(admin_router, prefix="/admin", tags=["管理后台"])

# 系统
api_router.include_router(health.router, tags=["系统状态"])
