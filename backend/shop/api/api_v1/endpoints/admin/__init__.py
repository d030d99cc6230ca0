"""
管理后台API模块

按功能拆分为多个子模块：
- dashboard: 营业概况
- orders / products / inventory: 订单、商品、库存管理
- discounts / payment_methods: 优惠券与支付方式配置
- users / audit_logs: 用户与审计日志
- backup / system: 数据备份、完整性检查、熔断器、告警
"""

from fastapi import APIRouter
from .dashboard import router as dashboard_router
from .orders import router as orders_router
from .products import router as products_router
from .inventory import router as inventory_router
from .discounts import router as discounts_router
from .payment_methods import router as payment_methods_router
from .users import router as users_router
from .audit_logs import router as audit_logs_router
from .backup import router as backup_router
from .system import router as system_router

router = APIRouter()

# 合并所有路由
router.include_router(dashboard_router, prefix="/dashboard")
router.include_router(orders_router, prefix="/orders")
router.include_router(products_router, prefix="/products")
router.include_router(inventory_router, prefix="/inventory")
router.include_router(discounts_router, prefix="/discounts")
router.include_router(payment_methods_router, prefix="/payment-methods")
router.include_router(users_router, prefix="/users")
router.include_router(audit_logs_router, prefix="/audit-logs")
router.include_router(backup_router, prefix="/backup")
router.include_router(system_router)
