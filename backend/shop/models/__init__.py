# models包初始化文件
# 导入全部模型，确保建表时均已注册到 Base.metadata

from shop.models.user import User, NotificationSettings
from shop.models.category import Category
from shop.models.product import Product, ProductImage, ProductVariant, StockItem
from shop.models.cart import CartItem
from shop.models.address import Address
from shop.models.order import Order, OrderItem
from shop.models.payment import Payment, Refund
from shop.models.payment_method import PaymentMethodConfig
from shop.models.discount import Discount
from shop.models.wishlist import Wishlist, WishlistItem
from shop.models.audit_log import AuditLog
from shop.models.inventory_log import InventoryLog
from shop.models.notification import Notification

__all__ = [
    "User",
    "NotificationSettings",
    "Category",
    "Product",
    "ProductImage",
    "ProductVariant",
    "StockItem",
    "CartItem",
    "Address",
    "Order",
    "OrderItem",
    "Payment",
    "Refund",
    "PaymentMethodConfig",
    "Discount",
    "Wishlist",
    "WishlistItem",
    "AuditLog",
    "InventoryLog",
    "Notification",
]
