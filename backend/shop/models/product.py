"""商品模型 - 商品、图片、变体（尺码/颜色）和库存单元"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, DECIMAL, Boolean, Float
from sqlalchemy.orm import relationship
from shop.db.base import Base


PRODUCT_STATUSES = ["DRAFT", "ACTIVE", "ARCHIVED"]
VARIANT_TYPES = ["SIZE", "COLOR", "MATERIAL", "STYLE"]


class Product(Base):
    """商品

    状态：
    - DRAFT: 草稿（前台不可见）
    - ACTIVE: 上架
    - ARCHIVED: 已归档（有历史订单的商品删除时归档）
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, comment="商品名称")
    slug = Column(String(220), unique=True, nullable=False, index=True)
    description = Column(Text, comment="描述")
    price = Column(DECIMAL(12, 2), nullable=False, comment="售价")
    compare_price = Column(DECIMAL(12, 2), nullable=True, comment="划线价")
    sku = Column(String(100), unique=True, nullable=True, comment="SKU")
    inventory = Column(Integer, nullable=False, default=0, comment="库存数量")

    # 物流参数（重量 kg，尺寸 cm）
    weight = Column(Float, nullable=True, comment="重量(kg)")
    length = Column(Float, nullable=True, comment="长(cm)")
    width = Column(Float, nullable=True, comment="宽(cm)")
    height = Column(Float, nullable=True, comment="高(cm)")

    status = Column(String(20), nullable=False, default="DRAFT", index=True, comment="状态")
    featured = Column(Boolean, default=False, comment="是否推荐")
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 关系
    category = relationship("Category", back_populates="products")
    images = relationship("ProductImage", back_populates="product", cascade="all, delete-orphan",
                          order_by="ProductImage.position")
    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")
    stock_items = relationship("StockItem", back_populates="product", cascade="all, delete-orphan")

    @property
    def status_display(self) -> str:
        status_map = {
            "DRAFT": "草稿",
            "ACTIVE": "上架",
            "ARCHIVED": "已归档",
        }
        return status_map.get(self.status, self.status)

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE"


class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    url = Column(String(500), nullable=False)
    alt = Column(String(200))
    position = Column(Integer, default=0)

    product = relationship("Product", back_populates="images")


class ProductVariant(Base):
    """商品变体 - 尺码、颜色等，可加价"""
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False, comment="显示名称，如：尺码 M")
    type = Column(String(20), nullable=False, default="SIZE", comment="变体类型")
    value = Column(String(100), nullable=False, comment="变体值，如：M、红色")
    price_extra = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="加价")
    stock = Column(Integer, default=0, comment="变体库存")
    sku = Column(String(100), nullable=True)

    product = relationship("Product", back_populates="variants")


class StockItem(Base):
    """库存单元 - 尺码+颜色组合"""
    __tablename__ = "stock_items"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    size = Column(String(50))
    color = Column(String(50))
    quantity = Column(Integer, default=0)
    sku = Column(String(100), nullable=True)

    product = relationship("Product", back_populates="stock_items")
