"""商品分类模型 - 支持多层级树形结构"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime, Text
from sqlalchemy.orm import relationship
from shop.db.base import Base


class Category(Base):
    """商品分类

    支持多层级树形结构，如：
    - 女装
      - 连衣裙
      - 上衣
    - 配饰
      - 包袋
    """
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, comment="分类名称")
    slug = Column(String(120), unique=True, nullable=False, index=True, comment="URL 标识")
    description = Column(Text, nullable=True, comment="描述")
    image = Column(String(500), nullable=True, comment="封面图")
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True, comment="父分类ID")
    sort_order = Column(Integer, default=0, comment="排序")
    is_active = Column(Boolean, default=True, comment="是否启用")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 关系
    parent = relationship("Category", remote_side=[id], backref="children")
    products = relationship("Product", back_populates="category")
