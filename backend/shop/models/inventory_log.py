"""
库存流水 - 记录每次库存变动
回放全部流水应得到商品当前库存（完整性校验依赖此约定）
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from shop.db.base import Base


class InventoryLog(Base):
    """库存流水

    类型与数量约定：
    - PURCHASE: 采购入库，quantity 为正数
    - RETURN: 退货/取消回库，quantity 为正数
    - ADJUSTMENT: 盘点调整，quantity 可正可负
    - SALE: 销售出库，quantity 记录为正数（出库数量），回放时减去
    """
    __tablename__ = "inventory_logs"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    type = Column(String(20), nullable=False, index=True, comment="变动类型")
    quantity = Column(Integer, nullable=False, comment="变动数量")
    quantity_before = Column(Integer, nullable=True, comment="变动前")
    quantity_after = Column(Integer, nullable=True, comment="变动后")
    reason = Column(String(255), nullable=True)
    reference = Column(String(100), nullable=True, comment="关联单号")
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    product = relationship("Product")

    @property
    def type_display(self) -> str:
        type_map = {
            "PURCHASE": "采购入库",
            "SALE": "销售出库",
            "RETURN": "退货入库",
            "ADJUSTMENT": "库存调整",
        }
        return type_map.get(self.type, self.type)

    @property
    def signed_quantity(self) -> int:
        """对库存的净影响"""
        if self.type == "SALE":
            return -abs(self.quantity or 0)
        return self.quantity or 0
