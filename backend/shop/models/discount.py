from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, DateTime, DECIMAL, Boolean
from shop.db.base import Base


DISCOUNT_TYPES = ["PERCENTAGE", "FIXED_AMOUNT"]


class Discount(Base):
    """优惠券

    PERCENTAGE: value 为百分比，可用 max_amount 封顶
    FIXED_AMOUNT: value 为固定金额，不超过小计
    """
    __tablename__ = "discounts"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True, comment="券码（大写）")
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False, default="PERCENTAGE")
    value = Column(DECIMAL(12, 2), nullable=False)
    min_amount = Column(DECIMAL(12, 2), nullable=True, comment="最低消费")
    max_amount = Column(DECIMAL(12, 2), nullable=True, comment="最高优惠")
    max_uses = Column(Integer, nullable=True, comment="最大使用次数")
    used_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def type_display(self) -> str:
        type_map = {
            "PERCENTAGE": "百分比",
            "FIXED_AMOUNT": "固定金额",
        }
        return type_map.get(self.type, self.type)

    @property
    def remaining_uses(self):
        if self.max_uses is None:
            return None
        return max(0, self.max_uses - (self.used_count or 0))

    def __repr__(self):
        return f"<Discount {self.code} {self.type}:{self.value or Decimal('0')}>"
