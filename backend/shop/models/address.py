from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import relationship
from shop.db.base import Base


ADDRESS_TYPES = ["SHIPPING", "BILLING"]


class Address(Base):
    """收货/账单地址

    每个用户每种类型最多一个默认地址；账单地址必须填写税号（NIF）
    游客下单时地址不关联用户
    """
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    type = Column(String(20), nullable=False, default="SHIPPING", comment="地址类型")

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    company = Column(String(200), nullable=True)
    address1 = Column(String(255), nullable=False)
    address2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=True, comment="地区，如 Açores、Madeira")
    postal_code = Column(String(20), nullable=False)
    country = Column(String(2), nullable=False, default="PT")
    phone = Column(String(30), nullable=True)
    vat_number = Column(String(30), nullable=True, comment="税号（NIF）")
    is_default = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="addresses")
