from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from shop.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=True)
    password = Column(String(255), nullable=False)
    # USER: 顾客, ADMIN: 管理员
    role = Column(String(20), nullable=False, default="USER")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    notification_settings = relationship(
        "NotificationSettings", back_populates="user", uselist=False,
        cascade="all, delete-orphan")
    addresses = relationship("Address", back_populates="user", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="user")

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

    def __repr__(self):
        return f"<User {self.email}>"


class NotificationSettings(Base):
    """用户通知偏好

    email_notifications 为总开关，其余按通知类型细分
    """
    __tablename__ = "notification_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    email_notifications = Column(Boolean, default=True, comment="邮件通知总开关")
    order_confirmations = Column(Boolean, default=True, comment="订单确认")
    order_updates = Column(Boolean, default=True, comment="订单状态更新（发货/送达/退款）")
    stock_alerts = Column(Boolean, default=False, comment="到货提醒")
    promotional_emails = Column(Boolean, default=False, comment="促销邮件")
    account_updates = Column(Boolean, default=True, comment="账户变更")

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="notification_settings")
