"""
支付方式配置 - 控制前台可用的支付渠道
AUTO: 由 Stripe 自动确认；MANUAL: 管理员核对到账后手动确认（Multibanco / MB WAY）
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean
from shop.db.base import Base


PROCESSING_MODES = ["AUTO", "MANUAL"]


class PaymentMethodConfig(Base):
    __tablename__ = "payment_method_configs"

    id = Column(Integer, primary_key=True, index=True)
    method = Column(String(30), unique=True, nullable=False, comment="方式代码，如 card、mbway")
    name = Column(String(100), nullable=False, comment="显示名称")
    icon = Column(String(20), nullable=True, comment="图标")
    enabled = Column(Boolean, default=True, comment="是否启用")
    processing_mode = Column(String(10), nullable=False, default="AUTO", comment="处理模式")
    description = Column(Text, nullable=True)
    display_order = Column(Integer, default=0, comment="排序")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_manual(self) -> bool:
        return self.processing_mode == "MANUAL"

    @property
    def mode_display(self) -> str:
        mode_map = {
            "AUTO": "自动确认",
            "MANUAL": "人工确认",
        }
        return mode_map.get(self.processing_mode, self.processing_mode)


# 默认支付方式
DEFAULT_PAYMENT_METHODS = [
    {"method": "card", "name": "Cartão de Crédito/Débito", "icon": "💳", "processing_mode": "AUTO",
     "description": "Visa, Mastercard, American Express", "display_order": 1},
    {"method": "visa", "name": "Visa", "icon": "💳", "processing_mode": "AUTO",
     "description": "Pagamento com cartão Visa", "display_order": 2},
    {"method": "mastercard", "name": "Mastercard", "icon": "💳", "processing_mode": "AUTO",
     "description": "Pagamento com cartão Mastercard", "display_order": 3},
    {"method": "applepay", "name": "Apple Pay", "icon": "🍎", "processing_mode": "AUTO",
     "description": "Pagamento rápido com Apple Pay", "display_order": 4},
    {"method": "googlepay", "name": "Google Pay", "icon": "🔵", "processing_mode": "AUTO",
     "description": "Pagamento rápido com Google Pay", "display_order": 5},
    {"method": "multibanco", "name": "Multibanco", "icon": "🏧", "processing_mode": "MANUAL",
     "description": "Referência Multibanco, confirmação manual", "display_order": 6},
    {"method": "mbway", "name": "MB WAY", "icon": "📱", "processing_mode": "MANUAL",
     "description": "Pagamento por telemóvel, confirmação manual", "display_order": 7},
]
