"""
审计日志模型 - 记录系统中的所有重要操作
用于安全审计、问题排查和数据一致性追踪
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, JSON
from shop.db.base import Base


class AuditLog(Base):
    """审计日志

    user_id 不设外键：用户被删除后日志仍需保留
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # 事件类型（见 shop.services.audit_logger.AuditEventType）
    event_type = Column(String(50), nullable=False, index=True, comment="事件类型")
    # LOW / MEDIUM / HIGH / CRITICAL
    severity = Column(String(10), nullable=False, default="LOW", index=True, comment="严重级别")

    # 操作人
    user_id = Column(Integer, nullable=True, index=True)
    user_email = Column(String(255), nullable=True)
    ip_address = Column(String(50), comment="IP地址")
    user_agent = Column(String(500), nullable=True)

    # 资源
    resource = Column(String(50), nullable=False, index=True, comment="资源类型")
    resource_id = Column(String(100), nullable=True, index=True, comment="资源ID")
    action = Column(String(100), nullable=False, comment="操作")

    details = Column(JSON, nullable=True, comment="详情")
    success = Column(Boolean, default=True)
    error_message = Column(Text, nullable=True)

    # 操作时间
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<AuditLog {self.event_type} {self.resource}:{self.resource_id}>"

    @property
    def severity_display(self) -> str:
        """严重级别显示名称"""
        severity_map = {
            "LOW": "低",
            "MEDIUM": "中",
            "HIGH": "高",
            "CRITICAL": "严重",
        }
        return severity_map.get(self.severity, self.severity)
