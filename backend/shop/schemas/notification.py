from typing import Optional, Any, Dict, List
from datetime import datetime
from pydantic import BaseModel, Field


class NotificationSend(BaseModel):
    type: str = Field(..., pattern="^(order_update|stock_alert|payment_update|admin_alert|system_message)$")
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    data: Optional[Dict[str, Any]] = None
    user_id: Optional[int] = None
    admin_only: bool = False


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: Optional[str] = None
    data: Optional[Any] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    data: List[NotificationResponse]
    total: int
    unread: int
