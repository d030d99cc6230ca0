from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field


class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: Optional[str] = Field(None, max_length=100)


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    role: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class UserAdminUpdate(BaseModel):
    role: Optional[str] = Field(None, pattern="^(USER|ADMIN)$")
    is_active: Optional[bool] = None
    name: Optional[str] = Field(None, max_length=100)


class UserListResponse(BaseModel):
    data: List[UserResponse]
    total: int
    page: int
    limit: int


class NotificationSettingsSchema(BaseModel):
    email_notifications: bool = True
    order_confirmations: bool = True
    order_updates: bool = True
    stock_alerts: bool = False
    promotional_emails: bool = False
    account_updates: bool = True

    class Config:
        from_attributes = True


class NotificationSettingsUpdate(BaseModel):
    email_notifications: Optional[bool] = None
    order_confirmations: Optional[bool] = None
    order_updates: Optional[bool] = None
    stock_alerts: Optional[bool] = None
    promotional_emails: Optional[bool] = None
    account_updates: Optional[bool] = None
