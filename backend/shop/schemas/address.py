"""地址Schema"""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field, ValidationInfo, field_validator


class AddressBase(BaseModel):
    type: str = Field("SHIPPING", pattern="^(SHIPPING|BILLING)$")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    company: Optional[str] = Field(None, max_length=200)
    address1: str = Field(..., min_length=1, max_length=255)
    address2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field("PT", min_length=2, max_length=2)
    phone: Optional[str] = Field(None, max_length=30)
    vat_number: Optional[str] = Field(None, max_length=30, description="税号（NIF）")


class AddressInput(AddressBase):
    """下单时填写的地址"""

    vat_number: Optional[str] = Field(None, max_length=30, validate_default=True)

    @field_validator("country")
    @classmethod
    def upper_country(cls, v: str) -> str:
        return v.upper()

    @field_validator("vat_number")
    @classmethod
    def check_billing_vat(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if info.data.get("type") == "BILLING" and not (v or "").strip():
            raise ValueError("账单地址必须填写税号")
        return v


class AddressCreate(AddressInput):
    is_default: bool = False


class AddressUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    company: Optional[str] = None
    address1: Optional[str] = Field(None, min_length=1, max_length=255)
    address2: Optional[str] = None
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    state: Optional[str] = None
    postal_code: Optional[str] = Field(None, min_length=1, max_length=20)
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    phone: Optional[str] = None
    vat_number: Optional[str] = None
    is_default: Optional[bool] = None


class AddressResponse(AddressBase):
    id: int
    is_default: bool
    created_at: datetime

    class Config:
        from_attributes = True
