"""地址簿 API"""
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.deps import get_db, get_current_user
from shop.models.address import Address
from shop.models.order import Order
from shop.models.user import User
from shop.schemas.address import AddressCreate, AddressUpdate, AddressResponse

router = APIRouter()


async def _unset_defaults(db: AsyncSession, user_id: int, address_type: str) -> None:
    """同一用户同一类型只保留一个默认地址"""
    await db.execute(
        update(Address)
        .where(Address.user_id == user_id, Address.type == address_type, Address.is_default == True)
        .values(is_default=False)
    )


async def _owned_address(db: AsyncSession, user: User, address_id: int) -> Address:
    address = await db.get(Address, address_id)
    if address is None or address.user_id != user.id:
        raise HTTPException(status_code=404, detail="地址不存在")
    return address


@router.get("", response_model=List[AddressResponse])
async def list_addresses(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user)) -> Any:
    """我的地址（默认地址在前）"""
    result = await db.execute(
        select(Address)
        .where(Address.user_id == user.id)
        .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc())
    )
    return result.scalars().all()


@router.post("", response_model=AddressResponse, status_code=201)
async def create_address(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    address_in: AddressCreate) -> Any:
    """新增地址，该类型的第一个地址自动设为默认"""
    existing = (await db.execute(
        select(Address.id).where(Address.user_id == user.id, Address.type == address_in.type).limit(1)
    )).first()

    is_default = address_in.is_default or existing is None
    if is_default:
        await _unset_defaults(db, user.id, address_in.type)

    address = Address(user_id=user.id, **address_in.model_dump(exclude={"is_default"}), is_default=is_default)
    db.add(address)
    await db.commit()
    await db.refresh(address)
    return address


@router.get("/defaults")
async def get_default_addresses(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user)) -> Any:
    """默认收货地址和默认账单地址"""
    result = await db.execute(
        select(Address).where(Address.user_id == user.id, Address.is_default == True)
    )
    defaults = {a.type: a for a in result.scalars().all()}

    def dump(address_type: str):
        address = defaults.get(address_type)
        return AddressResponse.model_validate(address) if address else None

    return {"shipping": dump("SHIPPING"), "billing": dump("BILLING")}


@router.get("/{address_id}", response_model=AddressResponse)
async def get_address(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    address_id: int) -> Any:
    return await _owned_address(db, user, address_id)


@router.put("/{address_id}", response_model=AddressResponse)
async def update_address(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    address_id: int,
    address_in: AddressUpdate) -> Any:
    """修改地址"""
    address = await _owned_address(db, user, address_id)
    update_data = address_in.model_dump(exclude_unset=True)

    if address.type == "BILLING" and "vat_number" in update_data and not (update_data["vat_number"] or "").strip():
        raise HTTPException(status_code=400, detail="账单地址必须填写税号")
    if update_data.get("country"):
        update_data["country"] = update_data["country"].upper()

    if update_data.pop("is_default", None):
        await _unset_defaults(db, user.id, address.type)
        address.is_default = True

    for field, value in update_data.items():
        setattr(address, field, value)

    await db.commit()
    await db.refresh(address)
    return address


@router.delete("/{address_id}")
async def delete_address(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    address_id: int) -> Any:
    """删除地址（已用于订单的地址只解除与用户的关联）"""
    address = await _owned_address(db, user, address_id)
    used = (await db.execute(
        select(Order.id).where(
            (Order.shipping_address_id == address.id) | (Order.billing_address_id == address.id)
        ).limit(1)
    )).first()

    if used is not None:
        address.user_id = None
        address.is_default = False
    else:
        await db.delete(address)
    await db.commit()
    return {"message": "地址已删除"}


@router.post("/{address_id}/set-default", response_model=AddressResponse)
async def set_default_address(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    address_id: int) -> Any:
    """设为默认地址"""
    address = await _owned_address(db, user, address_id)
    await _unset_defaults(db, user.id, address.type)
    address.is_default = True
    await db.commit()
    await db.refresh(address)
    return address
