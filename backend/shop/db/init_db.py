import asyncio
import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shop.db import session as db_session
from shop.db.base import Base

# 导入所有模型，确保表能被创建
import shop.models  # noqa: F401
from shop.models.payment_method import PaymentMethodConfig, DEFAULT_PAYMENT_METHODS

logger = logging.getLogger(__name__)


async def ensure_tables_exist() -> None:
    """
    确保数据库表存在（应用启动时调用）
    """
    async with db_session.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables() -> None:
    async with db_session.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def seed_payment_methods(db: AsyncSession) -> int:
    """写入缺失的默认支付方式，返回新增数量"""
    result = await db.execute(select(PaymentMethodConfig.method))
    existing = set(result.scalars().all())

    added = 0
    for data in DEFAULT_PAYMENT_METHODS:
        if data["method"] in existing:
            continue
        db.add(PaymentMethodConfig(enabled=True, **data))
        added += 1

    if added:
        await db.commit()
        logger.info(f"💳 初始化支付方式: 新增 {added} 个")
    return added


async def init_db() -> None:
    """
    初始化数据库 - 创建所有表并写入基础数据
    """
    await ensure_tables_exist()
    async with db_session.SessionLocal() as db:
        await seed_payment_methods(db)


if __name__ == "__main__":
    asyncio.run(init_db())
