import logging
import os
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from shop.core.config import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        # 仅在开发环境打印SQL（通过环境变量控制）
        "echo": os.getenv("SQL_DEBUG", "false").lower() == "true",
        "future": True,
    }
    if url.startswith("sqlite"):
        # SQLite 写锁等待，webhook 与后台任务并发写时不立即报 locked
        options["connect_args"] = {"timeout": 30}
    else:
        options["pool_pre_ping"] = True
        options["pool_size"] = int(os.getenv("DB_POOL_SIZE", "5"))
    return options


def _create_engine() -> AsyncEngine:
    url = settings.async_database_url
    return create_async_engine(url, **_engine_options(url))


engine = _create_engine()

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def reload_database_engine():
    """
    恢复备份后重建引擎

    旧连接池全部关闭；会话工厂原地重新绑定，已导入 SessionLocal 的模块无需重新导入
    """
    global engine

    await engine.dispose()
    engine = _create_engine()
    SessionLocal.configure(bind=engine)
    logger.info("🔄 数据库引擎已重新加载")
