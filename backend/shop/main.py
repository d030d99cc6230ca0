import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shop.api.api_v1.api import api_router
from shop.core.config import settings
from shop.core.exceptions import register_exception_handlers
from shop.core.logging_config import setup_logging, get_logger
from shop.core.metrics import metrics_middleware
from shop.db import session as db_session
from shop.db.init_db import ensure_tables_exist, seed_payment_methods
from shop.services.cache import init_cache, close_cache
from shop.services.scheduler import init_scheduler, shutdown_scheduler

setup_logging(settings.LOG_LEVEL)
logger = get_logger(__name__)


async def prepare_database():
    """建表并写入默认支付方式配置；失败只记录，不阻止启动"""
    try:
        await ensure_tables_exist()
        logger.info("📊 数据库表已就绪")
    except Exception as e:
        logger.warning(f"数据库表初始化警告: {e}")
        return

    try:
        async with db_session.SessionLocal() as db:
            await seed_payment_methods(db)
    except Exception as e:
        logger.warning(f"支付方式初始化跳过: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 {settings.STORE_NAME} 后端启动中...")
    missing = [name for name in settings.REQUIRED_ENV_VARS if not os.getenv(name)]
    if missing:
        logger.warning(f"⚠️ 缺少环境变量: {', '.join(missing)}")

    await prepare_database()
    init_cache(settings.REDIS_URL)
    init_scheduler()
    yield
    logger.info("🛑 应用关闭中...")
    shutdown_scheduler()
    await close_cache()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    docs_url=f"{settings.API_PREFIX}/docs",
    description=f"{settings.STORE_NAME} 网店后端 API：商品、购物车、结算支付、订单与运营管理",
    lifespan=lifespan
)

# 访客购物车依赖 Cookie，需允许携带凭据
if settings.BACKEND_CORS_ORIGINS:
    logger.info(f"配置CORS，允许的源: {settings.BACKEND_CORS_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.middleware("http")(metrics_middleware)
register_exception_handlers(app)
app.include_router(api_router, prefix=settings.API_PREFIX)


@app.get("/")
async def root():
    return {"message": f"{settings.STORE_NAME} 网店后端", "docs": f"{settings.API_PREFIX}/docs"}
