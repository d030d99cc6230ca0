from typing import List, Union
import logging

from pydantic import AnyHttpUrl, Field, validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

class Settings(BaseSettings):
    PROJECT_NAME: str = "Malmequer 网店后端"
    STORE_NAME: str = "Malmequer"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    # 重要：生产环境必须通过 .env 文件或环境变量设置此值
    SECRET_KEY: str = Field(
        default="dev-only-secret-key-please-change-in-production",
        description="JWT密钥，生产环境必须修改"
    )
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7天

    # CORS配置
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    @validator("BACKEND_CORS_ORIGINS", pre=True)
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # 数据库配置（sqlite:/// 或 postgresql://）
    DATABASE_URL: str = "sqlite:///./shop.db"

    # 缓存（为空则不启用 Redis）
    REDIS_URL: str = ""

    # Stripe 支付
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    CURRENCY: str = "eur"

    # 邮件（Resend）
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "Malmequer <noreply@malmequer.pt>"
    ADMIN_EMAIL: str = ""
    SITE_URL: str = "http://localhost:3000"

    # 价格规则
    TAX_RATE: float = 0.23  # 增值税 23%
    FREE_SHIPPING_THRESHOLD: float = 50.0
    DEFAULT_SHIPPING_COST: float = 5.99

    # 游客会话
    GUEST_SESSION_COOKIE: str = "guest_session_id"
    GUEST_SESSION_MAX_AGE: int = 60 * 60 * 24 * 30  # 30天

    # 备份配置
    BACKUP_DIR: str = "./backups"
    BACKUP_RETENTION_DAYS: int = 30
    AUTO_BACKUP_ENABLED: bool = True  # 是否启用自动备份
    AUTO_BACKUP_HOUR: int = 3  # 每天备份时间（小时，0-23）
    AUTO_BACKUP_MINUTE: int = 0  # 每天备份时间（分钟，0-59）
    AUTO_BACKUP_KEEP_COUNT: int = 7  # 保留最近多少个自动备份

    # 定时任务
    SCHEDULER_ENABLED: bool = True

    LOG_LEVEL: str = "INFO"

    # 就绪检查要求的环境变量
    REQUIRED_ENV_VARS: List[str] = [
        "DATABASE_URL",
        "SECRET_KEY",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]

    @property
    def async_database_url(self) -> str:
        """转换为异步驱动的连接串"""
        url = self.DATABASE_URL
        if url.startswith("sqlite:///"):
            return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.DATABASE_URL.split(":", 1)[0]

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()
logger.info(f"加载配置: API_PREFIX={settings.API_PREFIX}, CORS={settings.BACKEND_CORS_ORIGINS}")
