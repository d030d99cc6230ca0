"""
日志配置
控制台彩色输出 + 按日期分割的文件日志（全部 / 错误 / 支付流水）
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# 支付相关模块单独落盘，便于对账
PAYMENT_LOGGERS = (
    "shop.services.payment_gateway",
    "shop.api.api_v1.endpoints.payments",
)

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "apscheduler", "stripe", "httpx")


class ColoredFormatter(logging.Formatter):
    """控制台彩色级别"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        # 复制一份，避免彩色级别写进文件日志
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def _daily_file_handler(prefix: str, level: int, day: Optional[str] = None) -> logging.FileHandler:
    day = day or datetime.now().strftime("%Y-%m-%d")
    handler = logging.FileHandler(LOG_DIR / f"{prefix}_{day}.log", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(log_level: str = "INFO", log_to_file: bool = True):
    """
    配置日志系统

    Args:
        log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: 是否写入 LOG_DIR（app_ / error_ / payments_ 三类文件）
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_to_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_daily_file_handler("app", logging.INFO))
        root_logger.addHandler(_daily_file_handler("error", logging.ERROR))

        payment_handler = _daily_file_handler("payments", logging.INFO)
        for name in PAYMENT_LOGGERS:
            payment_logger = logging.getLogger(name)
            payment_logger.handlers = [h for h in payment_logger.handlers if not isinstance(h, logging.FileHandler)]
            payment_logger.addHandler(payment_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"📋 日志系统初始化完成（级别 {log_level.upper()}）")


def get_logger(name: str) -> logging.Logger:
    """
    获取命名日志器

    Usage:
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)
