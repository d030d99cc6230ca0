"""
定时任务调度器服务
使用 APScheduler 运行：夜间自动备份、备份保留清理、SSE 失效连接清理、系统告警检查
"""

import logging
from typing import Any, Dict, List, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from shop.core.config import settings
from shop.services import backup_service
from shop.services.alerts import evaluate_system_alerts
from shop.services.notification_hub import cleanup_stale_connections

logger = logging.getLogger(__name__)

SSE_CLEANUP_SECONDS = 60
ALERT_CHECK_SECONDS = 60

scheduler: Optional[AsyncIOScheduler] = None


async def auto_backup():
    """夜间自动备份，并只保留最近 AUTO_BACKUP_KEEP_COUNT 个自动备份"""
    try:
        info = await backup_service.create_backup(auto=True)
        removed = backup_service.cleanup_auto_backups(settings.AUTO_BACKUP_KEEP_COUNT)
        logger.info(f"📦 自动备份完成: {info['filename']}，清理旧自动备份 {removed} 个")
    except Exception as e:
        logger.error(f"❌ 自动备份失败: {e}")


def cleanup_retention():
    """手动备份超过保留天数的删除"""
    try:
        removed = backup_service.cleanup_old_backups(settings.BACKUP_RETENTION_DAYS)
    except OSError as e:
        logger.warning(f"清理旧备份时出错: {e}")
        return
    if removed:
        logger.info(f"🗑️ 备份保留清理: 删除 {removed} 个")


async def check_alerts():
    try:
        await evaluate_system_alerts()
    except Exception as e:
        logger.error(f"❌ 告警检查失败: {e}")


def _job_definitions() -> List[Dict[str, Any]]:
    jobs = [
        {
            "func": cleanup_retention,
            "trigger": CronTrigger(hour=4, minute=0),
            "id": "backup_retention",
            "name": "备份保留清理",
        },
        {
            "func": cleanup_stale_connections,
            "trigger": IntervalTrigger(seconds=SSE_CLEANUP_SECONDS),
            "id": "sse_cleanup",
            "name": "清理失效 SSE 连接",
        },
        {
            "func": check_alerts,
            "trigger": IntervalTrigger(seconds=ALERT_CHECK_SECONDS),
            "id": "alert_check",
            "name": "系统告警检查",
        },
    ]
    if settings.AUTO_BACKUP_ENABLED:
        jobs.insert(0, {
            "func": auto_backup,
            "trigger": CronTrigger(hour=settings.AUTO_BACKUP_HOUR, minute=settings.AUTO_BACKUP_MINUTE),
            "id": "auto_backup",
            "name": "自动数据库备份",
        })
    else:
        logger.info("📦 自动备份已禁用")
    return jobs


def init_scheduler():
    """创建调度器并注册全部任务（SCHEDULER_ENABLED=false 时跳过）"""
    global scheduler

    if not settings.SCHEDULER_ENABLED:
        logger.info("⏰ 定时任务已禁用")
        return

    scheduler = AsyncIOScheduler()
    for job in _job_definitions():
        scheduler.add_job(replace_existing=True, **job)
    scheduler.start()
    logger.info(f"⏰ 调度器已启动，共 {len(scheduler.get_jobs())} 个任务")


def shutdown_scheduler():
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("⏰ 定时任务调度器已关闭")


def get_scheduler_status() -> Dict[str, Any]:
    """调度器运行状态与各任务下次执行时间"""
    if not scheduler:
        return {"enabled": settings.SCHEDULER_ENABLED, "running": False, "jobs": []}

    return {
        "enabled": True,
        "running": scheduler.running,
        "auto_backup_time": f"{settings.AUTO_BACKUP_HOUR:02d}:{settings.AUTO_BACKUP_MINUTE:02d}",
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in scheduler.get_jobs()
        ],
    }


async def trigger_backup_now() -> Dict[str, Any]:
    """立即执行一次自动备份（手动触发），失败时抛出异常"""
    info = await backup_service.create_backup(auto=True)
    backup_service.cleanup_auto_backups(settings.AUTO_BACKUP_KEEP_COUNT)
    return info
