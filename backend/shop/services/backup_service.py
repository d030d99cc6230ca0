"""
数据库备份服务
- SQLite：直接复制数据库文件
- PostgreSQL：调用 pg_dump / psql
- 支持 gzip 压缩、恢复前安全备份、按天数/数量清理
"""

import asyncio
import gzip
import os
import shutil
import subprocess
import tempfile
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from sqlalchemy.engine import make_url

from shop.core.config import settings
from shop.db.session import reload_database_engine
from shop.services import audit_logger
from shop.services.audit_logger import AuditEventType, AuditSeverity

logger = logging.getLogger(__name__)

BACKUP_SUFFIXES = (".db", ".sql", ".db.gz", ".sql.gz")
AUTO_PREFIX = "auto_backup_"
MANUAL_PREFIX = "backup_"
PRE_RESTORE_PREFIX = "pre_restore_"


class BackupError(Exception):
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def get_backup_dir() -> str:
    """获取备份目录"""
    backup_dir = os.path.abspath(settings.BACKUP_DIR)
    os.makedirs(backup_dir, exist_ok=True)
    return backup_dir


def get_db_path() -> str:
    """获取 SQLite 数据库文件路径"""
    db_url = settings.DATABASE_URL
    if db_url.startswith("sqlite:///"):
        return db_url.replace("sqlite:///", "", 1)
    elif db_url.startswith("sqlite+aiosqlite:///"):
        return db_url.replace("sqlite+aiosqlite:///", "", 1)
    raise BackupError("当前数据库不是 SQLite", 400)


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def _is_backup_file(filename: str) -> bool:
    return filename.endswith(BACKUP_SUFFIXES)


def resolve_backup_path(filename: str) -> str:
    """校验文件名并返回备份文件绝对路径（防止路径遍历）"""
    decoded = unquote(filename)
    backup_dir = get_backup_dir()
    backup_path = os.path.abspath(os.path.join(backup_dir, decoded))

    if not backup_path.startswith(backup_dir + os.sep):
        raise BackupError("非法访问", 403)
    if not os.path.isfile(backup_path):
        raise BackupError("备份文件不存在", 404)
    return backup_path


def describe_backup(path: str) -> Dict[str, Any]:
    stat = os.stat(path)
    filename = os.path.basename(path)
    modified = datetime.fromtimestamp(stat.st_mtime)
    return {
        "id": filename,
        "filename": filename,
        "size": stat.st_size,
        "size_display": f"{stat.st_size / 1024 / 1024:.2f} MB",
        "created_at": modified.isoformat(),
        "age_days": (datetime.now() - modified).days,
        "compressed": filename.endswith(".gz"),
        "auto": filename.startswith(AUTO_PREFIX),
    }


def _pg_env_and_args() -> tuple:
    url = make_url(settings.DATABASE_URL)
    env = os.environ.copy()
    if url.password:
        env["PGPASSWORD"] = url.password
    args = ["-h", url.host or "localhost", "-p", str(url.port or 5432)]
    if url.username:
        args += ["-U", url.username]
    args += ["-d", url.database or ""]
    return env, args


def _run(cmd: List[str], env: Dict[str, str]) -> None:
    try:
        subprocess.run(cmd, env=env, check=True, capture_output=True)
    except FileNotFoundError:
        raise BackupError(f"未找到命令: {cmd[0]}")
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode(errors="ignore").strip()
        raise BackupError(f"{cmd[0]} 执行失败: {stderr}")


def _dump_postgres(target_path: str) -> None:
    env, args = _pg_env_and_args()
    _run(["pg_dump", *args, "-f", target_path], env)


def _restore_postgres(source_path: str) -> None:
    env, args = _pg_env_and_args()
    _run(["psql", *args, "-f", source_path], env)


def _gzip_file(path: str) -> str:
    gz_path = f"{path}.gz"
    with open(path, "rb") as src, gzip.open(gz_path, "wb") as dst:
        shutil.copyfileobj(src, dst)
    os.remove(path)
    return gz_path


def _gunzip_to(path: str, target: str) -> None:
    with gzip.open(path, "rb") as src, open(target, "wb") as dst:
        shutil.copyfileobj(src, dst)


def _restore_postgres_file(backup_path: str) -> None:
    """压缩备份先解压到临时文件再导入，不占用备份目录中的文件名"""
    if not backup_path.endswith(".gz"):
        _restore_postgres(backup_path)
        return

    with tempfile.NamedTemporaryFile(prefix="restore_", suffix=".sql", delete=False) as tmp:
        source = tmp.name
    try:
        _gunzip_to(backup_path, source)
        _restore_postgres(source)
    finally:
        os.remove(source)


def _copy_database(target_path: str) -> None:
    db_path = get_db_path()
    if not os.path.exists(db_path):
        raise BackupError(f"数据库文件不存在: {db_path}", 404)
    shutil.copy2(db_path, target_path)


async def create_backup(
    compress: bool = False,
    auto: bool = False,
    user_id: Optional[int] = None) -> Dict[str, Any]:
    """创建备份"""
    backup_dir = get_backup_dir()
    prefix = AUTO_PREFIX if auto else MANUAL_PREFIX
    extension = "db" if settings.is_sqlite else "sql"
    backup_path = os.path.join(backup_dir, f"{prefix}{_timestamp()}.{extension}")

    if settings.is_sqlite:
        await asyncio.to_thread(_copy_database, backup_path)
    else:
        await asyncio.to_thread(_dump_postgres, backup_path)

    if compress:
        backup_path = await asyncio.to_thread(_gzip_file, backup_path)

    info = describe_backup(backup_path)
    logger.info(f"✅ {'自动' if auto else '手动'}备份完成: {info['filename']} ({info['size_display']})")

    await audit_logger.log_event(
        AuditEventType.BACKUP_CREATED, "backup", "create",
        severity=AuditSeverity.MEDIUM, user_id=user_id, resource_id=info["filename"],
        details={"size": info["size"], "compressed": compress, "auto": auto},
    )
    return info


def list_backups() -> List[Dict[str, Any]]:
    """获取备份列表（最新的在前）"""
    backup_dir = get_backup_dir()
    backups = [
        describe_backup(os.path.join(backup_dir, filename))
        for filename in os.listdir(backup_dir)
        if _is_backup_file(filename)
    ]
    backups.sort(key=lambda x: x["created_at"], reverse=True)
    return backups


async def restore_backup(filename: str, user_id: Optional[int] = None) -> Dict[str, Any]:
    """恢复备份（危险操作）：先备份当前数据库，再覆盖并重新加载引擎"""
    backup_path = resolve_backup_path(filename)
    backup_dir = get_backup_dir()
    compressed = backup_path.endswith(".gz")
    timestamp = _timestamp()

    if settings.is_sqlite:
        db_path = get_db_path()
        pre_restore = f"{PRE_RESTORE_PREFIX}{timestamp}.db"
        await asyncio.to_thread(shutil.copy2, db_path, os.path.join(backup_dir, pre_restore))

        # 重新加载数据库引擎（关闭所有连接）
        await reload_database_engine()
        if compressed:
            await asyncio.to_thread(_gunzip_to, backup_path, db_path)
        else:
            await asyncio.to_thread(shutil.copy2, backup_path, db_path)
        # 再次重新加载，确保使用新的数据库文件
        await reload_database_engine()
    else:
        pre_restore = f"{PRE_RESTORE_PREFIX}{timestamp}.sql"
        await asyncio.to_thread(_dump_postgres, os.path.join(backup_dir, pre_restore))
        await asyncio.to_thread(_restore_postgres_file, backup_path)
        await reload_database_engine()

    logger.warning(f"♻️ 数据库已从备份恢复: {os.path.basename(backup_path)}（恢复前备份 {pre_restore}）")
    await audit_logger.log_event(
        AuditEventType.BACKUP_RESTORED, "backup", "restore",
        severity=AuditSeverity.HIGH, user_id=user_id, resource_id=os.path.basename(backup_path),
        details={"pre_restore_backup": pre_restore},
    )
    return {
        "message": "恢复成功",
        "restored_from": os.path.basename(backup_path),
        "pre_restore_backup": pre_restore,
    }


def delete_backup(filename: str) -> None:
    backup_path = resolve_backup_path(filename)
    os.remove(backup_path)
    logger.info(f"🗑️ 删除备份: {os.path.basename(backup_path)}")


def cleanup_old_backups(retention_days: Optional[int] = None) -> int:
    """删除超过保留天数的手动备份和恢复前备份"""
    retention_days = settings.BACKUP_RETENTION_DAYS if retention_days is None else retention_days
    removed = 0
    for backup in list_backups():
        if backup["auto"]:
            continue
        if backup["age_days"] > retention_days:
            os.remove(os.path.join(get_backup_dir(), backup["filename"]))
            logger.info(f"🗑️ 清理过期备份: {backup['filename']}")
            removed += 1
    return removed


def cleanup_auto_backups(keep_count: Optional[int] = None) -> int:
    """清理旧的自动备份，只保留最近的 N 个"""
    keep_count = settings.AUTO_BACKUP_KEEP_COUNT if keep_count is None else keep_count
    backup_dir = get_backup_dir()
    auto_backups = []
    for filename in os.listdir(backup_dir):
        if filename.startswith(AUTO_PREFIX) and _is_backup_file(filename):
            filepath = os.path.join(backup_dir, filename)
            auto_backups.append({"filename": filename, "filepath": filepath, "mtime": os.stat(filepath).st_mtime})

    # 按修改时间排序（最新的在前）
    auto_backups.sort(key=lambda x: (x["mtime"], x["filename"]), reverse=True)

    removed = 0
    for backup in auto_backups[keep_count:]:
        os.remove(backup["filepath"])
        logger.info(f"🗑️ 清理旧备份: {backup['filename']}")
        removed += 1
    return removed
