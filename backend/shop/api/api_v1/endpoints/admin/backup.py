"""数据备份API（管理员）"""
import logging
import os
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from pydantic import BaseModel

from shop.core.deps import require_admin
from shop.models.user import User
from shop.services import backup_service
from shop.services.backup_service import BackupError
from shop.services.scheduler import get_scheduler_status, trigger_backup_now

logger = logging.getLogger(__name__)

router = APIRouter()


class BackupCreateRequest(BaseModel):
    compress: bool = False


class RestoreRequest(BaseModel):
    filename: str
    confirm: bool = False


@router.get("")
async def list_backups(admin: User = Depends(require_admin)) -> Any:
    """获取备份列表"""
    try:
        backups = backup_service.list_backups()
    except BackupError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {
        "backups": backups,
        "backup_dir": backup_service.get_backup_dir(),
    }


@router.post("")
async def create_backup(
    backup_in: BackupCreateRequest = BackupCreateRequest(),
    admin: User = Depends(require_admin)) -> Any:
    """创建备份"""
    try:
        info = await backup_service.create_backup(compress=backup_in.compress, user_id=admin.id)
    except BackupError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"❌ 备份失败: {e}")
        raise HTTPException(status_code=500, detail=f"备份失败: {str(e)}")
    return {"message": "备份创建成功", "backup": info}


@router.get("/scheduler")
async def get_scheduler_info(admin: User = Depends(require_admin)) -> Any:
    """定时任务状态"""
    return get_scheduler_status()


@router.post("/trigger")
async def trigger_backup(admin: User = Depends(require_admin)) -> Any:
    """立即执行一次自动备份"""
    try:
        info = await trigger_backup_now()
    except BackupError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"❌ 手动触发备份失败: {e}")
        raise HTTPException(status_code=500, detail=f"备份失败: {str(e)}")
    return {"message": "备份已完成", "backup": info}


@router.post("/restore")
async def restore_backup(restore_in: RestoreRequest, admin: User = Depends(require_admin)) -> Any:
    """从备份恢复（危险操作，需要 confirm=true）"""
    if not restore_in.confirm:
        raise HTTPException(status_code=400, detail="恢复操作需要确认（confirm=true）")
    try:
        return await backup_service.restore_backup(restore_in.filename, user_id=admin.id)
    except BackupError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"❌ 恢复失败: {e}")
        raise HTTPException(status_code=500, detail=f"恢复失败: {str(e)}")


@router.get("/download/{filename}")
async def download_backup(filename: str, admin: User = Depends(require_admin)) -> Any:
    """下载备份文件"""
    try:
        backup_path = backup_service.resolve_backup_path(filename)
    except BackupError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    name = os.path.basename(backup_path)
    return FileResponse(
        path=backup_path,
        filename=name,
        media_type="application/octet-stream",
    )


@router.delete("/{filename}")
async def delete_backup(filename: str, admin: User = Depends(require_admin)) -> Any:
    """删除备份"""
    try:
        backup_service.delete_backup(filename)
    except BackupError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"message": "删除成功"}
