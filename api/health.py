"""
健康检查相关API
"""

from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from config import settings
from models import get_db
from services.logger import get_logger

logger = get_logger("health_api")
router = APIRouter(tags=["健康检查"])


@router.get("/")
async def root():
    """根路径"""
    return {
        "message": settings.app_name,
        "version": settings.app_version,
        "status": "running"
    }


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """健康检查（含数据库连通性）"""
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"数据库健康检查失败: {e}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "timestamp": datetime.utcnow().isoformat(),
        "version": settings.app_version
    }
