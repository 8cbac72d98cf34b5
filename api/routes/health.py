"""
健康检查路由
"""
from datetime import datetime, timezone

from fastapi import APIRouter

from core.config import settings
from core.response import utc_isoformat


router = APIRouter(tags=["Health"])


@router.get("/")
async def root():
    """服务横幅"""
    return {
        "message": f"{settings.PROJECT_NAME} is running!",
        "version": settings.VERSION,
    }


@router.get("/health")
async def health_check():
    """存活探针，不访问数据库或网关"""
    return {"status": "healthy", "timestamp": utc_isoformat(datetime.now(timezone.utc))}
