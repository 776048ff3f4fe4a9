"""
认证工具模块
提供通用的认证相关函数
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from auth import AuthHandler
from models import get_db
from models.user import User
from services.logger import get_logger

logger = get_logger("auth_utils")
security = HTTPBearer()
auth_handler = AuthHandler()


def get_auth_handler() -> AuthHandler:
    """获取认证处理器"""
    return auth_handler


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """获取当前认证用户（依赖注入函数）"""
    return get_auth_handler().get_current_user(db, credentials.credentials)


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """获取当前平台管理员"""
    check_admin_permission(current_user)
    return current_user


def check_admin_permission(user: User):
    """检查平台管理员权限"""
    if not user.is_admin:
        logger.warning(f"用户 {user.id} 尝试访问管理员接口")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="需要管理员权限"
        )
