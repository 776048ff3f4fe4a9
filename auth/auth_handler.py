"""
认证处理器：根据访问令牌解析当前用户
"""
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from .jwt_handler import JWTHandler
from models.user import User


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"}
    )


class AuthHandler:
    """认证处理器"""

    def __init__(self):
        self.jwt_handler = JWTHandler()

    def issue_token(self, user: User) -> str:
        """为用户签发访问令牌（运维工具与测试使用）"""
        return self.jwt_handler.create_access_token({"sub": user.id, "role": user.role})

    def get_current_user(self, db: Session, token: str) -> User:
        """校验令牌并返回可用的用户"""
        payload = self.jwt_handler.verify_token(token)
        if not payload or payload.get("token_type") != "access":
            raise _unauthorized("无效的访问令牌")

        user_id = payload.get("sub")
        if not user_id:
            raise _unauthorized("无效的令牌格式")

        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise _unauthorized("用户不存在")
        if not user.is_active:
            raise _unauthorized("账户已被禁用")
        return user
