from .auth_handler import AuthHandler
from .jwt_handler import JWTHandler

__all__ = [
    "AuthHandler",
    "JWTHandler"
]
