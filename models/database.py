"""
数据库配置和连接管理
"""
from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from typing import Generator

from config import settings

# 数据库连接配置
DATABASE_URL = settings.database.url


def _build_engine(url: str):
    """sqlite 仅用于本地开发和测试，单连接共享"""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.database.echo
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_timeout=settings.database.pool_timeout,
        pool_recycle=settings.database.pool_recycle,
        echo=settings.database.echo
    )


# 创建数据库引擎
engine = _build_engine(DATABASE_URL)

# 创建数据库会话
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# 创建基础模型类
Base = declarative_base()


def get_db() -> Generator:
    """
    获取数据库会话的依赖注入函数
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """
    创建所有数据库表
    """
    # 确保所有模型都被导入
    from . import user, club, enrollment, order, finance, notification
    Base.metadata.create_all(bind=engine)


def drop_tables():
    """
    删除所有数据库表（仅用于开发测试）
    """
    Base.metadata.drop_all(bind=engine)
