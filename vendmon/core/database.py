"""
数据库连接模块 (Database Connection Module)

基于 SQLAlchemy 2.0 异步模式创建数据库引擎和会话管理，为监控管道提供数据持久化支持。
包含异步引擎创建、会话工厂配置、ORM 基类、UTC 时间列类型、事务作用域和依赖注入函数。

Creates database engine and session management based on SQLAlchemy 2.0 async mode,
providing persistence for the monitoring pipeline. Includes async engine creation,
session factory configuration, the ORM base class, a UTC datetime column type,
a transactional scope helper and the FastAPI dependency.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import DateTime
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from vendmon.core.config import settings
from vendmon.core.exceptions import PersistenceFailure

# 创建异步数据库引擎 (Create Async Database Engine)
engine = create_async_engine(
    settings.database_url,
    echo=False  # 生产环境关闭 SQL 日志输出 (Disable SQL logging in production)
)

# 创建异步会话工厂 (Create Async Session Factory)
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False  # 提交后不过期对象，便于访问已保存的数据 (Don't expire objects after commit)
)


class Base(DeclarativeBase):
    """
    ORM 模型基类 (ORM Model Base Class)

    SQLAlchemy 2.0 的声明式基类，所有数据模型都继承此类。
    """
    pass


class UTCDateTime(TypeDecorator):
    """
    UTC 时间列类型 (UTC DateTime Column Type)

    写入前统一转换为 UTC；SQLite 读回的无时区值补上 UTC 时区，保证比较时不会混用 naive/aware。

    Normalises values to UTC on the way in and re-attaches UTC to naive values read back
    (SQLite drops the offset), so naive and aware datetimes are never mixed.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker, operation: str
) -> AsyncIterator[AsyncSession]:
    """
    事务作用域 (Transactional Scope)

    成功时提交，任何 SQLAlchemy 错误都回滚并转换为 PersistenceFailure，
    保证一个周期内不会出现写了一半的数据。

    Commits on success; any SQLAlchemy error rolls back and is re-raised as
    PersistenceFailure so a cycle never leaves half-written rows behind.

    Args:
        session_factory: 会话工厂 (session factory)
        operation: 操作名称，用于错误信息 (operation name used in the error)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceFailure(operation, str(exc)) from exc
        except BaseException:
            await session.rollback()
            raise


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    FastAPI 依赖项：获取数据库会话 (FastAPI Dependency: Get Database Session)

    使用异步上下文管理器确保会话在请求结束后正确关闭，防止连接泄漏。

    Yields:
        AsyncSession: 异步数据库会话实例 (Async database session instance)
    """
    async with async_session() as session:
        yield session
