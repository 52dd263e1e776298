"""
用户模型 (User Model)

宿主系统的用户表，本模块只读取：解析通知目标（邮箱、Telegram chat id）和管理员列表。

The host application's user table. Read-only here: used to resolve notification targets
(email, Telegram chat id) and the list of admins.
"""
from typing import Optional

from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from vendmon.core.database import Base
from vendmon.models.enums import UserRole, enum_column


class User(Base):
    """用户表 (User Table)"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    name: Mapped[str] = mapped_column(String(100), nullable=False)  # 用户姓名 (User Name)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # 用户邮箱 (User Email)
    telegram_chat_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # Telegram 会话 ID (Telegram Chat ID)
    role: Mapped[UserRole] = mapped_column(enum_column(UserRole), nullable=False, default=UserRole.USER)  # 用户角色 (Role)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)  # 账户是否激活 (Account Active Status)
