"""
用户模型 (User Model)

告警的归属主体。令牌由外部认证服务签发，这里只保存解析身份所需的字段。

Owner of alerts. Tokens are issued by an external authentication service;
this table only holds what is needed to resolve an identity.
"""
from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from netwatch.core.database import Base


class User(Base):
    """用户表 (User Table)"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    username: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)  # 登录名 (Login Name)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)  # 用户邮箱 (User Email)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)  # 账户是否激活 (Account Active Status)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 账户创建时间 (Account Creation Time)
