"""
用户模型模块

用户由身份模块维护；支付流程只读取 ID、角色和联系方式。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from edustore.core.snowflake import generate_id

from .base import utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - email: 登录邮箱（唯一）
    - hashed_password: bcrypt 哈希
    - cpf_cnpj / phone: 个人资料（结账时客户快照可以不同于这里）
    - is_superuser: 管理员角色，可查看任意订单、执行人工对账
    """
    __tablename__ = "users"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    email: str = Field(
        max_length=255,
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
    )
    full_name: str | None = Field(default=None, max_length=255)
    hashed_password: str = Field(max_length=255)
    cpf_cnpj: str | None = Field(default=None, max_length=18)
    phone: str | None = Field(default=None, max_length=32)

    is_active: bool = Field(default=True)
    is_superuser: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
