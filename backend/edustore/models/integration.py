"""
第三方集成配置模型

管理员在后台维护的支付网关凭据。同一时刻按 name 只取一条启用记录。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from edustore.core.snowflake import generate_id

from .base import utc_now


class ApiIntegration(SQLModel, table=True):
    __tablename__ = "api_integrations"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    name: str = Field(sa_column=Column(String(64), unique=True, index=True, nullable=False))
    api_key: str | None = Field(default=None, max_length=512)
    environment: str = Field(default="production", max_length=16)  # production / sandbox
    webhook_token: str | None = Field(default=None, max_length=255)
    is_active: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
