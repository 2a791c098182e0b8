"""
权益模型模块

用户对已购商品的访问权。课程报名、电子书/文档下载统一用一张表表示，
(user_id, item_kind, item_id) 唯一，保证同一商品最多一条权益记录。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlmodel import Field, SQLModel

from edustore.core.snowflake import generate_id
from edustore.enums import ItemKind

from .base import utc_now


class Entitlement(SQLModel, table=True):
    """
    权益记录

    字段说明：
    - item_kind / item_id: 商品类型与 ID
    - order_id: 发放该权益的订单（退款时据此撤销）
    - download_url: 可下载商品的文件地址
    - expires_at: 过期时间（课程为空，表示永久）
    """
    __tablename__ = "entitlements"
    __table_args__ = (
        UniqueConstraint("user_id", "item_kind", "item_id", name="uq_entitlements_user_item"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    item_kind: ItemKind = Field(sa_column=Column(String(16), nullable=False))
    item_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    order_id: int | None = Field(
        default=None,
        sa_column=Column(
            BigInteger, ForeignKey("orders.id", ondelete="SET NULL"), index=True, nullable=True
        ),
    )
    download_url: str | None = Field(default=None, max_length=1024)
    expires_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
