"""
支付网关 Webhook 事件模型

存储从网关收到的每个 webhook 事件，用于去重、审计和人工对账。
通过 event_id 唯一性识别重复投递。
"""
from datetime import datetime

from sqlalchemy import JSON, BigInteger, Column, DateTime, String, Text
from sqlmodel import Field, SQLModel

from edustore.core.snowflake import generate_id
from edustore.enums import GatewayEventStatus

from .base import utc_now


class GatewayEvent(SQLModel, table=True):
    """
    Webhook 事件记录

    字段说明：
    - event_id: 网关事件 ID（唯一；没有 ID 时由事件类型 + 扣款 ID 派生）
    - event_type: 事件类型（如 "PAYMENT_CONFIRMED"）
    - order_ref: 事件中的 externalReference（原样保存，可能不是合法订单 ID）
    - status: 处理状态（received / processed / ignored / failed）
    - detail: 处理结果说明或内部错误信息
    - attempts: 投递次数
    """
    __tablename__ = "gateway_events"

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    gateway: str = Field(default="asaas", max_length=32)
    event_id: str = Field(sa_column=Column(String(128), unique=True, index=True, nullable=False))
    event_type: str = Field(max_length=64)
    order_ref: str | None = Field(default=None, max_length=64)
    status: GatewayEventStatus = Field(
        default=GatewayEventStatus.received, sa_column=Column(String(16), index=True, nullable=False)
    )
    detail: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    attempts: int = Field(default=1)
    payload: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    processed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
