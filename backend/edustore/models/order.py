"""
订单模型模块

Order + OrderItem 是购买状态的唯一事实来源。

- 订单 ID 同时作为网关扣款的 externalReference，webhook 通过它找回订单
- 客户信息是结账时的快照，不随用户资料变化
- 金额为整数（分），且 sum(items.price) == total_amount
"""
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
)
from sqlmodel import Field, SQLModel

from edustore.core.snowflake import generate_id
from edustore.enums import ItemKind, OrderStatus, PaymentMethod, PaymentStatus

from .base import utc_now


class Order(SQLModel, table=True):
    """
    订单模型

    字段说明：
    - user_id: 下单用户（可为空，管理员手工录入的订单可能没有用户）
    - total_amount: 订单总额（分）
    - status / payment_status: 订单状态机，见 edustore.crud.order 中的状态迁移表
    - payment_method: PIX / BOLETO / CREDIT_CARD
    - customer_*: 结账时的客户快照
    - gateway_customer_id / charge_id: 网关侧的客户与扣款 ID
    - pix_payload / pix_expires_at: PIX 复制粘贴码及其过期时间
    - boleto_url / boleto_barcode: 银行票据链接与条码
    - invoice_url: 网关托管的支付页面
    - due_at: 到期时间（信用卡=下单时刻，PIX=+30 分钟，票据=+7 天）
    - failure_reason: 网关失败时记录的原因
    """
    __tablename__ = "orders"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int | None = Field(
        default=None,
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True
        ),
    )

    total_amount: int = Field(default=0)
    currency: str = Field(default="BRL", max_length=8)

    status: OrderStatus = Field(
        default=OrderStatus.pending, sa_column=Column(String(16), nullable=False)
    )
    payment_status: PaymentStatus = Field(
        default=PaymentStatus.pending, sa_column=Column(String(16), index=True, nullable=False)
    )
    payment_method: PaymentMethod = Field(sa_column=Column(String(16), nullable=False))

    customer_name: str = Field(max_length=255)
    customer_email: str = Field(max_length=255)
    customer_cpf_cnpj: str = Field(max_length=18)
    customer_phone: str | None = Field(default=None, max_length=32)

    gateway_customer_id: str | None = Field(default=None, max_length=64)
    charge_id: str | None = Field(
        default=None, sa_column=Column(String(64), unique=True, index=True, nullable=True)
    )

    pix_payload: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    pix_expires_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    boleto_url: str | None = Field(default=None, max_length=1024)
    boleto_barcode: str | None = Field(default=None, max_length=128)
    invoice_url: str | None = Field(default=None, max_length=1024)
    failure_reason: str | None = Field(default=None, max_length=512)

    due_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    paid_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class OrderItem(SQLModel, table=True):
    """
    订单项模型

    item_kind 是判别字段；course_id / ebook_id / document_id 三者恰好一个非空，
    由数据库的 CHECK 约束保证。标题、描述、价格是下单时的快照。
    """
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN course_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN ebook_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN document_id IS NULL THEN 0 ELSE 1 END) = 1",
            name="ck_order_items_single_item",
        ),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    item_kind: ItemKind = Field(sa_column=Column(String(16), nullable=False))
    course_id: int | None = Field(
        default=None,
        sa_column=Column(BigInteger, ForeignKey("courses.id"), index=True, nullable=True),
    )
    ebook_id: int | None = Field(
        default=None,
        sa_column=Column(BigInteger, ForeignKey("ebooks.id"), index=True, nullable=True),
    )
    document_id: int | None = Field(
        default=None,
        sa_column=Column(BigInteger, ForeignKey("documents.id"), index=True, nullable=True),
    )

    title: str = Field(max_length=255)
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    price: int = Field(default=0)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    @property
    def item_id(self) -> int:
        """判别字段对应的商品 ID"""
        if self.item_kind == ItemKind.course:
            return self.course_id  # type: ignore[return-value]
        if self.item_kind == ItemKind.ebook:
            return self.ebook_id  # type: ignore[return-value]
        return self.document_id  # type: ignore[return-value]
