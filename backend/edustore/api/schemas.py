"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

- 对外字段统一使用 camelCase（courseId、paymentMethod、qrCodeImage ...），
  Python 侧仍然是 snake_case，通过 alias_generator 转换
- 这些模型不是数据库表，只用于 API 数据交换
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from edustore.api.errors import ValidationError
from edustore.enums import (
    ItemKind,  # 商品类型
    OrderStatus,  # 订单状态
    PaymentMethod,  # 支付方式
    PaymentStatus,  # 支付状态
    ReconcileOutcome,  # 对账结果
)
from edustore.models import ItemRef

# ============================================================
# 通用响应模型
# ============================================================


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据，错误时为 None）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 409101, "message": "Already enrolled in this course", "data": None}
    """
    code: int = 0
    message: str = "success"
    data: Any | None = None


class CamelModel(BaseModel):
    """对外使用 camelCase 字段名，同时接受 snake_case 输入"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def envelope(data: BaseModel) -> ApiEnvelope:
    """把响应数据按 camelCase 序列化后放进统一响应格式"""
    return ApiEnvelope(data=data.model_dump(mode="json", by_alias=True))


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    sub (subject) 存储用户 ID。
    """
    sub: str | None = None


def _digits(value: str | None) -> str | None:
    if value is None:
        return None
    return "".join(ch for ch in value if ch.isdigit()) or None


# ============================================================
# 认证
# ============================================================


class AuthLoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class UserPublic(CamelModel):
    id: int
    email: str
    full_name: str | None = None
    is_superuser: bool = False


class AuthLoginData(CamelModel):
    """登录成功后返回 token 和用户信息"""
    access_token: str  # JWT 访问令牌
    token_type: str = "bearer"
    expires_in: int  # token 过期时间（秒）
    user: UserPublic


# ============================================================
# 结账
# ============================================================


class CustomerIn(CamelModel):
    """
    付款客户资料

    cpfCnpj 可以带格式符号（123.456.789-09），保存前只保留数字。
    """
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    cpf_cnpj: str = Field(min_length=11, max_length=18)
    phone: str | None = Field(default=None, max_length=32)
    mobile_phone: str | None = Field(default=None, max_length=32)
    postal_code: str | None = Field(default=None, max_length=16)
    address: str | None = Field(default=None, max_length=255)
    address_number: str | None = Field(default=None, max_length=16)
    province: str | None = Field(default=None, max_length=128)

    @field_validator("cpf_cnpj")
    @classmethod
    def _normalize_cpf_cnpj(cls, v: str) -> str:
        digits = _digits(v) or ""
        if len(digits) not in (11, 14):
            raise ValueError("cpfCnpj must have 11 (CPF) or 14 (CNPJ) digits")
        return digits

    @field_validator("phone", "mobile_phone", "postal_code")
    @classmethod
    def _normalize_digits(cls, v: str | None) -> str | None:
        return _digits(v)


class CreditCardIn(CamelModel):
    holder_name: str = Field(min_length=1, max_length=255)
    number: str = Field(min_length=12, max_length=23, repr=False)
    expiry_month: str = Field(min_length=1, max_length=2)
    expiry_year: str = Field(min_length=2, max_length=4)
    ccv: str = Field(min_length=3, max_length=4, repr=False)

    @field_validator("number")
    @classmethod
    def _strip_number(cls, v: str) -> str:
        return _digits(v) or ""


class RegistrationIn(CamelModel):
    """匿名结账时一并注册账户"""
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    cpf_cnpj: str | None = Field(default=None, max_length=18)
    phone: str | None = Field(default=None, max_length=32)

    @field_validator("cpf_cnpj", "phone")
    @classmethod
    def _normalize_digits(cls, v: str | None) -> str | None:
        return _digits(v)


class CheckoutCreateRequest(CamelModel):
    """
    创建结账请求

    courseId / ebookId / documentId 必须且只能提供一个。
    installments 只在大于 1 时作为分期发送给网关。
    """
    course_id: int | None = None
    ebook_id: int | None = None
    document_id: int | None = None
    payment_method: PaymentMethod
    customer: CustomerIn
    credit_card: CreditCardIn | None = None
    installments: int | None = None
    registration: RegistrationIn | None = None

    def item_ref(self) -> ItemRef:
        """
        Raises:
            ValidationError: 商品 ID 没有提供或提供了多个
        """
        refs = [
            ItemRef(kind=kind, id=item_id)
            for kind, item_id in (
                (ItemKind.course, self.course_id),
                (ItemKind.ebook, self.ebook_id),
                (ItemKind.document, self.document_id),
            )
            if item_id is not None
        ]
        if len(refs) != 1:
            raise ValidationError(
                code=400101, message="Exactly one of courseId, ebookId or documentId is required"
            )
        return refs[0]


class PixInstructions(CamelModel):
    payload: str  # 复制粘贴码
    qr_code_image: str  # Base64 PNG
    expiration_date: str | None = None


class BoletoInstructions(CamelModel):
    url: str | None = None
    barcode: str | None = None


class CardInstructions(CamelModel):
    status: str | None = None  # 网关原始状态（CONFIRMED / PENDING / AWAITING_RISK_ANALYSIS ...）


class OrderItemData(CamelModel):
    kind: ItemKind
    item_id: int
    title: str
    price: int


class OrderData(CamelModel):
    """订单快照（结账响应与状态查询共用）"""
    id: int
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    total_amount: int  # 分
    currency: str
    charge_id: str | None = None
    pix_code: str | None = None
    pix_expires_at: datetime | None = None
    boleto_url: str | None = None
    boleto_barcode: str | None = None
    invoice_url: str | None = None
    failure_reason: str | None = None
    due_date: datetime
    created_at: datetime
    paid_at: datetime | None = None
    items: list[OrderItemData] = []


class CheckoutData(CamelModel):
    order_id: int
    charge_id: str
    payment_method: PaymentMethod
    status: OrderStatus
    payment_status: PaymentStatus
    pix: PixInstructions | None = None
    boleto: BoletoInstructions | None = None
    card: CardInstructions | None = None
    invoice_url: str | None = None
    access_token: str | None = None  # 仅在结账时注册了新账户时返回
    expires_in: int | None = None
    order: OrderData


class ReconcileData(CamelModel):
    outcome: ReconcileOutcome
    order_id: int | None = None
    transition: str | None = None
    payment_status: PaymentStatus | None = None
    granted: int = 0
    detail: str | None = None


class WebhookAck(CamelModel):
    received: bool = True
    duplicate: bool = False
