"""
支付网关接口

编排器和对账器只依赖这里定义的接口与数据类，不接触任何供应商的
请求/响应格式。当前唯一实现是 edustore.integrations.asaas.AsaasGateway。

金额在这一层始终是整数（分），换算成供应商要求的单位由适配器负责。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol

from edustore.enums import ChargeState, PaymentMethod


@dataclass(frozen=True)
class CustomerProfile:
    """付款客户资料（结账时提交的快照）"""
    name: str
    email: str
    cpf_cnpj: str
    phone: str | None = None
    mobile_phone: str | None = None
    postal_code: str | None = None
    address: str | None = None
    address_number: str | None = None
    province: str | None = None

    @property
    def contact_phone(self) -> str | None:
        return self.phone or self.mobile_phone


@dataclass(frozen=True)
class ChargeSpec:
    """
    扣款请求

    external_reference 必须是订单 ID，网关的异步通知靠它关联回订单。
    installment_count 只有大于 1 时才表示分期。
    """
    customer_id: str
    method: PaymentMethod
    value: int  # 分
    due_date: date
    external_reference: str
    description: str | None = None
    installment_count: int | None = None

    @property
    def is_installment(self) -> bool:
        return self.installment_count is not None and self.installment_count > 1


@dataclass(frozen=True)
class Charge:
    """网关侧的扣款；status 是供应商原始状态，state 是归一化后的状态"""
    id: str
    status: str
    state: ChargeState
    value: int | None = None
    due_date: str | None = None
    external_reference: str | None = None
    invoice_url: str | None = None
    bank_slip_url: str | None = None
    invoice_number: str | None = None
    raw: dict[str, Any] | None = field(default=None, repr=False)


@dataclass(frozen=True)
class CardDetails:
    holder_name: str
    number: str = field(repr=False)
    expiry_month: str
    expiry_year: str
    ccv: str = field(repr=False)


@dataclass(frozen=True)
class CardHolderInfo:
    name: str
    email: str
    cpf_cnpj: str
    postal_code: str
    address_number: str
    phone: str


@dataclass(frozen=True)
class InstantTransferCode:
    """PIX 二维码：复制粘贴码、Base64 图片、过期时间"""
    payload: str
    encoded_image: str
    expiration_date: str | None = None


@dataclass(frozen=True)
class BankSlipCode:
    """银行票据的可读行与条码"""
    identification_field: str | None
    bar_code: str | None = None
    nosso_numero: str | None = None


class PaymentGateway(Protocol):
    """与供应商无关的支付网关接口"""

    @property
    def configured(self) -> bool: ...

    async def reconcile_customer(self, profile: CustomerProfile) -> str: ...

    async def open_charge(self, spec: ChargeSpec) -> Charge: ...

    async def pay_with_card(
        self,
        charge_id: str,
        card: CardDetails,
        holder: CardHolderInfo,
        *,
        remote_ip: str | None = None,
    ) -> Charge: ...

    async def get_instant_transfer_code(self, charge_id: str) -> InstantTransferCode: ...

    async def get_bank_slip_code(self, charge_id: str) -> BankSlipCode: ...

    async def get_charge(self, charge_id: str) -> Charge: ...

    async def cancel_charge(self, charge_id: str) -> None: ...

    async def refund(
        self, charge_id: str, amount: int | None = None, description: str | None = None
    ) -> None: ...
