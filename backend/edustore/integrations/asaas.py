"""
Asaas 支付网关集成模块

封装 Asaas v3 API 中结账流程需要的部分：
- 客户：按 CPF/CNPJ 查找，存在则更新复用，否则创建
- 扣款：创建、查询、取消、退款
- 信用卡：对已创建的扣款同步支付
- PIX：获取二维码
- 银行票据：获取可读行 / 条码

文档: https://docs.asaas.com/reference

所有调用都是异步的（httpx.AsyncClient），带单次超时和有限重试；
供应商错误统一转换为 GatewayRequestError，消息中带上 Asaas 返回的第一条原因。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from edustore.api.errors import (
    GatewayOutcomeUnknownError,
    GatewayRequestError,
    gateway_not_configured,
)
from edustore.core.config import settings
from edustore.enums import ChargeState, PaymentMethod
from edustore.integrations.payment_gateway import (
    BankSlipCode,
    CardDetails,
    CardHolderInfo,
    Charge,
    ChargeSpec,
    CustomerProfile,
    InstantTransferCode,
)
from edustore.models import ApiIntegration

logger = logging.getLogger(__name__)

_BASE_URLS = {
    "production": "https://api.asaas.com/v3",
    "sandbox": "https://sandbox.asaas.com/api/v3",
}

# Asaas 扣款状态 -> 归一化状态
_CHARGE_STATES = {
    "PENDING": ChargeState.pending,
    "AWAITING_RISK_ANALYSIS": ChargeState.in_review,
    "CONFIRMED": ChargeState.settled,
    "RECEIVED": ChargeState.settled,
    "RECEIVED_IN_CASH": ChargeState.settled,
    "OVERDUE": ChargeState.overdue,
    "REFUNDED": ChargeState.refunded,
    "REFUND_REQUESTED": ChargeState.refunded,
    "REFUND_IN_PROGRESS": ChargeState.refunded,
    "CHARGEBACK_REQUESTED": ChargeState.refunded,
}

_IDEMPOTENT_METHODS = frozenset({"GET", "DELETE"})
# 这些传输错误发生时请求还没有到达网关
_NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)
_CENT = Decimal("0.01")


def charge_state(vendor_status: str | None) -> ChargeState:
    """把 Asaas 原始状态映射为归一化状态，未知状态返回 unknown"""
    return _CHARGE_STATES.get((vendor_status or "").upper(), ChargeState.unknown)


def to_reais(cents: int) -> float:
    return float((Decimal(cents) / 100).quantize(_CENT, rounding=ROUND_HALF_UP))


def to_cents(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int((Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except ArithmeticError:
        return None


@dataclass(frozen=True)
class GatewayConfig:
    """网关连接配置（构造一次，注入到适配器）"""
    api_key: str
    environment: str = "production"
    timeout: float = 20.0
    max_attempts: int = 3

    @property
    def base_url(self) -> str:
        return _BASE_URLS.get(self.environment, _BASE_URLS["production"])


def load_config(integration: ApiIntegration | None) -> GatewayConfig | None:
    """
    解析网关配置

    优先使用数据库中启用的集成记录，其次是 ASAAS_API_KEY 环境变量。
    两者都没有时返回 None，此时适配器的所有操作都会立即失败。
    """
    if integration is not None and integration.is_active and integration.api_key:
        return GatewayConfig(
            api_key=integration.api_key,
            environment=integration.environment or "production",
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            max_attempts=settings.GATEWAY_MAX_ATTEMPTS,
        )
    if settings.ASAAS_API_KEY:
        return GatewayConfig(
            api_key=settings.ASAAS_API_KEY,
            environment=settings.ASAAS_ENVIRONMENT,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            max_attempts=settings.GATEWAY_MAX_ATTEMPTS,
        )
    return None


class _RetryableResponse(Exception):
    """幂等请求收到 429 / 5xx，交给 tenacity 重试"""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def _is_retryable(exc: BaseException, *, idempotent: bool) -> bool:
    if isinstance(exc, _RetryableResponse):
        return True
    # Nothing reached the server, safe for any method.
    if isinstance(exc, _NOT_SENT_ERRORS):
        return True
    if isinstance(exc, httpx.TransportError):
        return idempotent
    return False


def _first_reason(response: httpx.Response) -> str:
    """取 Asaas 错误响应中的第一条 description"""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        errors = data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            description = errors[0].get("description")
            if description:
                return str(description)
    return response.text[:200] or response.reason_phrase or f"HTTP {response.status_code}"


def _compact(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


class AsaasGateway:
    """
    Asaas 网关适配器

    config 为 None 表示没有可用的集成：configured 为 False，
    每个操作在发出任何网络请求之前就抛出 GatewayConfigurationError。
    """

    def __init__(
        self,
        config: GatewayConfig | None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, max=4)

    @property
    def configured(self) -> bool:
        return self._config is not None

    def _client(self) -> httpx.AsyncClient:
        if self._config is None:
            raise gateway_not_configured()
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            headers={
                "Content-Type": "application/json",
                "access_token": self._config.api_key,
            },
            timeout=self._config.timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        发送请求并返回 JSON 响应

        Raises:
            GatewayConfigurationError: 没有可用的集成
            GatewayRequestError: 网关返回错误、响应无效或重试耗尽
            GatewayOutcomeUnknownError: 非幂等请求已发出但没有收到答复
        """
        idempotent = method in _IDEMPOTENT_METHODS
        client = self._client()
        try:
            async with client:
                retrying = AsyncRetrying(
                    stop=stop_after_attempt(max(1, self._config.max_attempts)),  # type: ignore[union-attr]
                    wait=self._retry_wait,
                    retry=retry_if_exception(lambda e: _is_retryable(e, idempotent=idempotent)),
                    before_sleep=before_sleep_log(logger, logging.WARNING),
                    reraise=True,
                )
                async for attempt in retrying:
                    with attempt:
                        response = await client.request(method, path, json=json, params=params)
                        if idempotent and (response.status_code == 429 or response.status_code >= 500):
                            raise _RetryableResponse(response)
        except _RetryableResponse as e:
            response = e.response
        except httpx.HTTPError as e:
            logger.error(f"[ASAAS] {action} transport error: {e!r}")
            if not idempotent and not isinstance(e, _NOT_SENT_ERRORS):
                raise GatewayOutcomeUnknownError(
                    message=f"{action} failed: no response from payment gateway, outcome unknown"
                )
            raise GatewayRequestError(message=f"{action} failed: payment gateway unreachable")

        if response.status_code >= 400:
            reason = _first_reason(response)
            logger.error(f"[ASAAS] {action} error: {response.status_code} {reason}")
            raise GatewayRequestError(message=f"{action} failed: {reason}")

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            raise GatewayRequestError(message=f"{action} failed: invalid gateway response")
        if not isinstance(data, dict):
            raise GatewayRequestError(message=f"{action} failed: invalid gateway response")
        return data

    # ------------------------------------------------------------------
    # 客户
    # ------------------------------------------------------------------

    async def reconcile_customer(self, profile: CustomerProfile) -> str:
        """
        创建或更新网关客户，返回客户 ID

        先按 CPF/CNPJ 查找：找到则更新资料并复用，否则新建。
        注意：两个并发的首次结账可能都查不到并各自创建，网关侧会出现重复客户，
        对扣款本身没有影响。
        """
        payload = _compact(
            {
                "name": profile.name,
                "cpfCnpj": profile.cpf_cnpj,
                "email": profile.email,
                "phone": profile.phone,
                "mobilePhone": profile.mobile_phone,
                "postalCode": profile.postal_code,
                "address": profile.address,
                "addressNumber": profile.address_number,
                "province": profile.province,
            }
        )
        found = await self._request(
            "GET", "/customers", params={"cpfCnpj": profile.cpf_cnpj}, action="Find customer"
        )
        existing = found.get("data")
        if isinstance(existing, list) and existing and existing[0].get("id"):
            customer_id = str(existing[0]["id"])
            await self._request(
                "POST", f"/customers/{customer_id}", json=payload, action="Update customer"
            )
            return customer_id

        created = await self._request("POST", "/customers", json=payload, action="Create customer")
        if not created.get("id"):
            raise GatewayRequestError(message="Create customer failed: invalid gateway response")
        return str(created["id"])

    # ------------------------------------------------------------------
    # 扣款
    # ------------------------------------------------------------------

    @staticmethod
    def build_charge_payload(spec: ChargeSpec) -> dict[str, Any]:
        """
        构建创建扣款的请求体

        分期字段只在真正分期（次数 > 1）时附加。一次性付款（PIX、票据、信用卡 1x）
        如果带上 installmentCount=1，Asaas 会按分期规则处理金额。
        """
        value = to_reais(spec.value)
        payload: dict[str, Any] = {
            "customer": spec.customer_id,
            "billingType": spec.method.value,
            "value": value,
            "dueDate": spec.due_date.isoformat(),
            "externalReference": spec.external_reference,
        }
        if spec.description:
            payload["description"] = spec.description
        if spec.is_installment:
            count = spec.installment_count
            payload["installmentCount"] = count
            payload["installmentValue"] = float(
                (Decimal(str(value)) / count).quantize(_CENT, rounding=ROUND_HALF_UP)  # type: ignore[operator]
            )
        return payload

    @staticmethod
    def _parse_charge(data: dict[str, Any], *, action: str) -> Charge:
        if not data.get("id"):
            raise GatewayRequestError(message=f"{action} failed: invalid gateway response")
        status = str(data.get("status") or "")
        return Charge(
            id=str(data["id"]),
            status=status,
            state=charge_state(status),
            value=to_cents(data.get("value")),
            due_date=data.get("dueDate"),
            external_reference=data.get("externalReference"),
            invoice_url=data.get("invoiceUrl"),
            bank_slip_url=data.get("bankSlipUrl"),
            invoice_number=data.get("invoiceNumber"),
            raw=data,
        )

    async def open_charge(self, spec: ChargeSpec) -> Charge:
        data = await self._request(
            "POST", "/payments", json=self.build_charge_payload(spec), action="Create charge"
        )
        charge = self._parse_charge(data, action="Create charge")
        logger.info(
            f"[ASAAS] Charge {charge.id} opened for order {spec.external_reference} "
            f"({spec.method.value}, {spec.value} cents)"
        )
        return charge

    async def get_charge(self, charge_id: str) -> Charge:
        data = await self._request("GET", f"/payments/{charge_id}", action="Get charge")
        return self._parse_charge(data, action="Get charge")

    async def pay_with_card(
        self,
        charge_id: str,
        card: CardDetails,
        holder: CardHolderInfo,
        *,
        remote_ip: str | None = None,
    ) -> Charge:
        """对已创建的扣款同步执行信用卡支付"""
        payload = _compact(
            {
                "creditCard": {
                    "holderName": card.holder_name,
                    "number": card.number,
                    "expiryMonth": card.expiry_month,
                    "expiryYear": card.expiry_year,
                    "ccv": card.ccv,
                },
                "creditCardHolderInfo": {
                    "name": holder.name,
                    "email": holder.email,
                    "cpfCnpj": holder.cpf_cnpj,
                    "postalCode": holder.postal_code,
                    "addressNumber": holder.address_number,
                    "phone": holder.phone,
                },
                "remoteIp": remote_ip,
            }
        )
        data = await self._request(
            "POST",
            f"/payments/{charge_id}/payWithCreditCard",
            json=payload,
            action="Credit card payment",
        )
        return self._parse_charge(data, action="Credit card payment")

    async def get_instant_transfer_code(self, charge_id: str) -> InstantTransferCode:
        data = await self._request(
            "GET", f"/payments/{charge_id}/pixQrCode", action="Get PIX QR code"
        )
        if not data.get("payload"):
            raise GatewayRequestError(message="Get PIX QR code failed: invalid gateway response")
        return InstantTransferCode(
            payload=str(data["payload"]),
            encoded_image=str(data.get("encodedImage") or ""),
            expiration_date=data.get("expirationDate"),
        )

    async def get_bank_slip_code(self, charge_id: str) -> BankSlipCode:
        data = await self._request(
            "GET",
            f"/payments/{charge_id}/identificationField",
            action="Get bank slip barcode",
        )
        return BankSlipCode(
            identification_field=data.get("identificationField"),
            bar_code=data.get("barCode"),
            nosso_numero=data.get("nossoNumero"),
        )

    async def cancel_charge(self, charge_id: str) -> None:
        await self._request("DELETE", f"/payments/{charge_id}", action="Cancel charge")

    async def refund(
        self, charge_id: str, amount: int | None = None, description: str | None = None
    ) -> None:
        """退款；amount 为空表示全额"""
        payload = _compact(
            {
                "value": to_reais(amount) if amount is not None else None,
                "description": description,
            }
        )
        await self._request(
            "POST", f"/payments/{charge_id}/refund", json=payload, action="Refund charge"
        )
