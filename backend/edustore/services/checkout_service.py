"""
结账编排服务

一次结账的步骤（顺序执行）：
1. 解析商品 -> 检查网关可用 -> 检查是否已购买（匿名用户：检查邮箱未注册）
2. 在网关创建/更新客户，之后才注册匿名用户的账户
3. 创建订单（PENDING/PENDING），订单 ID 作为扣款的 externalReference
4. 创建扣款，再按支付方式处理：信用卡同步支付、PIX 取二维码、票据取条码

第 1、2 步失败不会产生订单，也不会产生账户。订单创建之后的网关失败会把订单
标记为 CANCELED/FAILED 并记录原因；已经创建的扣款会尽力在网关侧取消。

例外是结果未知的请求（已发出但没有收到答复）：网关可能已经扣款，订单保持
未决、扣款不取消，由 webhook 或人工对账决定最终状态。票据条码查询失败时
票据本身仍然有效，订单照常返回票据链接。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlmodel import Session

from edustore import crud
from edustore.api.errors import (
    AppError,
    GatewayOutcomeUnknownError,
    GatewayRequestError,
    UnauthorizedError,
    ValidationError,
    already_enrolled,
    already_purchased,
    email_already_registered,
    gateway_not_configured,
    item_not_found,
)
from edustore.core.config import settings
from edustore.core.security import issue_user_token
from edustore.crud.order import CONFIRM, FAIL, PROCESS
from edustore.enums import ChargeState, ItemKind, PaymentMethod
from edustore.integrations.payment_gateway import (
    BankSlipCode,
    CardDetails,
    CardHolderInfo,
    Charge,
    ChargeSpec,
    CustomerProfile,
    InstantTransferCode,
    PaymentGateway,
)
from edustore.models import ItemRef, Order, User, utc_now
from edustore.services.webhook_service import apply_order_transition

logger = logging.getLogger(__name__)

# Asaas 按巴西时间解释 dueDate 和 PIX 过期时间（巴西自 2019 年起不再实行夏令时）
BRAZIL_TZ = timezone(timedelta(hours=-3))

# 客户资料缺少这些字段时，信用卡持卡人信息使用网关可接受的占位值
HOLDER_POSTAL_CODE_PLACEHOLDER = "00000000"
HOLDER_ADDRESS_NUMBER_PLACEHOLDER = "S/N"
HOLDER_PHONE_PLACEHOLDER = "0000000000"


@dataclass(frozen=True)
class Registration:
    """结账时顺带注册的新账户"""
    name: str
    email: str
    password: str
    cpf_cnpj: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class CheckoutCommand:
    ref: ItemRef
    method: PaymentMethod
    customer: CustomerProfile
    card: CardDetails | None = None
    installments: int | None = None
    registration: Registration | None = None
    remote_ip: str | None = None


@dataclass
class CheckoutResult:
    order: Order
    user: User
    charge_id: str
    pix: InstantTransferCode | None = None
    bank_slip: BankSlipCode | None = None
    card_status: str | None = None
    invoice_url: str | None = None
    access_token: str | None = None
    access_token_expires_in: int | None = None


def due_date_for(method: PaymentMethod, now: datetime) -> datetime:
    """到期策略：信用卡立即，PIX 30 分钟，票据 7 天"""
    if method == PaymentMethod.pix:
        return now + timedelta(minutes=settings.PIX_EXPIRATION_MINUTES)
    if method == PaymentMethod.boleto:
        return now + timedelta(days=settings.BOLETO_DUE_DAYS)
    return now


def gateway_due_date(due_at: datetime) -> date:
    return due_at.astimezone(BRAZIL_TZ).date()


def parse_vendor_datetime(value: str | None) -> datetime | None:
    """解析网关返回的时间（"2024-05-01 23:59:59"，无时区时按巴西时间）"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=BRAZIL_TZ)
    return parsed.astimezone(timezone.utc)


def holder_info(customer: CustomerProfile) -> CardHolderInfo:
    return CardHolderInfo(
        name=customer.name,
        email=customer.email,
        cpf_cnpj=customer.cpf_cnpj,
        postal_code=customer.postal_code or HOLDER_POSTAL_CODE_PLACEHOLDER,
        address_number=customer.address_number or HOLDER_ADDRESS_NUMBER_PLACEHOLDER,
        phone=customer.contact_phone or HOLDER_PHONE_PLACEHOLDER,
    )


def _validate_installments(command: CheckoutCommand) -> None:
    count = command.installments
    if count is None:
        return
    if count < 1 or count > settings.MAX_INSTALLMENTS:
        raise ValidationError(
            message=f"Installments must be between 1 and {settings.MAX_INSTALLMENTS}"
        )
    if count > 1 and command.method == PaymentMethod.pix:
        raise ValidationError(message="PIX payments cannot be split into installments")


def _ensure_email_available(session: Session, registration: Registration) -> None:
    if crud.get_user_by_email(session=session, email=registration.email):
        raise email_already_registered()


def _register(session: Session, registration: Registration) -> User:
    _ensure_email_available(session, registration)
    user = crud.create_user(
        session=session,
        email=registration.email,
        password=registration.password,
        full_name=registration.name,
        cpf_cnpj=registration.cpf_cnpj,
        phone=registration.phone,
    )
    logger.info(f"User {user.id} registered during checkout")
    return user


async def create_checkout(
    *,
    session: Session,
    gateway: PaymentGateway,
    command: CheckoutCommand,
    current_user: User | None,
) -> CheckoutResult:
    """
    执行一次结账

    Raises:
        ValidationError: 商品价格或分期数不合法
        UnauthorizedError: 既未登录也没有提供注册信息
        NotFoundError: 商品不存在或未上架
        ConflictError: 邮箱已注册 / 已购买 / 已报名
        GatewayConfigurationError: 没有可用的支付网关
        GatewayRequestError: 网关调用失败（订单已创建时会被标记为失败）
        GatewayOutcomeUnknownError: 请求已发出但结果未知（订单保持未决）

    订单创建之后抛出的错误在 data 中带有订单 ID 和新账户的令牌。
    """
    _validate_installments(command)
    if current_user is None and command.registration is None:
        raise UnauthorizedError(message="Login or registration is required")

    item = crud.get_purchasable(session=session, ref=command.ref)
    if item is None:
        raise item_not_found()
    if item.price <= 0:
        raise ValidationError(message="Free items are not sold through checkout")
    if not gateway.configured:
        raise gateway_not_configured()

    if current_user is None:
        _ensure_email_available(session, command.registration)  # type: ignore[arg-type]
    elif crud.has_entitlement(session=session, user_id=current_user.id, ref=command.ref):
        raise already_enrolled() if command.ref.kind == ItemKind.course else already_purchased()

    customer = command.customer
    customer_id = await gateway.reconcile_customer(customer)

    access_token = None
    expires_in = None
    user = current_user
    if user is None:
        # 网关客户同步成功后才创建账户，同步失败时原样重试不会遇到"邮箱已注册"
        user = _register(session, command.registration)  # type: ignore[arg-type]
        access_token, expires_in = issue_user_token(user.id)

    now = utc_now()
    due_at = due_date_for(command.method, now)
    order = crud.create_order(
        session=session,
        user_id=user.id,
        ref=command.ref,
        item=item,
        method=command.method,
        customer_name=customer.name,
        customer_email=customer.email,
        customer_cpf_cnpj=customer.cpf_cnpj,
        customer_phone=customer.contact_phone,
        gateway_customer_id=customer_id,
        due_at=due_at,
    )
    logger.info(
        f"Order {order.id} created: user={user.id} {command.ref.kind.value}:{command.ref.id} "
        f"{command.method.value} {order.total_amount} cents"
    )

    order_id = order.id
    result = CheckoutResult(
        order=order,
        user=user,
        charge_id="",
        access_token=access_token,
        access_token_expires_in=expires_in,
    )
    charge: Charge | None = None
    try:
        charge = await gateway.open_charge(
            ChargeSpec(
                customer_id=customer_id,
                method=command.method,
                value=order.total_amount,
                due_date=gateway_due_date(due_at),
                external_reference=str(order.id),
                description=item.title,
                installment_count=command.installments,
            )
        )
        order.charge_id = charge.id
        order.invoice_url = charge.invoice_url
        session.add(order)
        session.commit()
        result.charge_id = charge.id
        result.invoice_url = charge.invoice_url

        if command.method == PaymentMethod.credit_card:
            await _pay_with_card(session, gateway, command, order, charge, result)
        elif command.method == PaymentMethod.pix:
            await _attach_pix(session, gateway, order, charge, result)
        else:
            await _attach_bank_slip(session, gateway, order, charge, result)
    except GatewayOutcomeUnknownError as e:
        session.rollback()
        logger.warning(f"Order {order_id} left open, gateway outcome unknown: {e.message}")
        e.data = _failure_data(order_id, result)
        raise
    except AppError as e:
        _compensate(session, order, e)
        if charge is not None:
            await _cancel_quietly(gateway, charge.id)
        e.data = _failure_data(order_id, result)
        raise

    session.refresh(order)
    result.order = order
    return result


async def _pay_with_card(
    session: Session,
    gateway: PaymentGateway,
    command: CheckoutCommand,
    order: Order,
    charge: Charge,
    result: CheckoutResult,
) -> None:
    if command.card is None:
        # 没有卡信息：返回网关托管的支付页面，由用户在那里完成支付
        result.card_status = charge.status
        return

    paid = await gateway.pay_with_card(
        charge.id, command.card, holder_info(command.customer), remote_ip=command.remote_ip
    )
    result.card_status = paid.status
    if paid.state == ChargeState.settled:
        outcome = apply_order_transition(session=session, order_id=order.id, transition=CONFIRM)
    elif paid.state == ChargeState.in_review:
        outcome = apply_order_transition(session=session, order_id=order.id, transition=PROCESS)
    else:
        logger.info(f"Order {order.id} card charge {charge.id} returned {paid.status}, waiting")
        return
    logger.info(f"Order {order.id} card charge {charge.id} {paid.status}: {outcome.outcome.value}")


async def _attach_pix(
    session: Session, gateway: PaymentGateway, order: Order, charge: Charge, result: CheckoutResult
) -> None:
    code = await gateway.get_instant_transfer_code(charge.id)
    order.pix_payload = code.payload
    order.pix_expires_at = parse_vendor_datetime(code.expiration_date) or order.due_at
    session.add(order)
    session.commit()
    result.pix = code


async def _attach_bank_slip(
    session: Session, gateway: PaymentGateway, order: Order, charge: Charge, result: CheckoutResult
) -> None:
    try:
        code = await gateway.get_bank_slip_code(charge.id)
    except GatewayRequestError as e:
        if not charge.bank_slip_url:
            raise
        # 条码只是辅助信息，票据链接本身可以完成支付
        logger.warning(f"Order {order.id} bank slip barcode unavailable: {e.message}")
        code = BankSlipCode(identification_field=None)
    order.boleto_url = charge.bank_slip_url
    order.boleto_barcode = code.identification_field
    session.add(order)
    session.commit()
    result.bank_slip = code


def _failure_data(order_id: int, result: CheckoutResult) -> dict[str, Any]:
    """失败响应的 data：订单 ID（可继续查询状态），以及本次结账新注册账户的令牌"""
    data: dict[str, Any] = {"orderId": order_id}
    if result.access_token:
        data["accessToken"] = result.access_token
        data["expiresIn"] = result.access_token_expires_in
    return data


def _compensate(session: Session, order: Order, error: AppError) -> None:
    """网关失败：订单标记为 CANCELED/FAILED 并记录原因"""
    session.rollback()
    failed = crud.apply_transition(
        session=session, order_id=order.id, transition=FAIL, failure_reason=error.message
    )
    session.commit()
    if failed is not None:
        logger.warning(f"Order {order.id} failed: {error.message}")


async def _cancel_quietly(gateway: PaymentGateway, charge_id: str) -> None:
    try:
        await gateway.cancel_charge(charge_id)
    except AppError as e:
        logger.error(f"Failed to cancel charge {charge_id}: {e.message}")
