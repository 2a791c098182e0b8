"""
结账路由模块

- POST /checkout/create: 创建订单并发起扣款（已登录用户，或带 registration 的匿名用户）
- GET /checkout/status/{order_id}: 查询订单（仅订单所有者或管理员）
- POST /checkout/reconcile/{order_id}: 从网关拉取扣款状态并对账（管理员）

服务层抛出的 AppError 由 main.py 中的全局处理器统一转换为 HTTP 响应。
"""
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Request
from sqlmodel import Session

from edustore import crud
from edustore.api.deps import CurrentAdmin, CurrentUser, GatewayDep, OptionalUser, SessionDep
from edustore.api.errors import order_not_found
from edustore.api.schemas import (
    ApiEnvelope,
    BoletoInstructions,
    CardInstructions,
    CheckoutCreateRequest,
    CheckoutData,
    OrderData,
    OrderItemData,
    PixInstructions,
    ReconcileData,
    envelope,
)
from edustore.enums import ItemKind, PaymentMethod
from edustore.integrations.payment_gateway import CardDetails, CustomerProfile
from edustore.models import Order
from edustore.services import checkout_service, webhook_service

router = APIRouter(prefix="/checkout", tags=["checkout"])


def to_order_data(session: Session, order: Order) -> OrderData:
    """订单模型 -> 响应数据（包含订单项快照）"""
    items = [
        OrderItemData(
            kind=ItemKind(item.item_kind), item_id=item.item_id, title=item.title, price=item.price
        )
        for item in crud.get_items(session=session, order_id=order.id)
    ]
    return OrderData(
        id=order.id,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        total_amount=order.total_amount,
        currency=order.currency,
        charge_id=order.charge_id,
        pix_code=order.pix_payload,
        pix_expires_at=order.pix_expires_at,
        boleto_url=order.boleto_url,
        boleto_barcode=order.boleto_barcode,
        invoice_url=order.invoice_url,
        failure_reason=order.failure_reason,
        due_date=order.due_at,
        created_at=order.created_at,
        paid_at=order.paid_at,
        items=items,
    )


def _to_command(body: CheckoutCreateRequest, remote_ip: str | None) -> checkout_service.CheckoutCommand:
    customer = body.customer
    card = body.credit_card
    registration = body.registration
    return checkout_service.CheckoutCommand(
        ref=body.item_ref(),
        method=body.payment_method,
        customer=CustomerProfile(
            name=customer.name,
            email=str(customer.email),
            cpf_cnpj=customer.cpf_cnpj,
            phone=customer.phone,
            mobile_phone=customer.mobile_phone,
            postal_code=customer.postal_code,
            address=customer.address,
            address_number=customer.address_number,
            province=customer.province,
        ),
        card=CardDetails(
            holder_name=card.holder_name,
            number=card.number,
            expiry_month=card.expiry_month,
            expiry_year=card.expiry_year,
            ccv=card.ccv,
        )
        if card is not None
        else None,
        installments=body.installments,
        registration=checkout_service.Registration(
            name=registration.name,
            email=str(registration.email),
            password=registration.password,
            cpf_cnpj=registration.cpf_cnpj,
            phone=registration.phone,
        )
        if registration is not None
        else None,
        remote_ip=remote_ip,
    )


@router.post("/create", response_model=ApiEnvelope)
async def create_checkout(
    request: Request,
    session: SessionDep,
    gateway: GatewayDep,
    current_user: OptionalUser,
    body: CheckoutCreateRequest,
) -> ApiEnvelope:
    """
    创建结账

    请求路径: POST /api/v1/checkout/create

    响应中按支付方式返回支付指引：
    - PIX: pix = {payload, qrCodeImage, expirationDate}
    - BOLETO: boleto = {url, barcode}
    - CREDIT_CARD: card = {status}；未提供卡信息时通过 invoiceUrl 在网关页面支付
    """
    command = _to_command(body, request.client.host if request.client else None)
    result = await checkout_service.create_checkout(
        session=session, gateway=gateway, command=command, current_user=current_user
    )
    order = result.order

    data = CheckoutData(
        order_id=order.id,
        charge_id=result.charge_id,
        payment_method=order.payment_method,
        status=order.status,
        payment_status=order.payment_status,
        invoice_url=result.invoice_url,
        access_token=result.access_token,
        expires_in=result.access_token_expires_in,
        order=to_order_data(session, order),
    )
    if result.pix is not None:
        data.pix = PixInstructions(
            payload=result.pix.payload,
            qr_code_image=result.pix.encoded_image,
            expiration_date=result.pix.expiration_date,
        )
    if result.bank_slip is not None:
        data.boleto = BoletoInstructions(
            url=order.boleto_url, barcode=result.bank_slip.identification_field
        )
    if command.method == PaymentMethod.credit_card:
        data.card = CardInstructions(status=result.card_status)
    return envelope(data)


@router.get("/status/{order_id}", response_model=ApiEnvelope)
def get_status(session: SessionDep, current_user: CurrentUser, order_id: int) -> ApiEnvelope:
    """
    查询订单状态

    请求路径: GET /api/v1/checkout/status/{order_id}

    只有订单所有者和管理员可以查看；其他用户得到 404，不暴露订单是否存在。
    """
    order = crud.get_order(session=session, order_id=order_id)
    if not order:
        raise order_not_found()
    if order.user_id != current_user.id and not current_user.is_superuser:
        raise order_not_found()
    return envelope(to_order_data(session, order))


@router.post("/reconcile/{order_id}", response_model=ApiEnvelope)
async def reconcile(
    session: SessionDep, gateway: GatewayDep, admin: CurrentAdmin, order_id: int
) -> ApiEnvelope:
    """
    人工对账（管理员）

    从网关读取扣款的当前状态，按与 webhook 相同的规则更新订单。
    用于 webhook 丢失或处理失败（gateway_events.status = failed）的订单。
    """
    result = await webhook_service.reconcile_from_gateway(
        session=session, gateway=gateway, order_id=order_id
    )
    return envelope(ReconcileData(**asdict(result)))
