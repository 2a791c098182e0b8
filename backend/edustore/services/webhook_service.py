"""
Webhook 对账服务

把网关的异步通知（以及人工对账的结果）转换为订单状态迁移。

- 每次投递先登记到 gateway_events，event_id 唯一，重复投递直接返回 duplicate
- 状态迁移、权益发放/撤销在同一事务中提交
- 内部失败只记录（日志 + Sentry + 事件表），从不抛给网关，避免重试风暴
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any

import sentry_sdk
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from edustore import crud
from edustore.api.errors import ValidationError, WebhookProcessingError, order_not_found
from edustore.core.config import settings
from edustore.crud.order import CANCEL, CONFIRM, PROCESS, REFUND, OrderTransition
from edustore.enums import ChargeState, GatewayEventStatus, PaymentStatus, ReconcileOutcome
from edustore.integrations.payment_gateway import PaymentGateway
from edustore.models import ApiIntegration, Order
from edustore.services.fulfillment_service import fulfill_order

logger = logging.getLogger(__name__)

ASAAS_INTEGRATION = "asaas"

# Asaas 事件 -> 订单状态迁移；不在表中的事件只确认收到
EVENT_TRANSITIONS: dict[str, OrderTransition] = {
    "PAYMENT_RECEIVED": CONFIRM,
    "PAYMENT_CONFIRMED": CONFIRM,
    "PAYMENT_OVERDUE": CANCEL,
    "PAYMENT_DELETED": CANCEL,
    "PAYMENT_REFUNDED": REFUND,
    "PAYMENT_REFUND_IN_PROGRESS": REFUND,
}

# 人工对账：网关扣款的归一化状态 -> 订单状态迁移
CHARGE_TRANSITIONS: dict[ChargeState, OrderTransition] = {
    ChargeState.settled: CONFIRM,
    ChargeState.in_review: PROCESS,
    ChargeState.overdue: CANCEL,
    ChargeState.refunded: REFUND,
}


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    order_id: int | None = None
    transition: str | None = None
    payment_status: PaymentStatus | None = None
    granted: int = 0
    detail: str | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == ReconcileOutcome.applied


def expected_webhook_token(integration: ApiIntegration | None) -> str | None:
    """webhook 请求头 asaas-access-token 的期望值：启用的集成记录优先，其次是配置"""
    if integration is not None and integration.is_active and integration.webhook_token:
        return integration.webhook_token
    return settings.ASAAS_WEBHOOK_TOKEN


def is_authentic(received: str | None, expected: str | None) -> bool:
    """没有配置令牌时不做校验；配置了则必须完全一致"""
    if not expected:
        return True
    if not received:
        return False
    return hmac.compare_digest(received.encode(), expected.encode())


def derive_event_id(payload: dict[str, Any]) -> str:
    """
    事件去重键

    Asaas 的事件带有顶层 id；旧版本或测试工具发出的事件可能没有，
    这时用 事件类型 + 扣款 ID + 扣款状态 的哈希代替，同一事件重复投递得到同一个键。
    """
    event_id = payload.get("id")
    if event_id:
        return str(event_id)[:128]
    payment = payload.get("payment") if isinstance(payload.get("payment"), dict) else {}
    raw = "|".join(
        str(part or "")
        for part in (payload.get("event"), payment.get("id"), payment.get("status"))
    )
    return "sha256:" + hashlib.sha256(raw.encode()).hexdigest()


def _parse_order_ref(order_ref: Any) -> int | None:
    try:
        return int(str(order_ref))
    except (TypeError, ValueError):
        return None


def apply_order_transition(
    *, session: Session, order_id: int, transition: OrderTransition
) -> ReconcileResult:
    """
    执行一次状态迁移，并在同一事务中完成履约或撤销权益后提交

    迁移不被允许时（终态订单、并发请求已抢先迁移）返回 ignored，不做任何修改。
    """
    order = crud.apply_transition(session=session, order_id=order_id, transition=transition)
    if order is None:
        current = crud.get_order(session=session, order_id=order_id)
        if current is None:
            return ReconcileResult(outcome=ReconcileOutcome.order_not_found, order_id=order_id)
        status = PaymentStatus(current.payment_status)
        return ReconcileResult(
            outcome=ReconcileOutcome.ignored,
            order_id=order_id,
            transition=transition.name,
            payment_status=status,
            detail=f"{transition.name} not allowed from {status.value}",
        )

    granted = 0
    if transition is CONFIRM:
        granted = len(fulfill_order(session=session, order=order))
    if transition.revokes_entitlements:
        revoked = crud.revoke_for_order(session=session, order_id=order_id)
        logger.info(f"Order {order_id} refunded, {revoked} entitlement(s) revoked")
    session.commit()

    logger.info(f"Order {order_id} -> {transition.name}")
    return ReconcileResult(
        outcome=ReconcileOutcome.applied,
        order_id=order_id,
        transition=transition.name,
        payment_status=transition.payment_status,
        granted=granted,
    )


def _reconcile_event(
    session: Session, event_type: str, order_ref: Any, charge_id: str | None
) -> ReconcileResult:
    transition = EVENT_TRANSITIONS.get(event_type.upper())
    if transition is None:
        return ReconcileResult(outcome=ReconcileOutcome.ignored, detail=f"Unhandled event {event_type}")

    order: Order | None = None
    order_id = _parse_order_ref(order_ref)
    if order_id is not None:
        order = crud.get_order(session=session, order_id=order_id)
    if order is None and charge_id:
        order = crud.get_order_by_charge_id(session=session, charge_id=charge_id)
    if order is None:
        return ReconcileResult(
            outcome=ReconcileOutcome.order_not_found,
            order_id=order_id,
            detail=f"No order for reference {order_ref!r}",
        )
    return apply_order_transition(session=session, order_id=order.id, transition=transition)


def _finish(session: Session, event, result: ReconcileResult) -> None:
    status = GatewayEventStatus.processed if result.applied else GatewayEventStatus.ignored
    crud.finish_event(session=session, event=event, status=status, detail=result.detail)


def handle_webhook(*, session: Session, payload: dict[str, Any]) -> ReconcileResult:
    """
    处理一次网关 webhook 投递

    永远不抛异常：调用方无论结果如何都回复网关"已收到"。
    """
    event_type = str(payload.get("event") or "")
    payment = payload.get("payment") if isinstance(payload.get("payment"), dict) else {}
    order_ref = payment.get("externalReference")
    charge_id = str(payment["id"]) if payment.get("id") else None
    event_id = derive_event_id(payload)

    try:
        event, created = crud.register_event(
            session=session,
            event_id=event_id,
            event_type=event_type[:64] or "UNKNOWN",
            order_ref=str(order_ref)[:64] if order_ref is not None else None,
            payload=payload,
        )
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[WEBHOOK] Failed to record event {event_id}")
        sentry_sdk.capture_exception(e)
        return ReconcileResult(outcome=ReconcileOutcome.failed, detail=str(e))

    if not created and event.status in (GatewayEventStatus.processed, GatewayEventStatus.ignored):
        logger.info(f"[WEBHOOK] Duplicate delivery of {event_id} (attempt {event.attempts})")
        return ReconcileResult(outcome=ReconcileOutcome.duplicate, detail=event.detail)

    try:
        result = _reconcile_event(session, event_type, order_ref, charge_id)
    except Exception as e:  # noqa: BLE001
        session.rollback()
        logger.exception(f"[WEBHOOK] Failed to process {event_type} for order {order_ref!r}")
        sentry_sdk.capture_exception(e)
        error = WebhookProcessingError(message=f"{event_type} for order {order_ref!r} failed: {e!r}")
        try:
            crud.finish_event(
                session=session, event=event, status=GatewayEventStatus.failed, detail=error.message
            )
        except SQLAlchemyError:
            session.rollback()
            logger.exception(f"[WEBHOOK] Failed to record failure of {event_id}")
        return ReconcileResult(outcome=ReconcileOutcome.failed, detail=error.message)

    _finish(session, event, result)
    logger.info(f"[WEBHOOK] {event_type} order={order_ref!r} -> {result.outcome.value}")
    return result


async def reconcile_from_gateway(
    *, session: Session, gateway: PaymentGateway, order_id: int
) -> ReconcileResult:
    """
    人工对账：从网关读取扣款的当前状态，按与 webhook 相同的迁移规则更新订单

    Raises:
        NotFoundError: 订单不存在
        ValidationError: 订单还没有网关扣款
        GatewayConfigurationError / GatewayRequestError: 网关调用失败
    """
    order = crud.get_order(session=session, order_id=order_id)
    if order is None:
        raise order_not_found()
    if not order.charge_id:
        raise ValidationError(message="Order has no gateway charge")

    charge = await gateway.get_charge(order.charge_id)
    transition = CHARGE_TRANSITIONS.get(charge.state)
    if transition is None:
        return ReconcileResult(
            outcome=ReconcileOutcome.ignored,
            order_id=order_id,
            payment_status=PaymentStatus(order.payment_status),
            detail=f"Charge status {charge.status or 'unknown'}",
        )
    return apply_order_transition(session=session, order_id=order_id, transition=transition)


def confirm_manually(*, session: Session, order_id: int) -> ReconcileResult:
    """测试/运维用：强制确认订单并履约（不经过网关）"""
    result = apply_order_transition(session=session, order_id=order_id, transition=CONFIRM)
    if result.outcome == ReconcileOutcome.order_not_found:
        raise order_not_found()
    return result
