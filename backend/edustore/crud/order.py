"""
订单 CRUD 操作

订单状态只通过 apply_transition 修改。每次迁移是一条带条件的 UPDATE：
只有当前 payment_status 在允许的来源集合里时才会命中，命中行数决定
"谁赢"。同一事件的并发投递、卡支付同步结果与 webhook 的竞争，最终
都只有一方能把订单推进到终态。

迁移表：
    PROCESS  PENDING                         -> PROCESSING / PROCESSING
    CONFIRM  PENDING|PROCESSING|PAID|OVERDUE -> CONFIRMED  / COMPLETED
    CANCEL   PENDING|PROCESSING|PAID|OVERDUE -> CANCELED   / CANCELED
    REFUND   同上 + CONFIRMED                -> CANCELED   / CANCELED（撤销权益）
    FAIL     PENDING|PROCESSING|PAID|OVERDUE -> FAILED     / CANCELED
"""
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlmodel import Session, col, select

from edustore.enums import OPEN_PAYMENT_STATUSES, OrderStatus, PaymentMethod, PaymentStatus
from edustore.models import ItemRef, Order, OrderItem, Purchasable, utc_now


@dataclass(frozen=True)
class OrderTransition:
    name: str
    payment_status: PaymentStatus
    status: OrderStatus
    allowed_from: frozenset[PaymentStatus]
    marks_paid: bool = False
    revokes_entitlements: bool = False


PROCESS = OrderTransition(
    name="process",
    payment_status=PaymentStatus.processing,
    status=OrderStatus.processing,
    allowed_from=frozenset({PaymentStatus.pending}),
)
CONFIRM = OrderTransition(
    name="confirm",
    payment_status=PaymentStatus.confirmed,
    status=OrderStatus.completed,
    allowed_from=OPEN_PAYMENT_STATUSES,
    marks_paid=True,
)
CANCEL = OrderTransition(
    name="cancel",
    payment_status=PaymentStatus.canceled,
    status=OrderStatus.canceled,
    allowed_from=OPEN_PAYMENT_STATUSES,
)
REFUND = OrderTransition(
    name="refund",
    payment_status=PaymentStatus.canceled,
    status=OrderStatus.canceled,
    allowed_from=OPEN_PAYMENT_STATUSES | {PaymentStatus.confirmed},
    revokes_entitlements=True,
)
FAIL = OrderTransition(
    name="fail",
    payment_status=PaymentStatus.failed,
    status=OrderStatus.canceled,
    allowed_from=OPEN_PAYMENT_STATUSES,
)


def create_order(
    *,
    session: Session,
    user_id: int | None,
    ref: ItemRef,
    item: Purchasable,
    method: PaymentMethod,
    customer_name: str,
    customer_email: str,
    customer_cpf_cnpj: str,
    customer_phone: str | None,
    gateway_customer_id: str | None,
    due_at: datetime,
) -> Order:
    """
    创建订单及其唯一的订单项（状态 PENDING/PENDING）

    订单在调用网关之前就已经提交，订单 ID 会作为扣款的 externalReference。
    """
    order = Order(
        user_id=user_id,
        total_amount=item.price,
        payment_method=method,
        customer_name=customer_name,
        customer_email=customer_email,
        customer_cpf_cnpj=customer_cpf_cnpj,
        customer_phone=customer_phone,
        gateway_customer_id=gateway_customer_id,
        due_at=due_at,
    )
    order_item = OrderItem(
        order_id=order.id,
        item_kind=ref.kind,
        title=item.title,
        description=item.description,
        price=item.price,
        **{f"{ref.kind.value.lower()}_id": ref.id},
    )
    session.add(order)
    session.flush()
    session.add(order_item)
    session.commit()
    session.refresh(order)
    return order


def get_order(*, session: Session, order_id: int) -> Order | None:
    return session.get(Order, order_id)


def get_order_by_charge_id(*, session: Session, charge_id: str) -> Order | None:
    return session.exec(select(Order).where(Order.charge_id == charge_id)).first()


def get_items(*, session: Session, order_id: int) -> list[OrderItem]:
    statement = select(OrderItem).where(OrderItem.order_id == order_id)
    return list(session.exec(statement).all())


def apply_transition(
    *,
    session: Session,
    order_id: int,
    transition: OrderTransition,
    failure_reason: str | None = None,
) -> Order | None:
    """
    原子地执行一次状态迁移（不提交事务，由调用方决定提交时机）

    Returns:
        迁移成功时返回刷新后的订单；当前状态不允许该迁移（包括订单不存在、
        已被并发请求抢先迁移）时返回 None
    """
    now = utc_now()
    values: dict = {
        "status": transition.status.value,
        "payment_status": transition.payment_status.value,
        "updated_at": now,
    }
    if transition.marks_paid:
        values["paid_at"] = now
    if failure_reason is not None:
        values["failure_reason"] = failure_reason[:512]

    statement = (
        update(Order)
        .where(
            col(Order.id) == order_id,
            col(Order.payment_status).in_([s.value for s in transition.allowed_from]),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(statement)
    if result.rowcount != 1:
        return None

    order = session.get(Order, order_id)
    session.refresh(order)
    return order
