"""网关 webhook 事件 CRUD 操作"""
from sqlalchemy import update
from sqlmodel import Session, col, select

from edustore.core.db import dialect_insert
from edustore.core.snowflake import generate_id
from edustore.enums import GatewayEventStatus
from edustore.models import GatewayEvent, utc_now


def get_event(*, session: Session, event_id: str) -> GatewayEvent | None:
    return session.exec(select(GatewayEvent).where(GatewayEvent.event_id == event_id)).first()


def register_event(
    *,
    session: Session,
    event_id: str,
    event_type: str,
    order_ref: str | None,
    payload: dict | None,
    gateway: str = "asaas",
) -> tuple[GatewayEvent, bool]:
    """
    登记一次 webhook 投递

    event_id 已存在时只增加投递次数。并发的重复投递依赖唯一约束，
    只会有一条记录。

    Returns:
        (事件记录, 是否首次收到)
    """
    table = GatewayEvent.__table__
    statement = (
        dialect_insert(session, table)
        .values(
            id=generate_id(),
            gateway=gateway,
            event_id=event_id,
            event_type=event_type,
            order_ref=order_ref,
            status=GatewayEventStatus.received.value,
            attempts=1,
            payload=payload,
            created_at=utc_now(),
        )
        .on_conflict_do_nothing(index_elements=[table.c.event_id])
    )
    created = session.execute(statement).rowcount == 1
    if not created:
        session.execute(
            update(GatewayEvent)
            .where(col(GatewayEvent.event_id) == event_id)
            .values(attempts=GatewayEvent.attempts + 1)
            .execution_options(synchronize_session=False)
        )
    session.commit()

    event = get_event(session=session, event_id=event_id)
    session.refresh(event)
    return event, created


# 同一事件的并发投递可能先后写入结果：processed 不会被 ignored 覆盖，
# 已有结论的事件也不会被改回 failed
_OVERWRITABLE = {
    GatewayEventStatus.processed: (
        GatewayEventStatus.received,
        GatewayEventStatus.ignored,
        GatewayEventStatus.failed,
    ),
    GatewayEventStatus.ignored: (GatewayEventStatus.received, GatewayEventStatus.failed),
    GatewayEventStatus.failed: (GatewayEventStatus.received, GatewayEventStatus.failed),
}


def finish_event(
    *,
    session: Session,
    event: GatewayEvent,
    status: GatewayEventStatus,
    detail: str | None = None,
) -> bool:
    """
    记录事件处理结果并提交

    条件更新：只有当前状态可以被 status 覆盖时才写入。

    Returns:
        是否写入了结果
    """
    allowed = [s.value for s in _OVERWRITABLE[status]]
    updated = session.execute(
        update(GatewayEvent)
        .where(col(GatewayEvent.id) == event.id)
        .where(col(GatewayEvent.status).in_(allowed))
        .values(status=status.value, detail=detail, processed_at=utc_now())
        .execution_options(synchronize_session=False)
    ).rowcount
    session.commit()
    session.refresh(event)
    return updated == 1
