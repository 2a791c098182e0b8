"""
权益 CRUD 操作

发放依赖 (user_id, item_kind, item_id) 唯一约束 + ON CONFLICT：
- 不存在：插入
- 已存在但已过期：续期（改写订单、下载地址、过期时间）
- 已存在且有效：什么也不做

时间比较都放在 SQL 里完成，避免 SQLite 读回的无时区时间与 Python 侧比较。
"""
from datetime import datetime

from sqlalchemy import delete, or_
from sqlmodel import Session, col, select

from edustore.core.db import dialect_insert
from edustore.core.snowflake import generate_id
from edustore.models import Entitlement, ItemRef, utc_now


def _active_filter(now: datetime):
    return or_(col(Entitlement.expires_at).is_(None), col(Entitlement.expires_at) > now)


def has_entitlement(*, session: Session, user_id: int, ref: ItemRef) -> bool:
    """用户是否持有该商品的有效权益（过期的下载权限不算）"""
    statement = select(Entitlement.id).where(
        Entitlement.user_id == user_id,
        Entitlement.item_kind == ref.kind.value,
        Entitlement.item_id == ref.id,
        _active_filter(utc_now()),
    )
    return session.exec(statement).first() is not None


def grant_entitlement(
    *,
    session: Session,
    user_id: int,
    ref: ItemRef,
    order_id: int,
    download_url: str | None = None,
    expires_at: datetime | None = None,
) -> bool:
    """
    发放权益（不提交事务）

    Returns:
        True 表示新插入或续期了一条记录；False 表示已有有效权益
    """
    now = utc_now()
    table = Entitlement.__table__
    insert_stmt = dialect_insert(session, table).values(
        id=generate_id(),
        user_id=user_id,
        item_kind=ref.kind.value,
        item_id=ref.id,
        order_id=order_id,
        download_url=download_url,
        expires_at=expires_at,
        created_at=now,
    )
    statement = insert_stmt.on_conflict_do_update(
        index_elements=[table.c.user_id, table.c.item_kind, table.c.item_id],
        set_={
            "order_id": insert_stmt.excluded.order_id,
            "download_url": insert_stmt.excluded.download_url,
            "expires_at": insert_stmt.excluded.expires_at,
        },
        where=table.c.expires_at.is_not(None) & (table.c.expires_at <= now),
    )
    result = session.execute(statement)
    return result.rowcount == 1


def revoke_for_order(*, session: Session, order_id: int) -> int:
    """撤销某个订单发放的全部权益（退款），返回删除的条数；不提交事务"""
    statement = delete(Entitlement).where(col(Entitlement.order_id) == order_id)
    result = session.execute(statement.execution_options(synchronize_session=False))
    return result.rowcount
