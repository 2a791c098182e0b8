"""
履约服务

订单确认（CONFIRMED）后为订单中的每个商品发放权益。课程是永久报名，
电子书和文档是带有效期的下载权限。发放走 ON CONFLICT，同一订单被重复
履约（webhook 重复投递、卡支付与 webhook 同时到达）也只会留下一条记录。
"""
import logging
from datetime import timedelta

from sqlmodel import Session

from edustore import crud
from edustore.api.errors import ValidationError
from edustore.core.config import settings
from edustore.enums import ItemKind, PaymentStatus
from edustore.models import CATALOG_MODELS, ItemRef, Order, utc_now

logger = logging.getLogger(__name__)


def fulfill_order(*, session: Session, order: Order) -> list[ItemRef]:
    """
    为已确认的订单发放权益（不提交事务，与状态迁移在同一事务中提交）

    Returns:
        本次新发放（或续期）的商品列表；重复履约时为空

    Raises:
        ValidationError: 订单尚未确认
    """
    if order.payment_status != PaymentStatus.confirmed:
        raise ValidationError(message="Only confirmed orders can be fulfilled")
    if order.user_id is None:
        logger.warning(f"Order {order.id} has no owner, nothing to fulfill")
        return []

    granted: list[ItemRef] = []
    for item in crud.get_items(session=session, order_id=order.id):
        ref = ItemRef(kind=ItemKind(item.item_kind), id=item.item_id)
        download_url = None
        expires_at = None
        if ref.is_downloadable:
            # 商品下架不影响已付款用户的下载权限
            product = session.get(CATALOG_MODELS[ref.kind], ref.id)
            download_url = getattr(product, "file_url", None)
            expires_at = utc_now() + timedelta(days=settings.DOWNLOAD_ACCESS_DAYS)

        if crud.grant_entitlement(
            session=session,
            user_id=order.user_id,
            ref=ref,
            order_id=order.id,
            download_url=download_url,
            expires_at=expires_at,
        ):
            granted.append(ref)

    if granted:
        logger.info(f"Order {order.id} fulfilled: {len(granted)} entitlement(s) granted")
    return granted
