"""商品目录查询（结账只需要按 ID 查找可购买的商品）"""
from sqlmodel import Session

from edustore.models import CATALOG_MODELS, ItemRef, Purchasable


def get_purchasable(*, session: Session, ref: ItemRef) -> Purchasable | None:
    """
    查找可购买的商品

    商品不存在或未上架都返回 None。
    """
    item = session.get(CATALOG_MODELS[ref.kind], ref.id)
    if item is None or not item.is_published:
        return None
    return item
