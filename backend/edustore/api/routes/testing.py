"""
测试 / 运维路由

POST /test/confirm-payment/{order_id}: 不经过网关，强制确认订单并发放权益。
仅管理员可用；生产环境不挂载这个路由（见 edustore.api.main）。
"""
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter

from edustore.api.deps import CurrentAdmin, SessionDep
from edustore.api.schemas import ApiEnvelope, ReconcileData, envelope
from edustore.services import webhook_service

router = APIRouter(prefix="/test", tags=["test"])


@router.post("/confirm-payment/{order_id}", response_model=ApiEnvelope)
def confirm_payment(session: SessionDep, admin: CurrentAdmin, order_id: int) -> ApiEnvelope:
    result = webhook_service.confirm_manually(session=session, order_id=order_id)
    return envelope(ReconcileData(**asdict(result)))
