"""
支付网关 Webhook 路由

POST /webhooks/asaas

Asaas 在请求头 asaas-access-token 中携带后台配置的令牌。配置了令牌时，
令牌不匹配的请求直接返回 401 且不做任何记录；通过校验的投递无论内部处理
结果如何都返回 {"received": true}，内部失败记录在 gateway_events 中。
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Header

from edustore import crud
from edustore.api.deps import SessionDep
from edustore.api.errors import UnauthorizedError
from edustore.api.schemas import ApiEnvelope, WebhookAck, envelope
from edustore.enums import ReconcileOutcome
from edustore.services import webhook_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/asaas", response_model=ApiEnvelope)
def asaas_webhook(
    session: SessionDep,
    payload: dict[str, Any] = Body(...),
    asaas_access_token: str | None = Header(default=None),
) -> ApiEnvelope:
    integration = crud.get_active_integration(
        session=session, name=webhook_service.ASAAS_INTEGRATION
    )
    expected = webhook_service.expected_webhook_token(integration)
    if not webhook_service.is_authentic(asaas_access_token, expected):
        logger.warning("[WEBHOOK] Rejected delivery with invalid access token")
        raise UnauthorizedError(code=401101, message="Invalid webhook token")

    result = webhook_service.handle_webhook(session=session, payload=payload)
    # 重复投递时附带标记，便于在网关后台排查
    return envelope(
        WebhookAck(received=True, duplicate=result.outcome == ReconcileOutcome.duplicate)
    )
