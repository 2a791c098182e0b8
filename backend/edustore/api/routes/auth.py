"""
认证路由模块

邮箱 + 密码登录，返回 JWT。注册发生在结账流程中（见 checkout 路由）。
"""
from __future__ import annotations

from fastapi import APIRouter

from edustore import crud
from edustore.api.deps import SessionDep
from edustore.api.errors import UnauthorizedError
from edustore.api.schemas import (
    ApiEnvelope,
    AuthLoginData,
    AuthLoginRequest,
    UserPublic,
    envelope,
)
from edustore.core import security

# 创建认证路由，所有路径都会添加 /auth 前缀
router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=ApiEnvelope)
def login(session: SessionDep, body: AuthLoginRequest) -> ApiEnvelope:
    """
    用户登录接口

    请求路径: POST /api/v1/auth/login

    响应示例：
        {
            "code": 0,
            "message": "success",
            "data": {
                "accessToken": "eyJ0eXAiOiJKV1QiLCJhbGc...",
                "tokenType": "bearer",
                "expiresIn": 604800,
                "user": {"id": 123456789, "email": "ana@example.com", ...}
            }
        }
    """
    user = crud.authenticate_user(session=session, email=body.email, password=body.password)
    if not user:
        raise UnauthorizedError(code=401002, message="Incorrect email or password")

    token, expires_in = security.issue_user_token(user.id)
    data = AuthLoginData(
        access_token=token,
        expires_in=expires_in,
        user=UserPublic(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            is_superuser=user.is_superuser,
        ),
    )
    return envelope(data)
