"""
FastAPI 依赖注入模块

提供可复用的依赖项，用于路由处理函数中。

- get_db: 数据库会话（请求结束自动关闭）
- get_current_user / get_optional_user: 从 Authorization: Bearer <token> 解析用户
- get_current_admin: 管理员（人工对账、测试确认接口）
- get_gateway: 按当前启用的集成记录构造支付网关适配器
"""
from collections.abc import Generator  # 生成器类型，用于资源管理
from typing import Annotated  # 类型注解，用于依赖注入

import jwt  # JWT 解析库
from fastapi import Depends  # FastAPI 核心功能
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer  # Bearer 方案
from jwt.exceptions import InvalidTokenError  # JWT 无效异常
from pydantic import ValidationError  # Pydantic 验证异常
from sqlmodel import Session  # 数据库会话

from edustore import crud
from edustore.api.errors import ForbiddenError, UnauthorizedError
from edustore.api.schemas import TokenPayload
from edustore.core import security
from edustore.core.config import settings
from edustore.core.db import engine
from edustore.integrations.asaas import AsaasGateway, load_config
from edustore.integrations.payment_gateway import PaymentGateway
from edustore.models import User
from edustore.services.webhook_service import ASAAS_INTEGRATION

# Bearer 认证配置
# auto_error=False：结账接口允许匿名访问（带注册信息），由各依赖自行决定是否必须登录
reusable_oauth2 = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    使用 yield 确保会话在请求结束后自动关闭。
    """
    with Session(engine) as session:
        yield session


# 类型别名，简化依赖注入的写法
SessionDep = Annotated[Session, Depends(get_db)]  # 数据库会话依赖
TokenDep = Annotated[
    HTTPAuthorizationCredentials | None, Depends(reusable_oauth2)
]  # JWT token 依赖（可能为空）


def _credentials_error() -> UnauthorizedError:
    return UnauthorizedError(message="Could not validate credentials")


def get_optional_user(session: SessionDep, token: TokenDep) -> User | None:
    """
    解析当前用户（可选）

    没有携带 token 时返回 None；携带了但无效时仍然返回 401，
    避免把无效登录当作匿名请求处理。
    """
    if token is None:
        return None
    try:
        payload = jwt.decode(
            token.credentials, settings.SECRET_KEY, algorithms=[security.ALGORITHM]
        )
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise _credentials_error()
    if not token_data.sub:
        raise _credentials_error()
    try:
        user_id = int(token_data.sub)
    except ValueError:
        raise _credentials_error()

    user = session.get(User, user_id)
    if not user:
        raise UnauthorizedError(message="User not found")
    if not user.is_active:
        raise ForbiddenError(message="Inactive user")
    return user


def get_current_user(user: Annotated[User | None, Depends(get_optional_user)]) -> User:
    """获取当前登录用户，未登录返回 401"""
    if user is None:
        raise UnauthorizedError(message="Not authenticated")
    return user


OptionalUser = Annotated[User | None, Depends(get_optional_user)]
CurrentUser = Annotated[User, Depends(get_current_user)]


def get_current_admin(user: CurrentUser) -> User:
    if not user.is_superuser:
        raise ForbiddenError(message="Administrator privileges required")
    return user


CurrentAdmin = Annotated[User, Depends(get_current_admin)]


def get_gateway(session: SessionDep) -> PaymentGateway:
    """
    构造支付网关适配器

    每个请求都重新读取启用的集成记录，后台修改凭据后无需重启。
    没有可用配置时返回未配置的适配器，由编排器在写入任何数据前拒绝请求。
    """
    integration = crud.get_active_integration(session=session, name=ASAAS_INTEGRATION)
    return AsaasGateway(load_config(integration))


GatewayDep = Annotated[PaymentGateway, Depends(get_gateway)]
