"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中，注册到主应用（edustore/main.py）上。

路由模块说明：
- auth: 登录
- checkout: 结账、订单状态、人工对账
- webhooks: 支付网关回调
- testing: 手工确认支付（非生产环境）
- utils: 健康检查
"""
from fastapi import APIRouter

from edustore.api.routes import (
    auth,  # 认证路由
    checkout,  # 结账路由
    testing,  # 测试路由
    utils,  # 工具路由
    webhooks,  # 网关回调路由
)
from edustore.core.config import settings

# 创建主 API 路由器
api_router = APIRouter()

api_router.include_router(auth.router)  # /auth/*
api_router.include_router(checkout.router)  # /checkout/*
api_router.include_router(webhooks.router)  # /webhooks/*
api_router.include_router(utils.router)  # /utils/*

# 手工确认支付会绕过网关，生产环境不暴露
if settings.ENVIRONMENT != "production":
    api_router.include_router(testing.router)  # /test/*
