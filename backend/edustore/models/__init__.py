"""
数据库模型定义模块

模型按功能拆分：
- user.py: 用户模型
- catalog.py: 课程 / 电子书 / 文档
- order.py: 订单与订单项
- entitlement.py: 用户权益（课程报名、下载权限）
- integration.py: 支付网关集成配置
- gateway_event.py: 网关 webhook 事件
"""
from sqlmodel import SQLModel

from .base import utc_now
from .catalog import CATALOG_MODELS, Course, Document, Ebook, ItemRef, Purchasable
from .entitlement import Entitlement
from .gateway_event import GatewayEvent
from .integration import ApiIntegration
from .order import Order, OrderItem
from .user import User

__all__ = [
    "SQLModel",
    "utc_now",
    "User",
    "Course",
    "Ebook",
    "Document",
    "ItemRef",
    "Purchasable",
    "CATALOG_MODELS",
    "Order",
    "OrderItem",
    "Entitlement",
    "ApiIntegration",
    "GatewayEvent",
]
