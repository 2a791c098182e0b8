"""CRUD 操作模块"""
from .catalog import get_purchasable
from .entitlement import (
    grant_entitlement,
    has_entitlement,
    revoke_for_order,
)
from .gateway_event import finish_event, get_event, register_event
from .integration import get_active_integration
from .order import (
    CANCEL,
    CONFIRM,
    FAIL,
    PROCESS,
    REFUND,
    OrderTransition,
    apply_transition,
    create_order,
    get_items,
    get_order,
    get_order_by_charge_id,
)
from .user import (
    authenticate as authenticate_user,
)
from .user import (
    create as create_user,
)
from .user import (
    get_by_email as get_user_by_email,
)

__all__ = [
    "get_purchasable",
    "grant_entitlement",
    "has_entitlement",
    "revoke_for_order",
    "finish_event",
    "get_event",
    "register_event",
    "get_active_integration",
    "CANCEL",
    "CONFIRM",
    "FAIL",
    "PROCESS",
    "REFUND",
    "OrderTransition",
    "apply_transition",
    "create_order",
    "get_items",
    "get_order",
    "get_order_by_charge_id",
    "authenticate_user",
    "create_user",
    "get_user_by_email",
]
