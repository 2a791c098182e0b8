"""
枚举类型定义模块

所有枚举都继承自 str 和 Enum，既可以直接存入字符串列，又具有枚举的类型安全。
枚举值与对外 API / 支付网关使用的字符串保持一致（大写）。
"""
from enum import Enum


class OrderStatus(str, Enum):
    """
    订单处理状态

    - PENDING: 已创建，等待支付
    - PROCESSING: 支付处理中（如信用卡风控审核）
    - COMPLETED: 已完成（支付确认，权益已发放）
    - CANCELED: 已取消（过期、删除、退款或网关失败）
    """
    pending = "PENDING"
    processing = "PROCESSING"
    completed = "COMPLETED"
    canceled = "CANCELED"


class PaymentStatus(str, Enum):
    """
    支付状态

    终态：CONFIRMED、CANCELED、FAILED、REFUNDED。
    终态永远不会回到 PENDING / PROCESSING。
    """
    pending = "PENDING"
    processing = "PROCESSING"
    paid = "PAID"
    confirmed = "CONFIRMED"
    overdue = "OVERDUE"
    refunded = "REFUNDED"
    failed = "FAILED"
    canceled = "CANCELED"


TERMINAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.confirmed, PaymentStatus.canceled, PaymentStatus.failed, PaymentStatus.refunded}
)
OPEN_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.pending, PaymentStatus.processing, PaymentStatus.paid, PaymentStatus.overdue}
)


class PaymentMethod(str, Enum):
    """
    支付方式

    - PIX: 即时转账码（二维码）
    - BOLETO: 银行票据（异步到账）
    - CREDIT_CARD: 信用卡（同步确认）
    """
    pix = "PIX"
    boleto = "BOLETO"
    credit_card = "CREDIT_CARD"


class ItemKind(str, Enum):
    """可购买商品类型（订单项的判别字段）"""
    course = "COURSE"
    ebook = "EBOOK"
    document = "DOCUMENT"


class ChargeState(str, Enum):
    """
    网关扣款状态（与供应商无关的归一化结果）

    由网关适配器把供应商原始状态映射过来，编排器只看这个值。
    """
    pending = "pending"
    in_review = "in_review"
    settled = "settled"
    overdue = "overdue"
    refunded = "refunded"
    unknown = "unknown"


class GatewayEventStatus(str, Enum):
    """
    Webhook 事件处理状态

    - received: 已登记，处理中（或处理进程中途退出）
    - processed: 已应用到订单
    - ignored: 无需处理（未知事件、订单不存在、终态订单等）
    - failed: 内部处理失败，等待人工对账
    """
    received = "received"
    processed = "processed"
    ignored = "ignored"
    failed = "failed"


class ReconcileOutcome(str, Enum):
    """
    一次对账（webhook / 人工对账）的结果

    - applied: 状态迁移已生效
    - duplicate: 重复投递，之前已经处理过
    - ignored: 无需处理（未知事件、终态订单、非法迁移）
    - order_not_found: externalReference 找不到订单
    - failed: 内部处理失败（已记录，等待人工对账）
    """
    applied = "applied"
    duplicate = "duplicate"
    ignored = "ignored"
    order_not_found = "order_not_found"
    failed = "failed"
