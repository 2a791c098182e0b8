"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器，
服务层只抛出这些类型，HTTP 状态码的映射只在边界处完成一次。

错误码约定：HTTP 状态码 * 1000 + 序号，例如 409001。
"""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码（用于前端区分不同错误）
    - message: 错误消息
    - status_code: HTTP 状态码
    - data: 附加在错误响应 data 字段中的内容（可选）

    使用示例：
        raise AppError(code=400001, message="Invalid payload", status_code=400)
    """

    default_code = 500000
    default_status = 500

    def __init__(
        self,
        *,
        code: int | None = None,
        message: str,
        status_code: int | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code if code is not None else self.default_code
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.data = data


class ValidationError(AppError):
    """请求内容不合法（无副作用）"""
    default_code = 400100
    default_status = 400


class UnauthorizedError(AppError):
    default_code = 401001
    default_status = 401


class ForbiddenError(AppError):
    default_code = 403001
    default_status = 403


class NotFoundError(AppError):
    """商品或订单不存在"""
    default_code = 404001
    default_status = 404


class ConflictError(AppError):
    """重复购买、重复报名、邮箱已注册（无副作用）"""
    default_code = 409001
    default_status = 409


class GatewayRequestError(AppError):
    """
    网关调用失败

    message 中带有网关返回的第一条错误原因，可直接展示给用户。
    """
    default_code = 502001
    default_status = 502


class GatewayOutcomeUnknownError(GatewayRequestError):
    """
    请求已经发出，但没有收到网关的答复（读超时、连接中断）

    网关可能已经处理了这次请求（例如已经扣款），调用方不能把它当作失败处理，
    应保持订单未决，等待 webhook 或人工对账给出结果。
    """
    default_code = 502002


class GatewayConfigurationError(AppError):
    """没有可用的支付网关集成（未启用或缺少凭据）"""
    default_code = 503001
    default_status = 503


class WebhookProcessingError(AppError):
    """
    Webhook 内部处理失败

    只在服务内部使用，记录到事件表和日志中，永远不会返回给网关。
    """
    default_code = 500101
    default_status = 500


def item_not_found() -> NotFoundError:
    return NotFoundError(code=404101, message="Item not found")


def order_not_found() -> NotFoundError:
    return NotFoundError(code=404201, message="Order not found")


def already_enrolled() -> ConflictError:
    return ConflictError(code=409101, message="Already enrolled in this course")


def already_purchased() -> ConflictError:
    return ConflictError(code=409102, message="Item already purchased")


def email_already_registered() -> ConflictError:
    return ConflictError(code=409201, message="Email already registered")


def gateway_not_configured() -> GatewayConfigurationError:
    return GatewayConfigurationError(message="Payment integration is not configured")
