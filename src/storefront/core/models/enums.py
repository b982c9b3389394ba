"""枚举定义

包含 OrderStatus 状态机、PaymentStatus、PaymentIntentStatus、
ResourceType、WebhookProvider、FailedWebhookStatus 枚举，
以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class OrderStatus(StrEnum):
    """订单状态机"""

    PENDING_PAYMENT = "pending_payment"
    # 人工复核（例如支付金额不一致）
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"

    # 终态
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


VALID_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: {
        OrderStatus.PAID,
        OrderStatus.CANCELLED,
        OrderStatus.PENDING,
    },
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    # 终态不可再流转
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[OrderStatus] = {
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
}

# 用户可自行取消的状态（尚未付款）
USER_CANCELLABLE_STATES: set[OrderStatus] = {
    OrderStatus.PENDING_PAYMENT,
    OrderStatus.PENDING,
}


class PaymentStatus(StrEnum):
    """订单上的支付状态"""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentIntentStatus(StrEnum):
    """支付记录状态（与支付服务商的状态对齐）"""

    PENDING = "pending"
    REQUIRES_ACTION = "requires_action"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELED = "canceled"


class ResourceType(StrEnum):
    """幂等记录与审计日志关联的资源类型"""

    ORDER = "order"
    PAYMENT = "payment"
    WEBHOOK_EVENT = "webhook_event"


class WebhookProvider(StrEnum):
    """Webhook 事件来源"""

    STRIPE = "stripe"
    PAYPAL = "paypal"
    MOCK = "mock"


class FailedWebhookStatus(StrEnum):
    """失败 Webhook 重试状态"""

    PENDING = "pending"
    RETRYING = "retrying"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


class ActorType(StrEnum):
    """审计日志中的操作方类型"""

    USER = "user"
    ADMIN = "admin"
    WEBHOOK = "webhook"
    SYSTEM = "system"


class AuditAction(StrEnum):
    """审计动作"""

    ORDER_CREATED = "order_created"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_STATUS_CHANGED = "order_status_changed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_AMOUNT_MISMATCH = "payment_amount_mismatch"
    WEBHOOK_RECEIVED = "webhook_received"


def validate_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed


def map_to_order_payment_status(status: PaymentIntentStatus) -> PaymentStatus:
    """支付记录状态 -> 订单支付状态"""
    if status == PaymentIntentStatus.SUCCEEDED:
        return PaymentStatus.PAID
    if status == PaymentIntentStatus.REFUNDED:
        return PaymentStatus.REFUNDED
    if status in (PaymentIntentStatus.FAILED, PaymentIntentStatus.CANCELED):
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING
