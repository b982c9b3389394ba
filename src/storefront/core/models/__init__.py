"""Storefront Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .audit import SYSTEM_ACTOR, AuditActor, AuditEntry
from .enums import (
    TERMINAL_STATES,
    USER_CANCELLABLE_STATES,
    VALID_TRANSITIONS,
    ActorType,
    AuditAction,
    FailedWebhookStatus,
    OrderStatus,
    PaymentIntentStatus,
    PaymentStatus,
    ResourceType,
    WebhookProvider,
    map_to_order_payment_status,
    validate_transition,
)
from .idempotency import IdempotencyRecord
from .order import (
    Order,
    OrderItem,
    ShippingAddress,
    TrackingEntry,
    to_decimal,
    to_minor_units,
)
from .payment import Payment
from .webhook import FailedWebhook, WebhookEvent

__all__ = [
    # 枚举
    "OrderStatus",
    "PaymentStatus",
    "PaymentIntentStatus",
    "ResourceType",
    "WebhookProvider",
    "FailedWebhookStatus",
    "ActorType",
    "AuditAction",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "USER_CANCELLABLE_STATES",
    "validate_transition",
    "map_to_order_payment_status",
    # Order
    "Order",
    "OrderItem",
    "ShippingAddress",
    "TrackingEntry",
    "to_decimal",
    "to_minor_units",
    # Payment
    "Payment",
    # Idempotency
    "IdempotencyRecord",
    # Webhook
    "WebhookEvent",
    "FailedWebhook",
    # Audit
    "AuditActor",
    "AuditEntry",
    "SYSTEM_ACTOR",
]
