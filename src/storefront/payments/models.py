"""支付层数据模型

- CreateIntentParams / PaymentIntentResult：创建支付会话的输入输出
- StripeEventEnvelope：Webhook 请求体的边界 DTO（Stripe 事件结构，mock 模式复用）
- ProviderEvent：标准化后的事件，WebhookReconciler 的唯一输入
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from storefront.core.models import PaymentIntentStatus, WebhookProvider


class CreateIntentParams(BaseModel):
    """创建支付会话参数"""

    order_id: str
    order_number: str
    user_id: str
    amount: float = Field(gt=0, description="订单金额（主币种单位）")
    currency: str
    idempotency_key: str = Field(description="透传给支付服务商的幂等键")


class PaymentIntentResult(BaseModel):
    """支付会话创建结果"""

    provider: str
    provider_payment_id: str = Field(description="支付服务商会话 ID")
    status: PaymentIntentStatus = PaymentIntentStatus.PENDING
    payment_intent_id: str | None = None
    client_secret: str | None = None
    checkout_url: str | None = None


class StripeEventObject(BaseModel):
    """data.object -- checkout session / payment intent / 通用支付对象"""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    object: str = ""
    payment_intent: str | None = None
    payment_status: str | None = None
    client_reference_id: str | None = None
    amount_total: int | None = None
    amount: int | None = None
    amount_received: int | None = None
    order_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    last_payment_error: dict[str, Any] | None = None


class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: StripeEventObject


class StripeEventEnvelope(BaseModel):
    """Webhook 事件外层结构"""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    data: StripeEventData
    created: int | None = None


class ProviderEvent(BaseModel):
    """标准化支付事件

    outcome 为 None 表示该事件不驱动订单状态流转
    （例如未付款完成的 checkout 会话，仅用于回填 payment intent）。
    """

    event_id: str
    event_type: str
    provider: WebhookProvider
    provider_payment_id: str | None = None
    payment_intent_id: str | None = None
    order_id: str | None = None
    amount_minor: int | None = Field(default=None, description="事件金额（最小货币单位）")
    outcome: PaymentIntentStatus | None = None
    failure_reason: str = ""

    @property
    def is_handled(self) -> bool:
        """是否为系统关心的事件类型"""
        return self.event_type in HANDLED_EVENT_TYPES

    @property
    def has_reference(self) -> bool:
        return bool(self.provider_payment_id or self.payment_intent_id or self.order_id)


CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"

HANDLED_EVENT_TYPES: frozenset[str] = frozenset(
    {
        CHECKOUT_SESSION_COMPLETED,
        PAYMENT_INTENT_SUCCEEDED,
        PAYMENT_INTENT_FAILED,
        PAYMENT_SUCCEEDED,
        PAYMENT_FAILED,
    }
)


def _metadata_order_id(obj: StripeEventObject) -> str | None:
    value = obj.metadata.get("order_id") or obj.metadata.get("orderId")
    return str(value) if value else None


def event_from_envelope(
    envelope: StripeEventEnvelope, provider: WebhookProvider
) -> ProviderEvent:
    """将 Webhook 外层结构映射为 ProviderEvent"""
    obj = envelope.data.object
    base = {
        "event_id": envelope.id,
        "event_type": envelope.type,
        "provider": provider,
    }

    if envelope.type == CHECKOUT_SESSION_COMPLETED:
        return ProviderEvent(
            **base,
            provider_payment_id=obj.id,
            payment_intent_id=obj.payment_intent,
            order_id=_metadata_order_id(obj) or obj.client_reference_id,
            amount_minor=obj.amount_total,
            outcome=(
                PaymentIntentStatus.SUCCEEDED if obj.payment_status == "paid" else None
            ),
        )

    if envelope.type in (PAYMENT_INTENT_SUCCEEDED, PAYMENT_INTENT_FAILED):
        succeeded = envelope.type == PAYMENT_INTENT_SUCCEEDED
        reason = ""
        if obj.last_payment_error:
            reason = str(obj.last_payment_error.get("message", ""))
        return ProviderEvent(
            **base,
            payment_intent_id=obj.id,
            order_id=_metadata_order_id(obj),
            amount_minor=obj.amount_received if succeeded and obj.amount_received else obj.amount,
            outcome=PaymentIntentStatus.SUCCEEDED if succeeded else PaymentIntentStatus.FAILED,
            failure_reason=reason,
        )

    if envelope.type in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
        succeeded = envelope.type == PAYMENT_SUCCEEDED
        return ProviderEvent(
            **base,
            provider_payment_id=obj.id or None,
            payment_intent_id=obj.payment_intent,
            order_id=obj.order_id or _metadata_order_id(obj),
            amount_minor=obj.amount if obj.amount is not None else obj.amount_total,
            outcome=PaymentIntentStatus.SUCCEEDED if succeeded else PaymentIntentStatus.FAILED,
            failure_reason="" if succeeded else "payment failed",
        )

    return ProviderEvent(**base)
