"""Storefront Payments -- 支付服务商抽象层

对外暴露支付配置、服务商实现、标准化事件模型与异常。
"""

from typing import Protocol

# 配置
from .config import PaymentConfig, load_payment_config

# 异常
from .exceptions import (
    PaymentConfigError,
    PaymentDeclinedError,
    ProviderUnreachableError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from .mock_adapter import MockPaymentProvider

# 数据模型
from .models import (
    HANDLED_EVENT_TYPES,
    CreateIntentParams,
    PaymentIntentResult,
    ProviderEvent,
    StripeEventEnvelope,
    event_from_envelope,
)

# 核心组件
from .stripe_client import StripePaymentProvider


class PaymentProvider(Protocol):
    """支付服务商接口"""

    name: str

    async def create_payment_intent(
        self, params: CreateIntentParams
    ) -> PaymentIntentResult: ...

    def parse_webhook(self, payload: bytes, signature: str | None) -> ProviderEvent: ...

    async def close(self) -> None: ...


def build_payment_provider(config: PaymentConfig) -> PaymentProvider:
    """根据配置构造支付服务商

    Raises:
        PaymentConfigError: stripe 模式下缺少密钥
    """
    if config.mode == "stripe":
        secret_key = config.stripe_secret_key.get_secret_value()
        if not secret_key:
            raise PaymentConfigError("STRIPE_SECRET_KEY is not set")
        return StripePaymentProvider(
            secret_key=secret_key,
            webhook_secret=config.stripe_webhook_secret.get_secret_value(),
            client_url=config.client_url,
            timeout_s=config.timeout_s,
        )
    return MockPaymentProvider(client_url=config.client_url)


__all__ = [
    "PaymentProvider",
    "build_payment_provider",
    "PaymentConfig",
    "load_payment_config",
    "StripePaymentProvider",
    "MockPaymentProvider",
    "CreateIntentParams",
    "PaymentIntentResult",
    "ProviderEvent",
    "StripeEventEnvelope",
    "HANDLED_EVENT_TYPES",
    "event_from_envelope",
    "PaymentConfigError",
    "PaymentDeclinedError",
    "ProviderUnreachableError",
    "WebhookPayloadError",
    "WebhookSignatureError",
]
