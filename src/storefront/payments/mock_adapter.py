"""MockPaymentProvider -- 本地开发/测试用支付服务商

不访问外部网络：创建会话时返回 mock_cs_<ULID>，
Webhook 事件与 Stripe 结构相同但不校验签名。
"""

import structlog
from pydantic import ValidationError as PydanticValidationError
from storefront.core.models import PaymentIntentStatus, WebhookProvider
from ulid import ULID

from .exceptions import WebhookPayloadError
from .models import (
    CreateIntentParams,
    PaymentIntentResult,
    ProviderEvent,
    StripeEventEnvelope,
    event_from_envelope,
)

log = structlog.get_logger()


class MockPaymentProvider:
    """Mock 支付服务商"""

    name = "mock"

    def __init__(self, client_url: str = "http://localhost:5173") -> None:
        self._client_url = client_url.rstrip("/")

    async def create_payment_intent(
        self, params: CreateIntentParams
    ) -> PaymentIntentResult:
        """返回一个待支付的 mock 会话"""
        session_id = f"mock_cs_{ULID()}"
        log.info(
            "mock_checkout_created",
            order_id=params.order_id,
            session_id=session_id,
            amount=params.amount,
        )
        return PaymentIntentResult(
            provider=self.name,
            provider_payment_id=session_id,
            status=PaymentIntentStatus.PENDING,
            client_secret=f"{session_id}_secret",
            checkout_url=f"{self._client_url}/mock-checkout/{session_id}",
        )

    def parse_webhook(self, payload: bytes, signature: str | None) -> ProviderEvent:
        """解析未签名的 Webhook 事件

        Raises:
            WebhookPayloadError: 请求体结构非法
        """
        try:
            envelope = StripeEventEnvelope.model_validate_json(payload)
        except PydanticValidationError as e:
            raise WebhookPayloadError("Webhook payload has an unexpected shape") from e
        return event_from_envelope(envelope, WebhookProvider.MOCK)

    async def close(self) -> None:
        return None
