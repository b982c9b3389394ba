"""StripePaymentProvider -- Stripe Checkout 调用封装

通过官方 stripe SDK（httpx 异步客户端）创建 Checkout 会话，
使用 stripe.Webhook.construct_event 校验 Webhook 签名。
"""

import time

import httpx
import stripe
import structlog
from pydantic import ValidationError as PydanticValidationError
from storefront.core.models import PaymentIntentStatus, WebhookProvider, to_minor_units

from .exceptions import (
    PaymentDeclinedError,
    PaymentError,
    ProviderUnreachableError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from .models import (
    CreateIntentParams,
    PaymentIntentResult,
    ProviderEvent,
    StripeEventEnvelope,
    event_from_envelope,
)

log = structlog.get_logger()

# 连接类异常（映射为 ProviderUnreachableError -> 503）
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    TimeoutError,
    httpx.ConnectError,
    httpx.TimeoutException,
    stripe.APIConnectionError,
    stripe.RateLimitError,
)


class StripePaymentProvider:
    """Stripe Checkout 支付服务商"""

    name = "stripe"

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        client_url: str = "http://localhost:5173",
        timeout_s: int = 30,
        client: stripe.StripeClient | None = None,
    ) -> None:
        """初始化 Stripe 客户端

        Args:
            secret_key: Stripe API 密钥
            webhook_secret: Webhook 签名密钥
            client_url: 前端地址，用于 success/cancel 跳转
            timeout_s: 请求超时（秒）
            client: 预构造的 StripeClient（测试注入）
        """
        self._webhook_secret = webhook_secret
        self._client_url = client_url.rstrip("/")
        self._http_client: stripe.HTTPXClient | None = None
        if client is None:
            self._http_client = stripe.HTTPXClient(timeout=timeout_s)
            client = stripe.StripeClient(secret_key, http_client=self._http_client)
        self._client = client

    async def create_payment_intent(
        self, params: CreateIntentParams
    ) -> PaymentIntentResult:
        """创建 Checkout 会话

        Raises:
            ProviderUnreachableError: Stripe 不可达或限流
            PaymentDeclinedError: Stripe 拒绝请求
            PaymentError: 其他 Stripe 错误
        """
        start_time = time.monotonic()
        session_params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": params.currency.lower(),
                        "product_data": {
                            "name": f"Order {params.order_number}",
                            "description": f"Payment for order {params.order_number}",
                        },
                        "unit_amount": to_minor_units(params.amount),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": f"{self._client_url}/orders/{params.order_id}?payment=success",
            "cancel_url": f"{self._client_url}/checkout?payment=cancelled",
            "client_reference_id": params.order_id,
            "metadata": {
                "order_id": params.order_id,
                "user_id": params.user_id,
                "order_number": params.order_number,
            },
            "payment_intent_data": {
                "metadata": {
                    "order_id": params.order_id,
                    "order_number": params.order_number,
                },
            },
        }

        try:
            session = await self._client.checkout.sessions.create_async(
                params=session_params,
                options={"idempotency_key": params.idempotency_key},
            )
        except Exception as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            log.error(
                "stripe_checkout_failed",
                order_id=params.order_id,
                error_type=type(e).__name__,
                duration_ms=duration_ms,
            )
            if isinstance(e, _CONNECTION_ERROR_TYPES):
                raise ProviderUnreachableError(self.name, e) from e
            if isinstance(e, stripe.CardError | stripe.InvalidRequestError):
                raise PaymentDeclinedError(
                    getattr(e, "user_message", None) or "Payment was declined"
                ) from e
            if isinstance(e, stripe.StripeError):
                raise PaymentError(f"Stripe rejected the checkout request: {e}") from e
            raise

        status = (
            PaymentIntentStatus.SUCCEEDED
            if session.payment_status == "paid"
            else PaymentIntentStatus.PENDING
        )
        log.info(
            "stripe_checkout_created",
            order_id=params.order_id,
            session_id=session.id,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        payment_intent = getattr(session, "payment_intent", None)
        return PaymentIntentResult(
            provider=self.name,
            provider_payment_id=session.id,
            status=status,
            payment_intent_id=payment_intent if isinstance(payment_intent, str) else None,
            client_secret=session.client_secret,
            checkout_url=session.url,
        )

    def parse_webhook(self, payload: bytes, signature: str | None) -> ProviderEvent:
        """校验签名并解析 Webhook 事件

        Raises:
            WebhookSignatureError: 签名缺失或不匹配
            WebhookPayloadError: 请求体结构非法
        """
        if not signature or not self._webhook_secret:
            raise WebhookSignatureError("Missing Stripe signature or webhook secret")

        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            log.warning("stripe_webhook_signature_invalid", error=str(e))
            raise WebhookSignatureError("Webhook signature verification failed") from e
        except ValueError as e:
            raise WebhookPayloadError(f"Invalid webhook payload: {e}") from e

        try:
            envelope = StripeEventEnvelope.model_validate_json(payload)
        except PydanticValidationError as e:
            raise WebhookPayloadError("Webhook payload has an unexpected shape") from e

        return event_from_envelope(envelope, WebhookProvider.STRIPE)

    async def close(self) -> None:
        """释放自建的 HTTP 连接池"""
        if self._http_client is not None:
            await self._http_client.close_async()
