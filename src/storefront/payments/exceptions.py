"""支付层异常

均继承自 storefront.core.exceptions 中的分类，
由 gateway 异常处理器按对应 HTTP 状态码渲染。
"""

from storefront.core.exceptions import (
    ExternalServiceError,
    PaymentError,
    StorefrontError,
    ValidationError,
)


class ProviderUnreachableError(ExternalServiceError):
    """支付服务商不可达（连接失败、超时、限流等）"""

    code = "PAYMENT_PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str, original_error: Exception) -> None:
        """
        Args:
            provider: 支付服务商名称
            original_error: 原始异常
        """
        super().__init__(f"Payment provider {provider} is unreachable")
        self.provider = provider
        self.original_error = original_error


class PaymentDeclinedError(PaymentError):
    """支付服务商拒绝请求"""

    code = "PAYMENT_DECLINED"


class WebhookSignatureError(ValidationError):
    """Webhook 签名缺失或校验失败"""

    code = "INVALID_WEBHOOK_SIGNATURE"


class WebhookPayloadError(ValidationError):
    """Webhook 请求体无法解析"""

    code = "INVALID_WEBHOOK_PAYLOAD"


class PaymentConfigError(StorefrontError):
    """支付配置缺失（如 stripe 模式下未设置密钥）"""

    code = "PAYMENT_CONFIG_ERROR"
