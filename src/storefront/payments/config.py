"""PaymentConfig -- 支付服务商配置加载

从环境变量加载配置，密钥使用 SecretStr，避免出现在日志与 repr 中。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class PaymentConfig(BaseModel):
    """支付配置 -- 从环境变量加载

    环境变量:
        STOREFRONT_PAYMENT_MODE: 运行模式（stripe/mock）
        STRIPE_SECRET_KEY: Stripe API 密钥
        STRIPE_WEBHOOK_SECRET: Stripe Webhook 签名密钥
        STOREFRONT_PAYMENT_CURRENCY: 结算币种（默认 ILS）
        STOREFRONT_CLIENT_URL: 前端地址，用于支付完成/取消后的跳转
        STOREFRONT_PAYMENT_TIMEOUT_S: 调用超时（秒，默认 30）
    """

    mode: Literal["stripe", "mock"] = Field(
        default="mock",
        description="支付运行模式：stripe / mock",
    )
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe API 密钥",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe Webhook 签名密钥",
    )
    currency: str = Field(
        default="ILS",
        min_length=3,
        max_length=3,
        description="ISO 4217 币种代码",
    )
    client_url: str = Field(
        default="http://localhost:5173",
        description="前端基础 URL",
    )
    timeout_s: int = Field(
        default=30,
        ge=1,
        description="支付服务商调用超时（秒）",
    )


def load_payment_config() -> PaymentConfig:
    """从环境变量加载支付配置

    Returns:
        PaymentConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("STOREFRONT_PAYMENT_MODE"):
        kwargs["mode"] = val

    if val := os.environ.get("STRIPE_SECRET_KEY"):
        kwargs["stripe_secret_key"] = SecretStr(val)

    if val := os.environ.get("STRIPE_WEBHOOK_SECRET"):
        kwargs["stripe_webhook_secret"] = SecretStr(val)

    if val := os.environ.get("STOREFRONT_PAYMENT_CURRENCY"):
        kwargs["currency"] = val.upper()

    if val := os.environ.get("STOREFRONT_CLIENT_URL"):
        kwargs["client_url"] = val.rstrip("/")

    if val := os.environ.get("STOREFRONT_PAYMENT_TIMEOUT_S"):
        try:
            kwargs["timeout_s"] = int(val)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="STOREFRONT_PAYMENT_TIMEOUT_S",
                value=val,
                fallback=30,
            )

    return PaymentConfig(**kwargs)
