"""Payment 数据模型 -- 订单对应的支付记录"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import PaymentIntentStatus


class Payment(BaseModel):
    """支付记录

    provider_payment_id 为支付服务商侧的会话 ID（如 Stripe checkout session），
    payment_intent_id 在会话完成后由 Webhook 回填。
    """

    payment_id: str = Field(description="唯一标识，ULID 格式")
    order_id: str
    user_id: str
    amount: float = Field(ge=0)
    currency: str = "ILS"
    status: PaymentIntentStatus = Field(default=PaymentIntentStatus.PENDING)
    provider: str = Field(description="stripe / mock")
    provider_payment_id: str | None = None
    payment_intent_id: str | None = None
    client_secret: str | None = None
    checkout_url: str | None = None
    created_at: datetime
    updated_at: datetime
