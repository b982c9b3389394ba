"""Webhook 相关数据模型 -- 已处理事件 + 失败待重试事件"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import FailedWebhookStatus, WebhookProvider


class WebhookEvent(BaseModel):
    """已处理的 Webhook 事件 -- event_id 全局唯一"""

    event_id: str = Field(description="支付服务商分配的事件 ID")
    event_type: str
    provider: WebhookProvider
    processed_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class FailedWebhook(BaseModel):
    """处理失败、等待后台重试的 Webhook 事件"""

    failed_id: str = Field(description="唯一标识，ULID 格式")
    event_id: str
    event_type: str
    provider: WebhookProvider
    payload: dict[str, Any] = Field(description="标准化后的事件内容")
    error: str = ""
    retry_count: int = 0
    max_retries: int = 5
    next_retry_at: datetime
    last_attempt_at: datetime | None = None
    status: FailedWebhookStatus = FailedWebhookStatus.PENDING
    created_at: datetime
