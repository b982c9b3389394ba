"""IdempotencyRecord 数据模型"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import ResourceType


class IdempotencyRecord(BaseModel):
    """幂等记录 -- (key, principal_id) 唯一

    response_body 保存首次响应序列化后的原始 JSON 文本，
    重放时原样返回，保证字节级一致。
    """

    key: str = Field(description="客户端提供的幂等键")
    principal_id: str = Field(description="调用方身份 ID")
    resource_type: ResourceType
    resource_id: str = ""
    request_body: str = Field(default="{}", description="请求体快照（JSON 文本）")
    response_status: int
    response_body: str = Field(description="响应体快照（JSON 文本）")
    expires_at: datetime
    created_at: datetime
