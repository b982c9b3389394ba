"""审计日志数据模型 -- 谁在何时对哪个资源做了什么

只追加，不修改、不删除。与其描述的状态变更写在同一个事务里。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ActorType, AuditAction, ResourceType


class AuditActor(BaseModel):
    """操作方"""

    actor_type: ActorType
    actor_id: str


SYSTEM_ACTOR = AuditActor(actor_type=ActorType.SYSTEM, actor_id="system")


class AuditEntry(BaseModel):
    """一条审计记录"""

    audit_id: str = Field(description="唯一标识，ULID 格式")
    actor_type: ActorType
    actor_id: str
    action: AuditAction
    resource_type: ResourceType
    resource_id: str
    event_id: str | None = Field(default=None, description="驱动该动作的 Webhook 事件 ID")
    ts: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
