"""IdempotencyGuard -- 变更类请求幂等处理

流程：
1. 无幂等键：直接执行 handler（兼容未携带幂等键的客户端）
2. 命中未过期记录：原样返回首次响应，handler 不执行
3. 未命中：执行 handler，2xx 结果写入幂等记录（保留 24 小时）后返回

同进程内同一 (key, principal_id) 的并发请求由 asyncio.Lock 串行化；
跨进程以 (key, principal_id) 唯一索引兜底，写入冲突时回读已有记录。
记录写入失败不回滚 handler 已产生的副作用：瞬时错误有限次重试，
仍失败则记录日志后吞掉，调用方照常拿到真实结果。
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import aiosqlite
import structlog
from pydantic import BaseModel, Field

from .config import IDEMPOTENCY_SAVE_ATTEMPTS, IDEMPOTENCY_TTL_HOURS
from .exceptions import AuthError, InfrastructureError
from .models.enums import ResourceType
from .models.idempotency import IdempotencyRecord
from .store import StoreGroup

log = structlog.get_logger()


class HandlerResult(BaseModel):
    """业务 handler 的返回值"""

    status_code: int
    body: dict[str, Any]
    resource_id: str = ""


class IdempotentResponse(BaseModel):
    """幂等处理结果 -- body 为序列化后的 JSON 文本"""

    status_code: int
    body: str
    replayed: bool = Field(default=False, description="True 表示来自已存储记录的重放")
    resource_id: str = ""

    def json_body(self) -> dict[str, Any]:
        return json.loads(self.body)


Handler = Callable[[], Awaitable[HandlerResult]]


def serialize_body(body: dict[str, Any]) -> str:
    """响应体只序列化一次，首次返回与重放共用同一份文本"""
    return json.dumps(body, ensure_ascii=False, separators=(",", ":"))


def snapshot_request(body: dict[str, Any] | None) -> str:
    return json.dumps(body or {}, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


class IdempotencyGuard:
    """幂等守卫"""

    def __init__(
        self,
        store_group: StoreGroup,
        ttl: timedelta | None = None,
        save_attempts: int = IDEMPOTENCY_SAVE_ATTEMPTS,
        retry_delay_s: float = 0.05,
    ) -> None:
        self._stores = store_group
        self._ttl = ttl or timedelta(hours=IDEMPOTENCY_TTL_HOURS)
        self._save_attempts = save_attempts
        self._retry_delay_s = retry_delay_s
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_refs: dict[tuple[str, str], int] = {}

    async def process(
        self,
        key: str | None,
        principal_id: str | None,
        resource_type: ResourceType,
        request_body: dict[str, Any] | None,
        handler: Handler,
    ) -> IdempotentResponse:
        """幂等执行 handler

        Raises:
            AuthError: 携带幂等键但没有调用方身份
        """
        if not key:
            result = await handler()
            return IdempotentResponse(
                status_code=result.status_code,
                body=serialize_body(result.body),
                resource_id=result.resource_id,
            )

        if not principal_id:
            raise AuthError("Authentication required for idempotent requests")

        request_snapshot = snapshot_request(request_body)
        lock_key = (key, principal_id)
        lock = self._acquire_lock(lock_key)
        try:
            async with lock:
                existing = await self._lookup(key, principal_id)
                if existing is not None:
                    return self._replay(existing, request_snapshot)

                result = await handler()
                body_text = serialize_body(result.body)

                if 200 <= result.status_code < 300:
                    now = datetime.now(UTC)
                    record = IdempotencyRecord(
                        key=key,
                        principal_id=principal_id,
                        resource_type=resource_type,
                        resource_id=result.resource_id,
                        request_body=request_snapshot,
                        response_status=result.status_code,
                        response_body=body_text,
                        expires_at=now + self._ttl,
                        created_at=now,
                    )
                    winner = await self._save(record)
                    if winner is not None:
                        return self._replay(winner, request_snapshot)

                return IdempotentResponse(
                    status_code=result.status_code,
                    body=body_text,
                    resource_id=result.resource_id,
                )
        finally:
            self._release_lock(lock_key)

    async def _lookup(self, key: str, principal_id: str) -> IdempotencyRecord | None:
        """查询已有记录；存储不可用时放行请求，由唯一索引兜底"""
        try:
            return await self._stores.idempotency_store.get(
                key, principal_id, datetime.now(UTC)
            )
        except aiosqlite.Error as e:
            log.warning(
                "idempotency_lookup_failed",
                key=key,
                error_type=type(e).__name__,
            )
            return None

    def _replay(
        self, record: IdempotencyRecord, request_snapshot: str
    ) -> IdempotentResponse:
        if record.request_body != request_snapshot:
            log.warning(
                "idempotency_key_reused_with_different_body",
                key=record.key,
                resource_type=record.resource_type,
                resource_id=record.resource_id,
            )
        log.info(
            "idempotency_cache_hit",
            key=record.key,
            resource_type=record.resource_type,
            resource_id=record.resource_id,
        )
        return IdempotentResponse(
            status_code=record.response_status,
            body=record.response_body,
            replayed=True,
            resource_id=record.resource_id,
        )

    async def _save(self, record: IdempotencyRecord) -> IdempotencyRecord | None:
        """写入幂等记录

        Returns:
            唯一索引冲突时返回已存在的记录（另一进程抢先写入），否则 None
        """
        for attempt in range(1, self._save_attempts + 1):
            try:
                async with self._stores.atomic():
                    await self._stores.idempotency_store.insert(record)
                return None
            except aiosqlite.IntegrityError:
                existing = await self._lookup(record.key, record.principal_id)
                log.warning(
                    "idempotency_record_conflict",
                    key=record.key,
                    resource_id=record.resource_id,
                    winner_resource_id=existing.resource_id if existing else None,
                )
                return existing
            except (InfrastructureError, aiosqlite.Error) as e:
                if attempt < self._save_attempts:
                    log.warning(
                        "idempotency_save_retry",
                        key=record.key,
                        attempt=attempt,
                        error_type=type(e).__name__,
                    )
                    await asyncio.sleep(self._retry_delay_s * attempt)
                    continue
                log.error(
                    "idempotency_save_failed",
                    key=record.key,
                    resource_type=record.resource_type,
                    resource_id=record.resource_id,
                    error_type=type(e).__name__,
                )
        return None

    def _acquire_lock(self, lock_key: tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.get(lock_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[lock_key] = lock
        self._lock_refs[lock_key] = self._lock_refs.get(lock_key, 0) + 1
        return lock

    def _release_lock(self, lock_key: tuple[str, str]) -> None:
        """最后一个使用者离开后清理 lock，避免字典无限增长"""
        refs = self._lock_refs.get(lock_key, 1) - 1
        if refs <= 0:
            self._lock_refs.pop(lock_key, None)
            self._locks.pop(lock_key, None)
        else:
            self._lock_refs[lock_key] = refs
