"""WebhookStore SQLite 实现

webhook_events：已处理事件（event_id 主键，去重依据）。
failed_webhooks：处理失败、等待后台重试的事件。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import FailedWebhookStatus
from ..models.webhook import FailedWebhook, WebhookEvent


class SqliteWebhookStore:
    """WebhookStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def has_event(self, event_id: str) -> bool:
        """事件是否已处理"""
        cursor = await self._conn.execute(
            "SELECT 1 FROM webhook_events WHERE event_id = ?",
            (event_id,),
        )
        return await cursor.fetchone() is not None

    async def get_event(self, event_id: str) -> WebhookEvent | None:
        cursor = await self._conn.execute(
            "SELECT * FROM webhook_events WHERE event_id = ?",
            (event_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return WebhookEvent(
            event_id=row["event_id"],
            event_type=row["event_type"],
            provider=row["provider"],
            processed_at=datetime.fromisoformat(row["processed_at"]),
            metadata=json.loads(row["metadata"]),
        )

    async def insert_event(self, event: WebhookEvent) -> None:
        """记录已处理事件；event_id 重复时触发 aiosqlite.IntegrityError"""
        await self._conn.execute(
            """
            INSERT INTO webhook_events (event_id, event_type, provider, processed_at, metadata)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.event_type,
                event.provider.value,
                event.processed_at.isoformat(),
                json.dumps(event.metadata, ensure_ascii=False),
            ),
        )

    async def count_events(self, event_id: str) -> int:
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM webhook_events WHERE event_id = ?",
            (event_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def purge_events_before(self, cutoff: datetime) -> int:
        """删除 processed_at 早于 cutoff 的事件，返回删除条数"""
        cursor = await self._conn.execute(
            "DELETE FROM webhook_events WHERE processed_at < ?",
            (cutoff.isoformat(),),
        )
        return cursor.rowcount

    async def insert_failed(self, failed: FailedWebhook) -> None:
        """写入失败事件"""
        await self._conn.execute(
            """
            INSERT INTO failed_webhooks (failed_id, event_id, event_type, provider, payload,
                                         error, retry_count, max_retries, next_retry_at,
                                         last_attempt_at, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                failed.failed_id,
                failed.event_id,
                failed.event_type,
                failed.provider.value,
                json.dumps(failed.payload, ensure_ascii=False),
                failed.error,
                failed.retry_count,
                failed.max_retries,
                failed.next_retry_at.isoformat(),
                failed.last_attempt_at.isoformat() if failed.last_attempt_at else None,
                failed.status.value,
                failed.created_at.isoformat(),
            ),
        )

    async def get_failed(self, failed_id: str) -> FailedWebhook | None:
        cursor = await self._conn.execute(
            "SELECT * FROM failed_webhooks WHERE failed_id = ?",
            (failed_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_failed(row)

    async def get_open_failed_for_event(self, event_id: str) -> FailedWebhook | None:
        """查询同一事件尚未结束的失败记录（pending / retrying）"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM failed_webhooks
            WHERE event_id = ? AND status IN (?, ?)
            ORDER BY created_at DESC LIMIT 1
            """,
            (
                event_id,
                FailedWebhookStatus.PENDING.value,
                FailedWebhookStatus.RETRYING.value,
            ),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_failed(row)

    async def list_due(self, now: datetime, limit: int) -> list[FailedWebhook]:
        """查询到期待重试的失败事件，按 next_retry_at 正序"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM failed_webhooks
            WHERE status IN (?, ?) AND next_retry_at <= ? AND retry_count < max_retries
            ORDER BY next_retry_at ASC
            LIMIT ?
            """,
            (
                FailedWebhookStatus.PENDING.value,
                FailedWebhookStatus.RETRYING.value,
                now.isoformat(),
                limit,
            ),
        )
        rows = await cursor.fetchall()
        return [self._row_to_failed(row) for row in rows]

    async def update_failed(self, failed: FailedWebhook) -> None:
        """更新重试进度"""
        await self._conn.execute(
            """
            UPDATE failed_webhooks
            SET error = ?, retry_count = ?, next_retry_at = ?, last_attempt_at = ?, status = ?
            WHERE failed_id = ?
            """,
            (
                failed.error,
                failed.retry_count,
                failed.next_retry_at.isoformat(),
                failed.last_attempt_at.isoformat() if failed.last_attempt_at else None,
                failed.status.value,
                failed.failed_id,
            ),
        )

    @staticmethod
    def _row_to_failed(row: aiosqlite.Row) -> FailedWebhook:
        """将数据库行转换为 FailedWebhook 模型"""
        return FailedWebhook(
            failed_id=row["failed_id"],
            event_id=row["event_id"],
            event_type=row["event_type"],
            provider=row["provider"],
            payload=json.loads(row["payload"]),
            error=row["error"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            next_retry_at=datetime.fromisoformat(row["next_retry_at"]),
            last_attempt_at=(
                datetime.fromisoformat(row["last_attempt_at"])
                if row["last_attempt_at"]
                else None
            ),
            status=row["status"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
