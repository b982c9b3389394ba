"""IdempotencyStore SQLite 实现

(key, principal_id) 唯一索引是并发重复请求的最终防线。
过期记录在查询时被忽略，在同 key 重新写入前删除，并由维护命令批量清理。
"""

from datetime import datetime

import aiosqlite

from ..models.idempotency import IdempotencyRecord


class SqliteIdempotencyStore:
    """IdempotencyStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get(
        self, key: str, principal_id: str, now: datetime
    ) -> IdempotencyRecord | None:
        """查询未过期的幂等记录"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM idempotency_records
            WHERE key = ? AND principal_id = ? AND expires_at > ?
            """,
            (key, principal_id, now.isoformat()),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    async def insert(self, record: IdempotencyRecord) -> None:
        """写入幂等记录，先删除同一 (key, principal_id) 的过期记录

        未过期的重复记录触发 aiosqlite.IntegrityError。
        """
        await self._conn.execute(
            """
            DELETE FROM idempotency_records
            WHERE key = ? AND principal_id = ? AND expires_at <= ?
            """,
            (record.key, record.principal_id, record.created_at.isoformat()),
        )
        await self._conn.execute(
            """
            INSERT INTO idempotency_records (key, principal_id, resource_type, resource_id,
                                             request_body, response_status, response_body,
                                             expires_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.key,
                record.principal_id,
                record.resource_type.value,
                record.resource_id,
                record.request_body,
                record.response_status,
                record.response_body,
                record.expires_at.isoformat(),
                record.created_at.isoformat(),
            ),
        )

    async def purge_expired(self, now: datetime) -> int:
        """删除所有过期记录，返回删除条数"""
        cursor = await self._conn.execute(
            "DELETE FROM idempotency_records WHERE expires_at <= ?",
            (now.isoformat(),),
        )
        return cursor.rowcount

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> IdempotencyRecord:
        """将数据库行转换为 IdempotencyRecord 模型"""
        return IdempotencyRecord(
            key=row["key"],
            principal_id=row["principal_id"],
            resource_type=row["resource_type"],
            resource_id=row["resource_id"],
            request_body=row["request_body"],
            response_status=row["response_status"],
            response_body=row["response_body"],
            expires_at=datetime.fromisoformat(row["expires_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
