"""AuditStore SQLite 实现

audit_log 只提供 insert 与查询，不提供 update / delete。
写入不自行提交，由调用方所在的 atomic() 事务统一提交。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.audit import AuditEntry


class SqliteAuditStore:
    """AuditStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def insert(self, entry: AuditEntry) -> None:
        await self._conn.execute(
            """
            INSERT INTO audit_log (audit_id, actor_type, actor_id, action, resource_type,
                                   resource_id, event_id, ts, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.audit_id,
                entry.actor_type.value,
                entry.actor_id,
                entry.action.value,
                entry.resource_type.value,
                entry.resource_id,
                entry.event_id,
                entry.ts.isoformat(),
                json.dumps(entry.metadata, ensure_ascii=False),
            ),
        )

    async def list_for_resource(self, resource_id: str, limit: int = 100) -> list[AuditEntry]:
        """按资源查询，时间正序"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM audit_log WHERE resource_id = ?
            ORDER BY ts ASC, rowid ASC LIMIT ?
            """,
            (resource_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def list_for_actor(self, actor_id: str, limit: int = 100) -> list[AuditEntry]:
        """按操作方查询，最新在前"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM audit_log WHERE actor_id = ?
            ORDER BY ts DESC, rowid DESC LIMIT ?
            """,
            (actor_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def list_for_event(self, event_id: str) -> list[AuditEntry]:
        cursor = await self._conn.execute(
            "SELECT * FROM audit_log WHERE event_id = ? ORDER BY ts ASC, rowid ASC",
            (event_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> AuditEntry:
        return AuditEntry(
            audit_id=row["audit_id"],
            actor_type=row["actor_type"],
            actor_id=row["actor_id"],
            action=row["action"],
            resource_type=row["resource_type"],
            resource_id=row["resource_id"],
            event_id=row["event_id"],
            ts=datetime.fromisoformat(row["ts"]),
            metadata=json.loads(row["metadata"]),
        )
