"""SequenceStore SQLite 实现 -- 原子计数器

递增通过单条 INSERT ... ON CONFLICT DO UPDATE ... RETURNING 完成，
由 SQLite 保证读-改-写的原子性，应用层不做先读后写。
"""

import aiosqlite


class SqliteSequenceStore:
    """SequenceStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def increment(self, sequence_key: str) -> int:
        """计数器 +1 并返回新值；key 首次出现时从 1 开始"""
        rows = await self._conn.execute_fetchall(
            """
            INSERT INTO sequences (sequence_key, value) VALUES (?, 1)
            ON CONFLICT(sequence_key) DO UPDATE SET value = value + 1
            RETURNING value
            """,
            (sequence_key,),
        )
        rows = list(rows)
        if not rows:
            raise aiosqlite.OperationalError(
                f"sequence increment returned no row for {sequence_key}"
            )
        return int(rows[0][0])

    async def get_current(self, sequence_key: str) -> int:
        """查询当前值，key 不存在返回 0"""
        cursor = await self._conn.execute(
            "SELECT value FROM sequences WHERE sequence_key = ?",
            (sequence_key,),
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0
