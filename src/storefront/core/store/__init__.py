"""Storefront Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from .audit_store import SqliteAuditStore
from .idempotency_store import SqliteIdempotencyStore
from .order_store import SqliteOrderStore
from .payment_store import SqlitePaymentStore
from .sequence_store import SqliteSequenceStore
from .sqlite_init import init_db
from .transaction import (
    OrderStatusConflictError,
    atomic,
    create_order_with_payment,
    transition_order,
)
from .webhook_store import SqliteWebhookStore


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接与写锁"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.write_lock = asyncio.Lock()
        self.order_store = SqliteOrderStore(conn)
        self.payment_store = SqlitePaymentStore(conn)
        self.sequence_store = SqliteSequenceStore(conn)
        self.idempotency_store = SqliteIdempotencyStore(conn)
        self.webhook_store = SqliteWebhookStore(conn)
        self.audit_store = SqliteAuditStore(conn)

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[aiosqlite.Connection]:
        """在共享写锁下开启一个事务"""
        async with atomic(self.conn, self.write_lock) as conn:
            yield conn


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteOrderStore",
    "SqlitePaymentStore",
    "SqliteSequenceStore",
    "SqliteIdempotencyStore",
    "SqliteWebhookStore",
    "SqliteAuditStore",
    "OrderStatusConflictError",
    "init_db",
    "atomic",
    "create_order_with_payment",
    "transition_order",
]
