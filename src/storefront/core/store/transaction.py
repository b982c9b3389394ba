"""事务封装

所有 Store 共享同一个 aiosqlite 连接，sqlite3 的隐式事务在连接级别生效：
任意协程的 commit 会一并提交其他协程尚未完成的写入。
因此所有写事务通过同一把 asyncio.Lock 串行化，单个事务内的多条写入
要么一起提交，要么一起回滚。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

import aiosqlite
import structlog

from ..exceptions import ConflictError, InfrastructureError
from ..models.audit import AuditEntry
from ..models.enums import OrderStatus, PaymentStatus
from ..models.order import Order, TrackingEntry
from ..models.payment import Payment
from .audit_store import SqliteAuditStore
from .order_store import SqliteOrderStore
from .payment_store import SqlitePaymentStore

log = structlog.get_logger()


class OrderStatusConflictError(ConflictError):
    """CAS 更新失败：订单状态已被并发修改"""

    code = "ORDER_STATUS_CONFLICT"


@asynccontextmanager
async def atomic(
    conn: aiosqlite.Connection,
    write_lock: asyncio.Lock,
) -> AsyncIterator[aiosqlite.Connection]:
    """在写锁保护下执行单个事务，成功提交、异常回滚

    aiosqlite.IntegrityError 原样抛出（调用方据此判断唯一约束冲突），
    其他 sqlite 错误包装为 InfrastructureError。
    """
    async with write_lock:
        try:
            yield conn
            await conn.commit()
        except aiosqlite.IntegrityError:
            await conn.rollback()
            raise
        except aiosqlite.Error as e:
            await conn.rollback()
            log.error("sqlite_transaction_failed", error_type=type(e).__name__, error=str(e))
            raise InfrastructureError(f"Storage operation failed: {e}") from e
        except BaseException:
            await conn.rollback()
            raise


async def create_order_with_payment(
    conn: aiosqlite.Connection,
    write_lock: asyncio.Lock,
    order_store: SqliteOrderStore,
    payment_store: SqlitePaymentStore,
    order: Order,
    payment: Payment,
    audit_store: SqliteAuditStore | None = None,
    audit_entry: AuditEntry | None = None,
) -> None:
    """同一事务内写入订单、初始追踪条目、支付记录与审计记录

    任一写入失败则全部回滚，不会留下孤立订单。
    """
    async with atomic(conn, write_lock):
        await order_store.insert_order(order)
        for entry in order.tracking_history:
            await order_store.append_tracking(order.order_id, entry)
        await payment_store.insert_payment(payment)
        if audit_store is not None and audit_entry is not None:
            await audit_store.insert(audit_entry)


async def transition_order(
    conn: aiosqlite.Connection,
    write_lock: asyncio.Lock,
    order_store: SqliteOrderStore,
    order_id: str,
    expected_status: OrderStatus,
    entry: TrackingEntry,
    payment_status: PaymentStatus,
    updated_at: datetime,
    audit_store: SqliteAuditStore | None = None,
    audit_entry: AuditEntry | None = None,
) -> None:
    """CAS 更新订单状态，追加追踪记录与审计记录（同一事务）

    Raises:
        OrderStatusConflictError: 当前状态已不是 expected_status
    """
    async with atomic(conn, write_lock):
        updated = await order_store.update_status_if(
            order_id=order_id,
            expected_status=expected_status,
            new_status=entry.status,
            payment_status=payment_status,
            updated_at=updated_at,
        )
        if not updated:
            raise OrderStatusConflictError(
                f"Order {order_id} is no longer in status {expected_status}"
            )
        await order_store.append_tracking(order_id, entry)
        if audit_store is not None and audit_entry is not None:
            await audit_store.insert(audit_entry)
