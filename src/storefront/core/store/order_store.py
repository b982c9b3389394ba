"""OrderStore SQLite 实现

orders 表保存订单当前状态，order_tracking 表保存追加式追踪历史。
本模块只执行 SQL，不负责提交事务（由 transaction.atomic 统一管理）。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import OrderStatus, PaymentStatus
from ..models.order import Order, OrderItem, ShippingAddress, TrackingEntry


class SqliteOrderStore:
    """OrderStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def insert_order(self, order: Order) -> None:
        """写入订单主记录（tracking_history 需单独追加）"""
        await self._conn.execute(
            """
            INSERT INTO orders (order_id, order_number, user_id, status, payment_status,
                                items, total_amount, currency, shipping_address,
                                payment_provider, payment_intent_id, notes,
                                created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                order.order_id,
                order.order_number,
                order.user_id,
                order.status.value,
                order.payment_status.value,
                json.dumps(
                    [item.model_dump() for item in order.items], ensure_ascii=False
                ),
                order.total_amount,
                order.currency,
                order.shipping_address.model_dump_json(),
                order.payment_provider,
                order.payment_intent_id,
                order.notes,
                order.created_at.isoformat(),
                order.updated_at.isoformat(),
            ),
        )

    async def append_tracking(self, order_id: str, entry: TrackingEntry) -> None:
        """追加追踪条目，seq 取订单内最大序号 + 1"""
        await self._conn.execute(
            """
            INSERT INTO order_tracking (order_id, seq, status, ts, message)
            SELECT ?, COALESCE(MAX(seq), 0) + 1, ?, ?, ?
            FROM order_tracking WHERE order_id = ?
            """,
            (order_id, entry.status.value, entry.ts.isoformat(), entry.message, order_id),
        )

    async def get_order(self, order_id: str) -> Order | None:
        """根据 order_id 查询订单（含完整追踪历史）"""
        cursor = await self._conn.execute(
            "SELECT * FROM orders WHERE order_id = ?",
            (order_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        tracking = await self.get_tracking(order_id)
        return self._row_to_order(row, tracking)

    async def list_orders_for_user(
        self, user_id: str, status: str | None = None
    ) -> list[Order]:
        """查询用户订单，支持按状态筛选，按 created_at 倒序"""
        if status:
            cursor = await self._conn.execute(
                """
                SELECT * FROM orders WHERE user_id = ? AND status = ?
                ORDER BY created_at DESC
                """,
                (user_id, status),
            )
        else:
            cursor = await self._conn.execute(
                "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            )
        rows = await cursor.fetchall()
        orders = []
        for row in rows:
            tracking = await self.get_tracking(row["order_id"])
            orders.append(self._row_to_order(row, tracking))
        return orders

    async def count_orders_for_user(self, user_id: str) -> int:
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM orders WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def get_tracking(self, order_id: str) -> list[TrackingEntry]:
        """查询订单追踪历史，按 seq 正序"""
        cursor = await self._conn.execute(
            "SELECT status, ts, message FROM order_tracking WHERE order_id = ? ORDER BY seq ASC",
            (order_id,),
        )
        rows = await cursor.fetchall()
        return [
            TrackingEntry(
                status=row["status"],
                ts=datetime.fromisoformat(row["ts"]),
                message=row["message"],
            )
            for row in rows
        ]

    async def update_status_if(
        self,
        order_id: str,
        expected_status: OrderStatus,
        new_status: OrderStatus,
        payment_status: PaymentStatus,
        updated_at: datetime,
    ) -> bool:
        """CAS 更新：仅当当前状态为 expected_status 时更新

        Returns:
            True 如果更新成功
        """
        cursor = await self._conn.execute(
            """
            UPDATE orders
            SET status = ?, payment_status = ?, updated_at = ?
            WHERE order_id = ? AND status = ?
            """,
            (
                new_status.value,
                payment_status.value,
                updated_at.isoformat(),
                order_id,
                expected_status.value,
            ),
        )
        return cursor.rowcount == 1

    async def set_payment_reference(
        self,
        order_id: str,
        provider: str,
        payment_intent_id: str | None,
        updated_at: datetime,
    ) -> None:
        """回填订单的支付服务商与 payment intent 引用"""
        await self._conn.execute(
            """
            UPDATE orders
            SET payment_provider = ?,
                payment_intent_id = COALESCE(?, payment_intent_id),
                updated_at = ?
            WHERE order_id = ?
            """,
            (provider, payment_intent_id, updated_at.isoformat(), order_id),
        )

    @staticmethod
    def _row_to_order(row: aiosqlite.Row, tracking: list[TrackingEntry]) -> Order:
        """将数据库行转换为 Order 模型"""
        return Order(
            order_id=row["order_id"],
            order_number=row["order_number"],
            user_id=row["user_id"],
            status=row["status"],
            payment_status=row["payment_status"],
            items=[OrderItem(**item) for item in json.loads(row["items"])],
            total_amount=row["total_amount"],
            currency=row["currency"],
            shipping_address=ShippingAddress(**json.loads(row["shipping_address"])),
            tracking_history=tracking,
            payment_provider=row["payment_provider"],
            payment_intent_id=row["payment_intent_id"],
            notes=row["notes"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
