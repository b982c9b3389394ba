"""PaymentStore SQLite 实现"""

from datetime import datetime

import aiosqlite

from ..models.enums import PaymentIntentStatus
from ..models.payment import Payment


class SqlitePaymentStore:
    """PaymentStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def insert_payment(self, payment: Payment) -> None:
        """写入支付记录"""
        await self._conn.execute(
            """
            INSERT INTO payments (payment_id, order_id, user_id, amount, currency, status,
                                  provider, provider_payment_id, payment_intent_id,
                                  client_secret, checkout_url, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                payment.payment_id,
                payment.order_id,
                payment.user_id,
                payment.amount,
                payment.currency,
                payment.status.value,
                payment.provider,
                payment.provider_payment_id,
                payment.payment_intent_id,
                payment.client_secret,
                payment.checkout_url,
                payment.created_at.isoformat(),
                payment.updated_at.isoformat(),
            ),
        )

    async def get_payment(self, payment_id: str) -> Payment | None:
        return await self._fetch_one(
            "SELECT * FROM payments WHERE payment_id = ?", (payment_id,)
        )

    async def get_by_provider_payment_id(self, provider_payment_id: str) -> Payment | None:
        """按支付服务商会话 ID 查询"""
        return await self._fetch_one(
            "SELECT * FROM payments WHERE provider_payment_id = ?",
            (provider_payment_id,),
        )

    async def get_by_payment_intent_id(self, payment_intent_id: str) -> Payment | None:
        """按 payment intent ID 查询"""
        return await self._fetch_one(
            "SELECT * FROM payments WHERE payment_intent_id = ?",
            (payment_intent_id,),
        )

    async def get_latest_for_order(self, order_id: str) -> Payment | None:
        """查询订单最新一条支付记录"""
        return await self._fetch_one(
            """
            SELECT * FROM payments WHERE order_id = ?
            ORDER BY created_at DESC, rowid DESC LIMIT 1
            """,
            (order_id,),
        )

    async def update_status(
        self,
        payment_id: str,
        status: PaymentIntentStatus,
        updated_at: datetime,
        payment_intent_id: str | None = None,
    ) -> None:
        """更新支付状态，payment_intent_id 非空时一并回填"""
        await self._conn.execute(
            """
            UPDATE payments
            SET status = ?, updated_at = ?,
                payment_intent_id = COALESCE(?, payment_intent_id)
            WHERE payment_id = ?
            """,
            (status.value, updated_at.isoformat(), payment_intent_id, payment_id),
        )

    async def _fetch_one(self, sql: str, params: tuple) -> Payment | None:
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_payment(row)

    @staticmethod
    def _row_to_payment(row: aiosqlite.Row) -> Payment:
        """将数据库行转换为 Payment 模型"""
        return Payment(
            payment_id=row["payment_id"],
            order_id=row["order_id"],
            user_id=row["user_id"],
            amount=row["amount"],
            currency=row["currency"],
            status=row["status"],
            provider=row["provider"],
            provider_payment_id=row["provider_payment_id"],
            payment_intent_id=row["payment_intent_id"],
            client_secret=row["client_secret"],
            checkout_url=row["checkout_url"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
