"""SequenceAllocator -- 订单号分配

按天分桶的原子计数器：sequence_key 形如 orders_2026-01-01，
订单号格式 ORD-20260101-007（序号不足 3 位补零，超过 999 自然变宽）。
"""

from datetime import UTC, datetime

import aiosqlite
import structlog

from .config import ORDER_NUMBER_PREFIX
from .exceptions import InfrastructureError
from .store import StoreGroup

log = structlog.get_logger()


def order_sequence_key(now: datetime) -> str:
    """订单计数器 key（按 UTC 日期分桶）"""
    return f"orders_{now.astimezone(UTC).strftime('%Y-%m-%d')}"


def format_order_number(now: datetime, value: int) -> str:
    """ORD-YYYYMMDD-NNN"""
    return f"{ORDER_NUMBER_PREFIX}-{now.astimezone(UTC).strftime('%Y%m%d')}-{value:03d}"


class SequenceAllocator:
    """命名序列分配器"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group

    async def next_value(self, sequence_key: str) -> int:
        """返回 sequence_key 的下一个值，同一 key 的返回值严格递增且互不相同

        Raises:
            InfrastructureError: 存储不可用（不会伪造序号）
        """
        try:
            async with self._stores.atomic():
                value = await self._stores.sequence_store.increment(sequence_key)
        except InfrastructureError:
            log.error("sequence_increment_failed", sequence_key=sequence_key)
            raise
        except aiosqlite.Error as e:
            log.error(
                "sequence_increment_failed",
                sequence_key=sequence_key,
                error_type=type(e).__name__,
            )
            raise InfrastructureError(
                f"Sequence {sequence_key} is unavailable"
            ) from e
        return value

    async def next_order_number(self, now: datetime | None = None) -> str:
        """分配当天的下一个订单号"""
        now = now or datetime.now(UTC)
        value = await self.next_value(order_sequence_key(now))
        order_number = format_order_number(now, value)
        log.debug("order_number_allocated", order_number=order_number)
        return order_number
