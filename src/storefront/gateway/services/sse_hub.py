"""SSEHub -- 内存中订单追踪广播器

每个订阅者持有一个 asyncio.Queue，支持 subscribe/unsubscribe/broadcast。
订单每次状态流转后广播一条 OrderUpdate。
"""

import asyncio
from collections import defaultdict
from datetime import datetime

from pydantic import BaseModel
from storefront.core.models import OrderStatus, PaymentStatus


class OrderUpdate(BaseModel):
    """订单状态变更通知"""

    order_id: str
    status: OrderStatus
    payment_status: PaymentStatus
    ts: datetime
    message: str = ""


class SSEHub:
    """SSE 广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # order_id -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    async def subscribe(self, order_id: str) -> asyncio.Queue:
        """订阅指定订单的状态变更

        Returns:
            asyncio.Queue 实例，新通知会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[order_id].add(queue)
        return queue

    async def unsubscribe(self, order_id: str, queue: asyncio.Queue) -> None:
        """取消订阅"""
        self._subscribers[order_id].discard(queue)
        if not self._subscribers[order_id]:
            del self._subscribers[order_id]

    def subscriber_count(self, order_id: str) -> int:
        return len(self._subscribers.get(order_id, ()))

    async def broadcast(self, order_id: str, update: OrderUpdate) -> None:
        """向指定订单的所有订阅者广播"""
        dead_queues = []
        for queue in self._subscribers.get(order_id, set()):
            try:
                queue.put_nowait(update)
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列
        for q in dead_queues:
            self._subscribers[order_id].discard(q)
        if order_id in self._subscribers and not self._subscribers[order_id]:
            del self._subscribers[order_id]
