"""SSE 订单追踪流

GET /api/stream/order/{order_id}: 先推送完整追踪历史，再实时推送状态变更；
订单到达终态时携带 final: true 并结束，空闲时发送心跳注释。
"""

import asyncio
import json

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse
from storefront.core.config import SSE_HEARTBEAT_INTERVAL
from storefront.core.models import TERMINAL_STATES

from ..deps import get_order_service, get_sse_hub
from ..services.order_service import OrderService
from ..services.sse_hub import OrderUpdate, SSEHub

router = APIRouter()

TRACKING_EVENT = "tracking"


def _tracking_data(order_id: str, update: OrderUpdate) -> str:
    is_final = update.status in TERMINAL_STATES
    return json.dumps(
        {
            "order_id": order_id,
            "status": update.status,
            "payment_status": update.payment_status,
            "ts": update.ts.isoformat(),
            "message": update.message,
            "final": is_final,
        },
        ensure_ascii=False,
    )


@router.get("/api/stream/order/{order_id}")
async def stream_order_tracking(
    order_id: str,
    service: OrderService = Depends(get_order_service),
    sse_hub: SSEHub = Depends(get_sse_hub),
):
    """订单追踪 SSE 端点；订单不存在返回 404"""
    order = await service.get_order_public(order_id)

    # 先订阅再推送历史，避免两者之间的状态变更丢失
    queue = await sse_hub.subscribe(order_id)

    async def event_generator():
        try:
            for seq, entry in enumerate(order.tracking_history, start=1):
                update = OrderUpdate(
                    order_id=order_id,
                    status=entry.status,
                    # 历史条目只记录订单状态，支付状态取当前值
                    payment_status=order.payment_status,
                    ts=entry.ts,
                    message=entry.message,
                )
                yield {
                    "id": str(seq),
                    "event": TRACKING_EVENT,
                    "data": _tracking_data(order_id, update),
                }
            if order.status in TERMINAL_STATES:
                return

            seq = len(order.tracking_history)
            while True:
                try:
                    update = await asyncio.wait_for(
                        queue.get(), timeout=SSE_HEARTBEAT_INTERVAL
                    )
                except TimeoutError:
                    yield {"comment": "heartbeat"}
                    continue
                seq += 1
                yield {
                    "id": str(seq),
                    "event": TRACKING_EVENT,
                    "data": _tracking_data(order_id, update),
                }
                if update.status in TERMINAL_STATES:
                    return
        finally:
            await sse_hub.unsubscribe(order_id, queue)

    return EventSourceResponse(event_generator())
