"""TraceMiddleware -- 为订单相关请求绑定 order_id

从 /api/orders/{order_id}、/api/payments/{order_id}/status、
/api/stream/order/{order_id} 等路径提取 order_id，贯穿该请求的所有日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_ORDER_SEGMENTS = ("orders", "order", "payments")
_ULID_LENGTH = 26


def extract_order_id(path: str) -> str | None:
    """从路径中提取 ULID 格式的 order_id，无则返回 None"""
    parts = path.split("/")
    for i, part in enumerate(parts):
        if part in _ORDER_SEGMENTS and i + 1 < len(parts):
            candidate = parts[i + 1]
            # 排除 /checkout、/webhook 等子路由
            if len(candidate) == _ULID_LENGTH:
                return candidate
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """订单级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        order_id = extract_order_id(request.url.path)
        if order_id:
            structlog.contextvars.bind_contextvars(order_id=order_id)
        return await call_next(request)
