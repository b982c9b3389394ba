"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

所有实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

import json
from typing import Any

from fastapi import Request
from storefront.core.exceptions import ValidationError
from storefront.core.idempotency import IdempotencyGuard
from storefront.core.metrics import PaymentMetrics
from storefront.core.store import StoreGroup


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_sse_hub(request: Request):
    """从 app.state 获取 SSEHub 实例"""
    return request.app.state.sse_hub


def get_order_service(request: Request):
    """从 app.state 获取 OrderService 实例"""
    return request.app.state.order_service


def get_idempotency_guard(request: Request) -> IdempotencyGuard:
    return request.app.state.idempotency_guard


def get_payment_metrics(request: Request) -> PaymentMetrics:
    return request.app.state.payment_metrics


def get_payment_provider(request: Request):
    return request.app.state.payment_provider


def get_reconciler(request: Request):
    """从 app.state 获取 WebhookReconciler 实例"""
    return request.app.state.reconciler


def get_retry_worker(request: Request):
    return request.app.state.retry_worker


async def read_json_body(request: Request, required: bool = True) -> Any:
    """读取原始 JSON 请求体，交给显式校验函数处理

    Raises:
        ValidationError: 请求体不是合法 JSON（或必需时为空）
    """
    raw = await request.body()
    if not raw.strip():
        if required:
            raise ValidationError("Request body is required")
        return {}
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ValidationError("Request body is not valid JSON") from e
