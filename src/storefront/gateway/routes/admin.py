"""管理员路由

PATCH /api/admin/orders/{order_id}/status: 按状态机推进订单
GET /api/admin/orders/{order_id}/audit: 订单审计记录
GET /api/admin/audit: 按操作方查询审计记录
POST /api/admin/webhooks/{failed_id}/retry: 立即重试失败 Webhook
"""

from fastapi import APIRouter, Depends, Query, Request
from storefront.core.config import AUDIT_LOG_DEFAULT_LIMIT
from storefront.core.validation import validate_status_update

from ..auth import Principal, require_admin
from ..deps import get_order_service, get_retry_worker, read_json_body
from ..services.order_service import OrderService, order_to_dict
from ..services.webhook_retry import WebhookRetryWorker

router = APIRouter()


@router.patch("/api/admin/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    request: Request,
    admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    """非法流转返回 409，订单与追踪历史保持不变"""
    body = await read_json_body(request)
    data = validate_status_update(body).unwrap()
    order = await service.admin_update_status(order_id, data, admin)
    return {"order": order_to_dict(order)}


@router.get("/api/admin/orders/{order_id}/audit")
async def order_audit_log(
    order_id: str,
    limit: int = Query(default=AUDIT_LOG_DEFAULT_LIMIT, ge=1, le=1000),
    admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    entries = await service.get_audit_log(order_id, limit)
    return {
        "order_id": order_id,
        "audit_log": [e.model_dump(mode="json") for e in entries],
        "count": len(entries),
    }


@router.get("/api/admin/audit")
async def actor_audit_log(
    actor_id: str = Query(min_length=1),
    limit: int = Query(default=AUDIT_LOG_DEFAULT_LIMIT, ge=1, le=1000),
    admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    """某个操作方的审计记录，最新在前"""
    entries = await service.get_actor_audit_log(actor_id, limit)
    return {
        "actor_id": actor_id,
        "audit_log": [e.model_dump(mode="json") for e in entries],
        "count": len(entries),
    }


@router.post("/api/admin/webhooks/{failed_id}/retry")
async def retry_failed_webhook(
    failed_id: str,
    admin: Principal = Depends(require_admin),
    worker: WebhookRetryWorker = Depends(get_retry_worker),
):
    failed = await worker.retry_by_id(failed_id)
    return {"failed_webhook": failed.model_dump(mode="json")}
