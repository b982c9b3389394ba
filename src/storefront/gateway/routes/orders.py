"""订单路由

POST /api/orders: 创建订单（支持 Idempotency-Key 请求头）
GET /api/orders: 当前用户的订单列表
GET /api/orders/{order_id}: 订单详情（含完整追踪历史）
GET /api/orders/{order_id}/tracking: 公开追踪视图
POST /api/orders/{order_id}/cancel: 用户取消订单
"""

from fastapi import APIRouter, Depends, Query, Request
from starlette.responses import Response
from storefront.core.idempotency import HandlerResult, IdempotencyGuard, IdempotentResponse
from storefront.core.models import OrderStatus, ResourceType
from storefront.core.validation import validate_create_order

from ..auth import Principal, require_principal
from ..deps import get_idempotency_guard, get_order_service, read_json_body
from ..services.order_service import OrderService, order_to_dict, payment_to_dict

router = APIRouter()

IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"
REPLAYED_HEADER = "Idempotent-Replayed"


def idempotent_json_response(result: IdempotentResponse) -> Response:
    """直接输出已序列化的响应体，保证重放与首次响应逐字节一致"""
    response = Response(
        content=result.body,
        status_code=result.status_code,
        media_type="application/json",
    )
    if result.replayed:
        response.headers[REPLAYED_HEADER] = "true"
    return response


@router.post("/api/orders")
async def create_order(
    request: Request,
    principal: Principal = Depends(require_principal),
    service: OrderService = Depends(get_order_service),
    guard: IdempotencyGuard = Depends(get_idempotency_guard),
):
    """创建订单

    - 新订单返回 201 {order, payment}
    - 相同 Idempotency-Key 重放首次响应，不重复下单
    """
    body = await read_json_body(request)
    data = validate_create_order(body).unwrap()

    async def handler() -> HandlerResult:
        order, payment = await service.create_order(principal.user_id, data)
        return HandlerResult(
            status_code=201,
            body={"order": order_to_dict(order), "payment": payment_to_dict(payment)},
            resource_id=order.order_id,
        )

    result = await guard.process(
        request.headers.get(IDEMPOTENCY_KEY_HEADER),
        principal.user_id,
        ResourceType.ORDER,
        body,
        handler,
    )
    return idempotent_json_response(result)


@router.get("/api/orders")
async def list_orders(
    status: OrderStatus | None = Query(default=None, description="按状态过滤"),
    principal: Principal = Depends(require_principal),
    service: OrderService = Depends(get_order_service),
):
    """当前用户的订单列表，按创建时间倒序"""
    orders = await service.list_orders(
        principal.user_id, status.value if status else None
    )
    return {"orders": [order_to_dict(o) for o in orders], "count": len(orders)}


@router.get("/api/orders/{order_id}")
async def get_order(
    order_id: str,
    principal: Principal = Depends(require_principal),
    service: OrderService = Depends(get_order_service),
):
    """订单详情：订单号、状态、支付状态、金额、商品、地址、追踪历史（正序）"""
    order = await service.get_order(order_id, principal)
    return {"order": order_to_dict(order)}


@router.get("/api/orders/{order_id}/tracking")
async def get_tracking(
    order_id: str,
    service: OrderService = Depends(get_order_service),
):
    """公开追踪视图 -- 不包含地址与商品明细"""
    order = await service.get_order_public(order_id)
    return {
        "order_id": order.order_id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "tracking_history": [
            entry.model_dump(mode="json") for entry in order.tracking_history
        ],
    }


@router.post("/api/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    request: Request,
    principal: Principal = Depends(require_principal),
    service: OrderService = Depends(get_order_service),
):
    """用户取消订单（仅待支付 / 待复核状态）"""
    body = await read_json_body(request, required=False)
    reason = body.get("reason", "") if isinstance(body, dict) else ""
    order = await service.cancel_order(order_id, principal, str(reason or ""))
    return {"order": order_to_dict(order)}
