"""支付路由

POST /api/payments/webhook: 支付服务商 Webhook（原始请求体，stripe 模式校验签名）
POST /api/payments/checkout: 为待支付订单创建新的支付会话（支持 Idempotency-Key）
GET /api/payments/{order_id}/status: 订单支付状态
"""

from fastapi import APIRouter, Depends, Request
from storefront.core.idempotency import HandlerResult, IdempotencyGuard
from storefront.core.models import ResourceType
from storefront.core.validation import validate_checkout

from ..auth import Principal, require_principal
from ..deps import (
    get_idempotency_guard,
    get_order_service,
    get_payment_provider,
    get_reconciler,
    read_json_body,
)
from ..services.order_service import OrderService, payment_to_dict
from ..services.webhook_service import WebhookReconciler
from .orders import IDEMPOTENCY_KEY_HEADER, idempotent_json_response

router = APIRouter()

SIGNATURE_HEADER = "stripe-signature"


@router.post("/api/payments/webhook")
async def payment_webhook(
    request: Request,
    provider=Depends(get_payment_provider),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    """接收支付服务商事件

    - 签名或结构非法返回 400（服务商会重投）
    - 已确认的事件（含重复、未知订单、忽略的事件类型）一律返回 200
    - 存储故障返回 500，事件已登记等待后台重试
    """
    payload = await request.body()
    event = provider.parse_webhook(payload, request.headers.get(SIGNATURE_HEADER))
    result = await reconciler.handle_event(event)
    return {
        "received": True,
        "event_id": result.event_id,
        "outcome": result.outcome,
    }


@router.post("/api/payments/checkout")
async def create_checkout(
    request: Request,
    principal: Principal = Depends(require_principal),
    service: OrderService = Depends(get_order_service),
    guard: IdempotencyGuard = Depends(get_idempotency_guard),
):
    """为待支付订单创建支付会话；订单已支付返回 409"""
    body = await read_json_body(request)
    data = validate_checkout(body).unwrap()

    async def handler() -> HandlerResult:
        payment = await service.create_checkout(data.order_id, principal)
        return HandlerResult(
            status_code=201,
            body={"payment": payment_to_dict(payment)},
            resource_id=payment.payment_id,
        )

    result = await guard.process(
        request.headers.get(IDEMPOTENCY_KEY_HEADER),
        principal.user_id,
        ResourceType.PAYMENT,
        body,
        handler,
    )
    return idempotent_json_response(result)


@router.get("/api/payments/{order_id}/status")
async def get_payment_status(
    order_id: str,
    principal: Principal = Depends(require_principal),
    service: OrderService = Depends(get_order_service),
):
    """订单与最新支付记录的状态"""
    order, payment = await service.get_payment_status(order_id, principal)
    return {
        "order_id": order.order_id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "total_amount": order.total_amount,
        "currency": order.currency,
        "payment": payment_to_dict(payment) if payment else None,
    }
