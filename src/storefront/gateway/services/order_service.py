"""OrderService -- 订单创建/查询/状态流转业务逻辑

下单流程：
1. 计算订单总额（下单时快照，之后不再重算）
2. SequenceAllocator 分配订单号
3. 向支付服务商创建支付会话（失败则不写入任何订单记录）
4. 同一事务写入订单 + 初始追踪条目 + 支付记录

状态流转统一经过 transition()：状态机校验 + CAS 更新 + 追加追踪条目与审计记录。
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from storefront.core.exceptions import ConflictError, NotFoundError
from storefront.core.metrics import PaymentMetrics
from storefront.core.models import (
    SYSTEM_ACTOR,
    USER_CANCELLABLE_STATES,
    ActorType,
    AuditAction,
    AuditActor,
    AuditEntry,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    ResourceType,
    TrackingEntry,
    map_to_order_payment_status,
)
from storefront.core.sequence import SequenceAllocator
from storefront.core.store import (
    OrderStatusConflictError,
    StoreGroup,
    create_order_with_payment,
    transition_order,
)
from storefront.core.validation import CreateOrderInput, StatusUpdateInput
from storefront.payments import CreateIntentParams, PaymentProvider
from ulid import ULID

from ..auth import Principal
from .sse_hub import OrderUpdate, SSEHub

log = structlog.get_logger()


def order_to_dict(order: Order) -> dict[str, Any]:
    """订单查询视图（追踪历史按时间正序）"""
    return order.model_dump(mode="json")


def actor_from_principal(principal: Principal) -> AuditActor:
    actor_type = ActorType.ADMIN if principal.is_admin else ActorType.USER
    return AuditActor(actor_type=actor_type, actor_id=principal.user_id)


def payment_to_dict(payment: Payment) -> dict[str, Any]:
    """支付视图"""
    return payment.model_dump(
        mode="json",
        include={
            "payment_id",
            "order_id",
            "amount",
            "currency",
            "status",
            "provider",
            "provider_payment_id",
            "client_secret",
            "checkout_url",
        },
    )


class OrderService:
    """订单业务服务"""

    _max_transition_retries = 3

    def __init__(
        self,
        store_group: StoreGroup,
        payment_provider: PaymentProvider,
        metrics: PaymentMetrics,
        sse_hub: SSEHub | None = None,
        currency: str = "ILS",
    ) -> None:
        self._stores = store_group
        self._allocator = SequenceAllocator(store_group)
        self._provider = payment_provider
        self._metrics = metrics
        self._sse_hub = sse_hub
        self._currency = currency

    async def create_order(
        self, user_id: str, data: CreateOrderInput
    ) -> tuple[Order, Payment]:
        """创建订单与首个支付会话

        Raises:
            ExternalServiceError / PaymentError: 支付服务商不可用或拒绝（不创建订单）
            InfrastructureError: 存储不可用
        """
        now = datetime.now(UTC)
        total = Order.compute_total(data.items)
        order_number = await self._allocator.next_order_number(now)
        order_id = str(ULID())
        payment_id = str(ULID())

        self._metrics.record_payment_attempt(order_id, total)
        try:
            intent = await self._provider.create_payment_intent(
                CreateIntentParams(
                    order_id=order_id,
                    order_number=order_number,
                    user_id=user_id,
                    amount=total,
                    currency=self._currency,
                    idempotency_key=payment_id,
                )
            )
        except Exception as e:
            self._metrics.record_payment_failure(order_id, total, type(e).__name__)
            log.warning(
                "order_create_payment_failed",
                order_number=order_number,
                error_type=type(e).__name__,
            )
            raise

        order = Order(
            order_id=order_id,
            order_number=order_number,
            user_id=user_id,
            status=OrderStatus.PENDING_PAYMENT,
            payment_status=map_to_order_payment_status(intent.status),
            items=data.items,
            total_amount=total,
            currency=self._currency,
            shipping_address=data.shipping_address,
            tracking_history=[
                TrackingEntry(
                    status=OrderStatus.PENDING_PAYMENT,
                    ts=now,
                    message="Order created, awaiting payment",
                )
            ],
            payment_provider=intent.provider,
            payment_intent_id=intent.payment_intent_id,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        payment = Payment(
            payment_id=payment_id,
            order_id=order_id,
            user_id=user_id,
            amount=total,
            currency=self._currency,
            status=intent.status,
            provider=intent.provider,
            provider_payment_id=intent.provider_payment_id,
            payment_intent_id=intent.payment_intent_id,
            client_secret=intent.client_secret,
            checkout_url=intent.checkout_url,
            created_at=now,
            updated_at=now,
        )

        await create_order_with_payment(
            self._stores.conn,
            self._stores.write_lock,
            self._stores.order_store,
            self._stores.payment_store,
            order,
            payment,
            audit_store=self._stores.audit_store,
            audit_entry=AuditEntry(
                audit_id=str(ULID()),
                actor_type=ActorType.USER,
                actor_id=user_id,
                action=AuditAction.ORDER_CREATED,
                resource_type=ResourceType.ORDER,
                resource_id=order_id,
                ts=now,
                metadata={
                    "order_number": order_number,
                    "total_amount": total,
                    "payment_id": payment_id,
                },
            ),
        )
        log.info(
            "order_created",
            order_id=order_id,
            order_number=order_number,
            total_amount=total,
            item_count=len(order.items),
        )
        return order, payment

    async def create_checkout(self, order_id: str, principal: Principal) -> Payment:
        """为待支付订单创建新的支付会话

        Raises:
            NotFoundError: 订单不存在或不属于调用方
            ConflictError: 订单不在待支付状态
        """
        order = await self.get_order(order_id, principal)
        if order.status != OrderStatus.PENDING_PAYMENT:
            raise ConflictError(
                f"Order {order.order_number} is not awaiting payment (status: {order.status})",
                code="ORDER_NOT_PAYABLE",
            )

        now = datetime.now(UTC)
        payment_id = str(ULID())
        self._metrics.record_payment_attempt(order_id, order.total_amount)
        try:
            intent = await self._provider.create_payment_intent(
                CreateIntentParams(
                    order_id=order.order_id,
                    order_number=order.order_number,
                    user_id=order.user_id,
                    amount=order.total_amount,
                    currency=order.currency,
                    idempotency_key=payment_id,
                )
            )
        except Exception as e:
            self._metrics.record_payment_failure(
                order_id, order.total_amount, type(e).__name__
            )
            raise

        payment = Payment(
            payment_id=payment_id,
            order_id=order.order_id,
            user_id=order.user_id,
            amount=order.total_amount,
            currency=order.currency,
            status=intent.status,
            provider=intent.provider,
            provider_payment_id=intent.provider_payment_id,
            payment_intent_id=intent.payment_intent_id,
            client_secret=intent.client_secret,
            checkout_url=intent.checkout_url,
            created_at=now,
            updated_at=now,
        )
        async with self._stores.atomic():
            await self._stores.payment_store.insert_payment(payment)
            await self._stores.order_store.set_payment_reference(
                order.order_id, intent.provider, intent.payment_intent_id, now
            )
        log.info("checkout_created", order_id=order_id, payment_id=payment_id)
        return payment

    async def get_order(self, order_id: str, principal: Principal) -> Order:
        """查询订单（非管理员只能查看自己的订单）

        Raises:
            NotFoundError: 订单不存在或不属于调用方
        """
        order = await self._stores.order_store.get_order(order_id)
        if order is None or (
            not principal.is_admin and order.user_id != principal.user_id
        ):
            raise NotFoundError(f"Order {order_id} not found", code="ORDER_NOT_FOUND")
        return order

    async def get_order_public(self, order_id: str) -> Order:
        """不校验归属的订单查询（追踪页）"""
        order = await self._stores.order_store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", code="ORDER_NOT_FOUND")
        return order

    async def list_orders(self, user_id: str, status: str | None = None) -> list[Order]:
        return await self._stores.order_store.list_orders_for_user(user_id, status)

    async def get_payment_status(
        self, order_id: str, principal: Principal
    ) -> tuple[Order, Payment | None]:
        """订单 + 最新支付记录"""
        order = await self.get_order(order_id, principal)
        payment = await self._stores.payment_store.get_latest_for_order(order_id)
        return order, payment

    async def cancel_order(
        self, order_id: str, principal: Principal, reason: str = ""
    ) -> Order:
        """用户取消订单，仅允许 pending_payment / pending

        Raises:
            NotFoundError: 订单不存在或不属于调用方
            ConflictError: 当前状态不允许用户取消
        """
        await self.get_order(order_id, principal)
        message = f"Cancelled by customer: {reason}" if reason else "Cancelled by customer"
        return await self.transition(
            order_id,
            OrderStatus.CANCELLED,
            message,
            allowed_from=USER_CANCELLABLE_STATES,
            actor=actor_from_principal(principal),
            action=AuditAction.ORDER_CANCELLED,
        )

    async def admin_update_status(
        self, order_id: str, data: StatusUpdateInput, admin: Principal
    ) -> Order:
        """管理员按状态机推进订单，审计记录操作的管理员"""
        payment_status = PaymentStatus.PAID if data.status == OrderStatus.PAID else None
        message = data.message or f"Status updated to {data.status}"
        return await self.transition(
            order_id,
            data.status,
            message,
            payment_status=payment_status,
            actor=actor_from_principal(admin),
        )

    async def get_audit_log(self, order_id: str, limit: int = 100) -> list[AuditEntry]:
        """订单的审计记录（时间正序）

        Raises:
            NotFoundError: 订单不存在
        """
        await self.get_order_public(order_id)
        return await self._stores.audit_store.list_for_resource(order_id, limit)

    async def get_actor_audit_log(self, actor_id: str, limit: int = 100) -> list[AuditEntry]:
        return await self._stores.audit_store.list_for_actor(actor_id, limit)

    async def transition(
        self,
        order_id: str,
        to_status: OrderStatus,
        message: str,
        payment_status: PaymentStatus | None = None,
        allowed_from: set[OrderStatus] | None = None,
        actor: AuditActor = SYSTEM_ACTOR,
        action: AuditAction = AuditAction.ORDER_STATUS_CHANGED,
        event_id: str | None = None,
    ) -> Order:
        """状态机校验 + CAS 更新 + 追加一条追踪条目与一条审计记录

        并发修改导致 CAS 失败时重新读取并重试。

        Args:
            actor: 发起变更的操作方
            action: 审计动作
            event_id: 驱动本次变更的 Webhook 事件 ID

        Raises:
            NotFoundError: 订单不存在
            ConflictError: 非法流转（订单与追踪历史保持不变）
        """
        for attempt in range(1, self._max_transition_retries + 1):
            order = await self.get_order_public(order_id)
            if allowed_from is not None and order.status not in allowed_from:
                raise ConflictError(
                    f"Order {order.order_number} cannot be changed in status {order.status}",
                    code="INVALID_STATUS_TRANSITION",
                )

            now = datetime.now(UTC)
            updated, entry = order.transition(to_status, message, now, payment_status)
            audit_entry = AuditEntry(
                audit_id=str(ULID()),
                actor_type=actor.actor_type,
                actor_id=actor.actor_id,
                action=action,
                resource_type=ResourceType.ORDER,
                resource_id=order_id,
                event_id=event_id,
                ts=now,
                metadata={
                    "from_status": order.status.value,
                    "to_status": updated.status.value,
                    "payment_status": updated.payment_status.value,
                    "message": entry.message,
                },
            )
            try:
                await transition_order(
                    self._stores.conn,
                    self._stores.write_lock,
                    self._stores.order_store,
                    order_id,
                    order.status,
                    entry,
                    updated.payment_status,
                    now,
                    audit_store=self._stores.audit_store,
                    audit_entry=audit_entry,
                )
            except OrderStatusConflictError:
                if attempt < self._max_transition_retries:
                    log.warning(
                        "order_status_conflict_retry",
                        order_id=order_id,
                        attempt=attempt,
                    )
                    continue
                raise

            log.info(
                "order_status_changed",
                order_id=order_id,
                from_status=order.status,
                to_status=to_status,
                actor_type=actor.actor_type,
                actor_id=actor.actor_id,
            )
            if self._sse_hub:
                await self._sse_hub.broadcast(
                    order_id,
                    OrderUpdate(
                        order_id=order_id,
                        status=updated.status,
                        payment_status=updated.payment_status,
                        ts=entry.ts,
                        message=entry.message,
                    ),
                )
            return updated

        raise ConflictError(f"Order {order_id} is being modified concurrently")
