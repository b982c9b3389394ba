"""WebhookReconciler -- 支付事件对账，保证每个事件只生效一次

处理流程：
1. event_id 已记录 -> 直接确认（duplicate）
2. 依次按 provider_payment_id、payment_intent_id、事件中的 order_id 定位订单
3. 经由状态机推进订单；过期/非法流转记录日志后丢弃（ignored）
4. 无论第 3 步是否生效都在同一事务内记录 WebhookEvent 与审计记录；
   并发投递输掉插入竞争视为已处理
5. 记录 webhook 耗时（处理抛出异常时 outcome 为 error）与支付成功/失败指标

处理过程中出现基础设施故障时，事件写入 failed_webhooks 等待后台重试，
异常继续上抛（HTTP 500），支付服务商也会按自身策略重投。
"""

import asyncio
import time
from datetime import UTC, datetime, timedelta
from enum import StrEnum

import aiosqlite
import structlog
from pydantic import BaseModel
from storefront.core.config import WEBHOOK_MAX_RETRIES, WEBHOOK_RETRY_BASE_S
from storefront.core.exceptions import ConflictError
from storefront.core.metrics import PaymentMetrics
from storefront.core.models import (
    ActorType,
    AuditAction,
    AuditActor,
    AuditEntry,
    FailedWebhook,
    Order,
    OrderStatus,
    Payment,
    PaymentIntentStatus,
    PaymentStatus,
    ResourceType,
    WebhookEvent,
)
from storefront.core.store import StoreGroup
from storefront.payments import ProviderEvent
from ulid import ULID

from .order_service import OrderService

log = structlog.get_logger()


class WebhookOutcome(StrEnum):
    """事件处理结果"""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    IGNORED = "ignored"
    ORDER_NOT_FOUND = "order_not_found"
    AMOUNT_MISMATCH = "amount_mismatch"
    BACKFILLED = "backfilled"


class WebhookResult(BaseModel):
    event_id: str
    outcome: WebhookOutcome
    order_id: str | None = None


# Webhook 只从待支付状态驱动订单
_WEBHOOK_SOURCE_STATES = {OrderStatus.PENDING_PAYMENT}


def _webhook_actor(event: ProviderEvent) -> AuditActor:
    return AuditActor(actor_type=ActorType.WEBHOOK, actor_id=event.provider.value)


class WebhookReconciler:
    """支付事件对账器"""

    def __init__(
        self,
        store_group: StoreGroup,
        order_service: OrderService,
        metrics: PaymentMetrics,
        retry_base_s: float = WEBHOOK_RETRY_BASE_S,
    ) -> None:
        self._stores = store_group
        self._orders = order_service
        self._metrics = metrics
        self._retry_base_s = retry_base_s
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_refs: dict[str, int] = {}

    async def handle_event(
        self, event: ProviderEvent, record_failure: bool = True
    ) -> WebhookResult:
        """处理一个标准化支付事件

        Args:
            event: 标准化后的事件
            record_failure: 失败时是否写入 failed_webhooks（后台重试时为 False）

        Raises:
            InfrastructureError: 存储不可用（事件已登记待重试）
        """
        started = time.perf_counter()
        result: WebhookResult | None = None
        lock = self._acquire_lock(event.event_id)
        try:
            async with lock:
                try:
                    if await self._stores.webhook_store.has_event(event.event_id):
                        log.info(
                            "webhook_duplicate_event",
                            event_id=event.event_id,
                            event_type=event.event_type,
                        )
                        result = WebhookResult(
                            event_id=event.event_id, outcome=WebhookOutcome.DUPLICATE
                        )
                    else:
                        applied = await self._apply(event)
                        result = await self._record_event(event, applied)
                except Exception as e:
                    if record_failure:
                        await self._store_failure(event, e)
                    raise
        finally:
            self._release_lock(event.event_id)
            duration_ms = (time.perf_counter() - started) * 1000
            self._metrics.record_webhook_duration(
                event.event_id,
                duration_ms,
                outcome=result.outcome if result is not None else "error",
            )

        log.info(
            "webhook_handled",
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=result.outcome,
            order_id=result.order_id,
            duration_ms=round(duration_ms, 2),
        )
        return result

    async def _apply(self, event: ProviderEvent) -> WebhookResult:
        if not event.is_handled:
            log.info(
                "webhook_event_skipped",
                event_id=event.event_id,
                event_type=event.event_type,
            )
            return WebhookResult(event_id=event.event_id, outcome=WebhookOutcome.SKIPPED)

        payment = await self._resolve_payment(event)
        order_id = payment.order_id if payment else event.order_id
        order = await self._stores.order_store.get_order(order_id) if order_id else None
        if order is None:
            log.warning(
                "webhook_order_not_found",
                event_id=event.event_id,
                event_type=event.event_type,
                provider_payment_id=event.provider_payment_id,
                payment_intent_id=event.payment_intent_id,
                order_id=event.order_id,
            )
            return WebhookResult(
                event_id=event.event_id, outcome=WebhookOutcome.ORDER_NOT_FOUND
            )

        if event.payment_intent_id and order.payment_intent_id != event.payment_intent_id:
            await self._backfill_intent(event, order, payment)

        if event.outcome is None:
            return WebhookResult(
                event_id=event.event_id,
                outcome=WebhookOutcome.BACKFILLED,
                order_id=order.order_id,
            )

        if order.status not in _WEBHOOK_SOURCE_STATES:
            log.info(
                "webhook_transition_ignored",
                event_id=event.event_id,
                order_id=order.order_id,
                status=order.status,
                reason="order_not_awaiting_payment",
            )
            return WebhookResult(
                event_id=event.event_id,
                outcome=WebhookOutcome.IGNORED,
                order_id=order.order_id,
            )

        if event.outcome == PaymentIntentStatus.SUCCEEDED:
            return await self._apply_success(event, order, payment)
        return await self._apply_failure(event, order, payment)

    async def _resolve_payment(self, event: ProviderEvent) -> Payment | None:
        store = self._stores.payment_store
        if event.provider_payment_id:
            payment = await store.get_by_provider_payment_id(event.provider_payment_id)
            if payment is not None:
                return payment
        if event.payment_intent_id:
            payment = await store.get_by_payment_intent_id(event.payment_intent_id)
            if payment is not None:
                return payment
        if event.order_id:
            return await store.get_latest_for_order(event.order_id)
        return None

    async def _backfill_intent(
        self, event: ProviderEvent, order: Order, payment: Payment | None
    ) -> None:
        """回填 payment intent 引用，不触发状态流转"""
        now = datetime.now(UTC)
        async with self._stores.atomic():
            if payment is not None:
                await self._stores.payment_store.update_status(
                    payment.payment_id, payment.status, now, event.payment_intent_id
                )
            await self._stores.order_store.set_payment_reference(
                order.order_id,
                payment.provider if payment else order.payment_provider,
                event.payment_intent_id,
                now,
            )
        log.info(
            "webhook_payment_intent_backfilled",
            event_id=event.event_id,
            order_id=order.order_id,
            payment_intent_id=event.payment_intent_id,
        )

    async def _apply_success(
        self, event: ProviderEvent, order: Order, payment: Payment | None
    ) -> WebhookResult:
        if event.amount_minor is not None and event.amount_minor != order.amount_minor:
            applied = await self._transition(
                event,
                order,
                OrderStatus.PENDING,
                f"Payment amount mismatch: expected {order.amount_minor}, "
                f"received {event.amount_minor} (minor units)",
                PaymentStatus.FAILED,
                AuditAction.PAYMENT_AMOUNT_MISMATCH,
            )
            log.warning(
                "webhook_amount_mismatch",
                event_id=event.event_id,
                order_id=order.order_id,
                expected_minor=order.amount_minor,
                received_minor=event.amount_minor,
                applied=applied,
            )
            if applied:
                await self._set_payment_status(payment, PaymentIntentStatus.FAILED)
                self._metrics.record_payment_failure(
                    order.order_id, order.total_amount, "amount_mismatch"
                )
            return WebhookResult(
                event_id=event.event_id,
                outcome=(
                    WebhookOutcome.AMOUNT_MISMATCH if applied else WebhookOutcome.IGNORED
                ),
                order_id=order.order_id,
            )

        await self._set_payment_status(payment, PaymentIntentStatus.SUCCEEDED)
        applied = await self._transition(
            event,
            order,
            OrderStatus.PAID,
            "Payment confirmed",
            PaymentStatus.PAID,
            AuditAction.PAYMENT_SUCCEEDED,
        )
        if not applied:
            return WebhookResult(
                event_id=event.event_id,
                outcome=WebhookOutcome.IGNORED,
                order_id=order.order_id,
            )

        duration_ms = (datetime.now(UTC) - order.created_at).total_seconds() * 1000
        self._metrics.record_payment_success(
            order.order_id, order.total_amount, duration_ms
        )
        return WebhookResult(
            event_id=event.event_id,
            outcome=WebhookOutcome.PROCESSED,
            order_id=order.order_id,
        )

    async def _apply_failure(
        self, event: ProviderEvent, order: Order, payment: Payment | None
    ) -> WebhookResult:
        await self._set_payment_status(payment, PaymentIntentStatus.FAILED)
        reason = event.failure_reason or "payment failed"
        applied = await self._transition(
            event,
            order,
            OrderStatus.CANCELLED,
            f"Payment failed: {reason}",
            PaymentStatus.FAILED,
            AuditAction.PAYMENT_FAILED,
        )
        if applied:
            self._metrics.record_payment_failure(order.order_id, order.total_amount, reason)
        return WebhookResult(
            event_id=event.event_id,
            outcome=WebhookOutcome.PROCESSED if applied else WebhookOutcome.IGNORED,
            order_id=order.order_id,
        )

    async def _set_payment_status(
        self, payment: Payment | None, status: PaymentIntentStatus
    ) -> None:
        if payment is None or payment.status == status:
            return
        async with self._stores.atomic():
            await self._stores.payment_store.update_status(
                payment.payment_id, status, datetime.now(UTC)
            )

    async def _transition(
        self,
        event: ProviderEvent,
        order: Order,
        to_status: OrderStatus,
        message: str,
        payment_status: PaymentStatus,
        action: AuditAction,
    ) -> bool:
        """推进订单状态；并发修改导致的非法流转记录后丢弃

        Returns:
            True 如果状态已推进
        """
        try:
            await self._orders.transition(
                order.order_id,
                to_status,
                message,
                payment_status=payment_status,
                allowed_from=_WEBHOOK_SOURCE_STATES,
                actor=_webhook_actor(event),
                action=action,
                event_id=event.event_id,
            )
        except ConflictError as e:
            log.info(
                "webhook_transition_ignored",
                event_id=event.event_id,
                order_id=order.order_id,
                to_status=to_status,
                reason=e.code,
            )
            return False
        return True

    async def _record_event(
        self, event: ProviderEvent, result: WebhookResult
    ) -> WebhookResult:
        """登记已处理事件与对应审计记录；插入冲突说明并发投递已处理过"""
        now = datetime.now(UTC)
        metadata = {"outcome": result.outcome.value, "order_id": result.order_id}
        record = WebhookEvent(
            event_id=event.event_id,
            event_type=event.event_type,
            provider=event.provider,
            processed_at=now,
            metadata=metadata,
        )
        actor = _webhook_actor(event)
        audit_entry = AuditEntry(
            audit_id=str(ULID()),
            actor_type=actor.actor_type,
            actor_id=actor.actor_id,
            action=AuditAction.WEBHOOK_RECEIVED,
            resource_type=(
                ResourceType.ORDER if result.order_id else ResourceType.WEBHOOK_EVENT
            ),
            resource_id=result.order_id or event.event_id,
            event_id=event.event_id,
            ts=now,
            metadata={**metadata, "event_type": event.event_type},
        )
        try:
            async with self._stores.atomic():
                await self._stores.webhook_store.insert_event(record)
                await self._stores.audit_store.insert(audit_entry)
        except aiosqlite.IntegrityError:
            log.info("webhook_event_already_recorded", event_id=event.event_id)
            return WebhookResult(
                event_id=event.event_id,
                outcome=WebhookOutcome.DUPLICATE,
                order_id=result.order_id,
            )
        return result

    async def _store_failure(self, event: ProviderEvent, error: Exception) -> None:
        """写入 failed_webhooks 供后台重试；同一事件只保留一条未结束记录"""
        try:
            existing = await self._stores.webhook_store.get_open_failed_for_event(
                event.event_id
            )
            if existing is not None:
                log.info(
                    "webhook_failure_already_queued",
                    event_id=event.event_id,
                    failed_id=existing.failed_id,
                )
                return
            now = datetime.now(UTC)
            failed = FailedWebhook(
                failed_id=str(ULID()),
                event_id=event.event_id,
                event_type=event.event_type,
                provider=event.provider,
                payload=event.model_dump(mode="json"),
                error=str(error),
                max_retries=WEBHOOK_MAX_RETRIES,
                next_retry_at=now + timedelta(seconds=self._retry_base_s),
                created_at=now,
            )
            async with self._stores.atomic():
                await self._stores.webhook_store.insert_failed(failed)
            log.warning(
                "webhook_failure_queued",
                event_id=event.event_id,
                failed_id=failed.failed_id,
                error_type=type(error).__name__,
            )
        except Exception as e:
            log.error(
                "webhook_failure_queue_failed",
                event_id=event.event_id,
                error_type=type(e).__name__,
                original_error_type=type(error).__name__,
            )

    def _acquire_lock(self, event_id: str) -> asyncio.Lock:
        lock = self._locks.get(event_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[event_id] = lock
        self._lock_refs[event_id] = self._lock_refs.get(event_id, 0) + 1
        return lock

    def _release_lock(self, event_id: str) -> None:
        refs = self._lock_refs.get(event_id, 1) - 1
        if refs <= 0:
            self._lock_refs.pop(event_id, None)
            self._locks.pop(event_id, None)
        else:
            self._lock_refs[event_id] = refs
