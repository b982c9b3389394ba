"""SQLite Store 与事务封装测试

测试内容：
1. 订单 + 追踪历史 + 支付记录同事务写入，失败整体回滚
2. CAS 状态更新：状态已变化时抛出 OrderStatusConflictError 且不追加追踪条目
3. 支付记录按服务商会话 ID / payment intent / 订单查询
4. Webhook 事件去重（event_id 主键）与失败事件调度查询
5. 审计记录与状态变更同事务写入，按资源 / 操作方查询
"""

from datetime import UTC, datetime, timedelta

import aiosqlite
import pytest
from storefront.core.models import (
    ActorType,
    AuditAction,
    AuditEntry,
    FailedWebhook,
    FailedWebhookStatus,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentIntentStatus,
    PaymentStatus,
    ResourceType,
    ShippingAddress,
    TrackingEntry,
    WebhookEvent,
    WebhookProvider,
)
from storefront.core.store import (
    OrderStatusConflictError,
    create_order_with_payment,
    transition_order,
)
from ulid import ULID

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _order(order_number: str = "ORD-20260101-001", user_id: str = "user-1") -> Order:
    return Order(
        order_id=str(ULID()),
        order_number=order_number,
        user_id=user_id,
        items=[
            OrderItem(product_ref="p1", name="Mug", quantity=2, unit_price=50.0),
            OrderItem(product_ref="p2", name="Poster", quantity=1, unit_price=50.0),
        ],
        total_amount=150.0,
        shipping_address=ShippingAddress(
            street="1 Herzl St", city="Tel Aviv", postal_code="6100001", country="IL"
        ),
        tracking_history=[
            TrackingEntry(status=OrderStatus.PENDING_PAYMENT, ts=NOW, message="created")
        ],
        payment_provider="mock",
        created_at=NOW,
        updated_at=NOW,
    )


def _payment(order: Order, session_id: str = "cs_1") -> Payment:
    return Payment(
        payment_id=str(ULID()),
        order_id=order.order_id,
        user_id=order.user_id,
        amount=order.total_amount,
        provider="mock",
        provider_payment_id=session_id,
        created_at=NOW,
        updated_at=NOW,
    )


async def _create(store_group, order: Order, payment: Payment) -> None:
    await create_order_with_payment(
        store_group.conn,
        store_group.write_lock,
        store_group.order_store,
        store_group.payment_store,
        order,
        payment,
    )


class TestOrderStore:
    async def test_create_and_read_back(self, store_group):
        order = _order()
        await _create(store_group, order, _payment(order))

        loaded = await store_group.order_store.get_order(order.order_id)

        assert loaded is not None
        assert loaded.order_number == order.order_number
        assert loaded.items == order.items
        assert loaded.shipping_address == order.shipping_address
        assert loaded.total_amount == 150.0
        assert loaded.tracking_history == order.tracking_history
        assert loaded.created_at == NOW

    async def test_get_missing_order_returns_none(self, store_group):
        assert await store_group.order_store.get_order("missing") is None

    async def test_failed_payment_insert_rolls_back_order(self, store_group):
        """支付记录写入失败 -> 订单与追踪条目一并回滚"""
        first = _order()
        payment = _payment(first)
        await _create(store_group, first, payment)

        second = _order(order_number="ORD-20260101-002")
        # 重复的 payment_id 触发主键冲突
        duplicate = payment.model_copy(update={"order_id": second.order_id})
        with pytest.raises(aiosqlite.IntegrityError):
            await _create(store_group, second, duplicate)

        assert await store_group.order_store.get_order(second.order_id) is None
        assert await store_group.order_store.get_tracking(second.order_id) == []

    async def test_order_number_is_unique(self, store_group):
        first = _order()
        await _create(store_group, first, _payment(first))
        clash = _order()  # 同一订单号
        with pytest.raises(aiosqlite.IntegrityError):
            await _create(store_group, clash, _payment(clash, "cs_2"))

    async def test_list_orders_for_user_with_filter(self, store_group):
        a = _order("ORD-20260101-001")
        b = _order("ORD-20260101-002")
        other = _order("ORD-20260101-003", user_id="user-2")
        for order in (a, b, other):
            await _create(store_group, order, _payment(order, f"cs_{order.order_number}"))
        await transition_order(
            store_group.conn,
            store_group.write_lock,
            store_group.order_store,
            b.order_id,
            OrderStatus.PENDING_PAYMENT,
            TrackingEntry(status=OrderStatus.PAID, ts=NOW, message="paid"),
            PaymentStatus.PAID,
            NOW,
        )

        mine = await store_group.order_store.list_orders_for_user("user-1")
        paid = await store_group.order_store.list_orders_for_user("user-1", "paid")

        assert {o.order_id for o in mine} == {a.order_id, b.order_id}
        assert [o.order_id for o in paid] == [b.order_id]
        assert await store_group.order_store.count_orders_for_user("user-1") == 2


class TestTransitionOrder:
    async def test_cas_success_appends_tracking(self, store_group):
        order = _order()
        await _create(store_group, order, _payment(order))
        later = NOW + timedelta(minutes=5)

        await transition_order(
            store_group.conn,
            store_group.write_lock,
            store_group.order_store,
            order.order_id,
            OrderStatus.PENDING_PAYMENT,
            TrackingEntry(status=OrderStatus.PAID, ts=later, message="Payment confirmed"),
            PaymentStatus.PAID,
            later,
        )

        loaded = await store_group.order_store.get_order(order.order_id)
        assert loaded.status == OrderStatus.PAID
        assert loaded.payment_status == PaymentStatus.PAID
        assert [e.status for e in loaded.tracking_history] == [
            OrderStatus.PENDING_PAYMENT,
            OrderStatus.PAID,
        ]
        assert loaded.updated_at == later

    async def test_cas_conflict_leaves_order_untouched(self, store_group):
        """expected_status 不匹配 -> OrderStatusConflictError，无追踪条目追加"""
        order = _order()
        await _create(store_group, order, _payment(order))

        with pytest.raises(OrderStatusConflictError):
            await transition_order(
                store_group.conn,
                store_group.write_lock,
                store_group.order_store,
                order.order_id,
                OrderStatus.PAID,
                TrackingEntry(status=OrderStatus.PROCESSING, ts=NOW, message="x"),
                PaymentStatus.PAID,
                NOW,
            )

        loaded = await store_group.order_store.get_order(order.order_id)
        assert loaded.status == OrderStatus.PENDING_PAYMENT
        assert len(loaded.tracking_history) == 1


def _audit(
    order_id: str, actor_id: str = "admin-1", ts: datetime = NOW, **overrides
) -> AuditEntry:
    data = {
        "audit_id": str(ULID()),
        "actor_type": ActorType.ADMIN,
        "actor_id": actor_id,
        "action": AuditAction.ORDER_STATUS_CHANGED,
        "resource_type": ResourceType.ORDER,
        "resource_id": order_id,
        "ts": ts,
        "metadata": {"to_status": "paid"},
    }
    data.update(overrides)
    return AuditEntry(**data)


class TestAuditStore:
    async def test_transition_writes_audit_entry(self, store_group):
        order = _order()
        await _create(store_group, order, _payment(order))
        entry = _audit(order.order_id, event_id="evt_1")

        await transition_order(
            store_group.conn,
            store_group.write_lock,
            store_group.order_store,
            order.order_id,
            OrderStatus.PENDING_PAYMENT,
            TrackingEntry(status=OrderStatus.PAID, ts=NOW, message="paid"),
            PaymentStatus.PAID,
            NOW,
            audit_store=store_group.audit_store,
            audit_entry=entry,
        )

        loaded = await store_group.audit_store.list_for_resource(order.order_id)
        assert loaded == [entry]
        assert await store_group.audit_store.list_for_event("evt_1") == [entry]

    async def test_cas_conflict_writes_no_audit_entry(self, store_group):
        """CAS 失败时审计记录随事务一起回滚"""
        order = _order()
        await _create(store_group, order, _payment(order))

        with pytest.raises(OrderStatusConflictError):
            await transition_order(
                store_group.conn,
                store_group.write_lock,
                store_group.order_store,
                order.order_id,
                OrderStatus.PAID,
                TrackingEntry(status=OrderStatus.PROCESSING, ts=NOW, message="x"),
                PaymentStatus.PAID,
                NOW,
                audit_store=store_group.audit_store,
                audit_entry=_audit(order.order_id),
            )

        assert await store_group.audit_store.list_for_resource(order.order_id) == []

    async def test_order_creation_rollback_drops_audit_entry(self, store_group):
        first = _order()
        payment = _payment(first)
        await _create(store_group, first, payment)
        second = _order(order_number="ORD-20260101-002")
        duplicate = payment.model_copy(update={"order_id": second.order_id})

        with pytest.raises(aiosqlite.IntegrityError):
            await create_order_with_payment(
                store_group.conn,
                store_group.write_lock,
                store_group.order_store,
                store_group.payment_store,
                second,
                duplicate,
                audit_store=store_group.audit_store,
                audit_entry=_audit(second.order_id, action=AuditAction.ORDER_CREATED),
            )

        assert await store_group.audit_store.list_for_resource(second.order_id) == []

    async def test_list_for_actor_newest_first(self, store_group):
        older = _audit("order-a", ts=NOW)
        newer = _audit("order-b", ts=NOW + timedelta(minutes=1))
        other = _audit("order-a", actor_id="admin-2")
        async with store_group.atomic():
            for entry in (older, newer, other):
                await store_group.audit_store.insert(entry)

        entries = await store_group.audit_store.list_for_actor("admin-1")

        assert [e.audit_id for e in entries] == [newer.audit_id, older.audit_id]
        assert await store_group.audit_store.list_for_actor("admin-1", limit=1) == [newer]
        resource = await store_group.audit_store.list_for_resource("order-a")
        assert [e.audit_id for e in resource] == [older.audit_id, other.audit_id]


class TestPaymentStore:
    async def test_lookups(self, store_group):
        order = _order()
        payment = _payment(order, "cs_lookup")
        await _create(store_group, order, payment)
        store = store_group.payment_store

        assert (await store.get_payment(payment.payment_id)).order_id == order.order_id
        assert (await store.get_by_provider_payment_id("cs_lookup")).payment_id == (
            payment.payment_id
        )
        assert await store.get_by_payment_intent_id("pi_unknown") is None
        assert (await store.get_latest_for_order(order.order_id)).payment_id == (
            payment.payment_id
        )

    async def test_update_status_backfills_intent(self, store_group):
        order = _order()
        payment = _payment(order)
        await _create(store_group, order, payment)

        async with store_group.atomic():
            await store_group.payment_store.update_status(
                payment.payment_id, PaymentIntentStatus.SUCCEEDED, NOW, "pi_123"
            )
        async with store_group.atomic():
            # 不传 payment_intent_id 时保留已有值
            await store_group.payment_store.update_status(
                payment.payment_id, PaymentIntentStatus.REFUNDED, NOW
            )

        loaded = await store_group.payment_store.get_by_payment_intent_id("pi_123")
        assert loaded is not None
        assert loaded.status == PaymentIntentStatus.REFUNDED


class TestWebhookStore:
    async def test_duplicate_event_rejected(self, store_group):
        event = WebhookEvent(
            event_id="evt_1",
            event_type="payment_intent.succeeded",
            provider=WebhookProvider.STRIPE,
            processed_at=NOW,
            metadata={"outcome": "processed"},
        )
        async with store_group.atomic():
            await store_group.webhook_store.insert_event(event)

        with pytest.raises(aiosqlite.IntegrityError):
            async with store_group.atomic():
                await store_group.webhook_store.insert_event(event)

        assert await store_group.webhook_store.has_event("evt_1")
        assert await store_group.webhook_store.count_events("evt_1") == 1
        stored = await store_group.webhook_store.get_event("evt_1")
        assert stored.metadata == {"outcome": "processed"}

    async def test_purge_events_before(self, store_group):
        old = WebhookEvent(
            event_id="evt_old",
            event_type="x",
            provider=WebhookProvider.MOCK,
            processed_at=NOW - timedelta(days=31),
        )
        fresh = old.model_copy(update={"event_id": "evt_new", "processed_at": NOW})
        async with store_group.atomic():
            await store_group.webhook_store.insert_event(old)
            await store_group.webhook_store.insert_event(fresh)

        async with store_group.atomic():
            deleted = await store_group.webhook_store.purge_events_before(
                NOW - timedelta(days=30)
            )

        assert deleted == 1
        assert not await store_group.webhook_store.has_event("evt_old")
        assert await store_group.webhook_store.has_event("evt_new")

    async def test_list_due_filters_by_time_status_and_retries(self, store_group):
        def failed(event_id: str, **overrides) -> FailedWebhook:
            data = {
                "failed_id": str(ULID()),
                "event_id": event_id,
                "event_type": "payment_intent.succeeded",
                "provider": WebhookProvider.STRIPE,
                "payload": {"event_id": event_id},
                "next_retry_at": NOW - timedelta(seconds=1),
                "created_at": NOW,
            }
            data.update(overrides)
            return FailedWebhook(**data)

        due = failed("evt_due")
        later = failed("evt_later", next_retry_at=NOW + timedelta(minutes=5))
        done = failed("evt_done", status=FailedWebhookStatus.SUCCEEDED)
        exhausted = failed("evt_exhausted", retry_count=5)
        async with store_group.atomic():
            for item in (due, later, done, exhausted):
                await store_group.webhook_store.insert_failed(item)

        result = await store_group.webhook_store.list_due(NOW, limit=10)

        assert [f.event_id for f in result] == ["evt_due"]
        assert (
            await store_group.webhook_store.get_open_failed_for_event("evt_later")
        ).failed_id == later.failed_id
        assert await store_group.webhook_store.get_open_failed_for_event("evt_done") is None
