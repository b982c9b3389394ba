"""订单状态机单元测试

测试内容：
1. 合法流转通过
2. 非法流转被拒绝（含 delivered -> processing）
3. 终态不可再流转
4. Order.transition 追加恰好一条追踪条目且不修改原实例
"""

from datetime import UTC, datetime

import pytest
from storefront.core.exceptions import ConflictError
from storefront.core.models import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    Order,
    OrderItem,
    OrderStatus,
    PaymentIntentStatus,
    PaymentStatus,
    ShippingAddress,
    TrackingEntry,
    map_to_order_payment_status,
    validate_transition,
)


def _make_order(status: OrderStatus = OrderStatus.PENDING_PAYMENT) -> Order:
    now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    return Order(
        order_id="01JAAAAAAAAAAAAAAAAAAAAAAA",
        order_number="ORD-20260101-001",
        user_id="user-1",
        status=status,
        items=[OrderItem(product_ref="p1", name="Mug", quantity=3, unit_price=50.0)],
        total_amount=150.0,
        shipping_address=ShippingAddress(
            street="1 Herzl St", city="Tel Aviv", postal_code="6100001", country="IL"
        ),
        tracking_history=[TrackingEntry(status=status, ts=now, message="created")],
        created_at=now,
        updated_at=now,
    )


class TestStateMachineTransitions:
    """状态机流转验证"""

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (OrderStatus.PENDING_PAYMENT, OrderStatus.PAID),
            (OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED),
            (OrderStatus.PENDING_PAYMENT, OrderStatus.PENDING),
            (OrderStatus.PENDING, OrderStatus.PAID),
            (OrderStatus.PENDING, OrderStatus.CANCELLED),
            (OrderStatus.PAID, OrderStatus.PROCESSING),
            (OrderStatus.PAID, OrderStatus.CANCELLED),
            (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
            (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
            (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        ],
    )
    def test_valid_transition(self, from_status: OrderStatus, to_status: OrderStatus):
        """合法流转应通过验证"""
        assert validate_transition(from_status, to_status) is True

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (OrderStatus.DELIVERED, OrderStatus.PROCESSING),
            (OrderStatus.PENDING_PAYMENT, OrderStatus.SHIPPED),
            (OrderStatus.PAID, OrderStatus.PENDING_PAYMENT),
            (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
            (OrderStatus.PAID, OrderStatus.PAID),
        ],
    )
    def test_invalid_transition(self, from_status: OrderStatus, to_status: OrderStatus):
        """非法流转应被拒绝"""
        assert validate_transition(from_status, to_status) is False

    def test_terminal_states_have_empty_transitions(self):
        """终态的合法流转集合为空"""
        assert TERMINAL_STATES == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}
        for status in TERMINAL_STATES:
            assert VALID_TRANSITIONS[status] == set()
            for target in OrderStatus:
                assert validate_transition(status, target) is False

    def test_valid_transitions_completeness(self):
        """VALID_TRANSITIONS 覆盖所有状态"""
        for status in OrderStatus:
            assert status in VALID_TRANSITIONS, f"{status} 未在 VALID_TRANSITIONS 中定义"


class TestOrderTransition:
    """Order.transition 行为"""

    def test_legal_transition_appends_one_entry(self):
        """合法流转追加恰好一条追踪条目，已有条目保持不变"""
        order = _make_order(OrderStatus.PAID)
        ts = datetime(2026, 1, 2, tzinfo=UTC)

        updated, entry = order.transition(OrderStatus.PROCESSING, "packing", ts)

        assert updated.status == OrderStatus.PROCESSING
        assert len(updated.tracking_history) == len(order.tracking_history) + 1
        assert updated.tracking_history[:-1] == order.tracking_history
        assert updated.tracking_history[-1] == entry
        assert entry.status == OrderStatus.PROCESSING
        assert entry.message == "packing"
        assert updated.updated_at == ts
        # 原实例不变
        assert order.status == OrderStatus.PAID
        assert len(order.tracking_history) == 1

    def test_illegal_transition_raises_conflict(self):
        """delivered -> processing 抛出 ConflictError，订单不变"""
        order = _make_order(OrderStatus.DELIVERED)

        with pytest.raises(ConflictError) as exc_info:
            order.transition(OrderStatus.PROCESSING, "oops", datetime.now(UTC))

        assert exc_info.value.code == "INVALID_STATUS_TRANSITION"
        assert exc_info.value.status_code == 409
        assert order.status == OrderStatus.DELIVERED
        assert len(order.tracking_history) == 1

    def test_transition_updates_payment_status(self):
        order = _make_order()
        updated, _ = order.transition(
            OrderStatus.PAID, "paid", datetime.now(UTC), PaymentStatus.PAID
        )
        assert updated.payment_status == PaymentStatus.PAID

    def test_transition_keeps_payment_status_by_default(self):
        order = _make_order(OrderStatus.PAID)
        updated, _ = order.transition(OrderStatus.PROCESSING, "", datetime.now(UTC))
        assert updated.payment_status == order.payment_status


class TestPaymentStatusMapping:
    """支付记录状态 -> 订单支付状态"""

    @pytest.mark.parametrize(
        "intent_status,expected",
        [
            (PaymentIntentStatus.SUCCEEDED, PaymentStatus.PAID),
            (PaymentIntentStatus.REFUNDED, PaymentStatus.REFUNDED),
            (PaymentIntentStatus.FAILED, PaymentStatus.FAILED),
            (PaymentIntentStatus.CANCELED, PaymentStatus.FAILED),
            (PaymentIntentStatus.PENDING, PaymentStatus.PENDING),
            (PaymentIntentStatus.REQUIRES_ACTION, PaymentStatus.PENDING),
        ],
    )
    def test_mapping(self, intent_status: PaymentIntentStatus, expected: PaymentStatus):
        assert map_to_order_payment_status(intent_status) == expected
