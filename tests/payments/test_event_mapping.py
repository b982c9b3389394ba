"""Webhook 事件结构 -> ProviderEvent 映射测试"""

from storefront.core.models import PaymentIntentStatus, WebhookProvider
from storefront.payments import StripeEventEnvelope, event_from_envelope


def _envelope(event_type: str, obj: dict, event_id: str = "evt_1") -> StripeEventEnvelope:
    return StripeEventEnvelope.model_validate(
        {"id": event_id, "type": event_type, "data": {"object": obj}, "created": 1767225600}
    )


class TestEventMapping:
    def test_checkout_session_completed_paid(self):
        event = event_from_envelope(
            _envelope(
                "checkout.session.completed",
                {
                    "id": "cs_1",
                    "object": "checkout.session",
                    "payment_intent": "pi_1",
                    "payment_status": "paid",
                    "amount_total": 15000,
                    "metadata": {"order_id": "order-1"},
                },
            ),
            WebhookProvider.STRIPE,
        )

        assert event.event_id == "evt_1"
        assert event.provider_payment_id == "cs_1"
        assert event.payment_intent_id == "pi_1"
        assert event.order_id == "order-1"
        assert event.amount_minor == 15000
        assert event.outcome == PaymentIntentStatus.SUCCEEDED
        assert event.is_handled

    def test_checkout_session_unpaid_only_backfills(self):
        event = event_from_envelope(
            _envelope(
                "checkout.session.completed",
                {"id": "cs_1", "payment_status": "unpaid", "client_reference_id": "order-9"},
            ),
            WebhookProvider.STRIPE,
        )
        assert event.outcome is None
        assert event.order_id == "order-9"

    def test_payment_intent_succeeded(self):
        event = event_from_envelope(
            _envelope(
                "payment_intent.succeeded",
                {
                    "id": "pi_1",
                    "object": "payment_intent",
                    "amount": 15000,
                    "amount_received": 15000,
                    "metadata": {"orderId": "order-1"},
                },
            ),
            WebhookProvider.STRIPE,
        )
        assert event.payment_intent_id == "pi_1"
        assert event.provider_payment_id is None
        assert event.order_id == "order-1"
        assert event.amount_minor == 15000
        assert event.outcome == PaymentIntentStatus.SUCCEEDED

    def test_payment_intent_failed_carries_reason(self):
        event = event_from_envelope(
            _envelope(
                "payment_intent.payment_failed",
                {
                    "id": "pi_1",
                    "amount": 15000,
                    "last_payment_error": {"message": "Your card was declined."},
                },
            ),
            WebhookProvider.STRIPE,
        )
        assert event.outcome == PaymentIntentStatus.FAILED
        assert event.failure_reason == "Your card was declined."

    def test_generic_payment_events(self):
        succeeded = event_from_envelope(
            _envelope("payment.succeeded", {"order_id": "order-1", "amount": 15000}),
            WebhookProvider.MOCK,
        )
        failed = event_from_envelope(
            _envelope("payment.failed", {"id": "mock_cs_1", "order_id": "order-1"}, "evt_2"),
            WebhookProvider.MOCK,
        )

        assert succeeded.outcome == PaymentIntentStatus.SUCCEEDED
        assert succeeded.provider_payment_id is None
        assert succeeded.order_id == "order-1"
        assert failed.outcome == PaymentIntentStatus.FAILED
        assert failed.provider_payment_id == "mock_cs_1"
        assert failed.has_reference

    def test_unhandled_event_type(self):
        event = event_from_envelope(
            _envelope("customer.created", {"id": "cus_1"}), WebhookProvider.STRIPE
        )
        assert not event.is_handled
        assert event.outcome is None
        assert not event.has_reference

    def test_extra_fields_are_ignored(self):
        envelope = StripeEventEnvelope.model_validate(
            {
                "id": "evt_1",
                "type": "payment.succeeded",
                "livemode": False,
                "data": {"object": {"order_id": "o1", "unexpected": {"nested": True}}},
            }
        )
        assert envelope.data.object.order_id == "o1"
