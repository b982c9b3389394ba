"""MetricsCollector / PaymentMetrics 测试"""

import pytest
from storefront.core.metrics import (
    PAYMENT_ATTEMPTS,
    PAYMENT_SUCCESS,
    WEBHOOK_DURATION,
    MetricsCollector,
    PaymentMetrics,
)


class TestMetricsCollector:
    def test_unknown_key_is_zero(self):
        collector = MetricsCollector()
        assert collector.get_average("nope") == 0.0
        assert collector.get_sum("nope") == 0.0
        assert collector.get_count("nope") == 0
        assert collector.get_all("nope") == []

    def test_average_and_sum_over_last_n(self):
        collector = MetricsCollector()
        for value in (10, 20, 30, 40):
            collector.record("latency", value)

        assert collector.get_average("latency") == 25.0
        assert collector.get_average("latency", last_n=2) == 35.0
        assert collector.get_sum("latency", last_n=3) == 90.0
        assert collector.get_count("latency") == 4

    def test_capacity_evicts_oldest(self):
        """超出容量后淘汰最早的观测点"""
        collector = MetricsCollector(max_points=3)
        for value in range(1, 6):
            collector.record("k", value, {"i": value})

        points = collector.get_all("k")
        assert [p.value for p in points] == [3, 4, 5]
        assert points[0].metadata == {"i": 3}
        assert collector.get_count("k") == 3

    def test_instances_are_independent(self):
        a = MetricsCollector()
        b = MetricsCollector()
        a.record("k", 1)
        assert b.get_count("k") == 0

    def test_clear(self):
        collector = MetricsCollector()
        collector.record("a", 1)
        collector.record("b", 1)

        collector.clear("a")
        assert collector.keys() == ["b"]

        collector.clear()
        assert collector.keys() == []


class TestPaymentMetrics:
    def test_summary(self):
        metrics = PaymentMetrics(MetricsCollector())
        metrics.record_payment_attempt("o1", 100.0)
        metrics.record_payment_attempt("o2", 50.0)
        metrics.record_payment_attempt("o3", 30.0)
        metrics.record_payment_attempt("o4", 20.0)
        metrics.record_payment_success("o1", 100.0, duration_ms=200)
        metrics.record_payment_success("o2", 50.0, duration_ms=400)
        metrics.record_payment_failure("o3", 30.0, "card_declined")

        summary = metrics.summary()

        assert summary.total_payments == 4
        assert summary.successful_payments == 2
        assert summary.failed_payments == 1
        assert summary.total_amount == 150.0
        assert summary.average_amount == 75.0
        assert summary.success_rate == pytest.approx(50.0)
        assert summary.average_processing_time == 300.0

    def test_empty_summary_has_no_division_errors(self):
        summary = PaymentMetrics(MetricsCollector()).summary()
        assert summary.success_rate == 0.0
        assert summary.average_amount == 0.0

    def test_webhook_summary_and_export(self):
        metrics = PaymentMetrics(MetricsCollector())
        metrics.record_webhook_duration("evt_1", 10.0, "processed")
        metrics.record_webhook_duration("evt_2", 30.0, "duplicate")

        webhook = metrics.webhook_summary()
        exported = metrics.export()

        assert webhook.average_duration == 20.0
        assert webhook.count == 2
        assert exported["webhook"]["count"] == 2
        assert "payment" in exported
        assert "timestamp" in exported
        points = metrics.collector.get_all(WEBHOOK_DURATION)
        assert points[1].metadata == {"event_id": "evt_2", "outcome": "duplicate"}

    def test_attempt_metadata(self):
        metrics = PaymentMetrics(MetricsCollector())
        metrics.record_payment_attempt("o1", 99.5)
        metrics.record_payment_success("o1", 99.5, 12)
        assert metrics.collector.get_all(PAYMENT_ATTEMPTS)[0].metadata == {
            "order_id": "o1",
            "amount": 99.5,
        }
        assert metrics.collector.get_count(PAYMENT_SUCCESS) == 1
