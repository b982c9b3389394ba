"""MetricsCollector -- 内存中的有界时间序列指标

每个 key 最多保留 max_points 个观测点，超出后淘汰最早的点（FIFO）。
不做持久化，进程重启后清零。实例通过依赖注入传递，测试可构造独立实例。
"""

from collections import deque
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from .config import METRICS_DEFAULT_LAST_N, METRICS_MAX_POINTS


class MetricPoint(BaseModel):
    """单个观测点"""

    ts: datetime
    value: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class MetricsCollector:
    """有界时间序列收集器"""

    def __init__(self, max_points: int = METRICS_MAX_POINTS) -> None:
        self._max_points = max_points
        self._series: dict[str, deque[MetricPoint]] = {}

    def record(
        self, key: str, value: float, metadata: dict[str, Any] | None = None
    ) -> None:
        """追加观测点"""
        series = self._series.get(key)
        if series is None:
            series = deque(maxlen=self._max_points)
            self._series[key] = series
        series.append(
            MetricPoint(ts=datetime.now(UTC), value=value, metadata=metadata or {})
        )

    def _recent(self, key: str, last_n: int) -> list[MetricPoint]:
        series = self._series.get(key)
        if not series or last_n <= 0:
            return []
        return list(series)[-last_n:]

    def get_average(self, key: str, last_n: int = METRICS_DEFAULT_LAST_N) -> float:
        recent = self._recent(key, last_n)
        if not recent:
            return 0.0
        return sum(p.value for p in recent) / len(recent)

    def get_sum(self, key: str, last_n: int = METRICS_DEFAULT_LAST_N) -> float:
        return sum(p.value for p in self._recent(key, last_n))

    def get_count(self, key: str) -> int:
        return len(self._series.get(key, ()))

    def get_all(self, key: str) -> list[MetricPoint]:
        return list(self._series.get(key, ()))

    def keys(self) -> list[str]:
        return sorted(self._series)

    def clear(self, key: str | None = None) -> None:
        if key is None:
            self._series.clear()
        else:
            self._series.pop(key, None)


# 支付指标 key
PAYMENT_ATTEMPTS = "payment.attempts"
PAYMENT_SUCCESS = "payment.success"
PAYMENT_AMOUNT_SUCCESS = "payment.amount.success"
PAYMENT_DURATION = "payment.duration"
PAYMENT_FAILURE = "payment.failure"
PAYMENT_AMOUNT_FAILED = "payment.amount.failed"
WEBHOOK_DURATION = "webhook.duration"


class PaymentMetricsSummary(BaseModel):
    """支付指标汇总"""

    total_payments: float
    successful_payments: float
    failed_payments: float
    total_amount: float
    average_amount: float
    success_rate: float = Field(description="百分比")
    average_processing_time: float = Field(description="毫秒")


class WebhookMetricsSummary(BaseModel):
    """Webhook 指标汇总"""

    average_duration: float = Field(description="毫秒")
    count: int


class PaymentMetrics:
    """支付领域指标门面 -- 基于注入的 MetricsCollector"""

    def __init__(self, collector: MetricsCollector) -> None:
        self.collector = collector

    def record_payment_attempt(self, order_id: str, amount: float) -> None:
        self.collector.record(PAYMENT_ATTEMPTS, 1, {"order_id": order_id, "amount": amount})

    def record_payment_success(
        self, order_id: str, amount: float, duration_ms: float
    ) -> None:
        self.collector.record(PAYMENT_SUCCESS, 1, {"order_id": order_id, "amount": amount})
        self.collector.record(PAYMENT_AMOUNT_SUCCESS, amount, {"order_id": order_id})
        self.collector.record(PAYMENT_DURATION, duration_ms, {"order_id": order_id})

    def record_payment_failure(self, order_id: str, amount: float, reason: str) -> None:
        self.collector.record(
            PAYMENT_FAILURE, 1, {"order_id": order_id, "amount": amount, "reason": reason}
        )
        self.collector.record(PAYMENT_AMOUNT_FAILED, amount, {"order_id": order_id})

    def record_webhook_duration(
        self, event_id: str, duration_ms: float, outcome: str = ""
    ) -> None:
        self.collector.record(
            WEBHOOK_DURATION, duration_ms, {"event_id": event_id, "outcome": outcome}
        )

    def summary(self, last_n: int = METRICS_DEFAULT_LAST_N) -> PaymentMetricsSummary:
        """最近 last_n 个观测点的支付汇总"""
        total_attempts = self.collector.get_sum(PAYMENT_ATTEMPTS, last_n)
        successful = self.collector.get_sum(PAYMENT_SUCCESS, last_n)
        failed = self.collector.get_sum(PAYMENT_FAILURE, last_n)
        total_amount = self.collector.get_sum(PAYMENT_AMOUNT_SUCCESS, last_n)
        return PaymentMetricsSummary(
            total_payments=total_attempts,
            successful_payments=successful,
            failed_payments=failed,
            total_amount=round(total_amount, 2),
            average_amount=round(total_amount / successful, 2) if successful else 0.0,
            success_rate=(successful / total_attempts) * 100 if total_attempts else 0.0,
            average_processing_time=self.collector.get_average(PAYMENT_DURATION, last_n),
        )

    def webhook_summary(self, last_n: int = METRICS_DEFAULT_LAST_N) -> WebhookMetricsSummary:
        return WebhookMetricsSummary(
            average_duration=self.collector.get_average(WEBHOOK_DURATION, last_n),
            count=self.collector.get_count(WEBHOOK_DURATION),
        )

    def export(self, last_n: int = METRICS_DEFAULT_LAST_N) -> dict[str, Any]:
        """导出全部指标（供外部监控拉取）"""
        return {
            "payment": self.summary(last_n).model_dump(),
            "webhook": self.webhook_summary(last_n).model_dump(),
            "timestamp": datetime.now(UTC).isoformat(),
        }
