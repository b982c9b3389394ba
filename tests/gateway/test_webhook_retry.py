"""WebhookRetryWorker 测试 -- 到期轮询 / 指数退避 / 重试上限 / 手动重试"""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from storefront.core.exceptions import ConflictError, InfrastructureError, NotFoundError
from storefront.core.metrics import MetricsCollector, PaymentMetrics
from storefront.core.models import FailedWebhook, FailedWebhookStatus, WebhookProvider
from storefront.gateway.services.order_service import OrderService
from storefront.gateway.services.webhook_retry import WebhookRetryWorker
from storefront.gateway.services.webhook_service import WebhookReconciler
from storefront.payments import ProviderEvent

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def _reconciler(store_group, mock_provider) -> WebhookReconciler:
    metrics = PaymentMetrics(MetricsCollector())
    service = OrderService(store_group, mock_provider, metrics)
    return WebhookReconciler(store_group, service, metrics)


async def _queue_failed(store_group, event_id: str = "evt_1", **overrides) -> FailedWebhook:
    event = ProviderEvent(
        event_id=event_id,
        event_type="payment.succeeded",
        provider=WebhookProvider.MOCK,
        order_id="unknown-order",
    )
    data = {
        "failed_id": f"fw_{event_id}",
        "event_id": event_id,
        "event_type": event.event_type,
        "provider": event.provider,
        "payload": event.model_dump(mode="json"),
        "error": "disk I/O error",
        "max_retries": 3,
        "next_retry_at": NOW,
        "created_at": NOW - timedelta(minutes=1),
    }
    data.update(overrides)
    failed = FailedWebhook(**data)
    async with store_group.atomic():
        await store_group.webhook_store.insert_failed(failed)
    return failed


class TestProcessDue:
    async def test_not_due_yet(self, store_group, mock_provider):
        await _queue_failed(store_group)
        worker = WebhookRetryWorker(store_group, _reconciler(store_group, mock_provider))

        assert await worker.process_due(NOW - timedelta(seconds=1)) == 0

    async def test_due_event_succeeds(self, store_group, mock_provider):
        failed = await _queue_failed(store_group)
        worker = WebhookRetryWorker(store_group, _reconciler(store_group, mock_provider))

        assert await worker.process_due(NOW) == 1

        updated = await store_group.webhook_store.get_failed(failed.failed_id)
        assert updated.status == FailedWebhookStatus.SUCCEEDED
        assert updated.retry_count == 1
        assert updated.last_attempt_at is not None
        # 未知订单同样视为已确认
        assert await store_group.webhook_store.has_event("evt_1")

        # 已成功的记录不再被轮询
        assert await worker.process_due(NOW + timedelta(days=1)) == 0

    async def test_failure_backs_off_exponentially(self, store_group, mock_provider):
        failed = await _queue_failed(store_group)
        reconciler = _reconciler(store_group, mock_provider)
        reconciler.handle_event = AsyncMock(side_effect=InfrastructureError("still down"))
        worker = WebhookRetryWorker(store_group, reconciler, base_s=10)

        assert await worker.process_due(NOW) == 0

        updated = await store_group.webhook_store.get_failed(failed.failed_id)
        assert updated.status == FailedWebhookStatus.RETRYING
        assert updated.retry_count == 1
        assert updated.error == "still down"
        delay = updated.next_retry_at - updated.last_attempt_at
        assert delay == timedelta(seconds=20)
        reconciler.handle_event.assert_awaited_once()
        assert reconciler.handle_event.await_args.kwargs == {"record_failure": False}

    async def test_gives_up_after_max_retries(self, store_group, mock_provider):
        failed = await _queue_failed(store_group, retry_count=2)
        reconciler = _reconciler(store_group, mock_provider)
        reconciler.handle_event = AsyncMock(side_effect=InfrastructureError("still down"))
        worker = WebhookRetryWorker(store_group, reconciler)

        await worker.process_due(NOW)

        updated = await store_group.webhook_store.get_failed(failed.failed_id)
        assert updated.status == FailedWebhookStatus.FAILED
        assert updated.retry_count == 3
        assert await worker.process_due(NOW + timedelta(days=30)) == 0

    async def test_batch_size_limits_round(self, store_group, mock_provider):
        for i in range(3):
            await _queue_failed(store_group, f"evt_{i}")
        worker = WebhookRetryWorker(
            store_group, _reconciler(store_group, mock_provider), batch_size=2
        )

        assert await worker.process_due(NOW) == 2
        assert await worker.process_due(NOW) == 1


class TestRetryById:
    async def test_retry_exhausted_record(self, store_group, mock_provider):
        """手动重试不受 next_retry_at 与上限约束"""
        failed = await _queue_failed(
            store_group,
            retry_count=3,
            status=FailedWebhookStatus.FAILED,
            next_retry_at=NOW + timedelta(days=1),
        )
        worker = WebhookRetryWorker(store_group, _reconciler(store_group, mock_provider))

        updated = await worker.retry_by_id(failed.failed_id)

        assert updated.status == FailedWebhookStatus.SUCCEEDED
        assert updated.retry_count == 4

    async def test_already_succeeded(self, store_group, mock_provider):
        failed = await _queue_failed(store_group, status=FailedWebhookStatus.SUCCEEDED)
        worker = WebhookRetryWorker(store_group, _reconciler(store_group, mock_provider))

        with pytest.raises(ConflictError) as exc_info:
            await worker.retry_by_id(failed.failed_id)
        assert exc_info.value.code == "WEBHOOK_ALREADY_SUCCEEDED"

    async def test_missing(self, store_group, mock_provider):
        worker = WebhookRetryWorker(store_group, _reconciler(store_group, mock_provider))
        with pytest.raises(NotFoundError):
            await worker.retry_by_id("missing")


class TestLifecycle:
    async def test_start_runs_rounds_until_stopped(self, store_group, mock_provider):
        await _queue_failed(
            store_group, next_retry_at=datetime.now(UTC) - timedelta(minutes=1)
        )
        worker = WebhookRetryWorker(
            store_group, _reconciler(store_group, mock_provider), interval_s=0.01
        )

        worker.start()
        assert worker.running
        for _ in range(100):
            if await store_group.webhook_store.has_event("evt_1"):
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert not worker.running
        assert await store_group.webhook_store.has_event("evt_1")

    async def test_stop_without_start(self, store_group, mock_provider):
        worker = WebhookRetryWorker(store_group, _reconciler(store_group, mock_provider))
        await worker.stop()
        assert not worker.running
