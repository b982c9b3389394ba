"""WebhookRetryWorker -- 失败 Webhook 后台重试

后台 asyncio 任务按固定间隔轮询到期的 failed_webhooks，
重新交给 WebhookReconciler 处理：成功标记 succeeded，
失败按指数退避（base * 2 ** retry_count 秒）安排下一次，达到上限标记 failed。
"""

import asyncio
import contextlib
from datetime import UTC, datetime, timedelta

import structlog
from storefront.core.config import (
    WEBHOOK_RETRY_BASE_S,
    WEBHOOK_RETRY_BATCH_SIZE,
    WEBHOOK_RETRY_INTERVAL_S,
)
from storefront.core.exceptions import ConflictError, NotFoundError
from storefront.core.models import FailedWebhook, FailedWebhookStatus
from storefront.core.store import StoreGroup
from storefront.payments import ProviderEvent

from .webhook_service import WebhookReconciler

log = structlog.get_logger()


class WebhookRetryWorker:
    """失败 Webhook 重试器"""

    def __init__(
        self,
        store_group: StoreGroup,
        reconciler: WebhookReconciler,
        interval_s: float = WEBHOOK_RETRY_INTERVAL_S,
        base_s: float = WEBHOOK_RETRY_BASE_S,
        batch_size: int = WEBHOOK_RETRY_BATCH_SIZE,
    ) -> None:
        self._stores = store_group
        self._reconciler = reconciler
        self._interval_s = interval_s
        self._base_s = base_s
        self._batch_size = batch_size
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """启动后台轮询任务"""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="webhook-retry-worker")
        log.info("webhook_retry_worker_started", interval_s=self._interval_s)

    async def stop(self) -> None:
        """停止后台轮询任务"""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log.info("webhook_retry_worker_stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.process_due()
            except Exception as e:
                # 单轮失败不终止轮询，下一轮继续
                log.error("webhook_retry_round_failed", error_type=type(e).__name__)
            await asyncio.sleep(self._interval_s)

    async def process_due(self, now: datetime | None = None) -> int:
        """处理一批到期的失败事件

        Returns:
            本轮重试成功的事件数
        """
        now = now or datetime.now(UTC)
        due = await self._stores.webhook_store.list_due(now, self._batch_size)
        succeeded = 0
        for failed in due:
            if await self._attempt(failed):
                succeeded += 1
        if due:
            log.info(
                "webhook_retry_round_completed",
                due=len(due),
                succeeded=succeeded,
            )
        return succeeded

    async def retry_by_id(self, failed_id: str) -> FailedWebhook:
        """立即重试指定的失败事件

        Raises:
            NotFoundError: 记录不存在
            ConflictError: 记录已重试成功
        """
        failed = await self._stores.webhook_store.get_failed(failed_id)
        if failed is None:
            raise NotFoundError(
                f"Failed webhook {failed_id} not found", code="FAILED_WEBHOOK_NOT_FOUND"
            )
        if failed.status == FailedWebhookStatus.SUCCEEDED:
            raise ConflictError(
                f"Failed webhook {failed_id} has already succeeded",
                code="WEBHOOK_ALREADY_SUCCEEDED",
            )
        await self._attempt(failed)
        return await self._stores.webhook_store.get_failed(failed_id)

    async def _attempt(self, failed: FailedWebhook) -> bool:
        now = datetime.now(UTC)
        retry_count = failed.retry_count + 1
        event = ProviderEvent.model_validate(failed.payload)
        try:
            result = await self._reconciler.handle_event(event, record_failure=False)
        except Exception as e:
            exhausted = retry_count >= failed.max_retries
            updated = failed.model_copy(
                update={
                    "error": str(e),
                    "retry_count": retry_count,
                    "last_attempt_at": now,
                    "next_retry_at": now
                    + timedelta(seconds=self._base_s * 2**retry_count),
                    "status": (
                        FailedWebhookStatus.FAILED
                        if exhausted
                        else FailedWebhookStatus.RETRYING
                    ),
                }
            )
            await self._save(updated)
            log.warning(
                "webhook_retry_failed",
                failed_id=failed.failed_id,
                event_id=failed.event_id,
                retry_count=retry_count,
                exhausted=exhausted,
                error_type=type(e).__name__,
            )
            return False

        updated = failed.model_copy(
            update={
                "retry_count": retry_count,
                "last_attempt_at": now,
                "status": FailedWebhookStatus.SUCCEEDED,
            }
        )
        await self._save(updated)
        log.info(
            "webhook_retry_succeeded",
            failed_id=failed.failed_id,
            event_id=failed.event_id,
            outcome=result.outcome,
        )
        return True

    async def _save(self, failed: FailedWebhook) -> None:
        async with self._stores.atomic():
            await self._stores.webhook_store.update_failed(failed)
