"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + 支付服务商初始化
+ 失败 Webhook 重试任务启停 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from storefront.core.config import METRICS_MAX_POINTS, get_db_path
from storefront.core.idempotency import IdempotencyGuard
from storefront.core.metrics import MetricsCollector, PaymentMetrics
from storefront.core.store import StoreGroup, create_store_group
from storefront.payments import (
    PaymentProvider,
    build_payment_provider,
    load_payment_config,
)

from .errors import register_exception_handlers
from .middleware.logging_config import setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import admin, health, metrics, orders, payments, stream
from .services.order_service import OrderService
from .services.sse_hub import SSEHub
from .services.webhook_retry import WebhookRetryWorker
from .services.webhook_service import WebhookReconciler

log = structlog.get_logger()


def init_app_state(
    app: FastAPI,
    store_group: StoreGroup,
    payment_provider: PaymentProvider,
    currency: str = "ILS",
    metrics_max_points: int = METRICS_MAX_POINTS,
) -> None:
    """组装服务实例并挂到 app.state（lifespan 与测试共用）"""
    sse_hub = SSEHub()
    payment_metrics = PaymentMetrics(MetricsCollector(max_points=metrics_max_points))
    order_service = OrderService(
        store_group,
        payment_provider,
        payment_metrics,
        sse_hub=sse_hub,
        currency=currency,
    )
    reconciler = WebhookReconciler(store_group, order_service, payment_metrics)

    app.state.store_group = store_group
    app.state.sse_hub = sse_hub
    app.state.payment_provider = payment_provider
    app.state.payment_metrics = payment_metrics
    app.state.order_service = order_service
    app.state.idempotency_guard = IdempotencyGuard(store_group)
    app.state.reconciler = reconciler
    app.state.retry_worker = WebhookRetryWorker(store_group, reconciler)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 与支付服务商，关闭时清理"""
    store_group = await create_store_group(get_db_path())

    payment_config = load_payment_config()
    payment_provider = build_payment_provider(payment_config)
    app.state.payment_config = payment_config
    init_app_state(app, store_group, payment_provider, currency=payment_config.currency)
    log.info(
        "payment_provider_initialized",
        mode=payment_config.mode,
        currency=payment_config.currency,
    )

    app.state.retry_worker.start()

    yield

    await app.state.retry_worker.stop()
    await payment_provider.close()
    await store_group.conn.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="Storefront API",
        version="0.1.0",
        description="Storefront 订单与支付核心 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    register_exception_handlers(app)

    app.include_router(orders.router, tags=["orders"])
    app.include_router(payments.router, tags=["payments"])
    app.include_router(admin.router, tags=["admin"])
    app.include_router(metrics.router, tags=["metrics"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
