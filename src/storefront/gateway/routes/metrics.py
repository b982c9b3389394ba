"""指标查询路由

GET /api/metrics/payment: 支付指标汇总
GET /api/metrics/webhook: Webhook 处理耗时
GET /api/metrics/all: 全部指标导出 + 各 key 观测点数
"""

from fastapi import APIRouter, Depends, Query
from storefront.core.config import METRICS_DEFAULT_LAST_N
from storefront.core.metrics import PaymentMetrics

from ..deps import get_payment_metrics

router = APIRouter()


@router.get("/api/metrics/payment")
async def payment_metrics(
    last_n: int = Query(default=METRICS_DEFAULT_LAST_N, ge=1, le=10000),
    metrics: PaymentMetrics = Depends(get_payment_metrics),
):
    return metrics.summary(last_n).model_dump()


@router.get("/api/metrics/webhook")
async def webhook_metrics(
    last_n: int = Query(default=METRICS_DEFAULT_LAST_N, ge=1, le=10000),
    metrics: PaymentMetrics = Depends(get_payment_metrics),
):
    return metrics.webhook_summary(last_n).model_dump()


@router.get("/api/metrics/all")
async def all_metrics(
    last_n: int = Query(default=METRICS_DEFAULT_LAST_N, ge=1, le=10000),
    metrics: PaymentMetrics = Depends(get_payment_metrics),
):
    exported = metrics.export(last_n)
    exported["counts"] = {
        key: metrics.collector.get_count(key) for key in metrics.collector.keys()
    }
    return exported
