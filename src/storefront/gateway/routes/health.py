"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、WAL 模式与支付服务商配置。
"""

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse
from storefront.core.store.sqlite_init import verify_wal_mode

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. wal_mode: journal_mode 是否为 WAL
    3. payment_provider: 当前支付服务商（stripe / mock）
    """
    checks: dict[str, str] = {}
    all_ok = True

    store_group = getattr(request.app.state, "store_group", None)
    try:
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("readiness_sqlite_failed", error_type=type(e).__name__)
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    if all_ok:
        try:
            wal = await verify_wal_mode(store_group.conn)
            # 内存数据库不支持 WAL，仅作提示
            checks["wal_mode"] = "ok" if wal else "disabled"
        except Exception as e:
            checks["wal_mode"] = f"error: {e}"
            all_ok = False

    provider = getattr(request.app.state, "payment_provider", None)
    if provider is None:
        checks["payment_provider"] = "missing"
        all_ok = False
    else:
        checks["payment_provider"] = provider.name

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
