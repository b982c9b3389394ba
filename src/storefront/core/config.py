"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、幂等记录保留期、Webhook 事件保留期、指标容量、
Webhook 重试调度等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("STOREFRONT_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "STOREFRONT_DB_PATH",
        str(_get_base_dir() / "sqlite" / "storefront.db"),
    )


# 幂等记录保留时长（小时），过期后 key 可复用
IDEMPOTENCY_TTL_HOURS: int = int(
    os.environ.get("STOREFRONT_IDEMPOTENCY_TTL_HOURS", "24")
)

# 幂等记录写入遇到瞬时存储错误时的最大尝试次数
IDEMPOTENCY_SAVE_ATTEMPTS: int = 3

# 已处理 Webhook 事件保留天数
WEBHOOK_EVENT_RETENTION_DAYS: int = int(
    os.environ.get("STOREFRONT_WEBHOOK_RETENTION_DAYS", "30")
)

# 每个指标 key 最多保留的观测点数（FIFO 淘汰）
METRICS_MAX_POINTS: int = int(
    os.environ.get("STOREFRONT_METRICS_MAX_POINTS", "1000")
)

# 指标查询默认窗口
METRICS_DEFAULT_LAST_N: int = 100

# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("STOREFRONT_SSE_HEARTBEAT_INTERVAL", "15")
)

# 失败 Webhook 重试轮询间隔（秒）
WEBHOOK_RETRY_INTERVAL_S: int = int(
    os.environ.get("STOREFRONT_WEBHOOK_RETRY_INTERVAL_S", "60")
)

# 失败 Webhook 指数退避基数（秒）：delay = base * 2 ** retry_count
WEBHOOK_RETRY_BASE_S: int = int(
    os.environ.get("STOREFRONT_WEBHOOK_RETRY_BASE_S", "2")
)

# 失败 Webhook 最大重试次数
WEBHOOK_MAX_RETRIES: int = 5

# 单次轮询最多处理的失败 Webhook 数
WEBHOOK_RETRY_BATCH_SIZE: int = 10

# 订单号前缀：ORD-YYYYMMDD-NNN
ORDER_NUMBER_PREFIX: str = "ORD"

# 订单备注最大长度
ORDER_NOTES_MAX_LENGTH: int = 500

# 单价上限，超出视为无效输入
MAX_UNIT_PRICE: float = 99_999_999.99

# 单个订单行的最大数量
MAX_ITEM_QUANTITY: int = 10_000

# 审计日志查询默认条数
AUDIT_LOG_DEFAULT_LIMIT: int = 100
