"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# orders 表 DDL（items / shipping_address 为下单时 JSON 快照）
_ORDERS_DDL = """
CREATE TABLE IF NOT EXISTS orders (
    order_id           TEXT PRIMARY KEY,
    order_number       TEXT NOT NULL,
    user_id            TEXT NOT NULL,
    status             TEXT NOT NULL DEFAULT 'pending_payment',
    payment_status     TEXT NOT NULL DEFAULT 'pending',
    items              TEXT NOT NULL DEFAULT '[]',
    total_amount       REAL NOT NULL,
    currency           TEXT NOT NULL DEFAULT 'ILS',
    shipping_address   TEXT NOT NULL DEFAULT '{}',
    payment_provider   TEXT NOT NULL DEFAULT '',
    payment_intent_id  TEXT,
    notes              TEXT NOT NULL DEFAULT '',
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL
);
"""

_ORDERS_INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_order_number ON orders(order_number);",
    "CREATE INDEX IF NOT EXISTS idx_orders_user_created ON orders(user_id, created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);",
]

# order_tracking 表 DDL（append-only）
_ORDER_TRACKING_DDL = """
CREATE TABLE IF NOT EXISTS order_tracking (
    order_id  TEXT NOT NULL,
    seq       INTEGER NOT NULL,
    status    TEXT NOT NULL,
    ts        TEXT NOT NULL,
    message   TEXT NOT NULL DEFAULT '',

    FOREIGN KEY (order_id) REFERENCES orders(order_id)
);
"""

_ORDER_TRACKING_INDEXES = [
    # 订单内追踪序号唯一约束
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_order_tracking_seq ON order_tracking(order_id, seq);",
]

# payments 表 DDL
_PAYMENTS_DDL = """
CREATE TABLE IF NOT EXISTS payments (
    payment_id           TEXT PRIMARY KEY,
    order_id             TEXT NOT NULL,
    user_id              TEXT NOT NULL,
    amount               REAL NOT NULL,
    currency             TEXT NOT NULL DEFAULT 'ILS',
    status               TEXT NOT NULL DEFAULT 'pending',
    provider             TEXT NOT NULL,
    provider_payment_id  TEXT,
    payment_intent_id    TEXT,
    client_secret        TEXT,
    checkout_url         TEXT,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL,

    FOREIGN KEY (order_id) REFERENCES orders(order_id)
);
"""

_PAYMENTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_payments_order_id ON payments(order_id, created_at DESC);",
    (
        "CREATE INDEX IF NOT EXISTS idx_payments_provider_payment_id "
        "ON payments(provider_payment_id) WHERE provider_payment_id IS NOT NULL;"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_payments_payment_intent_id "
        "ON payments(payment_intent_id) WHERE payment_intent_id IS NOT NULL;"
    ),
]

# sequences 表 DDL（原子计数器）
_SEQUENCES_DDL = """
CREATE TABLE IF NOT EXISTS sequences (
    sequence_key  TEXT PRIMARY KEY,
    value         INTEGER NOT NULL DEFAULT 0
);
"""

# idempotency_records 表 DDL
_IDEMPOTENCY_DDL = """
CREATE TABLE IF NOT EXISTS idempotency_records (
    key              TEXT NOT NULL,
    principal_id     TEXT NOT NULL,
    resource_type    TEXT NOT NULL,
    resource_id      TEXT NOT NULL DEFAULT '',
    request_body     TEXT NOT NULL DEFAULT '{}',
    response_status  INTEGER NOT NULL,
    response_body    TEXT NOT NULL,
    expires_at       TEXT NOT NULL,
    created_at       TEXT NOT NULL
);
"""

_IDEMPOTENCY_INDEXES = [
    # (key, principal_id) 唯一约束 -- 并发重复请求的最终防线
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_idempotency_key_principal "
        "ON idempotency_records(key, principal_id);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_idempotency_expires_at ON idempotency_records(expires_at);",
]

# webhook_events 表 DDL（已处理事件去重）
_WEBHOOK_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS webhook_events (
    event_id      TEXT PRIMARY KEY,
    event_type    TEXT NOT NULL,
    provider      TEXT NOT NULL,
    processed_at  TEXT NOT NULL,
    metadata      TEXT NOT NULL DEFAULT '{}'
);
"""

_WEBHOOK_EVENTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_webhook_events_processed_at ON webhook_events(processed_at);",
]

# failed_webhooks 表 DDL
_FAILED_WEBHOOKS_DDL = """
CREATE TABLE IF NOT EXISTS failed_webhooks (
    failed_id        TEXT PRIMARY KEY,
    event_id         TEXT NOT NULL,
    event_type       TEXT NOT NULL,
    provider         TEXT NOT NULL,
    payload          TEXT NOT NULL DEFAULT '{}',
    error            TEXT NOT NULL DEFAULT '',
    retry_count      INTEGER NOT NULL DEFAULT 0,
    max_retries      INTEGER NOT NULL DEFAULT 5,
    next_retry_at    TEXT NOT NULL,
    last_attempt_at  TEXT,
    status           TEXT NOT NULL DEFAULT 'pending',
    created_at       TEXT NOT NULL
);
"""

_FAILED_WEBHOOKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_failed_webhooks_due ON failed_webhooks(status, next_retry_at);",
    "CREATE INDEX IF NOT EXISTS idx_failed_webhooks_event_id ON failed_webhooks(event_id);",
]

# audit_log 表 DDL（append-only）
_AUDIT_LOG_DDL = """
CREATE TABLE IF NOT EXISTS audit_log (
    audit_id       TEXT PRIMARY KEY,
    actor_type     TEXT NOT NULL,
    actor_id       TEXT NOT NULL,
    action         TEXT NOT NULL,
    resource_type  TEXT NOT NULL,
    resource_id    TEXT NOT NULL,
    event_id       TEXT,
    ts             TEXT NOT NULL,
    metadata       TEXT NOT NULL DEFAULT '{}'
);
"""

_AUDIT_LOG_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_audit_log_resource ON audit_log(resource_id, ts);",
    "CREATE INDEX IF NOT EXISTS idx_audit_log_actor ON audit_log(actor_id, ts DESC);",
    (
        "CREATE INDEX IF NOT EXISTS idx_audit_log_event_id "
        "ON audit_log(event_id) WHERE event_id IS NOT NULL;"
    ),
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    for ddl in (
        _ORDERS_DDL,
        _ORDER_TRACKING_DDL,
        _PAYMENTS_DDL,
        _SEQUENCES_DDL,
        _IDEMPOTENCY_DDL,
        _WEBHOOK_EVENTS_DDL,
        _FAILED_WEBHOOKS_DDL,
        _AUDIT_LOG_DDL,
    ):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in (
        _ORDERS_INDEXES
        + _ORDER_TRACKING_INDEXES
        + _PAYMENTS_INDEXES
        + _IDEMPOTENCY_INDEXES
        + _WEBHOOK_EVENTS_INDEXES
        + _FAILED_WEBHOOKS_INDEXES
        + _AUDIT_LOG_INDEXES
    ):
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
