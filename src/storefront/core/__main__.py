"""CLI 入口模块 -- python -m storefront.core <command>

支持的命令：
  purge-expired  清理过期幂等记录与超出保留期的 Webhook 事件
"""

import asyncio
import sys
from datetime import UTC, datetime, timedelta

from .config import WEBHOOK_EVENT_RETENTION_DAYS, get_db_path


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m storefront.core <command>")
        print("命令:")
        print("  purge-expired  清理过期幂等记录与超出保留期的 Webhook 事件")
        sys.exit(1)

    command = sys.argv[1]

    if command == "purge-expired":
        asyncio.run(purge_expired())
    else:
        print(f"未知命令: {command}")
        print("可用命令: purge-expired")
        sys.exit(1)


async def purge_expired(
    db_path: str | None = None,
    now: datetime | None = None,
) -> tuple[int, int]:
    """执行清理

    Returns:
        (删除的幂等记录数, 删除的 Webhook 事件数)
    """
    from .store import create_store_group

    db_path = db_path or get_db_path()
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=WEBHOOK_EVENT_RETENTION_DAYS)

    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)

    try:
        async with store_group.atomic():
            idempotency_count = await store_group.idempotency_store.purge_expired(now)
            webhook_count = await store_group.webhook_store.purge_events_before(cutoff)
        print(f"已删除过期幂等记录 {idempotency_count} 条")
        print(f"已删除 {cutoff.date()} 之前的 Webhook 事件 {webhook_count} 条")
        return idempotency_count, webhook_count
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
