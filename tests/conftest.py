"""测试公共配置 -- 临时 SQLite 数据库 + FastAPI 测试客户端"""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from storefront.core.store import StoreGroup, create_store_group
from storefront.payments import MockPaymentProvider


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """已初始化的 StoreGroup（每个测试独立数据库）"""
    group = await create_store_group(str(tmp_path / "sqlite" / "test.db"))
    yield group
    await group.conn.close()


@pytest.fixture
def order_payload() -> dict[str, Any]:
    """合计 150.00 的下单请求体"""
    return {
        "items": [
            {"product_ref": "prod-mug", "name": "Mug", "quantity": 2, "unit_price": 50.0},
            {"product_ref": "prod-poster", "name": "Poster", "quantity": 1, "unit_price": 50.0},
        ],
        "shipping_address": {
            "street": "1 Herzl St",
            "city": "Tel Aviv",
            "postal_code": "6100001",
            "country": "IL",
        },
        "notes": "Leave at the door",
    }


@pytest.fixture
def mock_provider() -> MockPaymentProvider:
    return MockPaymentProvider(client_url="http://shop.test")


@pytest_asyncio.fixture
async def test_app(store_group: StoreGroup, mock_provider: MockPaymentProvider):
    """测试用 app -- 手动初始化 app.state（绕过 lifespan）"""
    from storefront.gateway.main import create_app, init_app_state

    app = create_app()
    init_app_state(app, store_group, mock_provider)
    yield app


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette 的退出事件会绑定首个事件循环，每个测试前重置"""
    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = None
