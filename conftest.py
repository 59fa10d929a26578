# conftest.py
"""
项目根的共享 fixtures，对 tests/ 和 plugins/*/tests/ 都生效。

每个测试都运行在自己的临时目录中：数据库文件、本地缓存目录都指向 tmp_path，
测试之间互不干扰。
"""
import pytest
from contextlib import AsyncExitStack
from typing import AsyncGenerator, Awaitable, Callable, List, Optional

from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from asgi_lifespan import LifespanManager

from backend.app import create_app
from backend.core.contracts import Container
from plugins.core_persistence.service import DatabaseService
# 导入全部表定义，保证单元测试里的 create_all 建出完整的库
import plugins.core_versions.models  # noqa: F401
import plugins.core_shares.models  # noqa: F401

PUBLIC_URL = "http://share.test"


@pytest.fixture(autouse=True)
def hotker_env(tmp_path, monkeypatch):
    monkeypatch.setenv("HOTKER_DB_PATH", str(tmp_path / "hotker.db"))
    monkeypatch.setenv("HOTKER_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("HOTKER_PUBLIC_URL", PUBLIC_URL)
    monkeypatch.setenv("HOTKER_REMOTE_URL", "http://test")
    monkeypatch.setenv("HOTKER_SYNC_DEBOUNCE_MS", "50")
    return tmp_path


@pytest.fixture
def app() -> FastAPI:
    return create_app()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """
    端到端测试用的 AsyncClient，完整走一遍应用的 lifespan（插件加载、建表、路由装配）。
    """
    async with LifespanManager(app) as manager:
        transport = ASGITransport(app=manager.app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


@pytest.fixture
def app_container(app: FastAPI, client: AsyncClient) -> Container:
    """已启动应用的服务容器。"""
    return app.state.container


@pytest.fixture
async def async_client() -> AsyncGenerator[Callable[[Optional[List[str]]], Awaitable[AsyncClient]], None]:
    """
    工厂 fixture：按插件名组装一个只加载部分插件的应用，并返回其客户端。
    用法: `client = await async_client(["core-logging", "core-persistence"])`
    """
    async with AsyncExitStack() as stack:
        async def _factory(plugins: Optional[List[str]] = None) -> AsyncClient:
            partial_app = create_app(enabled_plugins=plugins)
            manager = await stack.enter_async_context(LifespanManager(partial_app))
            transport = ASGITransport(app=manager.app)
            return await stack.enter_async_context(
                AsyncClient(transport=transport, base_url="http://test")
            )
        yield _factory


@pytest.fixture
async def database(tmp_path) -> AsyncGenerator[DatabaseService, None]:
    """不经过应用，直接提供一个已建表的数据库服务。"""
    db = DatabaseService(db_path=str(tmp_path / "unit.db"))
    await db.initialize()
    yield db
    db.dispose()
