# backend/app.py
import os
import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from backend.container import Container
from backend.core.hooks import HookManager
from backend.core.loader import PluginLoader

@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- 启动阶段 ---
    container = Container()
    hook_manager = HookManager(container)

    # 1. 注册平台核心服务
    container.register("container", lambda: container)
    container.register("hook_manager", lambda: hook_manager)

    # 2. 加载插件（同步注册）
    loader = PluginLoader(container, hook_manager, enabled_plugins=app.state.enabled_plugins)
    loader.load_plugins()

    logger = logging.getLogger(__name__)
    logger.info("--- FastAPI 应用组装 ---")

    # 3. 将核心服务附加到 app.state
    app.state.container = container
    hook_manager.add_shared_context("app", app)

    # 4. 异步服务初始化（建表等）
    logger.info("正在为异步初始化触发 'services_post_register' 钩子...")
    await hook_manager.trigger('services_post_register')
    logger.info("异步服务初始化完成。")

    # 5. 收集并装配 API 路由
    logger.info("正在从所有插件收集 API 路由...")
    routers_to_add: list[APIRouter] = await hook_manager.filter("collect_api_routers", [])

    if routers_to_add:
        logger.info(f"已收集到 {len(routers_to_add)} 个路由。正在添加到应用中...")
        for router in routers_to_add:
            app.include_router(router)
            logger.debug(f"已添加路由: prefix='{router.prefix}', tags={router.tags}")
    else:
        logger.warning("未从插件中收集到任何 API 路由。")

    await hook_manager.trigger('app_startup_complete')

    logger.info("--- Hotker 同步服务已就绪 ---")
    yield
    # --- 关闭阶段 ---
    logger.info("--- Hotker 同步服务正在关闭 ---")
    await hook_manager.trigger('app_shutdown')


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """路由未处理的异常：记录完整堆栈，返回带 kind 的 500。"""
    logging.getLogger(__name__).error(
        f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc
    )
    return JSONResponse(
        status_code=500,
        content={"detail": {"kind": "internal", "message": "Internal server error"}},
    )


def _cors_origins() -> List[str]:
    raw = os.getenv("HOTKER_CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app(enabled_plugins: Optional[List[str]] = None) -> FastAPI:
    """应用工厂函数。enabled_plugins 为插件 manifest 中的 name，None 表示全部加载。"""
    app = FastAPI(
        title="Hotker Prompt Studio Sync",
        version="0.3.0",
        lifespan=lifespan
    )
    app.state.enabled_plugins = enabled_plugins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(Exception, unhandled_exception_handler)

    return app
