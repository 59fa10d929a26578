# plugins/core_api/system_router.py

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request

from backend.core.contracts import HookManager, now_ms
from backend.core.dependencies import Service

logger = logging.getLogger(__name__)

system_api_router = APIRouter(
    prefix="/api",
    tags=["System Platform API"]
)


@system_api_router.get("/health", summary="Service Health Check")
async def health_check(request: Request) -> Dict[str, Any]:
    """
    报告服务与数据库的连通性。
    数据库不可用时仍返回 200，status 为 degraded。
    """
    container = request.app.state.container
    services: Dict[str, str] = {}

    if container.has("database_service"):
        reachable = await container.resolve("database_service").ping()
        services["database"] = "ok" if reachable else "unavailable"

    status = "ok" if all(v == "ok" for v in services.values()) else "degraded"
    return {"status": status, "services": services, "timestamp": now_ms()}


@system_api_router.get("/plugins/manifest", response_model=List[Dict[str, Any]], summary="Get Loaded Plugin Manifests")
async def get_loaded_plugins_manifest(
    manifests: List[Dict[str, Any]] = Depends(Service("loaded_plugins_manifests"))
):
    """返回本次启动实际加载的插件 manifest，按加载顺序排列。"""
    return manifests


@system_api_router.get("/system/hooks/manifest", response_model=Dict[str, List[str]], summary="Get Backend Hooks Manifest")
async def get_backend_hooks_manifest(
    hook_manager: HookManager = Depends(Service("hook_manager"))
):
    return {"hooks": sorted(hook_manager.hook_names)}
