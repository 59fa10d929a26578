# plugins/core_versions/__init__.py
import logging

from backend.core.contracts import Container, HookManager
from .service import VersionHistoryService

logger = logging.getLogger(__name__)


def _create_version_history(container: Container) -> VersionHistoryService:
    return VersionHistoryService(container.resolve("database_service"))

async def provide_router(routers: list) -> list:
    from .api import versions_router
    routers.append(versions_router)
    return routers

def register_plugin(container: Container, hook_manager: HookManager):
    logger.info("--> 正在注册 [core_versions] 插件...")
    # 表定义随 service 导入挂到共享 Base 上，由 core_persistence 统一建表
    container.register("version_history", _create_version_history, singleton=True)
    hook_manager.add_implementation(
        "collect_api_routers", provide_router, plugin_name="core_versions"
    )
    logger.info("插件 [core_versions] 注册成功。")
