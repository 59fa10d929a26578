# plugins/core_shares/__init__.py
import os
import logging

from backend.core.contracts import Container, HookManager
from .service import ShareService

logger = logging.getLogger(__name__)

DEFAULT_PUBLIC_URL = "http://localhost:8000"


def _create_share_service(container: Container) -> ShareService:
    public_url = os.getenv("HOTKER_PUBLIC_URL", DEFAULT_PUBLIC_URL)
    return ShareService(container.resolve("database_service"), public_base_url=public_url)

async def provide_router(routers: list) -> list:
    from .api import shares_router
    routers.append(shares_router)
    return routers

def register_plugin(container: Container, hook_manager: HookManager):
    logger.info("--> 正在注册 [core_shares] 插件...")
    container.register("share_service", _create_share_service, singleton=True)
    hook_manager.add_implementation(
        "collect_api_routers", provide_router, plugin_name="core_shares"
    )
    logger.info("插件 [core_shares] 注册成功。")
