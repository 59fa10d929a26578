# plugins/core_sync/__init__.py
import os
import logging

from backend.core.contracts import Container, HookManager
from .factory import SyncCoordinatorFactory
from .local_cache import LocalCache

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = "~/.hotker/cache"
DEFAULT_REMOTE_URL = "http://localhost:8000"
DEFAULT_DEBOUNCE_MS = 600


def _create_local_cache() -> LocalCache:
    return LocalCache(os.getenv("HOTKER_CACHE_DIR", DEFAULT_CACHE_DIR))

def _create_coordinator_factory(container: Container) -> SyncCoordinatorFactory:
    try:
        debounce_ms = int(os.getenv("HOTKER_SYNC_DEBOUNCE_MS", DEFAULT_DEBOUNCE_MS))
    except ValueError:
        logger.warning("Invalid HOTKER_SYNC_DEBOUNCE_MS, falling back to the default.")
        debounce_ms = DEFAULT_DEBOUNCE_MS
    return SyncCoordinatorFactory(
        local_cache=container.resolve("local_cache"),
        remote_url=os.getenv("HOTKER_REMOTE_URL", DEFAULT_REMOTE_URL),
        debounce_seconds=debounce_ms / 1000,
    )

def register_plugin(container: Container, hook_manager: HookManager):
    logger.info("--> 正在注册 [core_sync] 插件...")
    container.register("local_cache", _create_local_cache, singleton=True)
    container.register("sync_coordinator_factory", _create_coordinator_factory, singleton=True)
    logger.info("插件 [core_sync] 注册成功。")
