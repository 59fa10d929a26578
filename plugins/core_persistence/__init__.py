# plugins/core_persistence/__init__.py
import os
import logging

from backend.core.contracts import Container, HookManager
from .service import DatabaseService
from .stores import UserDataStore

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/hotker.db"


def _create_database_service() -> DatabaseService:
    db_path = os.getenv("HOTKER_DB_PATH", DEFAULT_DB_PATH)
    return DatabaseService(db_path=db_path)

def _create_user_data_store(container: Container) -> UserDataStore:
    return UserDataStore(container.resolve("database_service"))

async def provide_router(routers: list) -> list:
    from .api import data_router
    routers.append(data_router)
    logger.debug("Provided 'data_router' to the application.")
    return routers

async def initialize_database(container: Container):
    """钩子实现: 所有插件注册完毕后建表。各插件的模型此时都已导入并挂到 Base 上。"""
    logger.info("Initializing relational store...")
    database: DatabaseService = container.resolve("database_service")
    await database.initialize()

async def dispose_database(container: Container):
    container.resolve("database_service").dispose()

def register_plugin(container: Container, hook_manager: HookManager):
    logger.info("--> 正在注册 [core_persistence] 插件...")
    container.register("database_service", _create_database_service, singleton=True)
    container.register("user_data_store", _create_user_data_store, singleton=True)
    logger.debug("Registered 'database_service' and 'user_data_store'.")

    hook_manager.add_implementation(
        "collect_api_routers", provide_router, plugin_name="core_persistence"
    )
    hook_manager.add_implementation(
        "services_post_register",
        initialize_database,
        priority=10,
        plugin_name="core_persistence",
    )
    hook_manager.add_implementation(
        "app_shutdown", dispose_database, priority=90, plugin_name="core_persistence"
    )
    logger.info("插件 [core_persistence] 注册成功。")
