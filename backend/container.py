# backend/container.py

import logging
import threading
from typing import Dict, Any, Callable, Set

from backend.core.contracts import Container as ContainerInterface

logger = logging.getLogger(__name__)


class Container(ContainerInterface):
    """服务容器：按名称注册工厂，按需解析实例，支持单例和循环依赖检测。"""
    def __init__(self):
        self._factories: Dict[str, Callable] = {}
        self._singletons: Dict[str, bool] = {}
        self._instances: Dict[str, Any] = {}
        # 工厂内部可能再次 resolve，所以必须是可重入锁
        self._lock = threading.RLock()
        # 每个线程独立的解析栈（数据库调用会经过 to_thread）
        self._local = threading.local()

    def _get_resolution_stack(self) -> Set[str]:
        if not hasattr(self._local, 'resolution_stack'):
            self._local.resolution_stack = set()
        return self._local.resolution_stack

    def register(self, name: str, factory: Callable, singleton: bool = True) -> None:
        if name in self._factories:
            logger.warning(f"Overwriting service registration for '{name}'")
        self._factories[name] = factory
        self._singletons[name] = singleton
        # 重新注册时丢弃旧实例，测试中会用到
        self._instances.pop(name, None)

    def _build(self, name: str) -> Any:
        factory = self._factories[name]
        try:
            return factory(self)
        except TypeError:
            return factory()

    def resolve(self, name: str) -> Any:
        resolution_stack = self._get_resolution_stack()
        if name in resolution_stack:
            path = " -> ".join(list(resolution_stack) + [name])
            raise RuntimeError(f"Circular dependency detected: {path}")

        resolution_stack.add(name)
        try:
            is_singleton = self._singletons.get(name, True)
            if is_singleton and name in self._instances:
                return self._instances[name]

            if name not in self._factories:
                raise ValueError(f"Service '{name}' not found in container.")

            if not is_singleton:
                return self._build(name)

            with self._lock:
                if name in self._instances:
                    return self._instances[name]
                instance = self._build(name)
                logger.debug(f"Resolved service '{name}'. Singleton: True")
                self._instances[name] = instance
                return instance
        finally:
            resolution_stack.remove(name)

    def has(self, name: str) -> bool:
        return name in self._factories
