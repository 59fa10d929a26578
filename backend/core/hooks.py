# backend/core/hooks.py
import asyncio
import logging
import inspect
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Awaitable, TypeVar, Optional

from backend.core.contracts import HookManager as HookManagerInterface, Container

logger = logging.getLogger(__name__)

T = TypeVar('T')

HookCallable = Callable[..., Awaitable[Any]]

@dataclass(order=True)
class HookImplementation:
    priority: int
    func: HookCallable = field(compare=False)
    plugin_name: str = field(compare=False, default="<unknown>")

class HookManager(HookManagerInterface):
    """
    插件之间的事件总线。
    插件在 register_plugin 阶段登记钩子实现，平台在启动/关闭的各个阶段触发它们。
    钩子函数只会收到它在签名里声明过的上下文参数。
    """
    def __init__(self, container: Optional[Container] = None):
        self._hooks: Dict[str, List[HookImplementation]] = defaultdict(list)
        self._shared_context: Dict[str, Any] = {"hook_manager": self}
        if container is not None:
            self._shared_context["container"] = container
        logger.info("HookManager initialized and context-aware.")

    def add_shared_context(self, name: str, service: Any) -> None:
        if name in self._shared_context:
            logger.warning(f"Overwriting shared context for hooks: '{name}'")
        self._shared_context[name] = service

    @property
    def hook_names(self) -> List[str]:
        return list(self._hooks.keys())

    def _prepare_hook_args(
        self,
        func: HookCallable,
        call_context: Dict[str, Any],
        positional_data: Optional[Any] = None
    ) -> tuple[list, dict]:
        params = list(inspect.signature(func).parameters.values())

        hook_args = []
        if positional_data is not None:
            # filter 钩子的数据总是第一个位置参数
            hook_args.append(positional_data)
            params = params[1:]

        accepts_any = any(p.kind == p.VAR_KEYWORD for p in params)
        hook_kwargs = {}
        for param in params:
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            if param.name in call_context:
                hook_kwargs[param.name] = call_context[param.name]
        if accepts_any:
            for name, value in call_context.items():
                hook_kwargs.setdefault(name, value)

        return hook_args, hook_kwargs

    def add_implementation(
        self,
        hook_name: str,
        implementation: HookCallable,
        priority: int = 10,
        plugin_name: str = "<core>"
    ):
        if not asyncio.iscoroutinefunction(implementation):
            raise TypeError(f"Hook implementation for '{hook_name}' must be an async function.")

        hook_impl = HookImplementation(priority=priority, func=implementation, plugin_name=plugin_name)
        self._hooks[hook_name].append(hook_impl)
        self._hooks[hook_name].sort()
        logger.debug(f"Registered hook '{hook_name}' from plugin '{plugin_name}' with priority {priority}.")

    async def trigger(self, hook_name: str, **kwargs: Any) -> None:
        """通知型钩子：并发执行所有实现，忽略返回值，单个实现的异常只记录不传播。"""
        if hook_name not in self._hooks:
            return

        call_context = {**self._shared_context, **kwargs}
        implementations = list(self._hooks[hook_name])
        scheduled = []
        tasks = []
        for impl in implementations:
            try:
                _, prepared_kwargs = self._prepare_hook_args(impl.func, call_context)
                tasks.append(impl.func(**prepared_kwargs))
                scheduled.append(impl)
            except Exception as e:
                logger.error(
                    f"Error preparing args for NOTIFICATION hook '{hook_name}' from plugin '{impl.plugin_name}': {e}",
                    exc_info=e
                )

        results = await asyncio.gather(*tasks, return_exceptions=True)

        for impl, result in zip(scheduled, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Error in NOTIFICATION hook '{hook_name}' from plugin '{impl.plugin_name}': {result}",
                    exc_info=result
                )

    async def filter(self, hook_name: str, data: T, **kwargs: Any) -> T:
        """过滤型钩子：按优先级从小到大串联处理 data。"""
        if hook_name not in self._hooks:
            return data

        call_context = {**self._shared_context, **kwargs}
        current_data = data

        for impl in self._hooks[hook_name]:
            try:
                prepared_args, prepared_kwargs = self._prepare_hook_args(impl.func, call_context, positional_data=current_data)
                current_data = await impl.func(*prepared_args, **prepared_kwargs)
            except Exception as e:
                logger.error(
                    f"Error in FILTER hook '{hook_name}' from plugin '{impl.plugin_name}'. Skipping. Error: {e}",
                    exc_info=e
                )

        return current_data
