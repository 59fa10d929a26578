# backend/core/loader.py

import json
import logging
import importlib
import importlib.resources
import traceback
from typing import Any, Dict, Iterable, List, Optional

from backend.core.contracts import Container, HookManager, PluginRegisterFunc

logger = logging.getLogger(__name__)

class PluginLoader:
    def __init__(
        self,
        container: Container,
        hook_manager: HookManager,
        package: str = "plugins",
        enabled_plugins: Optional[Iterable[str]] = None
    ):
        self._container = container
        self._hook_manager = hook_manager
        self._package = package
        # None 表示加载全部；测试中用它组装只含部分插件的应用
        self._enabled = set(enabled_plugins) if enabled_plugins is not None else None

    def load_plugins(self) -> List[Dict[str, Any]]:
        """发现、排序、注册。返回已加载插件的 manifest 列表。"""
        # 此时日志系统可能还未配置（core_logging 本身也是插件），所以用 print
        print("\n--- Hotker 插件系统：开始加载 ---")

        all_plugins = self._discover_plugins()
        if not all_plugins:
            print("警告：未发现任何插件。")
            print("--- Hotker 插件系统：加载完成 ---\n")
            return []

        sorted_plugins = sorted(all_plugins, key=lambda p: (p['manifest'].get('priority', 100), p['name']))

        print("插件加载顺序已确定：")
        for i, p_info in enumerate(sorted_plugins):
            print(f"  {i+1}. {p_info['name']} (优先级: {p_info['manifest'].get('priority', 100)})")

        self._register_plugins(sorted_plugins)

        manifests = [p['manifest'] for p in sorted_plugins]
        self._container.register("loaded_plugins_manifests", lambda: manifests)

        logger.info("所有插件均已加载并注册完毕。")
        print("--- Hotker 插件系统：加载完成 ---\n")
        return manifests

    def _discover_plugins(self) -> List[Dict]:
        """扫描插件包，读取每个子包中的 manifest.json。"""
        discovered = []
        try:
            plugins_package_path = importlib.resources.files(self._package)
        except ModuleNotFoundError:
            return discovered

        for plugin_path in plugins_package_path.iterdir():
            if not plugin_path.is_dir() or plugin_path.name.startswith(('__', '.')):
                continue

            manifest_path = plugin_path / "manifest.json"
            if not manifest_path.is_file():
                continue

            try:
                manifest = json.loads(manifest_path.read_text(encoding='utf-8'))
            except json.JSONDecodeError as e:
                print(f"警告：跳过 manifest 无法解析的插件 '{plugin_path.name}': {e}")
                continue

            if manifest.get("enabled", True) is False:
                continue

            name = manifest.get('name', plugin_path.name)
            if self._enabled is not None and name not in self._enabled:
                continue

            discovered.append({
                "name": name,
                "manifest": manifest,
                "import_path": f"{self._package}.{plugin_path.name}",
            })

        return discovered

    def _register_plugins(self, plugins: List[Dict]):
        """按顺序导入并调用每个插件的 register_plugin。"""
        for plugin_info in plugins:
            plugin_name = plugin_info['name']
            import_path = plugin_info['import_path']

            try:
                plugin_module = importlib.import_module(import_path)
                register_func: PluginRegisterFunc = getattr(plugin_module, "register_plugin")
                register_func(self._container, self._hook_manager)
            except Exception as e:
                print("\n" + "="*80)
                print(f"!!! 致命错误：加载插件 '{plugin_name}' ({import_path}) 失败 !!!")
                print("="*80)
                traceback.print_exc()
                print("="*80)
                # 插件之间存在服务依赖，任何一个失败都停止启动
                raise RuntimeError(f"无法加载插件 {plugin_name}") from e
