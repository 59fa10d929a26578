# tests/test_platform_core.py

import json
import pytest
import asyncio
from unittest.mock import MagicMock

from backend.container import Container
from backend.core.contracts import HookManager as HookManagerInterface
from backend.core.hooks import HookManager
from backend.core.loader import PluginLoader


class TestContainer:

    def test_singleton_factory_called_once(self):
        container = Container()
        factory = MagicMock(return_value="database")
        container.register("database_service", factory, singleton=True)

        assert container.resolve("database_service") is container.resolve("database_service")
        factory.assert_called_once()

    def test_transient_factory_called_every_time(self):
        container = Container()
        factory = MagicMock(side_effect=["c1", "c2"])
        container.register("coordinator", factory, singleton=False)

        assert container.resolve("coordinator") == "c1"
        assert container.resolve("coordinator") == "c2"
        assert factory.call_count == 2

    def test_missing_service(self):
        with pytest.raises(ValueError, match="Service 'share_service' not found"):
            Container().resolve("share_service")

    def test_factory_receives_container(self):
        container = Container()
        container.register("database_service", lambda: "db")
        container.register("user_data_store", lambda c: f"store({c.resolve('database_service')})")

        assert container.resolve("user_data_store") == "store(db)"

    def test_circular_dependency_detected(self):
        container = Container()
        container.register("a", lambda c: c.resolve("b"))
        container.register("b", lambda c: c.resolve("a"))

        with pytest.raises(RuntimeError, match="Circular dependency"):
            container.resolve("a")

    def test_reregister_drops_cached_instance(self):
        container = Container()
        container.register("clock", lambda: "real")
        assert container.resolve("clock") == "real"

        container.register("clock", lambda: "fake")
        assert container.resolve("clock") == "fake"
        assert container.has("clock")


@pytest.mark.asyncio
class TestHookManager:

    async def test_filter_runs_in_priority_order(self):
        hook_manager = HookManager()

        async def late(routers: list):
            return routers + ["late"]

        async def early(routers: list):
            return routers + ["early"]

        hook_manager.add_implementation("collect_api_routers", late, priority=20)
        hook_manager.add_implementation("collect_api_routers", early, priority=10)

        assert await hook_manager.filter("collect_api_routers", ["start"]) == ["start", "early", "late"]

    async def test_trigger_isolates_failing_implementation(self):
        hook_manager = HookManager()
        calls = []

        async def broken():
            raise RuntimeError("boom")

        async def slow():
            await asyncio.sleep(0.01)
            calls.append("slow")

        hook_manager.add_implementation("app_shutdown", broken)
        hook_manager.add_implementation("app_shutdown", slow)

        await hook_manager.trigger("app_shutdown")
        assert calls == ["slow"]

    async def test_hooks_only_receive_declared_context(self):
        container = Container()
        hook_manager = HookManager(container)
        seen = {}

        async def wants_container(container):
            seen["container"] = container

        async def wants_everything(**kwargs):
            seen["keys"] = set(kwargs)

        hook_manager.add_implementation("services_post_register", wants_container)
        hook_manager.add_implementation("services_post_register", wants_everything)
        await hook_manager.trigger("services_post_register", reason="startup")

        assert seen["container"] is container
        assert {"container", "hook_manager", "reason"} <= seen["keys"]

    async def test_unknown_hooks_are_noops(self):
        hook_manager = HookManager()
        assert await hook_manager.filter("nope", "data") == "data"
        await hook_manager.trigger("nope")

    def test_interface_covers_only_used_hook_types(self):
        assert HookManagerInterface.__abstractmethods__ == {"add_implementation", "trigger", "filter"}

    async def test_sync_implementation_rejected(self):
        with pytest.raises(TypeError):
            HookManager().add_implementation("app_shutdown", lambda: None)


class TestPluginLoader:

    @pytest.fixture
    def plugin_package(self, tmp_path, monkeypatch, request):
        """在临时目录中构造一个插件包，每个插件登记自己的名字。包名按测试区分，避免 sys.modules 缓存串用。"""
        package_name = f"fake_plugins_{request.node.name}"
        package = tmp_path / package_name
        package.mkdir()
        (package / "__init__.py").write_text("", encoding="utf-8")

        def add(dirname, manifest, body=None):
            plugin_dir = package / dirname
            plugin_dir.mkdir()
            (plugin_dir / "manifest.json").write_text(json.dumps(manifest), encoding="utf-8")
            (plugin_dir / "__init__.py").write_text(body or (
                "def register_plugin(container, hook_manager):\n"
                f"    container.register('{dirname}', lambda: '{dirname}')\n"
                "    order = container.resolve('order') if container.has('order') else []\n"
                f"    order.append('{dirname}')\n"
                "    container.register('order', lambda: order)\n"
            ), encoding="utf-8")

        monkeypatch.syspath_prepend(str(tmp_path))
        add.package = package_name
        return add

    def test_loads_by_priority_and_respects_enabled(self, plugin_package):
        plugin_package("beta", {"name": "beta", "priority": 20})
        plugin_package("alpha", {"name": "alpha", "priority": 10})
        plugin_package("gamma", {"name": "gamma", "priority": 5})
        plugin_package("disabled", {"name": "disabled", "enabled": False})

        container = Container()
        manifests = PluginLoader(
            container, HookManager(container), package=plugin_package.package, enabled_plugins=["alpha", "beta", "disabled"]
        ).load_plugins()

        assert [m["name"] for m in manifests] == ["alpha", "beta"]
        assert container.resolve("order") == ["alpha", "beta"]
        assert container.resolve("loaded_plugins_manifests") == manifests
        assert not container.has("gamma")

    def test_failing_plugin_aborts_startup(self, plugin_package):
        plugin_package("broken", {"name": "broken"}, body="def register_plugin(container, hook_manager):\n    raise ImportError('x')\n")

        container = Container()
        with pytest.raises(RuntimeError, match="broken"):
            PluginLoader(container, HookManager(container), package=plugin_package.package).load_plugins()

    def test_missing_package_loads_nothing(self):
        container = Container()
        assert PluginLoader(container, HookManager(container), package="no_such_plugins_pkg").load_plugins() == []
