# cli.py
import asyncio
import json
from datetime import datetime
from typing import Optional

import typer
from dotenv import load_dotenv

from backend.container import Container
from backend.core.hooks import HookManager
from backend.core.loader import PluginLoader
from plugins.core_sync.contracts import SyncStatus

app = typer.Typer(name="hotker", help="Hotker Prompt Studio sync command-line interface")
sync_app = typer.Typer(name="sync", help="Pull, push and inspect a user's synced dataset.")
cache_app = typer.Typer(name="cache", help="Manage the local offline cache.")
app.add_typer(sync_app)
app.add_typer(cache_app)

# 命令行只作为同步客户端运行，不需要服务端插件
CLIENT_PLUGINS = ["core-logging", "core-sync"]


def _bootstrap() -> Container:
    load_dotenv()
    container = Container()
    hook_manager = HookManager(container)
    container.register("container", lambda: container)
    container.register("hook_manager", lambda: hook_manager)
    PluginLoader(container, hook_manager, enabled_plugins=CLIENT_PLUGINS).load_plugins()
    return container


def _format_ms(timestamp: Optional[int]) -> str:
    if not timestamp:
        return "never"
    return datetime.fromtimestamp(timestamp / 1000).isoformat(sep=" ", timespec="seconds")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port, defaults to $PORT or 8000."),
):
    """Run the sync API server."""
    from backend.main import run
    run(host=host, port=port)


@sync_app.command("pull")
def pull(
    user: str = typer.Option(..., "--user", "-u", help="User id."),
    output: bool = typer.Option(False, "--json", help="Print the loaded dataset as JSON."),
):
    """Load the dataset (cloud first, then local cache, then seed) and mirror it locally."""
    container = _bootstrap()

    async def _pull():
        coordinator = container.resolve("sync_coordinator_factory").create(user)
        try:
            return await coordinator.load()
        finally:
            await coordinator.close()

    result = asyncio.run(_pull())
    color = typer.colors.GREEN if result.status == SyncStatus.SAVED else typer.colors.YELLOW
    typer.secho(
        f"status={result.status.value} source={result.source.value if result.source else '-'} "
        f"modules={len(result.dataset.modules)} templates={len(result.dataset.templates)} logs={len(result.dataset.logs)}",
        fg=color,
    )
    if result.warning:
        typer.secho(result.warning, fg=typer.colors.YELLOW)
    if output:
        typer.echo(json.dumps(result.dataset.to_wire(), ensure_ascii=False, indent=2))
    if result.status == SyncStatus.ERROR:
        raise typer.Exit(code=1)


@sync_app.command("push")
def push(user: str = typer.Option(..., "--user", "-u", help="User id.")):
    """Upload the locally cached dataset, overwriting the cloud copy."""
    container = _bootstrap()
    local_cache = container.resolve("local_cache")

    async def _push() -> bool:
        cached = await local_cache.load(user)
        if cached is None:
            typer.secho(f"No local data cached for user '{user}'.", fg=typer.colors.RED)
            return False
        coordinator = container.resolve("sync_coordinator_factory").create(user)
        try:
            ok = await coordinator.force_sync(cached.data)
            if not ok:
                typer.secho(f"Upload failed: {coordinator.state.error_message}", fg=typer.colors.RED)
            return ok
        finally:
            await coordinator.close()

    if not asyncio.run(_push()):
        raise typer.Exit(code=1)
    typer.secho("✅ Local data uploaded.", fg=typer.colors.GREEN)


@sync_app.command("status")
def status(user: str = typer.Option(..., "--user", "-u", help="User id.")):
    """Show what the local cache knows about the last sync."""
    container = _bootstrap()
    local_cache = container.resolve("local_cache")

    async def _status():
        return await local_cache.get_sync_meta(user), await local_cache.get_saved_at(user)

    meta, saved_at = asyncio.run(_status())
    typer.echo(f"local cache:      {'available' if local_cache.is_available() else 'unavailable'}")
    typer.echo(f"locally saved at: {_format_ms(saved_at)}")
    if meta is None:
        typer.echo("last sync:        never")
        return
    typer.echo(f"last sync:        {_format_ms(meta.last_sync_time)} ({meta.last_sync_status.value})")
    if meta.last_error_message:
        typer.secho(f"last error:       {meta.last_error_message}", fg=typer.colors.RED)


@cache_app.command("clear")
def clear_cache(user: str = typer.Option(..., "--user", "-u", help="User id.")):
    """Delete the locally cached dataset for a user. Sync metadata is kept."""
    container = _bootstrap()
    asyncio.run(container.resolve("local_cache").clear(user))
    typer.secho(f"Cleared local cache for '{user}'.", fg=typer.colors.BLUE)


if __name__ == "__main__":
    app()
