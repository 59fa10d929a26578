# plugins/core_sync/tests/test_sync_coordinator.py
import asyncio
import pytest

from backend.core.contracts import RunLog, UserDataset
from plugins.core_sync.contracts import (
    DataSource,
    RemoteErrorKind,
    RemoteStoreError,
    SyncMetaStatus,
    SyncSession,
    SyncStatus,
)
from plugins.core_sync.coordinator import SyncCoordinator, canonical_serialization
from plugins.core_sync.local_cache import LocalCache

DEBOUNCE = 0.05
USER = "user-1"


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
async def coordinator(remote, local_cache):
    coord = SyncCoordinator(SyncSession(USER), remote, local_cache, debounce_seconds=DEBOUNCE)
    yield coord
    await coord.close()


# --- 初始加载 ---

@pytest.mark.asyncio
async def test_empty_cloud_and_empty_local_starts_from_seed(coordinator):
    result = await coordinator.load()

    assert result.status == SyncStatus.SAVED
    assert result.source == DataSource.CLOUD
    assert [m.id for m in result.dataset.modules] == [
        "role-expert", "task-refactor", "constraint-stack", "format-json"
    ]
    assert coordinator.state.status == SyncStatus.SAVED


@pytest.mark.asyncio
async def test_cloud_data_is_adopted_and_mirrored(coordinator, remote, local_cache, make_dataset):
    remote.stored = make_dataset("云端模块", api_key="k")

    result = await coordinator.load()

    assert result.source == DataSource.CLOUD
    assert result.dataset == remote.stored
    cached = await local_cache.load(USER)
    assert cached is not None and cached.data == remote.stored
    assert coordinator.last_written == canonical_serialization(remote.stored)


@pytest.mark.asyncio
async def test_empty_cloud_falls_back_to_local_cache(coordinator, remote, local_cache, make_dataset):
    local = make_dataset("离线编辑")
    await local_cache.save(USER, local)

    result = await coordinator.load()

    assert result.status == SyncStatus.OFFLINE
    assert result.source == DataSource.LOCAL
    assert result.dataset == local
    assert result.warning
    assert coordinator.state.status == SyncStatus.OFFLINE


@pytest.mark.asyncio
async def test_cloud_failure_falls_back_to_local_cache(coordinator, remote, local_cache, make_dataset, network_error):
    remote.fail_load = network_error()
    await local_cache.save(USER, make_dataset("离线编辑"))

    result = await coordinator.load()

    assert result.status == SyncStatus.OFFLINE
    assert "connection refused" in result.warning


@pytest.mark.asyncio
async def test_no_data_and_no_seed_is_error(remote, local_cache, network_error):
    remote.fail_load = network_error()
    coord = SyncCoordinator(SyncSession(USER), remote, local_cache, debounce_seconds=DEBOUNCE, seed_factory=None)

    result = await coord.load()

    assert result.status == SyncStatus.ERROR
    assert result.dataset.is_empty()
    assert coord.state.status == SyncStatus.ERROR
    await coord.close()


# --- 防抖、去重与取代 ---

@pytest.mark.asyncio
async def test_identical_snapshot_twice_writes_once(coordinator, remote, make_dataset):
    data = make_dataset("a")

    coordinator.notify_change(data)
    await coordinator.flush()
    coordinator.notify_change(make_dataset("a"))
    await coordinator.flush()

    assert len(remote.save_calls) == 1
    assert coordinator.state.status == SyncStatus.SAVED


@pytest.mark.asyncio
async def test_loaded_cloud_data_is_not_written_back(coordinator, remote, make_dataset):
    remote.stored = make_dataset("云端")
    result = await coordinator.load()

    coordinator.notify_change(result.dataset)
    await coordinator.flush()

    assert remote.save_calls == []


@pytest.mark.asyncio
async def test_changes_within_quiet_period_coalesce(coordinator, remote, make_dataset):
    coordinator.notify_change(make_dataset("first"))
    await asyncio.sleep(0.01)
    coordinator.notify_change(make_dataset("second"))
    await coordinator.flush()

    assert len(remote.save_calls) == 1
    assert remote.stored.modules[0].title == "second"


@pytest.mark.asyncio
async def test_newer_save_cancels_in_flight_write(coordinator, remote, make_dataset):
    remote.gate = asyncio.Event()

    coordinator.notify_change(make_dataset("A"))
    await wait_until(lambda: len(remote.save_calls) == 1)
    assert coordinator.state.status == SyncStatus.SAVING

    coordinator.notify_change(make_dataset("B"))
    await wait_until(lambda: len(remote.save_calls) == 2)
    remote.gate.set()
    await coordinator.flush()

    assert [d.modules[0].title for d in remote.completed] == ["B"]
    assert remote.stored.modules[0].title == "B"
    assert coordinator.last_written == canonical_serialization(make_dataset("B"))
    assert coordinator.state.status == SyncStatus.SAVED


@pytest.mark.asyncio
async def test_reverting_to_saved_state_overrides_in_flight_write(coordinator, remote, make_dataset):
    coordinator.notify_change(make_dataset("v0"))
    await coordinator.flush()

    remote.gate = asyncio.Event()
    coordinator.notify_change(make_dataset("v1"))
    await wait_until(lambda: len(remote.save_calls) == 2)

    # 改回已保存的内容：进行中的 v1 必须被取代，而不是被当成重复跳过
    coordinator.notify_change(make_dataset("v0"))
    await wait_until(lambda: len(remote.save_calls) == 3)
    remote.gate.set()
    await coordinator.flush()

    assert remote.stored.modules[0].title == "v0"
    assert [d.modules[0].title for d in remote.completed] == ["v0", "v0"]


@pytest.mark.asyncio
async def test_only_recent_logs_are_synced(coordinator, remote):
    logs = [RunLog(id=f"log-{i}", template_name="t", final_prompt="p", output="o") for i in range(60)]
    coordinator.notify_change(UserDataset(logs=logs))
    await coordinator.flush()

    assert [log.id for log in remote.stored.logs] == [f"log-{i}" for i in range(50)]


# --- 失败语义 ---

@pytest.mark.asyncio
async def test_remote_failure_sets_error_but_keeps_local_copy(coordinator, remote, local_cache, make_dataset):
    remote.fail_save = RemoteStoreError(RemoteErrorKind.HTTP, "boom", status_code=500)

    coordinator.notify_change(make_dataset("本地不能丢"))
    await coordinator.flush()

    assert coordinator.state.status == SyncStatus.ERROR
    assert coordinator.state.error_message == "boom"
    cached = await local_cache.load(USER)
    assert cached.data.modules[0].title == "本地不能丢"
    meta = await local_cache.get_sync_meta(USER)
    assert meta.last_sync_status == SyncMetaStatus.ERROR
    assert meta.last_error_message == "boom"

    # 恢复后下一次变更正常保存
    remote.fail_save = None
    coordinator.notify_change(make_dataset("恢复"))
    await coordinator.flush()
    assert coordinator.state.status == SyncStatus.SAVED
    assert coordinator.state.error_message is None
    assert (await local_cache.get_sync_meta(USER)).last_sync_status == SyncMetaStatus.SUCCESS


@pytest.mark.asyncio
async def test_unavailable_local_cache_does_not_block_sync(remote, make_dataset):
    coord = SyncCoordinator(SyncSession(USER), remote, LocalCache(None), debounce_seconds=DEBOUNCE)

    result = await coord.load()
    assert result.source == DataSource.CLOUD

    coord.notify_change(make_dataset("x"))
    await coord.flush()
    assert coord.state.status == SyncStatus.SAVED
    await coord.close()


# --- 显式操作 ---

@pytest.mark.asyncio
async def test_force_sync_bypasses_debounce_and_dedup(coordinator, remote, make_dataset):
    remote.stored = make_dataset("云端")
    await coordinator.load()

    assert await coordinator.force_sync() is True
    assert len(remote.save_calls) == 1

    assert await coordinator.force_sync(make_dataset("新的")) is True
    assert remote.stored.modules[0].title == "新的"


@pytest.mark.asyncio
async def test_force_sync_reports_failure(coordinator, remote, make_dataset, network_error):
    remote.fail_save = network_error()
    assert await coordinator.force_sync(make_dataset("x")) is False
    assert coordinator.state.status == SyncStatus.ERROR


@pytest.mark.asyncio
async def test_listeners_observe_status_transitions(coordinator, make_dataset):
    seen = []
    remove = coordinator.add_listener(lambda state: seen.append(state.status))

    coordinator.notify_change(make_dataset("a"))
    await coordinator.flush()
    assert seen == [SyncStatus.SAVING, SyncStatus.SAVED]

    remove()
    coordinator.notify_change(make_dataset("b"))
    await coordinator.flush()
    assert len(seen) == 2


def test_session_requires_user_id():
    with pytest.raises(ValueError):
        SyncSession("  ")
