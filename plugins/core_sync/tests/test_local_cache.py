# plugins/core_sync/tests/test_local_cache.py
import asyncio

import pytest

from plugins.core_sync.contracts import SyncMeta, SyncMetaStatus
from plugins.core_sync.local_cache import LocalCache

USER = "user@example.com"


@pytest.mark.asyncio
async def test_save_load_clear(local_cache, make_dataset):
    assert local_cache.is_available()
    assert await local_cache.load(USER) is None

    data = make_dataset("本地", api_key="secret")
    await local_cache.save(USER, data)

    cached = await local_cache.load(USER)
    assert cached.user_id == USER
    assert cached.data == data
    assert cached.saved_at > 0
    assert await local_cache.get_saved_at(USER) == cached.saved_at

    await local_cache.clear(USER)
    assert await local_cache.load(USER) is None
    assert await local_cache.get_saved_at(USER) is None


@pytest.mark.asyncio
async def test_users_are_isolated(local_cache, make_dataset):
    await local_cache.save("alice", make_dataset("a"))
    await local_cache.save("bob", make_dataset("b"))

    assert (await local_cache.load("alice")).data.modules[0].title == "a"
    assert (await local_cache.load("bob")).data.modules[0].title == "b"


@pytest.mark.asyncio
async def test_clear_keeps_sync_meta(local_cache, make_dataset):
    await local_cache.save(USER, make_dataset("x"))
    await local_cache.update_sync_meta(
        USER, SyncMeta(last_sync_time=42, last_sync_status=SyncMetaStatus.ERROR, last_error_message="offline")
    )

    await local_cache.clear(USER)

    meta = await local_cache.get_sync_meta(USER)
    assert meta.last_sync_time == 42
    assert meta.last_sync_status == SyncMetaStatus.ERROR
    assert meta.last_error_message == "offline"


@pytest.mark.asyncio
async def test_corrupt_file_reads_as_missing(tmp_path, make_dataset):
    cache = LocalCache(tmp_path / "cache")
    await cache.save(USER, make_dataset("x"))
    for path in (tmp_path / "cache" / "data").iterdir():
        path.write_text("{not json", encoding="utf-8")

    assert await cache.load(USER) is None

    # 损坏之后仍可重新写入
    await cache.save(USER, make_dataset("y"))
    assert (await cache.load(USER)).data.modules[0].title == "y"


@pytest.mark.asyncio
async def test_unusable_directory_degrades_to_noop(tmp_path, make_dataset):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("occupied", encoding="utf-8")

    for cache in (LocalCache(blocker), LocalCache(None)):
        assert not cache.is_available()
        await cache.save(USER, make_dataset("x"))
        await cache.update_sync_meta(USER, SyncMeta())
        await cache.clear(USER)
        assert await cache.load(USER) is None
        assert await cache.get_sync_meta(USER) is None


@pytest.mark.asyncio
async def test_concurrent_meta_writes_keep_last_one(local_cache, tmp_path):
    failed = SyncMeta(last_sync_time=1, last_sync_status=SyncMetaStatus.ERROR, last_error_message="offline")
    succeeded = SyncMeta(last_sync_time=2, last_sync_status=SyncMetaStatus.SUCCESS)

    for _ in range(20):
        await asyncio.gather(
            local_cache.update_sync_meta(USER, failed),
            local_cache.update_sync_meta(USER, succeeded),
        )
        # 后发起的写入总是最后落盘
        meta = await local_cache.get_sync_meta(USER)
        assert meta is not None
        assert meta.last_sync_time == 2
        assert meta.last_sync_status == SyncMetaStatus.SUCCESS

    meta_dir = tmp_path / "client-cache" / "meta"
    assert [p.suffix for p in meta_dir.iterdir()] == [".json"]
