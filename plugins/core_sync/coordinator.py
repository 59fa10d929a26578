# plugins/core_sync/coordinator.py

import asyncio
import json
import logging
from typing import Callable, List, Optional, Set

from backend.core.contracts import UserDataset, now_ms
from .contracts import (
    DataSource,
    LoadResult,
    LocalCacheInterface,
    RemoteStoreError,
    RemoteStoreInterface,
    SyncMeta,
    SyncMetaStatus,
    SyncSession,
    SyncState,
    SyncStatus,
)
from .seed import default_seed_dataset

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.6
StateListener = Callable[[SyncState], None]


def canonical_serialization(dataset: UserDataset) -> str:
    """用于“是否与上次写入相同”的比较，键排序保证同样的内容得到同样的字符串。"""
    return json.dumps(dataset.to_wire(), sort_keys=True, ensure_ascii=False, separators=(",", ":"))


class SyncCoordinator:
    """
    单个用户工作集的同步协调器。

    变更通过 notify_change 放进唯一的待写槽位（新快照直接覆盖旧快照），
    后台 worker 在安静期（默认 600ms）结束后取出最新快照写入远端，同时镜像到本地缓存。
    任意时刻最多一个远端写入在进行；新写入开始时取消旧写入，旧写入的结果永远不会被采用。
    """

    def __init__(
        self,
        session: SyncSession,
        remote: RemoteStoreInterface,
        local: LocalCacheInterface,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        seed_factory: Optional[Callable[[], UserDataset]] = default_seed_dataset,
        owns_remote: bool = False,
    ):
        self.session = session
        self._remote = remote
        self._local = local
        self._debounce = debounce_seconds
        self._seed_factory = seed_factory
        self._owns_remote = owns_remote

        self._state = SyncState()
        self._listeners: List[StateListener] = []

        # 最近一次成功写入远端的序列化结果
        self._last_written: Optional[str] = None
        self._current: Optional[UserDataset] = None

        self._pending: Optional[UserDataset] = None
        self._last_change_at = 0.0
        self._wake = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._worker: Optional[asyncio.Task] = None

        self._generation = 0
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_serialized: Optional[str] = None
        self._mirrors: Set[asyncio.Task] = set()
        self._closed = False

    # --- 状态与观察者 ---

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_written(self) -> Optional[str]:
        return self._last_written

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """注册状态观察者，返回用于注销的函数。"""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _remove

    def _set_state(self, **changes) -> None:
        self._state = self._state.model_copy(update=changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Sync state listener raised: {e}", exc_info=True)

    # --- 初始加载 ---

    async def load(self) -> LoadResult:
        """云端优先，失败或为空时回退本地缓存，再回退种子数据。永不抛异常。"""
        user_id = self.session.user_id
        reason = "cloud dataset is empty"
        try:
            cloud = await self._remote.load(user_id)
        except RemoteStoreError as e:
            logger.warning(f"Cloud load failed for user '{user_id}': {e}")
            cloud, reason = None, str(e)

        if cloud is not None and not cloud.is_empty():
            snapshot = cloud.for_sync()
            self._current = snapshot
            self._last_written = canonical_serialization(snapshot)
            await self._local.save(user_id, snapshot)
            self._set_state(
                status=SyncStatus.SAVED, source=DataSource.CLOUD, error_message=None, last_synced_at=now_ms()
            )
            logger.info(f"Loaded dataset for user '{user_id}' from cloud.")
            return LoadResult(dataset=cloud, status=SyncStatus.SAVED, source=DataSource.CLOUD)

        cached = await self._local.load(user_id)
        if cached is not None and not cached.data.is_empty():
            warning = f"Using local cache saved at {cached.saved_at}: {reason}"
            self._current = cached.data
            self._set_state(status=SyncStatus.OFFLINE, source=DataSource.LOCAL, error_message=warning)
            logger.warning(f"User '{user_id}' is working offline. {warning}")
            return LoadResult(
                dataset=cached.data, status=SyncStatus.OFFLINE, source=DataSource.LOCAL, warning=warning
            )

        if self._seed_factory is not None:
            seed = self._seed_factory()
            self._current = seed
            self._set_state(status=SyncStatus.SAVED, source=DataSource.CLOUD, error_message=None)
            logger.info(f"No data for user '{user_id}' anywhere, starting from the seed dataset.")
            return LoadResult(dataset=seed, status=SyncStatus.SAVED, source=DataSource.CLOUD)

        message = f"No dataset available for user '{user_id}': {reason}"
        self._set_state(status=SyncStatus.ERROR, source=None, error_message=message)
        logger.error(message)
        return LoadResult(dataset=UserDataset(), status=SyncStatus.ERROR, warning=message)

    # --- 变更与后台写入 ---

    def notify_change(self, dataset: UserDataset) -> None:
        """登记最新工作集并重新开始计时安静期。必须在事件循环中调用。"""
        if self._closed:
            raise RuntimeError("SyncCoordinator is closed")
        loop = asyncio.get_running_loop()
        self._pending = dataset.for_sync()
        self._current = self._pending
        self._last_change_at = loop.time()
        self._idle.clear()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name=f"sync-worker-{self.session.user_id}")
        self._wake.set()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await self._wake.wait()
            while True:
                remaining = self._last_change_at + self._debounce - loop.time()
                if remaining <= 0:
                    break
                await asyncio.sleep(remaining)
            self._wake.clear()

            snapshot, self._pending = self._pending, None
            if snapshot is None:
                self._update_idle()
                continue

            serialized = canonical_serialization(snapshot)
            if self._write_active():
                unchanged = serialized == self._inflight_serialized
            else:
                unchanged = serialized == self._last_written
            if unchanged:
                logger.debug(f"Skipping no-op save for user '{self.session.user_id}'.")
                self._update_idle()
                continue

            self._start_write(snapshot, serialized)

    def _write_active(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def _start_write(self, snapshot: UserDataset, serialized: str) -> asyncio.Task:
        if self._write_active():
            logger.debug(f"Superseding in-flight write for user '{self.session.user_id}'.")
            self._inflight.cancel()

        self._generation += 1
        self._set_state(status=SyncStatus.SAVING)
        self._spawn_mirror(snapshot)

        task = asyncio.create_task(self._write_remote(snapshot, serialized, self._generation))
        self._inflight = task
        self._inflight_serialized = serialized
        task.add_done_callback(self._on_write_done)
        return task

    async def _write_remote(self, snapshot: UserDataset, serialized: str, generation: int) -> bool:
        user_id = self.session.user_id
        try:
            await self._remote.save(user_id, snapshot)
        except asyncio.CancelledError:
            logger.debug(f"Write generation {generation} for user '{user_id}' was cancelled.")
            raise
        except Exception as e:
            if generation != self._generation:
                return False
            message = e.message if isinstance(e, RemoteStoreError) else str(e)
            if not isinstance(e, RemoteStoreError):
                logger.error(f"Unexpected error while saving for user '{user_id}': {e}", exc_info=True)
            else:
                logger.warning(f"Cloud save failed for user '{user_id}': {e}")
            self._set_state(status=SyncStatus.ERROR, error_message=message)
            await self._local.update_sync_meta(user_id, SyncMeta(
                last_sync_time=now_ms(), last_sync_status=SyncMetaStatus.ERROR, last_error_message=message
            ))
            return False

        if generation != self._generation:
            # 已被更新的写入取代，结果作废
            logger.debug(f"Dropping stale result of write generation {generation} for user '{user_id}'.")
            return False

        synced_at = now_ms()
        self._last_written = serialized
        self._set_state(
            status=SyncStatus.SAVED, source=DataSource.CLOUD, error_message=None, last_synced_at=synced_at
        )
        await self._local.update_sync_meta(user_id, SyncMeta(
            last_sync_time=synced_at, last_sync_status=SyncMetaStatus.SUCCESS
        ))
        return True

    def _on_write_done(self, task: asyncio.Task) -> None:
        if task is self._inflight:
            self._inflight = None
            self._inflight_serialized = None
        self._update_idle()

    def _spawn_mirror(self, snapshot: UserDataset) -> None:
        # 本地镜像不随远端写入一起取消；顺序由缓存的按用户锁保证
        task = asyncio.create_task(self._local.save(self.session.user_id, snapshot))
        self._mirrors.add(task)
        task.add_done_callback(self._on_mirror_done)

    def _on_mirror_done(self, task: asyncio.Task) -> None:
        self._mirrors.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Local mirror failed for user '{self.session.user_id}': {task.exception()}")
        self._update_idle()

    def _update_idle(self) -> None:
        if self._pending is None and not self._write_active() and not self._mirrors:
            self._idle.set()

    # --- 显式操作 ---

    async def force_sync(self, dataset: Optional[UserDataset] = None) -> bool:
        """跳过安静期和重复检查立即写入。返回远端写入是否成功（被取代视为失败）。"""
        if self._closed:
            raise RuntimeError("SyncCoordinator is closed")
        snapshot = dataset.for_sync() if dataset is not None else (self._pending or self._current)
        if snapshot is None:
            logger.warning(f"force_sync called for user '{self.session.user_id}' with nothing to write.")
            return False

        self._pending = None
        self._current = snapshot
        self._idle.clear()
        task = self._start_write(snapshot, canonical_serialization(snapshot))
        await asyncio.wait({task})
        if task.cancelled():
            return False
        return task.result()

    async def flush(self) -> None:
        """等待直到没有待写快照、没有进行中的写入和本地镜像。"""
        await self._idle.wait()

    async def close(self) -> None:
        self._closed = True
        self._pending = None
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        if self._write_active():
            self._inflight.cancel()
            await asyncio.gather(self._inflight, return_exceptions=True)
        if self._mirrors:
            await asyncio.gather(*list(self._mirrors), return_exceptions=True)
        self._idle.set()
        if self._owns_remote:
            await self._remote.aclose()
        logger.debug(f"SyncCoordinator for user '{self.session.user_id}' closed.")
