# plugins/core_sync/tests/conftest.py

import asyncio
from typing import List, Optional

import pytest

from backend.core.contracts import Module, UserDataset, now_ms
from plugins.core_sync.contracts import RemoteErrorKind, RemoteStoreError, RemoteStoreInterface
from plugins.core_sync.local_cache import LocalCache


class FakeRemote(RemoteStoreInterface):
    """
    内存中的远端存储。
    - stored: 远端当前的数据
    - save_calls: 每次 save 调用收到的快照（包括之后被取消的）
    - completed: 真正写入成功的快照
    - gate: 设置后 save 会阻塞直到 gate 被 set，用来制造“进行中的写入”
    """

    def __init__(self, stored: Optional[UserDataset] = None):
        self.stored = stored
        self.save_calls: List[UserDataset] = []
        self.completed: List[UserDataset] = []
        self.gate: Optional[asyncio.Event] = None
        self.fail_load: Optional[RemoteStoreError] = None
        self.fail_save: Optional[RemoteStoreError] = None

    async def load(self, user_id: str) -> UserDataset:
        if self.fail_load is not None:
            raise self.fail_load
        return self.stored if self.stored is not None else UserDataset()

    async def save(self, user_id: str, dataset: UserDataset) -> int:
        self.save_calls.append(dataset)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_save is not None:
            raise self.fail_save
        self.stored = dataset
        self.completed.append(dataset)
        return now_ms()


def offline_error() -> RemoteStoreError:
    return RemoteStoreError(RemoteErrorKind.NETWORK, "ConnectError: connection refused")


def dataset_with(*titles: str, api_key: str = "") -> UserDataset:
    return UserDataset(
        modules=[Module(id=f"m-{i}", title=title, content=title, created_at=1) for i, title in enumerate(titles)],
        api_key=api_key,
    )


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def local_cache(tmp_path) -> LocalCache:
    return LocalCache(tmp_path / "client-cache")


@pytest.fixture
def make_dataset():
    return dataset_with


@pytest.fixture
def network_error():
    return offline_error
