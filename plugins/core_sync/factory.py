# plugins/core_sync/factory.py

from typing import Optional

import httpx

from .contracts import LocalCacheInterface, SyncSession
from .coordinator import SyncCoordinator
from .remote import RemoteStoreClient


class SyncCoordinatorFactory:
    """按用户创建协调器；远端客户端由协调器持有，close() 时一并关闭。"""

    def __init__(self, local_cache: LocalCacheInterface, remote_url: str, debounce_seconds: float):
        self.local_cache = local_cache
        self.remote_url = remote_url
        self.debounce_seconds = debounce_seconds

    def create(
        self,
        user_id: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ) -> SyncCoordinator:
        remote = RemoteStoreClient(self.remote_url, transport=transport)
        kwargs.setdefault("debounce_seconds", self.debounce_seconds)
        return SyncCoordinator(SyncSession(user_id), remote, self.local_cache, owns_remote=True, **kwargs)
