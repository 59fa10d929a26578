# plugins/core_sync/contracts.py

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from backend.core.contracts import UserDataset, WireModel


class SyncStatus(str, Enum):
    SAVED = "saved"
    SAVING = "saving"
    ERROR = "error"
    OFFLINE = "offline"


class DataSource(str, Enum):
    CLOUD = "cloud"
    LOCAL = "local"


class SyncMetaStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    PENDING = "pending"


@dataclass(frozen=True)
class SyncSession:
    """显式的会话值：协调器只为这个用户工作，不依赖任何全局“当前用户”。"""
    user_id: str

    def __post_init__(self):
        if not self.user_id or not self.user_id.strip():
            raise ValueError("SyncSession requires a non-empty user_id")


class SyncState(WireModel):
    status: SyncStatus = SyncStatus.SAVED
    error_message: Optional[str] = None
    last_synced_at: Optional[int] = None
    source: Optional[DataSource] = None


class LoadResult(WireModel):
    dataset: UserDataset
    status: SyncStatus
    source: Optional[DataSource] = None
    warning: Optional[str] = None


class SyncMeta(WireModel):
    """本地诊断记录，只用于展示，不参与冲突判断。"""
    last_sync_time: int = 0
    last_sync_status: SyncMetaStatus = SyncMetaStatus.PENDING
    last_error_message: Optional[str] = None


class CachedDataset(WireModel):
    user_id: str
    data: UserDataset
    saved_at: int


# --- 远端存储 ---

class RemoteErrorKind(str, Enum):
    NETWORK = "network"
    HTTP = "http"
    DATA_FORMAT = "data_format"


class RemoteStoreError(Exception):
    def __init__(self, kind: RemoteErrorKind, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.kind.value} {self.status_code}] {self.message}"
        return f"[{self.kind.value}] {self.message}"


class RemoteStoreInterface(ABC):

    @abstractmethod
    async def load(self, user_id: str) -> UserDataset:
        """读取远端工作集；网络错误、非 2xx、格式错误都抛 RemoteStoreError。"""
        raise NotImplementedError

    @abstractmethod
    async def save(self, user_id: str, dataset: UserDataset) -> int:
        """整体覆盖写入，返回服务器时间戳（毫秒）。"""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class LocalCacheInterface(ABC):
    """
    客户端本地的持久缓存。任何操作都不向外抛异常：
    写失败只记日志，读失败等同于“没有数据”。
    """

    @abstractmethod
    def is_available(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def save(self, user_id: str, dataset: UserDataset) -> None:
        raise NotImplementedError

    @abstractmethod
    async def load(self, user_id: str) -> Optional[CachedDataset]:
        raise NotImplementedError

    @abstractmethod
    async def clear(self, user_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_sync_meta(self, user_id: str) -> Optional[SyncMeta]:
        raise NotImplementedError

    @abstractmethod
    async def update_sync_meta(self, user_id: str, meta: SyncMeta) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_saved_at(self, user_id: str) -> Optional[int]:
        raise NotImplementedError
