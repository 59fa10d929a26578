# plugins/core_persistence/contracts.py

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy.orm import Session

R = TypeVar('R')


class DataFormatError(ValueError):
    """上传的数据无法被识别或解析（File/Hex/JSON 都失败）。"""


class DatabaseServiceInterface(ABC):
    """
    关系型存储的入口。
    所有 SQL 都在工作线程中同步执行，调用方通过 run() 以协程方式等待结果。
    """

    @abstractmethod
    async def initialize(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def run(self, fn: Callable[[Session], R]) -> R:
        """在一个新的 Session 中执行 fn，成功则提交，异常则回滚并重新抛出。"""
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def dispose(self) -> None:
        raise NotImplementedError


class UserDataStoreInterface(ABC):
    """每个用户一条完整工作集记录，后写覆盖先写。"""

    @abstractmethod
    async def load(self, user_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def save(self, user_id: str, data: Dict[str, Any]) -> int:
        """保存并返回写入时间戳（毫秒）。"""
        raise NotImplementedError
