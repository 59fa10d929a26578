# plugins/core_versions/contracts.py

from __future__ import annotations
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import Field

from backend.core.contracts import Module, Template, WireModel


class EntityKind(str, Enum):
    MODULE = "module"
    TEMPLATE = "template"


class VersionErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"


class VersionError(Exception):
    """版本引擎所有业务错误的基类，携带 kind 供 API 层映射状态码。"""
    kind: VersionErrorKind = VersionErrorKind.VALIDATION

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class VersionNotFoundError(VersionError):
    kind = VersionErrorKind.NOT_FOUND


class VersionValidationError(VersionError):
    kind = VersionErrorKind.VALIDATION

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field


class VersionConflictError(VersionError):
    kind = VersionErrorKind.CONFLICT


EntitySnapshot = Union[Module, Template]


class VersionRecord(WireModel):
    """版本账本中的一行。snapshot 是创建时实体的完整线上形态。"""
    id: str
    kind: EntityKind
    entity_id: str
    user_id: str
    version_number: int
    snapshot: Dict[str, Any]
    created_at: int
    created_by: Optional[str] = None
    change_summary: Optional[str] = None
    is_tagged: bool = False
    tag_name: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        data = super().to_wire()
        # 浏览器端按 moduleId / templateId 读取父实体
        data[f"{self.kind.value}Id"] = self.entity_id
        return data


class VersionCreated(WireModel):
    version_id: str
    version_number: int


class ChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class VersionDiff(WireModel):
    field: str
    old_value: Any = None
    new_value: Any = None
    change_type: ChangeType


class VersionHistoryInterface(ABC):

    @abstractmethod
    async def create_version(
        self,
        kind: EntityKind,
        entity_id: str,
        user_id: str,
        snapshot: Union[EntitySnapshot, Dict[str, Any]],
        change_summary: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> VersionCreated:
        raise NotImplementedError

    @abstractmethod
    async def list_versions(self, kind: EntityKind, entity_id: str, user_id: str) -> List[VersionRecord]:
        raise NotImplementedError

    @abstractmethod
    async def get_version(self, kind: EntityKind, version_id: str) -> VersionRecord:
        raise NotImplementedError

    @abstractmethod
    async def tag_version(self, kind: EntityKind, version_id: str, tag_name: str) -> VersionRecord:
        raise NotImplementedError

    @abstractmethod
    async def untag_version(self, kind: EntityKind, version_id: str) -> VersionRecord:
        raise NotImplementedError

    @abstractmethod
    async def restore_version(self, kind: EntityKind, version_id: str) -> EntitySnapshot:
        raise NotImplementedError

    @abstractmethod
    async def diff_versions(
        self, kind: EntityKind, entity_id: str, user_id: str, from_version: int, to_version: int
    ) -> List[VersionDiff]:
        raise NotImplementedError
