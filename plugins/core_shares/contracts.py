# plugins/core_shares/contracts.py

from __future__ import annotations
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.core.contracts import WireModel

DAY_MS = 86_400_000


class ShareType(str, Enum):
    MODULE = "module"
    TEMPLATE = "template"
    BATCH_MODULES = "batch_modules"
    BATCH_TEMPLATES = "batch_templates"

    @property
    def is_batch(self) -> bool:
        return self in (ShareType.BATCH_MODULES, ShareType.BATCH_TEMPLATES)


class ShareErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    PASSWORD_REQUIRED = "password_required"
    INVALID_PASSWORD = "invalid_password"
    VALIDATION = "validation"


class ShareError(Exception):
    def __init__(self, kind: ShareErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class ShareAccessError(ShareError):
    """访问分享失败：不存在、已过期、需要密码或密码错误。"""


class ShareValidationError(ShareError):
    def __init__(self, field: str, message: str):
        super().__init__(ShareErrorKind.VALIDATION, f"{field}: {message}")
        self.field = field


class ShareCreated(WireModel):
    share_id: str
    share_key: str
    share_url: str
    has_password: bool
    expires_at: Optional[int] = None


class ShareView(WireModel):
    """访问成功后返回的完整分享内容。密码哈希永远不出现在这里。"""
    id: str
    share_key: str
    user_id: str
    share_type: ShareType
    title: str
    description: Optional[str] = None
    data_json: Any
    has_password: bool
    expire_at: Optional[int] = None
    view_count: int
    import_count: int
    created_at: int
    last_accessed_at: Optional[int] = None

    def to_wire(self) -> Dict[str, Any]:
        data = super().to_wire()
        # 快照原样返回，其中的 null 不能被裁掉
        data["dataJson"] = self.data_json
        return data


class ShareSummary(WireModel):
    id: str
    share_key: str
    share_url: str
    share_type: ShareType
    title: str
    description: Optional[str] = None
    has_password: bool
    expire_at: Optional[int] = None
    is_expired: bool
    view_count: int
    import_count: int
    created_at: int
    last_accessed_at: Optional[int] = None


class ShareServiceInterface(ABC):

    @abstractmethod
    async def create_share(
        self,
        user_id: str,
        share_type: ShareType,
        title: str,
        data: Any,
        description: Optional[str] = None,
        password: Optional[str] = None,
        expires_in_days: Optional[int] = None,
    ) -> ShareCreated:
        raise NotImplementedError

    @abstractmethod
    async def access_share(self, share_key: str, password: Optional[str] = None) -> ShareView:
        raise NotImplementedError

    @abstractmethod
    async def track_import(self, share_key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_shares(self, user_id: str) -> List[ShareSummary]:
        raise NotImplementedError

    @abstractmethod
    async def delete_share(self, share_id: str, user_id: str) -> bool:
        raise NotImplementedError
