# backend/core/contracts.py

from __future__ import annotations
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar
from abc import ABC, abstractmethod
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

# --- 1. 核心服务接口与类型别名 (用于类型提示) ---

# 定义一个泛型，常用于 filter 钩子
T = TypeVar('T')

# 插件注册函数的标准签名
PluginRegisterFunc = Callable[['Container', 'HookManager'], None]

# 为核心服务定义接口，插件不应直接导入实现，而应依赖这些接口
class Container(ABC):
    @abstractmethod
    def register(self, name: str, factory: Callable, singleton: bool = True) -> None: raise NotImplementedError
    @abstractmethod
    def resolve(self, name: str) -> Any: raise NotImplementedError

class HookManager(ABC):
    @abstractmethod
    def add_implementation(self, hook_name: str, implementation: Callable, priority: int = 10, plugin_name: str = "<unknown>"): raise NotImplementedError
    @abstractmethod
    async def trigger(self, hook_name: str, **kwargs: Any) -> None: raise NotImplementedError
    @abstractmethod
    async def filter(self, hook_name: str, data: T, **kwargs: Any) -> T: raise NotImplementedError


def now_ms() -> int:
    """当前时间的毫秒时间戳。所有持久化的时间字段都使用这个单位。"""
    return int(time.time() * 1000)


# --- 2. 核心数据模型 (用户工作集) ---
# 线上格式统一为 camelCase，与浏览器端保持一致；Python 侧用 snake_case 访问。

class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


class ModuleType(str, Enum):
    ROLE = "role"
    CONTEXT = "context"
    TASK = "task"
    CONSTRAINT = "constraint"
    FORMAT = "format"
    TONE = "tone"
    OTHER = "other"

    @classmethod
    def _missing_(cls, value: object):
        # 旧版客户端写入的是中文标签
        if isinstance(value, str):
            return _LEGACY_MODULE_TYPE_LABELS.get(value.strip())
        return None

_LEGACY_MODULE_TYPE_LABELS = {
    "角色": ModuleType.ROLE,
    "背景": ModuleType.CONTEXT,
    "任务": ModuleType.TASK,
    "约束": ModuleType.CONSTRAINT,
    "格式": ModuleType.FORMAT,
    "语气": ModuleType.TONE,
    "其他": ModuleType.OTHER,
}


class Module(WireModel):
    id: str
    title: str
    description: Optional[str] = None
    content: str = ""
    type: ModuleType = ModuleType.OTHER
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    created_at: int = Field(default_factory=now_ms)

    @field_validator('tags')
    @classmethod
    def dedupe_tags(cls, v: List[str]) -> List[str]:
        # 标签是集合语义，但保留首次出现的顺序
        return list(dict.fromkeys(v))


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


class TemplateConfig(WireModel):
    model: str = "gemini-3-flash-preview"
    temperature: float = 0.7
    top_k: int = 40
    output_format: OutputFormat = OutputFormat.TEXT
    aspect_ratio: str = "auto"
    image_size: str = "1K"
    append_string: str = "请确保输出内容专业且严谨。"


class Template(WireModel):
    id: str
    name: str
    description: str = ""
    module_ids: List[str] = Field(default_factory=list)
    config: TemplateConfig = Field(default_factory=TemplateConfig)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


AD_HOC_TEMPLATE_ID = "ad-hoc"

class RunStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


class RunLog(WireModel):
    id: str
    template_id: str = AD_HOC_TEMPLATE_ID
    template_name: str = ""
    final_prompt: str = ""
    output: str = ""
    status: RunStatus = RunStatus.PENDING
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    notes: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)
    duration_ms: int = 0

    def amend(self, status: Optional[RunStatus] = None, notes: Optional[str] = None) -> 'RunLog':
        """用户反馈只能修改 status 和 notes，其余字段不可变。"""
        updates: Dict[str, Any] = {}
        if status is not None:
            updates["status"] = status
        if notes is not None:
            updates["notes"] = notes
        return self.model_copy(update=updates)


MAX_SYNCED_LOGS = 50

class UserDataset(WireModel):
    modules: List[Module] = Field(default_factory=list)
    templates: List[Template] = Field(default_factory=list)
    # 约定：最新的日志在最前面
    logs: List[RunLog] = Field(default_factory=list)
    api_key: str = ""

    def is_empty(self) -> bool:
        return not self.modules and not self.templates and not self.api_key

    def for_sync(self) -> 'UserDataset':
        """生成用于持久化的快照：只保留最近的 50 条日志。"""
        return self.model_copy(update={"logs": self.logs[:MAX_SYNCED_LOGS]})
