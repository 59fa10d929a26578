# plugins/core_sync/seed.py
"""新用户（云端和本地都没有数据）的初始工作集。"""

from backend.core.contracts import Module, ModuleType, UserDataset, now_ms


def default_seed_dataset() -> UserDataset:
    created_at = now_ms()
    modules = [
        Module(
            id="role-expert",
            title="角色：资深架构师",
            content="你是一位世界级的全栈架构师，拥有10年 React 19、TypeScript 和 Cloudflare 生态系统经验。"
                    "你优先考虑类型安全、性能优化和整洁的架构设计。",
            description="设定高工程标准。",
            type=ModuleType.ROLE,
            tags=["专家", "工程"],
            created_at=created_at,
        ),
        Module(
            id="task-refactor",
            title="任务：代码重构",
            content="重构提供的代码。要求：1. 提高可读性；2. DRY（不要重复自己）；3. 完善 TypeScript 类型；4. 保持原有逻辑不变。",
            type=ModuleType.TASK,
            tags=["重构", "代码"],
            created_at=created_at,
        ),
        Module(
            id="constraint-stack",
            title="约束：现代技术栈",
            content="严格遵循：React 19 (Hooks), Tailwind CSS (不使用 styled-components), Lucide React, Vite, Cloudflare Pages。",
            type=ModuleType.CONSTRAINT,
            tags=["技术栈", "React", "Tailwind"],
            created_at=created_at,
        ),
        Module(
            id="format-json",
            title="格式：纯 JSON",
            content="仅输出有效的 JSON 数据。不要将其包裹在 Markdown 代码块中。不要输出其他文本。",
            type=ModuleType.FORMAT,
            tags=["数据", "API"],
            created_at=created_at,
        ),
    ]
    return UserDataset(modules=modules)
