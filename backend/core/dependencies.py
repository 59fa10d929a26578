# backend/core/dependencies.py

from typing import Any
from fastapi import Request


class Service:
    """
    FastAPI 依赖：按名称从应用容器中解析服务。
    用法: `share_service = Depends(Service("share_service"))`
    """
    def __init__(self, name: str):
        self.name = name

    def __call__(self, request: Request) -> Any:
        return request.app.state.container.resolve(self.name)
