# plugins/core_versions/api.py

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field

from backend.core.contracts import Module, Template, WireModel
from backend.core.dependencies import Service
from .contracts import EntityKind, VersionError, VersionErrorKind, VersionHistoryInterface

logger = logging.getLogger(__name__)

versions_router = APIRouter(
    prefix="/api/versions",
    tags=["Core-Versions"]
)

_STATUS_BY_KIND = {
    VersionErrorKind.NOT_FOUND: 404,
    VersionErrorKind.VALIDATION: 400,
    VersionErrorKind.CONFLICT: 409,
}


def _to_http(e: VersionError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_KIND[e.kind],
        detail={"kind": e.kind.value, "message": e.message},
    )


# --- 请求体 ---

class CreateModuleVersionRequest(WireModel):
    module_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    module: Module
    change_summary: Optional[str] = None
    created_by: Optional[str] = None


class CreateTemplateVersionRequest(WireModel):
    template_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    template: Template
    change_summary: Optional[str] = None
    created_by: Optional[str] = None


class TagRequest(WireModel):
    version_id: str
    tag_name: str
    type: EntityKind


class VersionRefRequest(WireModel):
    version_id: str
    type: EntityKind


# --- 路由 ---

@versions_router.post("/module")
async def create_module_version(
    body: CreateModuleVersionRequest,
    service: VersionHistoryInterface = Depends(Service("version_history"))
):
    try:
        created = await service.create_version(
            EntityKind.MODULE, body.module_id, body.user_id, body.module,
            change_summary=body.change_summary, created_by=body.created_by,
        )
    except VersionError as e:
        raise _to_http(e)
    return {"success": True, **created.to_wire()}


@versions_router.post("/template")
async def create_template_version(
    body: CreateTemplateVersionRequest,
    service: VersionHistoryInterface = Depends(Service("version_history"))
):
    try:
        created = await service.create_version(
            EntityKind.TEMPLATE, body.template_id, body.user_id, body.template,
            change_summary=body.change_summary, created_by=body.created_by,
        )
    except VersionError as e:
        raise _to_http(e)
    return {"success": True, **created.to_wire()}


@versions_router.post("/tag")
async def tag_version(
    body: TagRequest,
    service: VersionHistoryInterface = Depends(Service("version_history"))
):
    try:
        await service.tag_version(body.type, body.version_id, body.tag_name)
    except VersionError as e:
        raise _to_http(e)
    return {"success": True}


@versions_router.post("/untag")
async def untag_version(
    body: VersionRefRequest,
    service: VersionHistoryInterface = Depends(Service("version_history"))
):
    try:
        await service.untag_version(body.type, body.version_id)
    except VersionError as e:
        raise _to_http(e)
    return {"success": True}


@versions_router.post("/restore")
async def restore_version(
    body: VersionRefRequest,
    service: VersionHistoryInterface = Depends(Service("version_history"))
):
    """返回快照内容，由客户端替换当前实体。"""
    try:
        entity = await service.restore_version(body.type, body.version_id)
    except VersionError as e:
        raise _to_http(e)
    return {"success": True, "version": entity.to_wire()}


@versions_router.get("/{kind}/{entity_id}", response_model=List[Dict[str, Any]])
async def list_versions(
    kind: EntityKind,
    entity_id: str,
    user_id: str = Query(alias="userId", min_length=1),
    service: VersionHistoryInterface = Depends(Service("version_history"))
):
    """按版本号倒序列出某实体在该用户名下的全部版本。"""
    versions = await service.list_versions(kind, entity_id, user_id)
    return [v.to_wire() for v in versions]


@versions_router.get("/{kind}/{entity_id}/diff", response_model=List[Dict[str, Any]])
async def diff_versions(
    kind: EntityKind,
    entity_id: str,
    from_version: int = Query(alias="from", ge=1),
    to_version: int = Query(alias="to", ge=1),
    user_id: str = Query(alias="userId", min_length=1),
    service: VersionHistoryInterface = Depends(Service("version_history"))
):
    try:
        diffs = await service.diff_versions(kind, entity_id, user_id, from_version, to_version)
    except VersionError as e:
        raise _to_http(e)
    # oldValue/newValue 为 null 也要保留在输出里
    return [d.model_dump(mode="json", by_alias=True) for d in diffs]
