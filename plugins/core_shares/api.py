# plugins/core_shares/api.py

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field

from backend.core.contracts import WireModel
from backend.core.dependencies import Service
from .contracts import ShareError, ShareErrorKind, ShareServiceInterface, ShareType

logger = logging.getLogger(__name__)

shares_router = APIRouter(
    prefix="/api/shares",
    tags=["Core-Shares"]
)

_STATUS_BY_KIND = {
    ShareErrorKind.NOT_FOUND: 404,
    ShareErrorKind.EXPIRED: 410,
    ShareErrorKind.PASSWORD_REQUIRED: 401,
    ShareErrorKind.INVALID_PASSWORD: 403,
    ShareErrorKind.VALIDATION: 400,
}


def _to_http(e: ShareError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_KIND[e.kind],
        detail={"kind": e.kind.value, "message": e.message},
    )


class CreateShareRequest(WireModel):
    user_id: str = Field(min_length=1)
    share_type: ShareType
    title: str
    description: Optional[str] = None
    data: Any
    password: Optional[str] = None
    expires_in_days: Optional[int] = None


class AccessShareRequest(WireModel):
    share_key: str
    password: Optional[str] = None


class ImportShareRequest(WireModel):
    share_key: str


@shares_router.post("/create")
async def create_share(
    body: CreateShareRequest,
    service: ShareServiceInterface = Depends(Service("share_service"))
):
    try:
        created = await service.create_share(
            user_id=body.user_id,
            share_type=body.share_type,
            title=body.title,
            data=body.data,
            description=body.description,
            password=body.password,
            expires_in_days=body.expires_in_days,
        )
    except ShareError as e:
        raise _to_http(e)
    return {"success": True, **created.to_wire()}


@shares_router.post("/access")
async def access_share(
    body: AccessShareRequest,
    service: ShareServiceInterface = Depends(Service("share_service"))
):
    try:
        view = await service.access_share(body.share_key, body.password)
    except ShareError as e:
        if e.kind in (ShareErrorKind.INVALID_PASSWORD, ShareErrorKind.EXPIRED):
            logger.info(f"Share access denied for '{body.share_key}': {e.kind.value}")
        raise _to_http(e)
    return {"success": True, "share": view.to_wire()}


@shares_router.post("/import")
async def track_import(
    body: ImportShareRequest,
    service: ShareServiceInterface = Depends(Service("share_service"))
):
    try:
        await service.track_import(body.share_key)
    except ShareError as e:
        raise _to_http(e)
    return {"success": True}


@shares_router.get("/my-shares", response_model=List[Dict[str, Any]])
async def list_my_shares(
    user_id: str = Query(alias="userId", min_length=1),
    service: ShareServiceInterface = Depends(Service("share_service"))
):
    return [s.to_wire() for s in await service.list_shares(user_id)]


@shares_router.delete("/{share_id}")
async def delete_share(
    share_id: str,
    user_id: str = Query(alias="userId", min_length=1),
    service: ShareServiceInterface = Depends(Service("share_service"))
):
    """无论是否真的删除了记录，响应都相同，不泄露分享是否存在。"""
    await service.delete_share(share_id, user_id)
    return {"success": True}
