# plugins/core_persistence/api.py

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError

from backend.core.contracts import UserDataset
from backend.core.dependencies import Service
from .codec import decode_body_payload, decode_file_payload
from .contracts import DataFormatError, UserDataStoreInterface

logger = logging.getLogger(__name__)

data_router = APIRouter(
    prefix="/api/data",
    tags=["Core-Persistence"]
)


def _error(status_code: int, kind: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"kind": kind, "message": message})


def _require_user(user_id: Optional[str]) -> str:
    if not user_id or not user_id.strip():
        raise _error(400, "validation", "Missing userId")
    return user_id


@data_router.get("", response_model=Dict[str, Any])
async def get_user_data(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    store: UserDataStoreInterface = Depends(Service("user_data_store"))
):
    """读取用户的完整工作集。没有记录时返回空数据集，而不是 404。"""
    user_id = _require_user(user_id)
    try:
        data = await store.load(user_id)
    except Exception as e:
        logger.error(f"Failed to fetch data for user '{user_id}': {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch data")
    if data is None:
        return UserDataset().to_wire()
    return data


async def _read_payload(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise DataFormatError("Unrecognized data format")
        return decode_file_payload(await upload.read())
    return decode_body_payload(await request.body())


@data_router.post("")
async def save_user_data(
    request: Request,
    user_id: Optional[str] = Query(default=None, alias="userId"),
    store: UserDataStoreInterface = Depends(Service("user_data_store"))
):
    """
    整体覆盖保存用户工作集。
    支持三种上传方式：multipart 文件（XOR 二进制）、Hex-XOR 文本、普通 JSON。
    """
    user_id = _require_user(user_id)
    try:
        data = await _read_payload(request)
    except DataFormatError as e:
        logger.warning(f"Rejected upload for user '{user_id}': {e}")
        raise _error(400, "data_format", "Unrecognized data format")

    try:
        UserDataset.model_validate(data)
    except ValidationError as e:
        raise _error(422, "validation", f"Dataset failed validation: {e.error_count()} error(s)")

    try:
        timestamp = await store.save(user_id, data)
    except Exception as e:
        logger.error(f"Save data error for user '{user_id}': {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "timestamp": timestamp}
