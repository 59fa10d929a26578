# plugins/core_sync/local_cache.py

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from backend.core.contracts import UserDataset, now_ms
from .contracts import CachedDataset, LocalCacheInterface, SyncMeta

logger = logging.getLogger(__name__)


class LocalCache(LocalCacheInterface):
    """
    基于文件的本地缓存。
    <cache_dir>/data/<user>.json 保存完整快照，<cache_dir>/meta/<user>.json 保存同步元信息。
    写入先落到临时文件再原子替换，进程崩溃不会留下半个文件。
    """

    def __init__(self, cache_dir: Optional[Union[str, Path]]):
        self._root = Path(cache_dir).expanduser() if cache_dir else None
        # 同一用户的写入按到达顺序串行（asyncio.Lock 先到先得）
        self._locks: Dict[str, asyncio.Lock] = {}
        self._available = self._prepare()

    def _prepare(self) -> bool:
        if self._root is None:
            logger.warning("Local cache disabled: no cache directory configured.")
            return False
        try:
            (self._root / "data").mkdir(parents=True, exist_ok=True)
            (self._root / "meta").mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Local cache unavailable at '{self._root}': {e}")
            return False
        logger.debug(f"Local cache ready at {self._root}")
        return True

    def is_available(self) -> bool:
        return self._available

    def _get_lock(self, user_id: str) -> asyncio.Lock:
        return self._locks.setdefault(user_id, asyncio.Lock())

    def _path(self, section: str, user_id: str) -> Path:
        return self._root / section / f"{quote(user_id, safe='')}.json"

    async def _write_json(self, path: Path, payload: Dict[str, Any]) -> None:
        # 每次写入使用独立的临时文件
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        async with aiofiles.open(tmp_path, mode='w', encoding='utf-8') as f:
            await f.write(json.dumps(payload, ensure_ascii=False))
        await aiofiles.os.replace(tmp_path, path)

    async def _read_json(self, path: Path) -> Optional[Dict[str, Any]]:
        if not await aiofiles.os.path.isfile(path):
            return None
        async with aiofiles.open(path, mode='r', encoding='utf-8') as f:
            content = await f.read()
        return json.loads(content)

    async def save(self, user_id: str, dataset: UserDataset) -> None:
        if not self._available:
            return
        record = CachedDataset(user_id=user_id, data=dataset, saved_at=now_ms())
        async with self._get_lock(user_id):
            try:
                await self._write_json(self._path("data", user_id), record.to_wire())
            except Exception as e:
                logger.warning(f"Failed to write local cache for user '{user_id}': {e}", exc_info=True)
                return
        logger.debug(f"Mirrored dataset for user '{user_id}' to local cache.")

    async def load(self, user_id: str) -> Optional[CachedDataset]:
        if not self._available:
            return None
        try:
            raw = await self._read_json(self._path("data", user_id))
            if raw is None:
                return None
            return CachedDataset.model_validate(raw)
        except (OSError, ValueError, ValidationError) as e:
            # 损坏的缓存等同于没有缓存
            logger.warning(f"Ignoring unreadable local cache for user '{user_id}': {e}")
            return None

    async def clear(self, user_id: str) -> None:
        if not self._available:
            return
        path = self._path("data", user_id)
        async with self._get_lock(user_id):
            try:
                if await aiofiles.os.path.exists(path):
                    await aiofiles.os.remove(path)
                    logger.info(f"Cleared local cache for user '{user_id}'.")
            except OSError as e:
                logger.warning(f"Failed to clear local cache for user '{user_id}': {e}")

    async def get_sync_meta(self, user_id: str) -> Optional[SyncMeta]:
        if not self._available:
            return None
        try:
            raw = await self._read_json(self._path("meta", user_id))
            return SyncMeta.model_validate(raw) if raw is not None else None
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable sync meta for user '{user_id}': {e}")
            return None

    async def update_sync_meta(self, user_id: str, meta: SyncMeta) -> None:
        if not self._available:
            return
        async with self._get_lock(user_id):
            try:
                await self._write_json(self._path("meta", user_id), meta.to_wire())
            except Exception as e:
                logger.warning(f"Failed to write sync meta for user '{user_id}': {e}", exc_info=True)

    async def get_saved_at(self, user_id: str) -> Optional[int]:
        cached = await self.load(user_id)
        return cached.saved_at if cached is not None else None
