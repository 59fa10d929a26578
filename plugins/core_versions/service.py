# plugins/core_versions/service.py

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Type, Union

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.core.contracts import Module, Template, now_ms
from plugins.core_persistence.contracts import DatabaseServiceInterface
from .contracts import (
    EntityKind,
    EntitySnapshot,
    VersionConflictError,
    VersionCreated,
    VersionDiff,
    VersionHistoryInterface,
    VersionNotFoundError,
    VersionRecord,
    VersionValidationError,
)
from .diff import calculate_diff
from .models import ModuleVersionRecord, TemplateVersionRecord

logger = logging.getLogger(__name__)

_RECORD_TABLES: Dict[EntityKind, Type] = {
    EntityKind.MODULE: ModuleVersionRecord,
    EntityKind.TEMPLATE: TemplateVersionRecord,
}
_ENTITY_MODELS: Dict[EntityKind, Type[EntitySnapshot]] = {
    EntityKind.MODULE: Module,
    EntityKind.TEMPLATE: Template,
}

MAX_CREATE_ATTEMPTS = 5


class VersionHistoryService(VersionHistoryInterface):
    """
    只追加的版本账本。

    每个 (实体, 用户) 的版本号从 1 开始严格递增、永不复用。
    同一进程内通过按 (kind, entity, user) 划分的 asyncio.Lock 串行化“读最大值再插入”；
    多进程写入时由唯一约束兜底，冲突后重读重试。
    """

    def __init__(self, database: DatabaseServiceInterface, clock: Callable[[], int] = now_ms):
        self._db = database
        self._clock = clock
        self._locks: Dict[Tuple[EntityKind, str, str], asyncio.Lock] = {}
        # 持有或等待每把锁的协程数，归零时移除
        self._lock_holders: Dict[Tuple[EntityKind, str, str], int] = {}

    @asynccontextmanager
    async def _entity_lock(self, key: Tuple[EntityKind, str, str]) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_holders[key] = self._lock_holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[key] -= 1
            if self._lock_holders[key] == 0:
                del self._lock_holders[key]
                self._locks.pop(key, None)

    @staticmethod
    def _to_record(kind: EntityKind, row) -> VersionRecord:
        return VersionRecord(
            id=row.id,
            kind=kind,
            entity_id=row.entity_id,
            user_id=row.user_id,
            version_number=row.version_number,
            snapshot=json.loads(row.snapshot_json),
            created_at=row.created_at,
            created_by=row.created_by,
            change_summary=row.change_summary,
            is_tagged=row.is_tagged,
            tag_name=row.tag_name,
        )

    def _normalize_snapshot(
        self, kind: EntityKind, snapshot: Union[EntitySnapshot, Dict[str, Any]]
    ) -> Dict[str, Any]:
        model = _ENTITY_MODELS[kind]
        if isinstance(snapshot, model):
            return snapshot.to_wire()
        try:
            return model.model_validate(snapshot).to_wire()
        except ValidationError as e:
            raise VersionValidationError(kind.value, f"snapshot is not a valid {kind.value}: {e.error_count()} error(s)")

    async def create_version(
        self,
        kind: EntityKind,
        entity_id: str,
        user_id: str,
        snapshot: Union[EntitySnapshot, Dict[str, Any]],
        change_summary: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> VersionCreated:
        kind = EntityKind(kind)
        if not entity_id:
            raise VersionValidationError(f"{kind.value}Id", "must not be empty")
        if not user_id:
            raise VersionValidationError("userId", "must not be empty")

        snapshot_json = json.dumps(self._normalize_snapshot(kind, snapshot), ensure_ascii=False)
        record_cls = _RECORD_TABLES[kind]

        def _insert_next(session: Session) -> VersionCreated:
            current_max = session.execute(
                select(func.max(record_cls.version_number)).where(
                    record_cls.entity_id == entity_id,
                    record_cls.user_id == user_id,
                )
            ).scalar_one()
            row = record_cls(
                id=str(uuid.uuid4()),
                entity_id=entity_id,
                user_id=user_id,
                version_number=(current_max or 0) + 1,
                snapshot_json=snapshot_json,
                created_at=self._clock(),
                created_by=created_by or user_id,
                change_summary=change_summary,
                is_tagged=False,
            )
            session.add(row)
            session.flush()
            return VersionCreated(version_id=row.id, version_number=row.version_number)

        async with self._entity_lock((kind, entity_id, user_id)):
            for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
                try:
                    created = await self._db.run(_insert_next)
                except IntegrityError:
                    logger.warning(
                        f"Version number conflict for {kind.value} '{entity_id}' "
                        f"(attempt {attempt}/{MAX_CREATE_ATTEMPTS}), retrying."
                    )
                    continue
                logger.info(
                    f"Created {kind.value} version v{created.version_number} for '{entity_id}' (user '{user_id}')."
                )
                return created

        raise VersionConflictError(
            f"Could not allocate a version number for {kind.value} '{entity_id}' after {MAX_CREATE_ATTEMPTS} attempts"
        )

    async def list_versions(self, kind: EntityKind, entity_id: str, user_id: str) -> List[VersionRecord]:
        kind = EntityKind(kind)
        record_cls = _RECORD_TABLES[kind]

        def _list(session: Session) -> List[VersionRecord]:
            rows = session.execute(
                select(record_cls)
                .where(record_cls.entity_id == entity_id, record_cls.user_id == user_id)
                .order_by(record_cls.version_number.desc())
            ).scalars().all()
            return [self._to_record(kind, row) for row in rows]

        return await self._db.run(_list)

    async def get_version(self, kind: EntityKind, version_id: str) -> VersionRecord:
        kind = EntityKind(kind)
        record_cls = _RECORD_TABLES[kind]

        def _get(session: Session) -> Optional[VersionRecord]:
            row = session.get(record_cls, version_id)
            return self._to_record(kind, row) if row is not None else None

        record = await self._db.run(_get)
        if record is None:
            raise VersionNotFoundError(f"{kind.value} version '{version_id}' not found")
        return record

    async def _set_tag(self, kind: EntityKind, version_id: str, tag_name: Optional[str]) -> VersionRecord:
        kind = EntityKind(kind)
        record_cls = _RECORD_TABLES[kind]

        def _update(session: Session) -> Optional[VersionRecord]:
            row = session.get(record_cls, version_id)
            if row is None:
                return None
            row.is_tagged = tag_name is not None
            row.tag_name = tag_name
            session.flush()
            return self._to_record(kind, row)

        record = await self._db.run(_update)
        if record is None:
            raise VersionNotFoundError(f"{kind.value} version '{version_id}' not found")
        return record

    async def tag_version(self, kind: EntityKind, version_id: str, tag_name: str) -> VersionRecord:
        # 同一实体下标签名不要求唯一
        tag_name = (tag_name or "").strip()
        if not tag_name:
            raise VersionValidationError("tagName", "must not be empty")
        record = await self._set_tag(kind, version_id, tag_name)
        logger.info(f"Tagged {record.kind.value} version '{version_id}' as '{tag_name}'.")
        return record

    async def untag_version(self, kind: EntityKind, version_id: str) -> VersionRecord:
        return await self._set_tag(kind, version_id, None)

    async def restore_version(self, kind: EntityKind, version_id: str) -> EntitySnapshot:
        """返回快照的实体形态。恢复前的当前状态不会自动存档，由调用方决定是否先 create_version。"""
        record = await self.get_version(kind, version_id)
        return _ENTITY_MODELS[record.kind].model_validate(record.snapshot)

    async def diff_versions(
        self, kind: EntityKind, entity_id: str, user_id: str, from_version: int, to_version: int
    ) -> List[VersionDiff]:
        versions = {v.version_number: v for v in await self.list_versions(kind, entity_id, user_id)}
        for number in (from_version, to_version):
            if number not in versions:
                raise VersionNotFoundError(f"{EntityKind(kind).value} '{entity_id}' has no version v{number}")
        return calculate_diff(versions[from_version].snapshot, versions[to_version].snapshot)
