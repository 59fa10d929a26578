# plugins/core_shares/service.py

import asyncio
import json
import logging
import secrets
import uuid
from typing import Any, Callable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.core.contracts import now_ms
from plugins.core_persistence.contracts import DatabaseServiceInterface
from .contracts import (
    DAY_MS,
    ShareAccessError,
    ShareCreated,
    ShareErrorKind,
    ShareServiceInterface,
    ShareSummary,
    ShareType,
    ShareValidationError,
    ShareView,
)
from .hashing import MAX_PASSWORD_BYTES, hash_password, password_too_long, verify_password
from .models import ShareRecord

logger = logging.getLogger(__name__)

# 12 个 URL 安全字符
SHARE_KEY_BYTES = 9
MAX_KEY_ATTEMPTS = 5


class ShareService(ShareServiceInterface):
    """
    分享引擎。share key 本身就是访问凭证；可选密码只保存加盐哈希；
    过期的分享保留在库里，访问时返回 expired 而不是 not_found。
    """

    def __init__(
        self,
        database: DatabaseServiceInterface,
        public_base_url: str,
        clock: Callable[[], int] = now_ms,
    ):
        self._db = database
        self._public_base_url = public_base_url.rstrip("/")
        self._clock = clock

    def share_url(self, share_key: str) -> str:
        return f"{self._public_base_url}/share/{share_key}"

    def _is_expired(self, expire_at: Optional[int], now: int) -> bool:
        return expire_at is not None and now >= expire_at

    @staticmethod
    def _validate(share_type: ShareType, title: str, data: Any, expires_in_days: Optional[int]) -> None:
        if not title or not title.strip():
            raise ShareValidationError("title", "must not be empty")
        if share_type.is_batch:
            if not isinstance(data, list) or not data:
                raise ShareValidationError("data", f"{share_type.value} requires a non-empty list")
        elif not isinstance(data, dict) or not data:
            raise ShareValidationError("data", f"{share_type.value} requires a single object")
        if expires_in_days is not None and expires_in_days <= 0:
            raise ShareValidationError("expiresInDays", "must be a positive number of days")

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
        if not user_id:
            raise ShareValidationError("userId", "must not be empty")
        try:
            share_type = ShareType(share_type)
        except ValueError:
            raise ShareValidationError("shareType", f"unknown share type '{share_type}'")
        self._validate(share_type, title, data, expires_in_days)
        if password and password_too_long(password):
            raise ShareValidationError("password", f"must be at most {MAX_PASSWORD_BYTES} bytes")

        password_hash = None
        if password:
            # bcrypt 比较耗 CPU，放到线程里
            password_hash = await asyncio.to_thread(hash_password, password)

        now = self._clock()
        expire_at = now + expires_in_days * DAY_MS if expires_in_days else None
        data_json = json.dumps(data, ensure_ascii=False)

        for attempt in range(1, MAX_KEY_ATTEMPTS + 1):
            share_id = str(uuid.uuid4())
            share_key = secrets.token_urlsafe(SHARE_KEY_BYTES)

            def _insert(session: Session) -> None:
                session.add(ShareRecord(
                    id=share_id,
                    share_key=share_key,
                    user_id=user_id,
                    share_type=share_type.value,
                    title=title.strip(),
                    description=description,
                    data_json=data_json,
                    password_hash=password_hash,
                    expire_at=expire_at,
                    view_count=0,
                    import_count=0,
                    created_at=now,
                ))

            try:
                await self._db.run(_insert)
            except IntegrityError:
                logger.warning(f"Share key collision (attempt {attempt}/{MAX_KEY_ATTEMPTS}), regenerating.")
                continue

            logger.info(f"User '{user_id}' created {share_type.value} share '{share_key}'.")
            return ShareCreated(
                share_id=share_id,
                share_key=share_key,
                share_url=self.share_url(share_key),
                has_password=password_hash is not None,
                expires_at=expire_at,
            )

        raise RuntimeError(f"Could not allocate a unique share key after {MAX_KEY_ATTEMPTS} attempts")

    async def access_share(self, share_key: str, password: Optional[str] = None) -> ShareView:
        now = self._clock()

        def _access(session: Session) -> ShareView:
            row = session.execute(
                select(ShareRecord).where(ShareRecord.share_key == share_key)
            ).scalar_one_or_none()
            if row is None:
                raise ShareAccessError(ShareErrorKind.NOT_FOUND, "Share not found")
            if self._is_expired(row.expire_at, now):
                raise ShareAccessError(ShareErrorKind.EXPIRED, "Share has expired")

            values = {"view_count": ShareRecord.view_count + 1, "last_accessed_at": now}
            if row.password_hash:
                if not password:
                    raise ShareAccessError(ShareErrorKind.PASSWORD_REQUIRED, "Password required")
                ok, upgraded = verify_password(password, row.password_hash)
                if not ok:
                    raise ShareAccessError(ShareErrorKind.INVALID_PASSWORD, "Invalid password")
                if upgraded is not None:
                    values["password_hash"] = upgraded
                    logger.info(f"Upgraded password hash for share '{share_key}' to the current scheme.")

            session.execute(
                update(ShareRecord)
                .where(ShareRecord.id == row.id)
                .values(**values)
            )
            session.refresh(row)
            return ShareView(
                id=row.id,
                share_key=row.share_key,
                user_id=row.user_id,
                share_type=ShareType(row.share_type),
                title=row.title,
                description=row.description,
                data_json=json.loads(row.data_json),
                has_password=bool(row.password_hash),
                expire_at=row.expire_at,
                view_count=row.view_count,
                import_count=row.import_count,
                created_at=row.created_at,
                last_accessed_at=row.last_accessed_at,
            )

        return await self._db.run(_access)

    async def track_import(self, share_key: str) -> None:
        """导入计数 +1。不校验密码，也不做幂等。"""
        def _increment(session: Session) -> int:
            result = session.execute(
                update(ShareRecord)
                .where(ShareRecord.share_key == share_key)
                .values(import_count=ShareRecord.import_count + 1)
            )
            return result.rowcount

        if await self._db.run(_increment) == 0:
            raise ShareAccessError(ShareErrorKind.NOT_FOUND, "Share not found")

    async def list_shares(self, user_id: str) -> List[ShareSummary]:
        now = self._clock()

        def _list(session: Session) -> List[ShareSummary]:
            rows = session.execute(
                select(ShareRecord)
                .where(ShareRecord.user_id == user_id)
                .order_by(ShareRecord.created_at.desc())
            ).scalars().all()
            return [
                ShareSummary(
                    id=row.id,
                    share_key=row.share_key,
                    share_url=self.share_url(row.share_key),
                    share_type=ShareType(row.share_type),
                    title=row.title,
                    description=row.description,
                    has_password=bool(row.password_hash),
                    expire_at=row.expire_at,
                    is_expired=self._is_expired(row.expire_at, now),
                    view_count=row.view_count,
                    import_count=row.import_count,
                    created_at=row.created_at,
                    last_accessed_at=row.last_accessed_at,
                )
                for row in rows
            ]

        return await self._db.run(_list)

    async def delete_share(self, share_id: str, user_id: str) -> bool:
        """归属是删除条件的一部分；不匹配时静默不删，返回 False。"""
        def _delete(session: Session) -> int:
            result = session.execute(
                delete(ShareRecord).where(ShareRecord.id == share_id, ShareRecord.user_id == user_id)
            )
            return result.rowcount

        deleted = await self._db.run(_delete) > 0
        if deleted:
            logger.info(f"User '{user_id}' revoked share '{share_id}'.")
        else:
            logger.debug(f"Delete of share '{share_id}' by '{user_id}' matched nothing.")
        return deleted
