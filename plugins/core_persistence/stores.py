# plugins/core_persistence/stores.py
import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from backend.core.contracts import now_ms
from .contracts import DatabaseServiceInterface, UserDataStoreInterface
from .models import UserDataRecord

logger = logging.getLogger(__name__)


class UserDataStore(UserDataStoreInterface):
    """远端权威存储中的用户工作集：user_id -> JSON 文本。"""

    def __init__(self, database: DatabaseServiceInterface):
        self._db = database

    async def load(self, user_id: str) -> Optional[Dict[str, Any]]:
        def _load(session: Session) -> Optional[str]:
            return session.execute(
                select(UserDataRecord.data_json).where(UserDataRecord.user_id == user_id)
            ).scalar_one_or_none()

        data_json = await self._db.run(_load)
        if not data_json:
            return None
        return json.loads(data_json)

    async def save(self, user_id: str, data: Dict[str, Any]) -> int:
        timestamp = now_ms()
        data_json = json.dumps(data, ensure_ascii=False)

        def _upsert(session: Session) -> None:
            stmt = sqlite_insert(UserDataRecord).values(
                user_id=user_id, data_json=data_json, updated_at=timestamp
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[UserDataRecord.user_id],
                set_={"data_json": stmt.excluded.data_json, "updated_at": stmt.excluded.updated_at},
            )
            session.execute(stmt)

        await self._db.run(_upsert)
        logger.debug(f"Persisted dataset for user '{user_id}' ({len(data_json)} chars)")
        return timestamp
