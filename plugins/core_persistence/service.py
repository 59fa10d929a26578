# plugins/core_persistence/service.py

import asyncio
import logging
from pathlib import Path
from typing import Callable, TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker

from .contracts import DatabaseServiceInterface
from .models import Base

R = TypeVar('R')
logger = logging.getLogger(__name__)


class DatabaseService(DatabaseServiceInterface):
    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_engine(
            f"sqlite:///{self.db_path}",
            future=True,
            # 会话在 to_thread 的工作线程中使用
            connect_args={"check_same_thread": False, "timeout": 15},
        )
        event.listen(self._engine, "connect", _enable_sqlite_wal)
        self._sessionmaker = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,
            future=True,
        )
        logger.info(f"DatabaseService initialized. Database file: {self.db_path.resolve()}")

    @property
    def engine(self):
        return self._engine

    async def initialize(self) -> None:
        await asyncio.to_thread(Base.metadata.create_all, self._engine)
        logger.info(f"Ensured tables exist: {sorted(Base.metadata.tables.keys())}")

    def _run_sync(self, fn: Callable[[Session], R]) -> R:
        session = self._sessionmaker()
        try:
            result = fn(session)
            session.commit()
            return result
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def run(self, fn: Callable[[Session], R]) -> R:
        return await asyncio.to_thread(self._run_sync, fn)

    async def ping(self) -> bool:
        try:
            await self.run(lambda session: session.execute(text("SELECT 1")).scalar_one())
            return True
        except Exception as e:
            logger.error(f"Database ping failed: {e}")
            return False

    def dispose(self) -> None:
        self._engine.dispose()
        logger.debug("Database engine disposed.")


def _enable_sqlite_wal(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
