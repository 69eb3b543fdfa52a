"""Database utilities for the local durable history storage."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by the storage tables."""

    metadata = MetaData()


class Database:
    """Own the async engine and hand out sessions to the storage adapter."""

    def __init__(self, database_url: str):
        self._prepare_sqlite_path(database_url)
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @staticmethod
    def _prepare_sqlite_path(database_url: str) -> None:
        url = make_url(database_url)
        if not url.drivername.startswith("sqlite") or url.database in (None, "", ":memory:"):
            return
        parent = Path(url.database).expanduser().parent
        if not parent.exists():
            logger.info("Creating directory %s for the history database", parent)
            parent.mkdir(parents=True, exist_ok=True)

    async def create_all(self) -> None:
        """Create the storage tables and bring older schemas up to date."""

        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        inspector = inspect(sync_connection)
        if "storage_entries" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("storage_entries")
        }
        if "updated_at" not in existing_columns:
            logger.info("Adding updated_at column to storage_entries")
            sync_connection.execute(
                text("ALTER TABLE storage_entries ADD COLUMN updated_at DATETIME")
            )

    async def dispose(self) -> None:
        await self._engine.dispose()
