"""Key/value storage backends used by the watch history store."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import StorageEntry
from .errors import StorageUnavailable

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    """String key/value storage scoped by application chosen keys."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryStorage:
    """Process local storage; contents vanish with the process."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class DatabaseStorage:
    """Durable storage persisted in the local SQLite database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(StorageEntry.value).where(StorageEntry.key == key)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Failed to read {key}: {exc}") from exc

    async def set(self, key: str, value: str) -> None:
        try:
            async with self._session_factory() as session:
                entry = await session.get(StorageEntry, key)
                if entry is None:
                    session.add(StorageEntry(key=key, value=value))
                else:
                    entry.value = value
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Failed to write {key}: {exc}") from exc
        logger.debug("Persisted %d bytes under %s", len(value), key)

    async def delete(self, key: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(delete(StorageEntry).where(StorageEntry.key == key))
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Failed to delete {key}: {exc}") from exc
