"""Key-value store used by the mapper, with a SQLite implementation.

Uses SQLAlchemy's native async support with aiosqlite for non-blocking
database operations. Every SQLAlchemy error surfaces as ``StoreFailure``.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Protocol
from uuid import uuid4

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlmodel import SQLModel, col

from docmapper.exceptions import StoreFailure
from docmapper.models.tables import LinkRecord, ObjectRecord


class KeyValueStore(Protocol):
    """Operations the mapper needs from the underlying store."""

    async def initialize_schema(self) -> None: ...

    async def get(self, bucket: str, key: str) -> bytes | None: ...

    async def get_many(self, bucket: str, keys: list[str]) -> dict[str, bytes]: ...

    async def put(self, bucket: str, key: str, value: bytes) -> None: ...

    async def delete(self, bucket: str, key: str) -> bool: ...

    async def generate_key(self, bucket: str) -> str: ...

    async def set_links(self, bucket: str, key: str, tag: str, targets: list[str]) -> None: ...

    async def get_links(self, bucket: str, key: str, tag: str) -> list[str]: ...

    async def keys(self, bucket: str) -> list[str]: ...

    async def close(self) -> None: ...


class SQLiteKeyValueStore:
    """Stores values and links in SQLite via SQLModel.

    Accepts an AsyncEngine via dependency injection to support both
    persistent and in-memory databases for testing.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)

    @asynccontextmanager
    async def _session(self, operation: str, bucket: str, key: str | None = None) -> AsyncIterator[AsyncSession]:
        try:
            async with AsyncSession(self._engine) as session:
                yield session
        except SQLAlchemyError as e:
            self._logger.error("store_operation_failed", operation=operation, bucket=bucket, key=key, error=str(e))
            raise StoreFailure(operation, bucket, key, reason=str(e)) from e

    async def initialize_schema(self) -> None:
        """Create database tables if they don't exist."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
        except SQLAlchemyError as e:
            raise StoreFailure("initialize_schema", "*", reason=str(e)) from e
        self._logger.info("key_value_store_initialized")

    async def get(self, bucket: str, key: str) -> bytes | None:
        async with self._session("get", bucket, key) as session:
            record = await session.get(ObjectRecord, (bucket, key))
            return record.value if record is not None else None

    async def get_many(self, bucket: str, keys: list[str]) -> dict[str, bytes]:
        """Fetch several values in one round trip; missing keys are absent from the result."""
        if not keys:
            return {}
        async with self._session("get_many", bucket) as session:
            statement = select(ObjectRecord).where(
                ObjectRecord.bucket == bucket,
                col(ObjectRecord.key).in_(set(keys)),
            )
            result = await session.execute(statement)
            return {record.key: record.value for record in result.scalars()}

    async def put(self, bucket: str, key: str, value: bytes) -> None:
        async with self._session("put", bucket, key) as session:
            existing = await session.get(ObjectRecord, (bucket, key))
            if existing:
                existing.value = value
                existing.updated_at = datetime.now(timezone.utc)
            else:
                session.add(ObjectRecord(bucket=bucket, key=key, value=value))
            await session.commit()
        self._logger.debug("value_stored", bucket=bucket, key=key, size_bytes=len(value))

    async def delete(self, bucket: str, key: str) -> bool:
        """Delete a value and its outgoing links.

        Returns:
            True if a value was deleted, False if none was stored.
        """
        async with self._session("delete", bucket, key) as session:
            record = await session.get(ObjectRecord, (bucket, key))
            await session.execute(delete(LinkRecord).where(LinkRecord.bucket == bucket, LinkRecord.key == key))
            if record is not None:
                await session.delete(record)
            await session.commit()
        self._logger.debug("value_deleted", bucket=bucket, key=key, found=record is not None)
        return record is not None

    async def generate_key(self, bucket: str) -> str:
        return uuid4().hex

    async def set_links(self, bucket: str, key: str, tag: str, targets: list[str]) -> None:
        """Replace the links under ``tag`` with ``targets``, in order."""
        async with self._session("set_links", bucket, key) as session:
            await session.execute(
                delete(LinkRecord).where(
                    LinkRecord.bucket == bucket,
                    LinkRecord.key == key,
                    LinkRecord.tag == tag,
                )
            )
            session.add_all(
                LinkRecord(bucket=bucket, key=key, tag=tag, position=position, target_key=target)
                for position, target in enumerate(targets)
            )
            await session.commit()
        self._logger.debug("links_stored", bucket=bucket, key=key, tag=tag, count=len(targets))

    async def get_links(self, bucket: str, key: str, tag: str) -> list[str]:
        async with self._session("get_links", bucket, key) as session:
            statement = (
                select(LinkRecord)
                .where(LinkRecord.bucket == bucket, LinkRecord.key == key, LinkRecord.tag == tag)
                .order_by(LinkRecord.position)
            )
            result = await session.execute(statement)
            return [record.target_key for record in result.scalars()]

    async def keys(self, bucket: str) -> list[str]:
        async with self._session("keys", bucket) as session:
            statement = select(ObjectRecord).where(ObjectRecord.bucket == bucket).order_by(ObjectRecord.key)
            result = await session.execute(statement)
            return [record.key for record in result.scalars()]

    async def close(self) -> None:
        await self._engine.dispose()


def create_async_engine_from_path(db_path: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for the given database path.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Returns:
        AsyncEngine instance configured for aiosqlite.
    """
    if db_path == ":memory:":
        # For in-memory async SQLite, we need special handling to share
        # the connection across the async session lifecycle
        url = "sqlite+aiosqlite:///:memory:"
    else:
        url = f"sqlite+aiosqlite:///{db_path}"
    return create_async_engine(url)
