"""Factory functions for creating and wiring a document mapper.

Provides a production factory backed by a SQLite file and a test factory
backed by in-memory SQLite for fast, isolated testing.
"""

from pathlib import Path

import structlog

from docmapper.services.mapper import DocumentMapper
from docmapper.services.store import SQLiteKeyValueStore, create_async_engine_from_path
from docmapper.settings import MapperSettings, get_settings


def create_mapper(
    settings: MapperSettings | None = None,
    db_path: str | Path | None = None,
) -> DocumentMapper:
    """Create a DocumentMapper with persistent SQLite storage.

    Args:
        settings: Mapper settings; read from the environment when omitted.
        db_path: SQLite file overriding ``settings.db_path``.

    Returns:
        Configured DocumentMapper. Call ``initialize()`` (or use it as an
        async context manager) before the first operation.
    """
    logger = structlog.get_logger(__name__)

    settings = settings or get_settings()
    path = str(db_path) if db_path is not None else settings.db_path
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine_from_path(path)
    store = SQLiteKeyValueStore(engine=engine, logger=logger)
    return DocumentMapper(store=store, logger=logger)


def create_test_mapper() -> DocumentMapper:
    """Create a DocumentMapper with in-memory storage for testing.

    Each call creates independent storage, so tests don't interfere.
    """
    logger = structlog.get_logger(__name__)

    engine = create_async_engine_from_path(":memory:")
    store = SQLiteKeyValueStore(engine=engine, logger=logger)
    return DocumentMapper(store=store, logger=logger)
