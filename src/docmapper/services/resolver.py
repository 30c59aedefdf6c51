"""Fetches referenced documents by key.

A key that no longer resolves is a stale reference, not an error: single
lookups return None and batch lookups leave the document out.
"""

from collections.abc import Callable
from typing import Any

import structlog

from docmapper.services.serializer import DocumentSerializer
from docmapper.services.store import KeyValueStore


class LinkResolver:
    """Loads documents from the store, individually or in one batch."""

    def __init__(
        self,
        store: KeyValueStore,
        serializer: DocumentSerializer,
        on_load: Callable[[Any], Any] | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._serializer = serializer
        self._on_load = on_load
        self._logger = logger or structlog.get_logger(__name__)

    async def fetch(self, key: str, document_type: type) -> Any | None:
        """Retrieve one document.

        Args:
            key: The document key to look up.
            document_type: The Document class stored under the key.

        Returns:
            The Document if found, None otherwise.
        """
        bucket = document_type.bucket_name()
        raw = await self._store.get(bucket, key)
        if raw is None:
            self._logger.debug("stale_reference", bucket=bucket, key=key)
            return None
        return self._materialize(document_type, key, raw)

    async def fetch_many(self, keys: list[str], document_type: type) -> list[Any]:
        """Retrieve several documents in one store round trip.

        Args:
            keys: Document keys, in the order the result should follow.
            document_type: The Document class stored under the keys.

        Returns:
            Documents in input order; keys that did not resolve are skipped.
        """
        if not keys:
            return []
        bucket = document_type.bucket_name()
        found = await self._store.get_many(bucket, list(keys))
        documents = []
        missing = []
        for key in keys:
            raw = found.get(key)
            if raw is None:
                missing.append(key)
                continue
            documents.append(self._materialize(document_type, key, raw))
        if missing:
            self._logger.debug("stale_references", bucket=bucket, keys=missing, requested=len(keys))
        return documents

    async def linked_keys(self, owner: Any, tag: str) -> list[str]:
        """Target keys recorded as links of ``owner`` under ``tag``, in link order."""
        if owner.key is None or owner.is_new:
            return []
        return await self._store.get_links(type(owner).bucket_name(), owner.key, tag)

    def _materialize(self, document_type: type, key: str, raw: bytes) -> Any:
        document = self._serializer.load(document_type, key, raw)
        if self._on_load is not None:
            self._on_load(document)
        return document
