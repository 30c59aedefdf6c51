"""Document mapper: the programmatic entry point.

Wires the store, serializers, key deriver, resolver and cascade engine
together and binds every document it loads or saves, so that the document's
proxies can reach the store lazily.
"""

from typing import Any, TypeVar

import structlog

from docmapper.exceptions import DocumentNotFound
from docmapper.services.cascade import CascadeResult, CascadeSaveEngine
from docmapper.services.keys import KeyDeriver
from docmapper.services.resolver import LinkResolver
from docmapper.services.serializer import DocumentSerializer, EmbeddingSerializer
from docmapper.services.store import KeyValueStore

T_Document = TypeVar("T_Document")


class DocumentMapper:
    """Loads, saves and destroys documents in a key-value store.

    All collaborators are built from the injected store so tests can pass an
    in-memory SQLite store or a fake.
    """

    def __init__(
        self,
        store: KeyValueStore,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._logger = logger or structlog.get_logger(__name__)
        self.embedding = EmbeddingSerializer()
        self.serializer = DocumentSerializer(self.embedding, logger=self._logger)
        self.keys = KeyDeriver(store, logger=self._logger)
        self.resolver = LinkResolver(store, self.serializer, on_load=self.attach, logger=self._logger)
        self._cascade = CascadeSaveEngine(
            store,
            self.serializer,
            self.keys,
            on_visit=self.attach,
            logger=self._logger,
        )
        self.last_result: CascadeResult | None = None

    @property
    def store(self) -> KeyValueStore:
        return self._store

    async def initialize(self) -> None:
        await self._store.initialize_schema()

    async def close(self) -> None:
        await self._store.close()

    async def __aenter__(self) -> "DocumentMapper":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def attach(self, document: T_Document) -> T_Document:
        """Bind ``document`` to this mapper."""
        document.bind(self)
        return document

    async def find(self, document_type: type[T_Document], key: str) -> T_Document | None:
        return await self.resolver.fetch(key, document_type)

    async def find_or_raise(self, document_type: type[T_Document], key: str) -> T_Document:
        document = await self.find(document_type, key)
        if document is None:
            raise DocumentNotFound(document_type.bucket_name(), key)
        return document

    async def find_many(self, document_type: type[T_Document], keys: list[str]) -> list[T_Document]:
        return await self.resolver.fetch_many(keys, document_type)

    async def create(self, document_type: type[T_Document], **data: Any) -> T_Document:
        document = document_type(**data)
        await self.save(document)
        return document

    async def save(self, document: T_Document) -> T_Document:
        """Save ``document`` and cascade to its pending associated documents."""
        self.attach(document)
        self.last_result = await self._cascade.save(document)
        return document

    async def reload(self, document: T_Document) -> T_Document:
        """Re-read ``document`` from the store, discarding local changes and caches."""
        bucket = type(document).bucket_name()
        if document.key is None or document.is_new:
            raise DocumentNotFound(bucket, str(document.key))
        raw = await self._store.get(bucket, document.key)
        if raw is None:
            raise DocumentNotFound(bucket, document.key)
        self.attach(document)
        self.serializer.load_into(document, raw)
        self._logger.debug("document_reloaded", bucket=bucket, key=document.key)
        return document

    async def destroy(self, document: Any) -> None:
        """Remove the document's record and outgoing links from the store.

        Documents it references are left alone.
        """
        bucket = type(document).bucket_name()
        if document.key is not None and not document.is_new:
            await self._store.delete(bucket, document.key)
        document.mark_destroyed()
        self._logger.debug("document_destroyed", bucket=bucket, key=document.key)

    async def destroy_all(self, document_type: type) -> int:
        bucket = document_type.bucket_name()
        keys = await self._store.keys(bucket)
        for key in keys:
            await self._store.delete(bucket, key)
        self._logger.info("bucket_cleared", bucket=bucket, count=len(keys))
        return len(keys)
