"""Cascade save of a document together with its pending associated documents.

One call to ``CascadeSaveEngine.save`` walks the association graph from the
given document. Documents are tracked by object identity, so unsaved
documents without keys are recognised when the graph loops back on itself.

For every visited document:

1. Validate it, then collect the targets of its dirty referenced
   associations and validate those that will be written.
2. Fix keys: the document's own key, shared keys copied onto targets and
   generated keys for unsaved targets, so the owner's record and links can
   name them.
3. Write the record (scalar properties and inline embedded data) and the link
   metadata of dirty linked associations, then clear pending state.
4. Visit each target that is new, changed or has dirty associations.

Nothing is rolled back if a write fails; documents written earlier in the
cascade stay written.
"""

from typing import Any, Callable

import structlog
from pydantic import BaseModel, Field

from docmapper.exceptions import ValidationFailed
from docmapper.services.keys import KeyDeriver
from docmapper.services.serializer import DocumentSerializer
from docmapper.services.store import KeyValueStore


class CascadeResult(BaseModel):
    """Result of a cascade save with statistics."""

    written: list[str] = Field(default_factory=list)
    links_written: int = Field(default=0, ge=0)
    cycles_skipped: int = Field(default=0, ge=0)


class CascadeSaveEngine:
    """Persists a document and, recursively, its pending associated documents."""

    def __init__(
        self,
        store: KeyValueStore,
        serializer: DocumentSerializer,
        keys: KeyDeriver,
        on_visit: Callable[[Any], Any] | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._serializer = serializer
        self._keys = keys
        self._on_visit = on_visit
        self._logger = logger or structlog.get_logger(__name__)

    async def save(self, document: Any) -> CascadeResult:
        """Save ``document`` and cascade to associated documents that need it.

        The given document is always written; documents reached through its
        associations only when they are new, changed or have dirty
        associations of their own.

        Raises:
            ValidationFailed: If a document in the cascade fails validation.
            KeyConflict: If a shared-key target already has a different key.
            StoreFailure: If the store rejects a write.
        """
        result = CascadeResult()
        visited: set[int] = set()
        await self._visit(document, visited, result, force=True)
        self._logger.info(
            "cascade_completed",
            bucket=type(document).bucket_name(),
            key=document.key,
            documents_written=len(result.written),
            links_written=result.links_written,
            cycles_skipped=result.cycles_skipped,
        )
        return result

    async def _visit(self, document: Any, visited: set[int], result: CascadeResult, force: bool) -> None:
        if id(document) in visited:
            result.cycles_skipped += 1
            self._logger.debug("cascade_cycle_skipped", bucket=type(document).bucket_name(), key=document.key)
            return
        visited.add(id(document))
        if self._on_visit is not None:
            self._on_visit(document)

        self._check_valid(document)
        pending = await self._pending_targets(document)
        for _, target in pending:
            if id(target) not in visited and target.needs_save():
                self._check_valid(target)

        await self._keys.ensure_key(document)
        for association, target in pending:
            await self._keys.prepare(association, document, target)

        if force or document.needs_save():
            await self._persist(document, result)

        for _, target in pending:
            if target.needs_save():
                await self._visit(target, visited, result, force=False)

    async def _pending_targets(self, document: Any) -> list[tuple[Any, Any]]:
        pending = []
        for proxy in document.dirty_associations():
            if proxy.association.embedded:
                continue
            for target in await proxy.settle():
                pending.append((proxy.association, target))
        return pending

    def _check_valid(self, document: Any) -> None:
        violations = document.violations()
        if violations:
            self._logger.warning(
                "validation_failed",
                bucket=type(document).bucket_name(),
                key=document.key,
                violations=violations,
            )
            raise ValidationFailed(document, violations)

    async def _persist(self, document: Any, result: CascadeResult) -> None:
        bucket = type(document).bucket_name()
        self._keys.sync_stored_keys(document)
        await self._store.put(bucket, document.key, self._serializer.dump(document))

        for proxy in document.dirty_associations():
            if not proxy.association.linked:
                continue
            targets = [target.key for target in proxy.targets() if target.key is not None]
            await self._store.set_links(bucket, document.key, proxy.association.link_tag, targets)
            result.links_written += 1

        document.mark_saved()
        result.written.append(f"{bucket}/{document.key}")
        self._logger.debug("document_saved", bucket=bucket, key=document.key)
