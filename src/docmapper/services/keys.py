"""Key derivation for associated documents.

Each referenced association locates its target(s) by key in one of four ways:

* ``own_key`` / ``link``: the target keeps its own key; the owner records it as
  link metadata in the store.
* ``shared_key``: the target is stored under the owner's key.
* ``stored_key``: the owner keeps the key in a ``<name>_key`` property, or the
  ordered keys in a ``<name>_keys`` list property.

The static helpers run synchronously on assignment; the async methods may hit
the store for key generation and are awaited by the cascade
engine and the proxies before any write that depends on their result.
"""

from typing import Any

import structlog

from docmapper.exceptions import AssociationError, KeyConflict
from docmapper.models.enums import KeyStrategy
from docmapper.services.store import KeyValueStore


class KeyDeriver:
    """Computes and assigns storage keys for association targets."""

    def __init__(
        self,
        store: KeyValueStore,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._logger = logger or structlog.get_logger(__name__)

    async def ensure_key(self, document: Any) -> str:
        """Give ``document`` a generated key if it has none yet."""
        if document.key is None:
            bucket = type(document).bucket_name()
            document.key = await self._store.generate_key(bucket)
            self._logger.debug("key_generated", bucket=bucket, key=document.key)
        return document.key

    async def derive(self, association: Any, owner: Any, target: Any = None) -> str | None:
        """Return the key under which ``target`` is (or will be) stored.

        For ``shared_key`` the owner is given a key first when it has none, and
        the key is copied onto the target. Other strategies never invent a key
        here; an unsaved target yields None until it is saved.
        """
        strategy = association.key_strategy
        if strategy is None:
            raise AssociationError(f"embedded association '{association.name}' has no key")
        if strategy is KeyStrategy.SHARED_KEY:
            key = await self.ensure_key(owner)
            if target is not None:
                self._share(association, key, target)
            return key
        if target is None:
            keys = self.local_keys(association, owner)
            return keys[0] if keys else None
        return target.key

    async def prepare(self, association: Any, owner: Any, target: Any) -> str:
        """Fix the key of a pending target before its owner is written."""
        if association.key_strategy is KeyStrategy.SHARED_KEY:
            return await self.derive(association, owner, target)
        return await self.ensure_key(target)

    def sync_stored_keys(self, owner: Any) -> None:
        """Fold keys fixed during the save into the key properties of dirty proxies.

        Targets that only got a key at save time are appended; removed targets
        are dropped. Keys that did not resolve to a document stay in the
        property, and proxies that were only read are left alone.
        """
        for proxy in owner.dirty_associations():
            association = proxy.association
            prop = association.key_property
            if prop is None:
                continue
            if association.one:
                targets = proxy.targets()
                value: Any = targets[0].key if targets else None
            else:
                removed = {target.key for target in proxy.pending_removals if target.key is not None}
                value = [key for key in getattr(owner, prop) or [] if key not in removed]
                for target in proxy.targets():
                    if target.key is not None and target.key not in value:
                        value.append(target.key)
            if getattr(owner, prop) != value:
                setattr(owner, prop, value)

    def _share(self, association: Any, key: str, target: Any) -> None:
        if target.key is not None and target.key != key:
            raise KeyConflict(association.name, key, target.key)
        target.key = key

    @staticmethod
    def local_keys(association: Any, owner: Any) -> list[str] | None:
        """Keys known without asking the store, or None for link metadata."""
        strategy = association.key_strategy
        if strategy is KeyStrategy.SHARED_KEY:
            return [owner.key] if owner.key is not None else []
        if strategy is KeyStrategy.STORED_KEY:
            value = getattr(owner, association.key_property)
            if association.one:
                return [value] if value else []
            return list(value or [])
        return None

    @staticmethod
    def assign(association: Any, owner: Any, target: Any) -> None:
        """Reflect a newly assigned target in the owner's key-bearing state."""
        strategy = association.key_strategy
        if strategy is KeyStrategy.SHARED_KEY:
            if target is not None and target.key is None and owner.key is not None:
                target.key = owner.key
        elif strategy is KeyStrategy.STORED_KEY:
            prop = association.key_property
            if association.one:
                setattr(owner, prop, target.key if target is not None else None)
            elif target is not None and target.key is not None:
                keys = list(getattr(owner, prop) or [])
                if target.key not in keys:
                    setattr(owner, prop, keys + [target.key])

    @staticmethod
    def unassign(association: Any, owner: Any, target: Any) -> None:
        if association.key_strategy is not KeyStrategy.STORED_KEY or target is None or target.key is None:
            return
        prop = association.key_property
        if association.one:
            if getattr(owner, prop) == target.key:
                setattr(owner, prop, None)
            return
        keys = list(getattr(owner, prop) or [])
        if target.key in keys:
            setattr(owner, prop, [key for key in keys if key != target.key])

    @staticmethod
    def clear(association: Any, owner: Any) -> None:
        if association.key_strategy is not KeyStrategy.STORED_KEY:
            return
        setattr(owner, association.key_property, None if association.one else [])
