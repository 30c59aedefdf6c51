"""Runtime proxies standing in for an association's value.

A proxy is created per (owner, association) on first access. It loads lazily,
buffers local mutation and hands the cascade engine what it needs at save
time. Embedded associations load from inline data staged by the serializer and
never touch the store; referenced associations resolve through the owner's
mapper.
"""

from collections.abc import AsyncIterator, Iterable
from typing import Any

from docmapper.exceptions import AssociationNotLoaded
from docmapper.models.association import Association
from docmapper.models.enums import LoadState
from docmapper.services.keys import KeyDeriver
from docmapper.services.serializer import EmbeddingSerializer

_embedding = EmbeddingSerializer()


def _same(left: Any, right: Any) -> bool:
    if left is right:
        return True
    # embedded documents have no identity beyond the object itself
    if type(left) is not type(right) or getattr(type(left), "__embedded__", True):
        return False
    return left.key is not None and left.key == right.key


class AssociationProxy:
    def __init__(self, owner: Any, association: Association) -> None:
        self._owner = owner
        self.association = association
        self._state = LoadState.UNLOADED
        self._dirty = False
        self._staged: Any = None
        self._pristine: Any = None
        if getattr(owner, "is_new", False) and not association.embedded:
            # nothing stored yet unless keys were given to the constructor
            if not KeyDeriver.local_keys(association, owner):
                self._state = LoadState.LOADED

    @property
    def owner(self) -> Any:
        return self._owner

    @property
    def loaded(self) -> bool:
        return self._state is LoadState.LOADED

    @property
    def dirty(self) -> bool:
        return self._dirty

    def stage(self, inline: Any) -> None:
        """Hold inline data read from the owner's record until first access."""
        self._staged = inline
        self._pristine = inline
        self._state = LoadState.UNLOADED

    def reload(self) -> None:
        """Discard cached and pending state; the next read resolves again.

        Embedded associations resolve again from the inline data last read
        from or written to the owner's record.
        """
        self._state = LoadState.UNLOADED
        self._dirty = False
        if self.association.embedded:
            self._staged = self._pristine

    def commit(self) -> None:
        """Called once the owner's record has been written."""
        self._dirty = False
        if self.association.embedded and self.loaded:
            self._pristine = self.inline()

    def inline(self) -> Any:
        raise NotImplementedError

    def _check_target(self, document: Any) -> None:
        target_type = self.association.target_type()
        if not isinstance(document, target_type):
            raise TypeError(
                f"{type(self._owner).__name__}.{self.association.name} expects {target_type.__name__}, "
                f"got {type(document).__name__}"
            )

    def _mark_dirty(self) -> None:
        self._dirty = True
        if self.association.embedded:
            self._owner._touch()

    async def _lookup_keys(self) -> list[str]:
        keys = KeyDeriver.local_keys(self.association, self._owner)
        if keys is not None:
            return keys
        if self._owner.is_new or self._owner.key is None:
            return []
        resolver = self._owner.require_mapper().resolver
        return await resolver.linked_keys(self._owner, self.association.link_tag)

    async def _fetch(self, keys: list[str]) -> list[Any]:
        if not keys:
            return []
        resolver = self._owner.require_mapper().resolver
        return await resolver.fetch_many(keys, self.association.target_type())


class OneProxy(AssociationProxy):
    """Proxy for a single related document."""

    def __init__(self, owner: Any, association: Association) -> None:
        super().__init__(owner, association)
        self._target: Any = None

    async def get(self) -> Any:
        if not self.loaded:
            if self.association.embedded:
                self._materialize()
            else:
                found = await self._fetch((await self._lookup_keys())[:1])
                self._target = found[0] if found else None
                self._state = LoadState.LOADED
        return self._target

    def set(self, document: Any) -> None:
        association = self.association
        if document is not None:
            self._check_target(document)
        if association.embedded:
            previous = self._target if self.loaded else None
            if previous is not None and previous is not document and previous.owner is self._owner:
                previous.detach()
            if document is not None:
                document.attach(self._owner, association.name)
        else:
            KeyDeriver.assign(association, self._owner, document)
        self._target = document
        self._staged = None
        self._state = LoadState.LOADED
        self._mark_dirty()

    replace = set

    def remove(self, document: Any) -> None:
        if self.loaded and _same(self._target, document):
            self.set(None)

    def reload(self) -> None:
        super().reload()
        self._target = None

    async def settle(self) -> list[Any]:
        target = await self.get()
        return [target] if target is not None else []

    def targets(self) -> list[Any]:
        """The cached value as a list, without touching the store."""
        if self.association.embedded and not self.loaded:
            self._materialize()
        return [self._target] if self.loaded and self._target is not None else []

    def inline(self) -> Any:
        if not self.loaded:
            self._materialize()
        return _embedding.serialize(self._target) if self._target is not None else None

    def _materialize(self) -> None:
        staged = self._staged
        self._target = _embedding.deserialize(staged, self._owner, self.association) if staged else None
        self._staged = None
        self._state = LoadState.LOADED

    def __repr__(self) -> str:
        return f"<OneProxy {self.association.name} {self._state.value} target={self._target!r}>"


class ManyProxy(AssociationProxy):
    """Proxy for an ordered collection of related documents.

    Additions made before the collection is loaded wait in ``_added`` and are
    merged on load; removals are kept in ``_removed`` until the owner is saved
    so that they are visible before any store round trip.
    """

    def __init__(self, owner: Any, association: Association) -> None:
        super().__init__(owner, association)
        self._items: list[Any] = []
        self._added: list[Any] = []
        self._removed: list[Any] = []

    @property
    def pending_removals(self) -> list[Any]:
        return list(self._removed)

    async def all(self) -> list[Any]:
        if not self.loaded:
            if self.association.embedded:
                self._materialize()
            else:
                self._finish_load(await self._fetch(await self._lookup_keys()))
        return list(self._items)

    async def count(self) -> int:
        return len(await self.all())

    async def keys(self) -> list[str]:
        prop = self.association.key_property
        if prop is not None and not self.loaded:
            return list(getattr(self._owner, prop) or [])
        return [item.key for item in await self.all() if item.key is not None]

    def append(self, document: Any) -> "ManyProxy":
        self._check_target(document)
        if self.association.embedded:
            document.attach(self._owner, self.association.name)
        pool = self._items if self.loaded else self._added
        if any(_same(item, document) for item in pool):
            return self
        pool.append(document)
        self._removed = [item for item in self._removed if not _same(item, document)]
        KeyDeriver.assign(self.association, self._owner, document)
        self._mark_dirty()
        return self

    def extend(self, documents: Iterable[Any]) -> "ManyProxy":
        for document in documents:
            self.append(document)
        return self

    __lshift__ = append

    def remove(self, document: Any) -> None:
        self._items = [item for item in self._items if not _same(item, document)]
        self._added = [item for item in self._added if not _same(item, document)]
        if not any(_same(item, document) for item in self._removed):
            self._removed.append(document)
        KeyDeriver.unassign(self.association, self._owner, document)
        if self.association.embedded and document.owner is self._owner:
            document.detach()
        self._mark_dirty()

    def replace(self, documents: Iterable[Any] | None) -> None:
        documents = list(documents or [])
        for document in documents:
            self._check_target(document)
        for item in self._items + self._added:
            self.remove(item)
        KeyDeriver.clear(self.association, self._owner)
        self._items = []
        self._added = []
        self._staged = None
        self._state = LoadState.LOADED
        self.extend(documents)
        self._mark_dirty()

    def reload(self) -> None:
        super().reload()
        self._items = []
        self._added = []
        self._removed = []

    def commit(self) -> None:
        super().commit()
        self._removed = []

    async def settle(self) -> list[Any]:
        return await self.all()

    def targets(self) -> list[Any]:
        if self.association.embedded and not self.loaded:
            self._materialize()
        return list(self._items) if self.loaded else list(self._added)

    def inline(self) -> list[Any]:
        if not self.loaded:
            self._materialize()
        return [_embedding.serialize(item) for item in self._items]

    def _materialize(self) -> None:
        staged = self._staged or []
        self._finish_load([_embedding.deserialize(data, self._owner, self.association) for data in staged])
        self._staged = None

    def _finish_load(self, items: list[Any]) -> None:
        for document in self._added:
            if not any(_same(item, document) for item in items):
                items.append(document)
        self._items = [item for item in items if not any(_same(item, gone) for gone in self._removed)]
        self._added = []
        self._state = LoadState.LOADED

    async def __aiter__(self) -> AsyncIterator[Any]:
        for item in await self.all():
            yield item

    def __eq__(self, other: object) -> bool:
        if not self.loaded:
            raise AssociationNotLoaded(f"load {self.association.name} before comparing it")
        if isinstance(other, ManyProxy):
            if not other.loaded:
                raise AssociationNotLoaded(f"load {other.association.name} before comparing it")
            other = other._items
        if not isinstance(other, (list, tuple)):
            return NotImplemented
        return len(self._items) == len(other) and all(a == b for a, b in zip(self._items, other))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<ManyProxy {self.association.name} {self._state.value} items={self._items!r}>"


def make_proxy(owner: Any, association: Association) -> AssociationProxy:
    if association.one:
        return OneProxy(owner, association)
    return ManyProxy(owner, association)
