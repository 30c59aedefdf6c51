"""Document base classes.

Scalar properties are ordinary pydantic fields, validated on construction and
assignment. Associations are declared with ``one()``/``many()`` and reached
through proxies kept in private state, so they never appear in a model dump.
"""

import weakref
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, PrivateAttr, ValidationError

from docmapper.exceptions import AssociationError, UnboundDocument
from docmapper.models.association import SLOT_TYPES, Association, AssociationSlot, register_type
from docmapper.models.proxies import AssociationProxy, make_proxy


class DocumentBase(BaseModel):
    """Shared behaviour of stored and embedded documents."""

    __embedded__: ClassVar[bool] = False
    __association_slots__: ClassVar[dict[str, AssociationSlot]] = {}
    __association_table__: ClassVar[dict[str, Association] | None] = None

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
        populate_by_name=True,
        ignored_types=SLOT_TYPES,
    )

    _proxies: dict[str, AssociationProxy] = PrivateAttr(default_factory=dict)
    _changed: bool = PrivateAttr(default=False)

    def __init__(self, **data: Any) -> None:
        slots = type(self).__association_slots__
        related = {name: data.pop(name) for name in list(data) if name in slots}
        super().__init__(**data)
        for name, value in related.items():
            setattr(self, name, value)

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        slots: dict[str, AssociationSlot] = {}
        for klass in reversed(cls.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, AssociationSlot):
                    slots[name] = value
        for slot in slots.values():
            slot.check(cls)
        cls.__association_slots__ = slots
        cls.__association_table__ = None
        register_type(cls)

    @classmethod
    def associations(cls) -> dict[str, Association]:
        """The association table, built on first use."""
        if cls.__association_table__ is None:
            table = {name: slot.describe(cls) for name, slot in cls.__association_slots__.items()}
            if cls.__embedded__:
                for association in table.values():
                    if not association.embedded:
                        raise AssociationError(
                            f"{cls.__name__}.{association.name}: embedded documents may only embed"
                        )
            cls.__association_table__ = table
        return cls.__association_table__

    def __setattr__(self, name: str, value: Any) -> None:
        if name in type(self).__association_slots__:
            self.association(name).replace(value)
            return
        super().__setattr__(name, value)
        if name in type(self).model_fields:
            self._touch()

    def association(self, name: str) -> AssociationProxy:
        proxy = self._proxies.get(name)
        if proxy is None:
            try:
                association = type(self).associations()[name]
            except KeyError:
                raise AssociationError(f"{type(self).__name__} has no association '{name}'") from None
            proxy = make_proxy(self, association)
            self._proxies[name] = proxy
        return proxy

    def loaded_associations(self) -> list[AssociationProxy]:
        return list(self._proxies.values())

    def dirty_associations(self) -> list[AssociationProxy]:
        return [proxy for proxy in self._proxies.values() if proxy.dirty]

    @property
    def has_changes(self) -> bool:
        return self._changed

    def _touch(self) -> None:
        self._changed = True

    def to_record(self) -> dict[str, Any]:
        """Scalar properties in JSON-compatible form."""
        return self.model_dump(mode="json")

    def violations(self) -> list[str]:
        """Re-run property validation, including embedded documents already loaded.

        Assignment is validated as it happens; this catches what slips past,
        such as in-place mutation of a list property.
        """
        problems: list[str] = []
        try:
            type(self).model_validate(self.model_dump())
        except ValidationError as exc:
            for error in exc.errors():
                location = ".".join(str(part) for part in error["loc"]) or "__root__"
                problems.append(f"{location}: {error['msg']}")
        for name, proxy in self._proxies.items():
            if not proxy.association.embedded:
                continue
            for index, item in enumerate(proxy.targets()):
                prefix = name if proxy.association.one else f"{name}.{index}"
                problems.extend(f"{prefix}.{problem}" for problem in item.violations())
        return problems


class Document(DocumentBase):
    """A document stored under its own key.

    ``bucket`` overrides the store bucket, which otherwise is the lower-cased
    class name with an ``s`` appended.
    """

    bucket: ClassVar[str | None] = None

    _key: str | None = PrivateAttr(default=None)
    _new: bool = PrivateAttr(default=True)
    _deleted: bool = PrivateAttr(default=False)
    _mapper: Any = PrivateAttr(default=None)

    @classmethod
    def bucket_name(cls) -> str:
        return cls.bucket or f"{cls.__name__.lower()}s"

    @property
    def key(self) -> str | None:
        return self._key

    @key.setter
    def key(self, value: str | None) -> None:
        if value is not None:
            value = str(value).strip()
            if not value:
                raise ValueError("key cannot be empty")
        self._key = value

    @property
    def is_new(self) -> bool:
        return self._new

    @property
    def is_deleted(self) -> bool:
        return self._deleted

    @property
    def mapper(self) -> Any:
        return self._mapper

    def bind(self, mapper: Any) -> None:
        self._mapper = mapper

    def require_mapper(self) -> Any:
        if self._mapper is None:
            raise UnboundDocument(
                f"{type(self).__name__} (key={self._key!r}) is not attached to a mapper"
            )
        return self._mapper

    def needs_save(self) -> bool:
        return self._new or self._changed or any(proxy.dirty for proxy in self._proxies.values())

    def mark_loaded(self, key: str) -> None:
        self._key = key
        self._new = False
        self._deleted = False
        self._changed = False

    def mark_saved(self) -> None:
        self._new = False
        self._changed = False
        for proxy in self._proxies.values():
            proxy.commit()

    def mark_destroyed(self) -> None:
        self._deleted = True

    async def save(self) -> "Document":
        return await self.require_mapper().save(self)

    async def reload(self) -> "Document":
        return await self.require_mapper().reload(self)

    async def destroy(self) -> None:
        await self.require_mapper().destroy(self)

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, Document) or type(self) is not type(other):
            return False
        if self._key is None or other._key is None:
            return False
        return self._key == other._key and self.to_record() == other.to_record()

    __hash__ = None  # type: ignore[assignment]

    def __repr_args__(self) -> Any:
        yield "key", self._key
        yield from super().__repr_args__()


class EmbeddedDocument(DocumentBase):
    """A value nested inside one owner's record, with no key of its own."""

    __embedded__: ClassVar[bool] = True

    _owner: Any = PrivateAttr(default=None)
    _owner_association: str | None = PrivateAttr(default=None)

    @property
    def owner(self) -> Any:
        if self._owner is None:
            return None
        return self._owner()

    @property
    def mapper(self) -> Any:
        owner = self.owner
        return owner.mapper if owner is not None else None

    def attach(self, owner: DocumentBase, association: str) -> None:
        """Point the back-reference at ``owner``, leaving any previous owner."""
        previous = self.owner
        if previous is owner and self._owner_association == association:
            return
        if previous is not None:
            previous.association(self._owner_association).remove(self)
        self._owner = weakref.ref(owner)
        self._owner_association = association

    def detach(self) -> None:
        self._owner = None
        self._owner_association = None

    def _touch(self) -> None:
        self._changed = True
        owner = self.owner
        if owner is not None:
            owner._touch()

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, EmbeddedDocument) or type(self) is not type(other):
            return False
        if self.to_record() != other.to_record():
            return False
        for name in type(self).associations():
            if self.association(name).targets() != other.association(name).targets():
                return False
        return True

    __hash__ = None  # type: ignore[assignment]
