"""Association descriptors and the declarations that produce them.

A document class declares its relationships with ``one()``, ``many()`` and
``embedded_in()``. Each declaration is an ``AssociationSlot`` living on the
class; the immutable ``Association`` descriptor it describes is built once per
class, the first time the association table is needed, so that targets may be
named before they are defined (self references, forward references).
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from docmapper.exceptions import AssociationError
from docmapper.models.enums import Cardinality, Containment, KeyStrategy

_REGISTRY: dict[str, list[type]] = {}


def register_type(document_type: type) -> None:
    """Make a document class resolvable by name for association targets."""
    _REGISTRY.setdefault(document_type.__name__, []).append(document_type)


def resolve_type(name: str, scope: str | None = None) -> type:
    """Find a registered document class by name.

    Classes declared in ``scope`` (a module name) win over same-named classes
    from elsewhere; otherwise the most recently registered class is used.
    """
    candidates = _REGISTRY.get(name)
    if not candidates:
        raise AssociationError(f"unknown document type '{name}'")
    if scope is not None:
        for candidate in reversed(candidates):
            if candidate.__module__ == scope:
                return candidate
    return candidates[-1]


class Association(BaseModel):
    """Static metadata for one declared relationship."""

    name: str
    cardinality: Cardinality
    containment: Containment
    key_strategy: KeyStrategy | None = None
    target: str
    scope: str | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _validate_strategy(self) -> "Association":
        if self.containment is Containment.EMBEDDED and self.key_strategy is not None:
            raise ValueError("embedded associations do not derive keys")
        if self.containment is Containment.REFERENCED and self.key_strategy is None:
            raise ValueError("referenced associations need a key strategy")
        if self.key_strategy is KeyStrategy.SHARED_KEY and self.cardinality is Cardinality.MANY:
            raise ValueError("a shared key cannot identify more than one target")
        return self

    @property
    def one(self) -> bool:
        return self.cardinality is Cardinality.ONE

    @property
    def many(self) -> bool:
        return self.cardinality is Cardinality.MANY

    @property
    def embedded(self) -> bool:
        return self.containment is Containment.EMBEDDED

    @property
    def linked(self) -> bool:
        """True when the relationship is recorded as store link metadata."""
        return self.key_strategy in (KeyStrategy.LINK, KeyStrategy.OWN_KEY)

    @property
    def key_property(self) -> str | None:
        """Owner property holding target key(s) for stored-key associations."""
        if self.key_strategy is not KeyStrategy.STORED_KEY:
            return None
        return stored_key_property(self.name, self.cardinality)

    @property
    def link_tag(self) -> str:
        return self.name

    def target_type(self) -> type:
        return resolve_type(self.target, self.scope)


def singular(name: str) -> str:
    """Plain English singular of an association name: ``comments`` -> ``comment``."""
    if name.endswith("ies") and len(name) > 3:
        return name[:-3] + "y"
    if name.endswith(("sses", "xes", "ches", "shes")):
        return name[:-2]
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name


def stored_key_property(name: str, cardinality: Cardinality) -> str:
    """``mentor`` -> ``mentor_key``; ``comments`` -> ``comment_keys``."""
    if cardinality is Cardinality.ONE:
        return f"{name}_key"
    return f"{singular(name)}_keys"


class AssociationSlot:
    """Class-level declaration of an association.

    Reading the attribute on an instance returns the instance's proxy; the
    owning model class routes assignment to ``proxy.replace``.
    """

    def __init__(
        self,
        cardinality: Cardinality,
        target: str | type,
        using: KeyStrategy | str | None = None,
        embedded: bool | None = None,
    ) -> None:
        self.name = ""
        self.cardinality = cardinality
        self.target = target if isinstance(target, str) else target.__name__
        self._target_class = None if isinstance(target, str) else target
        self.using = KeyStrategy(using) if using is not None else None
        self.embedded = embedded
        if self.using is not None and embedded:
            raise AssociationError("an embedded association cannot use a key strategy")

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: Any, owner: type) -> Any:
        if instance is None:
            return self
        return instance.association(self.name)

    def __repr__(self) -> str:
        return f"<AssociationSlot {self.cardinality.value} {self.name} -> {self.target}>"

    def check(self, owner: type) -> None:
        """Reject declarations that can never work, at class definition time."""
        if self.using is KeyStrategy.SHARED_KEY and self.cardinality is Cardinality.MANY:
            raise AssociationError(f"{owner.__name__}.{self.name}: a shared key cannot identify more than one target")
        if getattr(owner, "__embedded__", False) and (self.using is not None or self.embedded is False):
            raise AssociationError(f"{owner.__name__}.{self.name}: embedded documents may only embed")
        if self.using is KeyStrategy.STORED_KEY:
            prop = stored_key_property(self.name, self.cardinality)
            if prop not in owner.model_fields:
                raise AssociationError(f"{owner.__name__}.{self.name}: stored-key association needs a '{prop}' property")

    def describe(self, owner: type) -> Association:
        target_class = self._target_class or resolve_type(self.target, owner.__module__)
        embedded = self.embedded
        if embedded is None:
            embedded = self.using is None and bool(getattr(target_class, "__embedded__", False))
        containment = Containment.EMBEDDED if embedded else Containment.REFERENCED
        strategy = None if embedded else (self.using or KeyStrategy.LINK)
        try:
            return Association(
                name=self.name,
                cardinality=self.cardinality,
                containment=containment,
                key_strategy=strategy,
                target=self.target,
                scope=target_class.__module__,
            )
        except ValidationError as exc:
            raise AssociationError(f"{owner.__name__}.{self.name}: {exc.errors()[0]['msg']}") from exc


class OwnerSlot:
    """Names the owner of an embedded document, e.g. ``user = embedded_in("user")``."""

    def __init__(self, name: str | None = None) -> None:
        self.name = name

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = self.name or name

    def __get__(self, instance: Any, owner: type) -> Any:
        if instance is None:
            return self
        return instance.owner


def one(target: str | type, using: KeyStrategy | str | None = None, embedded: bool | None = None) -> Any:
    return AssociationSlot(Cardinality.ONE, target, using=using, embedded=embedded)


def many(target: str | type, using: KeyStrategy | str | None = None, embedded: bool | None = None) -> Any:
    return AssociationSlot(Cardinality.MANY, target, using=using, embedded=embedded)


def embedded_in(name: str | None = None) -> Any:
    return OwnerSlot(name)


SLOT_TYPES = (AssociationSlot, OwnerSlot)
