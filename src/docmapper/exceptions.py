"""
Exception classes for docmapper
"""

from typing import Any


class DocMapperError(Exception):
    """Base exception for docmapper"""
    pass


class AssociationError(DocMapperError, TypeError):
    """An association was declared in a way that cannot work"""
    pass


class KeyConflict(DocMapperError):
    """A shared-key target already carries a different key than its owner"""

    def __init__(self, association: str, owner_key: str, target_key: str) -> None:
        self.association = association
        self.owner_key = owner_key
        self.target_key = target_key
        super().__init__(
            f"association '{association}' shares key '{owner_key}' but target already has key '{target_key}'"
        )


class ValidationFailed(DocMapperError):
    """A document failed property validation during a save"""

    def __init__(self, document: Any, violations: list[str]) -> None:
        self.document = document
        self.violations = violations
        detail = "; ".join(violations)
        super().__init__(f"{type(document).__name__} (key={getattr(document, 'key', None)!r}) is invalid: {detail}")


class StoreFailure(DocMapperError):
    """The key-value store rejected an operation"""

    def __init__(self, operation: str, bucket: str, key: str | None = None, reason: str | None = None) -> None:
        self.operation = operation
        self.bucket = bucket
        self.key = key
        message = f"{operation} failed for {bucket}/{key}" if key is not None else f"{operation} failed for {bucket}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DocumentNotFound(DocMapperError):
    """No record exists under the requested key"""

    def __init__(self, bucket: str, key: str) -> None:
        self.bucket = bucket
        self.key = key
        super().__init__(f"no document at {bucket}/{key}")


class UnboundDocument(DocMapperError):
    """The document is not attached to a mapper and cannot reach the store"""
    pass


class AssociationNotLoaded(DocMapperError):
    """The association must be loaded before this operation"""
    pass
