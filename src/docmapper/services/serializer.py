"""Conversion between documents and the bytes kept in the store.

A record is a JSON object holding the document's scalar properties, each
embedded association inline under its own name, and ``_type`` naming the
class. Referenced associations never appear here; only their keys do, through
stored-key properties or link metadata.
"""

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic_core import from_json, to_json

from docmapper.exceptions import DocMapperError
from docmapper.models.association import resolve_type

TYPE_FIELD = "_type"


class EmbeddingSerializer:
    """Converts embedded documents to and from nested structures."""

    def serialize(self, document: Any) -> dict[str, Any]:
        """Scalar properties plus nested embedded associations; never a key."""
        record = document.to_record()
        for name, association in type(document).associations().items():
            if association.embedded:
                record[name] = document.association(name).inline()
        record[TYPE_FIELD] = type(document).__name__
        return record

    def deserialize(self, data: Mapping[str, Any], owner: Any, association: Any) -> Any:
        """Build the embedded document and point its back-reference at ``owner``."""
        document = self.build(association.target_type(), data)
        document.attach(owner, association.name)
        return document

    def build(self, document_type: type, data: Mapping[str, Any]) -> Any:
        """Validate ``data`` into ``document_type``, staging inline associations."""
        document_type = self._select_type(document_type, data.get(TYPE_FIELD))
        fields, inline = self.split(document_type, data)
        document = document_type.model_validate(fields)
        for name, value in inline.items():
            document.association(name).stage(value)
        return document

    def split(self, document_type: type, data: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        """Separate scalar properties from inline association data.

        Keys the class does not declare are dropped, so records written by an
        older version of a class still load.
        """
        associations = document_type.associations()
        fields: dict[str, Any] = {}
        inline: dict[str, Any] = {}
        for name, value in data.items():
            if name in associations and associations[name].embedded:
                inline[name] = value
            elif name in document_type.model_fields:
                fields[name] = value
        return fields, inline

    def _select_type(self, document_type: type, type_name: Any) -> type:
        if not isinstance(type_name, str) or type_name == document_type.__name__:
            return document_type
        try:
            candidate = resolve_type(type_name, document_type.__module__)
        except DocMapperError:
            return document_type
        return candidate if issubclass(candidate, document_type) else document_type


class DocumentSerializer:
    """Encodes whole documents as JSON bytes for the key-value store."""

    def __init__(
        self,
        embedding: EmbeddingSerializer | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._embedding = embedding or EmbeddingSerializer()
        self._logger = logger or structlog.get_logger(__name__)

    def dump(self, document: Any) -> bytes:
        return to_json(self._embedding.serialize(document))

    def load(self, document_type: type, key: str, raw: bytes) -> Any:
        """Decode a stored record into a persisted document of ``document_type``."""
        document = self._embedding.build(document_type, self._decode(document_type, key, raw))
        document.mark_loaded(key)
        return document

    def load_into(self, document: Any, raw: bytes) -> Any:
        """Overwrite ``document`` in place with the stored record, dropping local state."""
        document_type = type(document)
        fields, inline = self._embedding.split(document_type, self._decode(document_type, document.key, raw))
        fresh = document_type.model_validate(fields)
        for name in document_type.model_fields:
            object.__setattr__(document, name, getattr(fresh, name))
        for proxy in document.loaded_associations():
            proxy.reload()
        for name, association in document_type.associations().items():
            if association.embedded:
                document.association(name).stage(inline.get(name))
        document.mark_loaded(document.key)
        return document

    def _decode(self, document_type: type, key: str | None, raw: bytes) -> dict[str, Any]:
        try:
            data = from_json(raw)
        except ValueError as e:
            self._logger.error("record_decode_failed", bucket=document_type.bucket_name(), key=key, error=str(e))
            raise DocMapperError(f"record {document_type.bucket_name()}/{key} is not valid JSON") from e
        if not isinstance(data, dict):
            raise DocMapperError(f"record {document_type.bucket_name()}/{key} is not a JSON object")
        return data
