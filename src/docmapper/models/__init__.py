from docmapper.models.association import Association, embedded_in, many, one
from docmapper.models.document import Document, EmbeddedDocument
from docmapper.models.enums import Cardinality, Containment, KeyStrategy, LoadState
from docmapper.models.proxies import ManyProxy, OneProxy

__all__ = [
    "Association",
    "Document",
    "EmbeddedDocument",
    "OneProxy",
    "ManyProxy",
    "Cardinality",
    "Containment",
    "KeyStrategy",
    "LoadState",
    "one",
    "many",
    "embedded_in",
]
