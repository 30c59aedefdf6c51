"""docmapper - association management for documents in a key-value store."""

from importlib.metadata import version, PackageNotFoundError

from docmapper.models import (
    Document,
    EmbeddedDocument,
    KeyStrategy,
    embedded_in,
    many,
    one,
)
from docmapper.services.factory import create_mapper, create_test_mapper
from docmapper.services.mapper import DocumentMapper

try:
    __version__ = version("docmapper")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = [
    "__version__",
    "Document",
    "DocumentMapper",
    "EmbeddedDocument",
    "KeyStrategy",
    "create_mapper",
    "create_test_mapper",
    "embedded_in",
    "many",
    "one",
]
