"""SQLModel table definitions for the bundled SQLite key-value store.

The mapper only sees the ``KeyValueStore`` protocol: values are opaque bytes
addressed by bucket and key, and links are ordered lists of target keys under
a tag. These tables are how ``SQLiteKeyValueStore`` lays that out on disk.
"""

from datetime import datetime, timezone

from sqlalchemy import LargeBinary
from sqlmodel import Field, SQLModel


class ObjectRecord(SQLModel, table=True):
    """One stored value, addressed by (bucket, key)."""

    __tablename__ = "objects"

    bucket: str = Field(primary_key=True)
    key: str = Field(primary_key=True)
    value: bytes = Field(sa_type=LargeBinary)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LinkRecord(SQLModel, table=True):
    """One outgoing link of a stored value.

    ``position`` keeps the order in which the links were written, which is the
    order ``get_links`` returns them in.
    """

    __tablename__ = "links"

    id: int | None = Field(default=None, primary_key=True)
    bucket: str = Field(index=True)
    key: str = Field(index=True)
    tag: str = Field(index=True)
    position: int
    target_key: str
