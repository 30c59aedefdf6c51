"""Key-value store inspection CLI.

Looks inside a docmapper SQLite store: raw records, link metadata and the
keys of a bucket. Documents themselves are managed from Python code.
"""

import asyncio
import logging
import sys
from typing import Optional

import structlog
import typer

from docmapper.services.factory import create_mapper
from docmapper.services.mapper import DocumentMapper
from docmapper.settings import get_settings

_LOG_LEVEL = logging.getLevelNamesMapping().get(get_settings().log_level.upper(), logging.INFO)

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=lambda name: structlog.PrintLogger(file=sys.stderr),
    wrapper_class=structlog.make_filtering_bound_logger(_LOG_LEVEL),
    context_class=dict,
    cache_logger_on_first_use=True,
)

app = typer.Typer(
    name="docmapper",
    help="""Inspect a docmapper key-value store.

Examples:

  # Create the store schema
  uv run docmapper init --db ./app.db

  # Print the record stored under a key
  uv run docmapper get users 5f0c... --db ./app.db

  # List the links a record holds under a tag
  uv run docmapper links users 5f0c... friends --db ./app.db""",
    rich_markup_mode="markdown",
)


def _mapper(db: Optional[str]) -> DocumentMapper:
    return create_mapper(settings=get_settings(), db_path=db)


@app.command()
def init(
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite store file (default: DOCMAPPER_DB_PATH or docmapper.db)",
    ),
) -> None:
    """Create the store tables if they don't exist."""

    async def run() -> None:
        async with _mapper(db):
            pass

    asyncio.run(run())
    typer.echo("Store initialized")


@app.command()
def get(
    bucket: str = typer.Argument(..., help="Bucket holding the record"),
    key: str = typer.Argument(..., help="Record key"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite store file"),
) -> None:
    """Print the raw record stored under BUCKET/KEY."""

    async def run() -> bytes | None:
        async with _mapper(db) as mapper:
            return await mapper.store.get(bucket, key)

    raw = asyncio.run(run())
    if raw is None:
        structlog.get_logger(__name__).error("record_not_found", bucket=bucket, key=key)
        raise typer.Exit(1)
    typer.echo(raw.decode("utf-8"))


@app.command()
def links(
    bucket: str = typer.Argument(..., help="Bucket holding the record"),
    key: str = typer.Argument(..., help="Record key"),
    tag: str = typer.Argument(..., help="Link tag (the association name)"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite store file"),
) -> None:
    """List the target keys linked from BUCKET/KEY under TAG, in link order."""

    async def run() -> list[str]:
        async with _mapper(db) as mapper:
            return await mapper.store.get_links(bucket, key, tag)

    for target in asyncio.run(run()):
        typer.echo(target)


@app.command()
def keys(
    bucket: str = typer.Argument(..., help="Bucket to list"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite store file"),
) -> None:
    """List the keys stored in BUCKET."""

    async def run() -> list[str]:
        async with _mapper(db) as mapper:
            return await mapper.store.keys(bucket)

    found = asyncio.run(run())
    for key in found:
        typer.echo(key)
    structlog.get_logger(__name__).info("bucket_listed", bucket=bucket, count=len(found))


@app.command()
def version() -> None:
    """Show version information."""
    from docmapper import __version__

    typer.echo(f"docmapper {__version__}")
