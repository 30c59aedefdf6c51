"""Shared fixtures."""

import pytest

from docmapper.services.factory import create_test_mapper
from docmapper.services.mapper import DocumentMapper


@pytest.fixture
async def mapper() -> DocumentMapper:
    """A mapper over a fresh in-memory store with the schema created."""
    mapper = create_test_mapper()
    await mapper.initialize()
    yield mapper
    await mapper.close()
