"""Unit tests for the LinkResolver service."""

import pytest

from docmapper.models import Document
from docmapper.services.resolver import LinkResolver
from docmapper.services.serializer import DocumentSerializer


class City(Document):
    name: str


class FakeRecordStore:
    """In-memory fake that counts round trips."""

    def __init__(self) -> None:
        self.values: dict[tuple[str, str], bytes] = {}
        self.links: dict[tuple[str, str, str], list[str]] = {}
        self.get_calls = 0
        self.get_many_calls = 0

    async def get(self, bucket: str, key: str) -> bytes | None:
        self.get_calls += 1
        return self.values.get((bucket, key))

    async def get_many(self, bucket: str, keys: list[str]) -> dict[str, bytes]:
        self.get_many_calls += 1
        return {key: self.values[(bucket, key)] for key in keys if (bucket, key) in self.values}

    async def get_links(self, bucket: str, key: str, tag: str) -> list[str]:
        return list(self.links.get((bucket, key, tag), []))


@pytest.fixture
def record_store() -> FakeRecordStore:
    store = FakeRecordStore()
    serializer = DocumentSerializer()
    for key, name in [("par", "Paris"), ("ber", "Berlin"), ("rom", "Rome")]:
        store.values[("citys", key)] = serializer.dump(City(name=name))
    return store


@pytest.fixture
def resolver(record_store: FakeRecordStore) -> LinkResolver:
    return LinkResolver(record_store, DocumentSerializer())


class TestFetch:
    """Tests for single-document fetch."""

    async def test_returns_loaded_document(self, resolver: LinkResolver) -> None:
        city = await resolver.fetch("par", City)

        assert city is not None
        assert city.name == "Paris"
        assert city.key == "par"
        assert not city.is_new

    async def test_missing_key_returns_none(self, resolver: LinkResolver) -> None:
        assert await resolver.fetch("nowhere", City) is None

    async def test_on_load_sees_every_document(self, record_store: FakeRecordStore) -> None:
        seen = []
        resolver = LinkResolver(record_store, DocumentSerializer(), on_load=seen.append)

        await resolver.fetch("par", City)
        await resolver.fetch_many(["ber", "rom"], City)

        assert [city.key for city in seen] == ["par", "ber", "rom"]


class TestFetchMany:
    """Tests for batch fetch."""

    async def test_keeps_input_order(self, resolver: LinkResolver) -> None:
        cities = await resolver.fetch_many(["rom", "par", "ber"], City)

        assert [city.name for city in cities] == ["Rome", "Paris", "Berlin"]

    async def test_skips_stale_keys(self, resolver: LinkResolver) -> None:
        cities = await resolver.fetch_many(["par", "gone", "ber"], City)

        assert [city.key for city in cities] == ["par", "ber"]

    async def test_single_round_trip(self, resolver: LinkResolver, record_store: FakeRecordStore) -> None:
        await resolver.fetch_many(["par", "ber", "rom"], City)

        assert record_store.get_many_calls == 1
        assert record_store.get_calls == 0

    async def test_empty_keys_skip_store(self, resolver: LinkResolver, record_store: FakeRecordStore) -> None:
        assert await resolver.fetch_many([], City) == []
        assert record_store.get_many_calls == 0


class TestLinkedKeys:
    """Tests for reading link metadata."""

    async def test_reads_links_in_order(self, resolver: LinkResolver, record_store: FakeRecordStore) -> None:
        record_store.links[("citys", "par", "twins")] = ["rom", "ber"]
        paris = await resolver.fetch("par", City)

        assert await resolver.linked_keys(paris, "twins") == ["rom", "ber"]

    async def test_new_owner_has_no_links(self, resolver: LinkResolver) -> None:
        assert await resolver.linked_keys(City(name="Nowhere"), "twins") == []
