"""Unit tests for the CascadeSaveEngine service."""

import pytest
from pydantic import Field

from docmapper.exceptions import KeyConflict, StoreFailure, ValidationFailed
from docmapper.models import Document, EmbeddedDocument, many, one
from docmapper.services.cascade import CascadeResult, CascadeSaveEngine
from docmapper.services.keys import KeyDeriver
from docmapper.services.mapper import DocumentMapper
from docmapper.services.serializer import DocumentSerializer


class FakeKeyValueStore:
    """In-memory fake KeyValueStore that records writes and can fail on demand."""

    def __init__(self) -> None:
        self.values: dict[tuple[str, str], bytes] = {}
        self.links: dict[tuple[str, str, str], list[str]] = {}
        self.puts: list[tuple[str, str]] = []
        self.fail_puts_for: set[str] = set()
        self._counter = 0

    async def initialize_schema(self) -> None:
        pass

    async def get(self, bucket: str, key: str) -> bytes | None:
        return self.values.get((bucket, key))

    async def get_many(self, bucket: str, keys: list[str]) -> dict[str, bytes]:
        return {key: self.values[(bucket, key)] for key in keys if (bucket, key) in self.values}

    async def put(self, bucket: str, key: str, value: bytes) -> None:
        if bucket in self.fail_puts_for:
            raise StoreFailure("put", bucket, key, reason="injected")
        self.puts.append((bucket, key))
        self.values[(bucket, key)] = value

    async def delete(self, bucket: str, key: str) -> bool:
        for link in [link for link in self.links if link[:2] == (bucket, key)]:
            del self.links[link]
        return self.values.pop((bucket, key), None) is not None

    async def generate_key(self, bucket: str) -> str:
        self._counter += 1
        return f"{bucket}-{self._counter}"

    async def set_links(self, bucket: str, key: str, tag: str, targets: list[str]) -> None:
        self.links[(bucket, key, tag)] = list(targets)

    async def get_links(self, bucket: str, key: str, tag: str) -> list[str]:
        return list(self.links.get((bucket, key, tag), []))

    async def keys(self, bucket: str) -> list[str]:
        return sorted(key for stored_bucket, key in self.values if stored_bucket == bucket)

    async def close(self) -> None:
        pass


class Address(EmbeddedDocument):
    street: str


class Passport(Document):
    number: str = ""


class Traveller(Document):
    name: str
    tags: list[str] = Field(default_factory=list, max_length=2)
    home_key: str | None = None
    address = one("Address")
    passport = one("Passport", using="shared_key")
    home = one("City", using="stored_key")
    companions = many("Traveller")


class City(Document):
    name: str


@pytest.fixture
def fake_store() -> FakeKeyValueStore:
    return FakeKeyValueStore()


@pytest.fixture
def mapper(fake_store: FakeKeyValueStore) -> DocumentMapper:
    return DocumentMapper(store=fake_store)


def _make_traveller(name: str = "ada", **data) -> Traveller:
    return Traveller(name=name, **data)


class TestCascadeWrites:
    """Tests for what a cascade writes."""

    async def test_new_document_gets_key_and_is_written(
        self, mapper: DocumentMapper, fake_store: FakeKeyValueStore
    ) -> None:
        traveller = _make_traveller()

        await mapper.save(traveller)

        assert traveller.key == "travellers-1"
        assert not traveller.is_new
        assert fake_store.puts == [("travellers", "travellers-1")]

    async def test_new_targets_are_written_after_owner(
        self, mapper: DocumentMapper, fake_store: FakeKeyValueStore
    ) -> None:
        traveller = _make_traveller()
        friend = _make_traveller("bob")
        traveller.companions.append(friend)

        await mapper.save(traveller)

        assert fake_store.puts == [("travellers", traveller.key), ("travellers", friend.key)]
        assert fake_store.links[("travellers", traveller.key, "companions")] == [friend.key]

    async def test_result_counts_writes(self, mapper: DocumentMapper) -> None:
        traveller = _make_traveller()
        traveller.companions.append(_make_traveller("bob"))

        await mapper.save(traveller)

        assert isinstance(mapper.last_result, CascadeResult)
        assert len(mapper.last_result.written) == 2
        assert mapper.last_result.links_written == 1

    async def test_second_save_writes_only_owner(
        self, mapper: DocumentMapper, fake_store: FakeKeyValueStore
    ) -> None:
        traveller = _make_traveller()
        traveller.companions.append(_make_traveller("bob"))
        await mapper.save(traveller)
        fake_store.puts.clear()

        await mapper.save(traveller)

        assert fake_store.puts == [("travellers", traveller.key)]
        assert mapper.last_result.links_written == 0

    async def test_changed_target_is_written(self, mapper: DocumentMapper, fake_store: FakeKeyValueStore) -> None:
        traveller = _make_traveller()
        friend = _make_traveller("bob")
        traveller.companions.append(friend)
        await mapper.save(traveller)
        fake_store.puts.clear()

        friend.name = "robert"
        traveller.companions.append(_make_traveller("carol"))
        await mapper.save(traveller)

        assert ("travellers", friend.key) in fake_store.puts
        assert len(fake_store.puts) == 3

    async def test_shared_key_target(self, mapper: DocumentMapper, fake_store: FakeKeyValueStore) -> None:
        traveller = _make_traveller()
        passport = Passport(number="X1")
        traveller.passport = passport

        await mapper.save(traveller)

        assert passport.key == traveller.key
        assert ("passports", traveller.key) in fake_store.puts

    async def test_stored_key_written_with_owner(self, mapper: DocumentMapper, fake_store: FakeKeyValueStore) -> None:
        traveller = _make_traveller()
        city = City(name="Paris")
        traveller.home = city

        await mapper.save(traveller)

        assert traveller.home_key == city.key == "citys-2"
        assert fake_store.links == {}

    async def test_embedded_written_inline(self, mapper: DocumentMapper, fake_store: FakeKeyValueStore) -> None:
        traveller = _make_traveller()
        traveller.address = Address(street="Main")

        await mapper.save(traveller)

        assert fake_store.puts == [("travellers", traveller.key)]
        assert b'"street":"Main"' in fake_store.values[("travellers", traveller.key)]

    async def test_cycle_is_saved_once(self, mapper: DocumentMapper, fake_store: FakeKeyValueStore) -> None:
        ada = _make_traveller("ada")
        bob = _make_traveller("bob")
        ada.companions.append(bob)
        bob.companions.append(ada)

        await mapper.save(ada)

        assert sorted(fake_store.puts) == sorted([("travellers", ada.key), ("travellers", bob.key)])
        assert fake_store.links[("travellers", ada.key, "companions")] == [bob.key]
        assert fake_store.links[("travellers", bob.key, "companions")] == [ada.key]
        assert mapper.last_result.cycles_skipped == 0

    async def test_self_reference(self, mapper: DocumentMapper, fake_store: FakeKeyValueStore) -> None:
        ada = _make_traveller()
        ada.companions.append(ada)

        await mapper.save(ada)

        assert fake_store.puts == [("travellers", ada.key)]
        assert fake_store.links[("travellers", ada.key, "companions")] == [ada.key]


class TestCascadeFailures:
    """Tests for aborted cascades."""

    async def test_invalid_owner_writes_nothing(self, mapper: DocumentMapper, fake_store: FakeKeyValueStore) -> None:
        traveller = _make_traveller(tags=["a", "b"])
        traveller.tags.append("c")

        with pytest.raises(ValidationFailed) as exc_info:
            await mapper.save(traveller)

        assert exc_info.value.document is traveller
        assert fake_store.puts == []
        assert traveller.is_new

    async def test_invalid_target_writes_nothing(self, mapper: DocumentMapper, fake_store: FakeKeyValueStore) -> None:
        traveller = _make_traveller()
        friend = _make_traveller("bob", tags=["a", "b"])
        friend.tags.append("c")
        traveller.companions.append(friend)

        with pytest.raises(ValidationFailed) as exc_info:
            await mapper.save(traveller)

        assert exc_info.value.document is friend
        assert fake_store.puts == []

    async def test_key_conflict_writes_nothing(self, mapper: DocumentMapper, fake_store: FakeKeyValueStore) -> None:
        traveller = _make_traveller()
        traveller.key = "ada"
        passport = Passport()
        passport.key = "other"
        traveller.passport = passport

        with pytest.raises(KeyConflict):
            await mapper.save(traveller)

        assert fake_store.puts == []

    async def test_store_failure_keeps_earlier_writes(
        self, mapper: DocumentMapper, fake_store: FakeKeyValueStore
    ) -> None:
        traveller = _make_traveller()
        traveller.passport = Passport()
        fake_store.fail_puts_for.add("passports")

        with pytest.raises(StoreFailure):
            await mapper.save(traveller)

        assert fake_store.puts == [("travellers", traveller.key)]
        assert not traveller.is_new


class TestCascadeEngine:
    """Tests for the engine used without a mapper."""

    async def test_visited_documents_are_passed_to_callback(self, fake_store: FakeKeyValueStore) -> None:
        visited = []
        engine = CascadeSaveEngine(
            fake_store,
            DocumentSerializer(),
            KeyDeriver(fake_store),
            on_visit=visited.append,
        )
        traveller = _make_traveller()
        friend = _make_traveller("bob")
        traveller.companions.append(friend)

        result = await engine.save(traveller)

        assert visited == [traveller, friend]
        assert result.written == [f"travellers/{traveller.key}", f"travellers/{friend.key}"]
