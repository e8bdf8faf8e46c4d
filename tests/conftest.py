"""Pytest configuration and shared fixtures for storage migration tests."""

from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

import pytest

from storemigrate.extractors.base import BaseExtractor, Page
from storemigrate.loaders.base import BaseLoader, target_record
from storemigrate.models.migration import AccountConfig, MigrationConfig
from storemigrate.models.record import ApplyResult, TransferItem
from storemigrate.models.resource import (
    BlobContainerRecord,
    BlobRecord,
    ComparableRecord,
    QueueRecord,
    ResourceType,
)


class InMemoryStore:
    """Resources of one account, keyed by (type, scope) then record key."""

    def __init__(self, records: Iterable[ComparableRecord] = ()):
        self.collections: Dict[Tuple[ResourceType, Optional[str]], Dict[Hashable, ComparableRecord]] = {}
        self.add(*records)

    @staticmethod
    def _scope(record: ComparableRecord) -> Optional[str]:
        return record.scope

    def add(self, *records: ComparableRecord) -> "InMemoryStore":
        for record in records:
            collection = self.collections.setdefault((record.resource_type, self._scope(record)), {})
            collection[record.key] = record
        return self

    def remove(self, record: ComparableRecord) -> None:
        self.collections.get((record.resource_type, self._scope(record)), {}).pop(record.key, None)

    def contains(self, record: ComparableRecord) -> bool:
        return record.key in self.collections.get((record.resource_type, self._scope(record)), {})

    def records(self, resource_type: ResourceType, scope: Optional[str] = None) -> List[ComparableRecord]:
        collection = self.collections.get((resource_type, scope), {})
        return [collection[k] for k in sorted(collection, key=str)]


class FakeExtractor(BaseExtractor):
    """
    Reads an InMemoryStore; listings of ``failing`` types raise.

    Paged reads also raise once they reach ``fail_at_cursor``.
    """

    def __init__(
        self,
        store: InMemoryStore,
        config: Optional[MigrationConfig] = None,
        name: str = "fake",
        failing: Iterable[ResourceType] = (),
        fail_at_cursor: Any = None
    ):
        super().__init__(AccountConfig(name=name, base_url=f"http://{name}", api_key="key"), config)
        self.store = store
        self.failing = set(failing)
        self.fail_at_cursor = fail_at_cursor
        self.cursors: List[Any] = []

    async def fetch_records(self, resource_type, scope=None):
        if resource_type in self.failing:
            raise RuntimeError("listing unavailable")
        return self.store.records(resource_type, scope)

    async def fetch_page(self, resource_type, scope, cursor, page_size):
        if resource_type in self.failing:
            raise RuntimeError("listing unavailable")
        self.cursors.append(cursor)
        if self.fail_at_cursor is not None and cursor == self.fail_at_cursor:
            raise RuntimeError("page unavailable")
        records = self.store.records(resource_type, scope)
        offset = cursor or 0
        end = offset + page_size
        return Page(items=records[offset:end], next_cursor=end if end < len(records) else None)


class FakeLoader(BaseLoader):
    """
    Writes an InMemoryStore.

    ``script`` maps a record key to results returned, one per call,
    before falling back to the default in-memory behavior.
    """

    def __init__(self, store: InMemoryStore, config: Optional[MigrationConfig] = None, **kwargs):
        super().__init__(AccountConfig(name="fake-destination", base_url="http://dest", api_key="key"), config, **kwargs)
        self.store = store
        self.script: Dict[Hashable, List[ApplyResult]] = {}
        self.calls: List[Tuple[str, Hashable]] = []
        self.exists_calls: List[Hashable] = []
        self.missing_on_check: set = set()

    def _scripted(self, item: TransferItem) -> Optional[ApplyResult]:
        queue = self.script.get(item.key)
        if queue:
            return queue.pop(0)
        return None

    async def exists(self, item):
        self.exists_calls.append(item.key)
        if item.key in self.missing_on_check:
            return False
        return self.store.contains(target_record(item))

    async def create(self, item):
        self.calls.append(("create", item.key))
        scripted = self._scripted(item)
        if scripted is not None:
            return scripted
        record = target_record(item)
        if self.store.contains(record):
            return ApplyResult.terminal("Resource already exists", status_code=409, conflict=True)
        self.store.add(record)
        return ApplyResult.ok(status_code=201)

    async def update(self, item):
        self.calls.append(("update", item.key))
        scripted = self._scripted(item)
        if scripted is not None:
            return scripted
        self.store.add(target_record(item))
        return ApplyResult.ok(status_code=200)

    async def delete(self, item):
        self.calls.append(("delete", item.key))
        scripted = self._scripted(item)
        if scripted is not None:
            return scripted
        self.store.remove(target_record(item))
        return ApplyResult.ok(status_code=204)


class RecordingSleep:
    """Sleep replacement that records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def queue(name: str, **metadata) -> QueueRecord:
    return QueueRecord(name=name, metadata=dict(metadata))


def container(name: str, **metadata) -> BlobContainerRecord:
    return BlobContainerRecord(name=name, metadata=dict(metadata))


def blob(container_name: str, name: str, **metadata) -> BlobRecord:
    return BlobRecord(container=container_name, name=name, metadata=dict(metadata), content_length=10)


@pytest.fixture
def config() -> MigrationConfig:
    return MigrationConfig(
        name="test-migration",
        source=AccountConfig(name="source", base_url="http://source", api_key="source-key"),
        destination=AccountConfig(name="destination", base_url="http://destination", api_key="dest-key"),
        include_blobs=True,
        include_queues=True,
        batch_size=3,
        page_size=2,
    )


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def source_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def destination_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture(autouse=True)
def clean_store_env(monkeypatch):
    """Keep credentials from the developer's environment out of the tests."""
    for name in (
        "SOURCE_STORE_URL",
        "SOURCE_STORE_KEY",
        "DESTINATION_STORE_URL",
        "DESTINATION_STORE_KEY",
        "STORE_DATABASE_NAME",
        "INCLUDE_QUEUES",
        "INCLUDE_DATABASE",
        "INCLUDE_DATA",
        "INCLUDE_MESSAGES",
        "SKIP_EXISTING",
        "OVERWRITE",
        "BATCH_SIZE",
        "MAX_RETRIES",
        "CONTAINER_FILTER",
        "BLOB_PREFIX",
        "EXCLUDE_PATTERNS",
    ):
        monkeypatch.delenv(name, raising=False)
