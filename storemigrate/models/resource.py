"""Resource records and snapshots compared during reconciliation."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Dict, Hashable, Iterable, Iterator, List, Optional, Tuple

from ..errors import DuplicateKeyError


# Properties managed by the document service; never copied to the destination.
SYSTEM_PROPERTIES = ("_rid", "_self", "_etag", "_attachments", "_ts")


class ResourceType(str, Enum):
    """Kinds of resources held by a storage account."""
    BLOB_CONTAINER = "blob_container"
    BLOB = "blob"
    QUEUE = "queue"
    QUEUE_MESSAGE = "queue_message"
    DATABASE_CONTAINER = "database_container"
    DOCUMENT = "document"

    @property
    def is_item_level(self) -> bool:
        """Item collections are paged through instead of snapshot-diffed."""
        return self in (ResourceType.BLOB, ResourceType.DOCUMENT, ResourceType.QUEUE_MESSAGE)

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class AccessLevel(str, Enum):
    """Public access level of a blob container."""
    NONE = "none"
    BLOB = "blob"
    CONTAINER = "container"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AccessLevel":
        if not value or str(value).lower() == "private":
            return cls.NONE
        return cls(str(value).lower())


class DifferenceType(str, Enum):
    """How a property differs between source and destination."""
    MISSING_IN_DESTINATION = "missing_in_destination"
    EXTRA_IN_DESTINATION = "extra_in_destination"
    VALUE_DIFFERENCE = "value_difference"


@dataclass(frozen=True)
class PropertyDifference:
    """A single comparison-relevant difference between two records."""
    property: str
    kind: DifferenceType
    key: Optional[str] = None  # Sub-key for mapping properties such as metadata
    source_value: Any = None
    destination_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "property": self.property,
            "kind": self.kind.value,
            "key": self.key,
            "source_value": self.source_value,
            "destination_value": self.destination_value,
        }

    def describe(self) -> str:
        name = f"{self.property}.{self.key}" if self.key else self.property
        if self.kind == DifferenceType.MISSING_IN_DESTINATION:
            return f"{name}: missing in destination (source={self.source_value!r})"
        if self.kind == DifferenceType.EXTRA_IN_DESTINATION:
            return f"{name}: extra in destination (destination={self.destination_value!r})"
        return f"{name}: {self.destination_value!r} -> {self.source_value!r}"


def compare_metadata(
    source: Optional[Dict[str, Any]],
    destination: Optional[Dict[str, Any]],
    property_name: str = "metadata"
) -> List[PropertyDifference]:
    """
    Symmetric key-set diff of two metadata mappings.

    Every key missing on either side, and every key whose values differ,
    is reported as its own difference.

    Args:
        source: Metadata on the source side
        destination: Metadata on the destination side
        property_name: Name reported on each difference

    Returns:
        List of PropertyDifference, ordered by metadata key
    """
    source = source or {}
    destination = destination or {}
    differences = []

    for key in sorted(set(source) | set(destination)):
        if key not in destination:
            differences.append(PropertyDifference(
                property=property_name,
                kind=DifferenceType.MISSING_IN_DESTINATION,
                key=key,
                source_value=source[key],
            ))
        elif key not in source:
            differences.append(PropertyDifference(
                property=property_name,
                kind=DifferenceType.EXTRA_IN_DESTINATION,
                key=key,
                destination_value=destination[key],
            ))
        elif source[key] != destination[key]:
            differences.append(PropertyDifference(
                property=property_name,
                kind=DifferenceType.VALUE_DIFFERENCE,
                key=key,
                source_value=source[key],
                destination_value=destination[key],
            ))

    return differences


def compare_values(property_name: str, source: Any, destination: Any) -> List[PropertyDifference]:
    """Report a single value difference, or nothing when equal."""
    if source == destination:
        return []
    return [PropertyDifference(
        property=property_name,
        kind=DifferenceType.VALUE_DIFFERENCE,
        source_value=source,
        destination_value=destination,
    )]


class ComparableRecord(ABC):
    """
    Capability shared by every resource record.

    Each resource type has its own record shape and knows which of its
    properties are relevant when deciding whether an update is needed.
    """

    resource_type: ClassVar[ResourceType]

    @property
    @abstractmethod
    def key(self) -> Hashable:
        """Unique key of the record within one snapshot."""

    @abstractmethod
    def compare(self, other: "ComparableRecord", include_metadata: bool = True) -> List[PropertyDifference]:
        """Return the comparison-relevant differences to another record of the same type."""

    @abstractmethod
    def to_payload(self) -> Dict[str, Any]:
        """Body written to the destination store."""

    @property
    def display_name(self) -> str:
        return str(self.key)

    @property
    def scope(self) -> Optional[str]:
        """Parent container of an item-level record, None for top-level resources."""
        return None


@dataclass(frozen=True)
class BlobContainerRecord(ComparableRecord):
    """A blob container and its access configuration."""
    resource_type: ClassVar[ResourceType] = ResourceType.BLOB_CONTAINER

    name: str
    public_access: AccessLevel = AccessLevel.NONE
    metadata: Dict[str, str] = field(default_factory=dict)
    has_immutability_policy: bool = False
    has_legal_hold: bool = False
    last_modified: Optional[datetime] = None  # Informational only

    @property
    def key(self) -> str:
        return self.name

    def compare(self, other: "BlobContainerRecord", include_metadata: bool = True) -> List[PropertyDifference]:
        differences = compare_values("public_access", self.public_access, other.public_access)
        if include_metadata:
            differences.extend(compare_metadata(self.metadata, other.metadata))
        return differences

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "public_access": self.public_access.value,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], scope: Optional[str] = None) -> "BlobContainerRecord":
        last_modified = data.get("last_modified")
        if isinstance(last_modified, str):
            last_modified = datetime.fromisoformat(last_modified.replace("Z", "+00:00"))
        return cls(
            name=data["name"],
            public_access=AccessLevel.parse(data.get("public_access")),
            metadata=dict(data.get("metadata") or {}),
            has_immutability_policy=bool(data.get("has_immutability_policy", False)),
            has_legal_hold=bool(data.get("has_legal_hold", False)),
            last_modified=last_modified,
        )


@dataclass(frozen=True)
class QueueRecord(ComparableRecord):
    """A storage queue; only its metadata is compared."""
    resource_type: ClassVar[ResourceType] = ResourceType.QUEUE

    name: str
    metadata: Dict[str, str] = field(default_factory=dict)
    approximate_message_count: int = 0

    @property
    def key(self) -> str:
        return self.name

    def compare(self, other: "QueueRecord", include_metadata: bool = True) -> List[PropertyDifference]:
        if not include_metadata:
            return []
        return compare_metadata(self.metadata, other.metadata)

    def to_payload(self) -> Dict[str, Any]:
        return {"name": self.name, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], scope: Optional[str] = None) -> "QueueRecord":
        return cls(
            name=data["name"],
            metadata=dict(data.get("metadata") or {}),
            approximate_message_count=int(data.get("approximate_message_count") or 0),
        )


@dataclass(frozen=True)
class DatabaseContainerRecord(ComparableRecord):
    """Schema of a document-database container."""
    resource_type: ClassVar[ResourceType] = ResourceType.DATABASE_CONTAINER

    COMPARED_FIELDS: ClassVar[Tuple[str, ...]] = (
        "partition_key_path",
        "partition_key_kind",
        "throughput",
        "default_ttl",
        "analytical_storage_ttl",
        "indexing_policy",
        "unique_key_policy",
        "conflict_resolution_policy",
    )

    name: str
    partition_key_path: str = "/id"
    partition_key_kind: str = "Hash"
    throughput: Optional[int] = None
    default_ttl: Optional[int] = None
    analytical_storage_ttl: Optional[int] = None
    indexing_policy: Optional[Dict[str, Any]] = None
    unique_key_policy: Optional[Dict[str, Any]] = None
    conflict_resolution_policy: Optional[Dict[str, Any]] = None

    @property
    def key(self) -> str:
        return self.name

    def compare(self, other: "DatabaseContainerRecord", include_metadata: bool = True) -> List[PropertyDifference]:
        differences = []
        for name in self.COMPARED_FIELDS:
            differences.extend(compare_values(name, getattr(self, name), getattr(other, name)))
        return differences

    def to_payload(self) -> Dict[str, Any]:
        payload = {"name": self.name}
        for name in self.COMPARED_FIELDS:
            payload[name] = getattr(self, name)
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any], scope: Optional[str] = None) -> "DatabaseContainerRecord":
        return cls(
            name=data.get("name") or data["id"],
            partition_key_path=data.get("partition_key_path") or "/id",
            partition_key_kind=data.get("partition_key_kind") or "Hash",
            throughput=data.get("throughput"),
            default_ttl=data.get("default_ttl"),
            analytical_storage_ttl=data.get("analytical_storage_ttl"),
            indexing_policy=data.get("indexing_policy"),
            unique_key_policy=data.get("unique_key_policy"),
            conflict_resolution_policy=data.get("conflict_resolution_policy"),
        )


@dataclass(frozen=True)
class BlobRecord(ComparableRecord):
    """A blob inside a container."""
    resource_type: ClassVar[ResourceType] = ResourceType.BLOB

    container: str
    name: str
    metadata: Dict[str, str] = field(default_factory=dict)
    access_tier: Optional[str] = None
    content_length: int = 0
    content_type: Optional[str] = None

    @property
    def key(self) -> str:
        return self.name

    @property
    def display_name(self) -> str:
        return f"{self.container}/{self.name}"

    @property
    def scope(self) -> str:
        return self.container

    def compare(self, other: "BlobRecord", include_metadata: bool = True) -> List[PropertyDifference]:
        differences = compare_values("access_tier", self.access_tier, other.access_tier)
        differences.extend(compare_values("content_length", self.content_length, other.content_length))
        if include_metadata:
            differences.extend(compare_metadata(self.metadata, other.metadata))
        return differences

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "metadata": dict(self.metadata),
            "access_tier": self.access_tier,
            "content_length": self.content_length,
            "content_type": self.content_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], scope: Optional[str] = None) -> "BlobRecord":
        return cls(
            container=data.get("container") or scope or "",
            name=data["name"],
            metadata=dict(data.get("metadata") or {}),
            access_tier=data.get("access_tier"),
            content_length=int(data.get("content_length") or 0),
            content_type=data.get("content_type"),
        )


@dataclass(frozen=True)
class DocumentRecord(ComparableRecord):
    """A document inside a database container."""
    resource_type: ClassVar[ResourceType] = ResourceType.DOCUMENT

    container: str
    id: str
    partition_key: Any = None
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, Any]:
        return (self.id, self.partition_key)

    @property
    def display_name(self) -> str:
        return f"Document {self.id} in {self.container}"

    @property
    def scope(self) -> str:
        return self.container

    def compare(self, other: "DocumentRecord", include_metadata: bool = True) -> List[PropertyDifference]:
        return compare_values("body", self.to_payload(), other.to_payload())

    def to_payload(self) -> Dict[str, Any]:
        return clean_document(self.body)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], scope: Optional[str] = None) -> "DocumentRecord":
        return cls(
            container=scope or "",
            id=str(data["id"]),
            partition_key=data.get("_partitionKey", data["id"]),
            body=dict(data),
        )


@dataclass(frozen=True)
class QueueMessageRecord(ComparableRecord):
    """
    A message waiting in a queue.

    Messages are appended to the destination queue by content; the
    destination assigns its own message ids.
    """
    resource_type: ClassVar[ResourceType] = ResourceType.QUEUE_MESSAGE

    queue: str
    id: str
    content: str = ""
    dequeue_count: int = 0

    @property
    def key(self) -> str:
        return self.id

    @property
    def display_name(self) -> str:
        return f"{self.queue}/{self.id}"

    @property
    def scope(self) -> str:
        return self.queue

    def compare(self, other: "QueueMessageRecord", include_metadata: bool = True) -> List[PropertyDifference]:
        return compare_values("content", self.content, other.content)

    def to_payload(self) -> Dict[str, Any]:
        return {"content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], scope: Optional[str] = None) -> "QueueMessageRecord":
        return cls(
            queue=data.get("queue") or scope or "",
            id=str(data["id"]),
            content=data.get("content") or "",
            dequeue_count=int(data.get("dequeue_count") or 0),
        )


def clean_document(document: Dict[str, Any]) -> Dict[str, Any]:
    """Drop service-managed system properties from a document body."""
    return {k: v for k, v in document.items() if k not in SYSTEM_PROPERTIES}


RECORD_TYPES = {
    ResourceType.BLOB_CONTAINER: BlobContainerRecord,
    ResourceType.BLOB: BlobRecord,
    ResourceType.QUEUE: QueueRecord,
    ResourceType.QUEUE_MESSAGE: QueueMessageRecord,
    ResourceType.DATABASE_CONTAINER: DatabaseContainerRecord,
    ResourceType.DOCUMENT: DocumentRecord,
}


def record_from_dict(
    resource_type: ResourceType,
    data: Dict[str, Any],
    scope: Optional[str] = None
) -> ComparableRecord:
    """Build the record variant for a resource type from its JSON form."""
    return RECORD_TYPES[resource_type].from_dict(data, scope=scope)


class ResourceSnapshot(Mapping):
    """
    Immutable listing of one resource type in one account.

    Maps each record key to its record. Order of the underlying listing
    is irrelevant; iteration is sorted by key for stable reports.
    """

    def __init__(
        self,
        resource_type: ResourceType,
        records: Iterable[ComparableRecord] = (),
        account: Optional[str] = None,
        scope: Optional[str] = None,
    ):
        self.resource_type = resource_type
        self.account = account
        self.scope = scope

        by_key: Dict[Hashable, ComparableRecord] = {}
        for record in records:
            if record.key in by_key:
                raise DuplicateKeyError(resource_type.value, record.key)
            by_key[record.key] = record
        self._records = MappingProxyType(by_key)

    def __getitem__(self, key: Hashable) -> ComparableRecord:
        return self._records[key]

    def __iter__(self) -> Iterator[Hashable]:
        return iter(sorted(self._records, key=str))

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"ResourceSnapshot({self.resource_type.value}, {len(self)} records, account={self.account!r})"

    def names(self) -> List[str]:
        return [self._records[k].display_name for k in self]
