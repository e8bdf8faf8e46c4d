"""Base extractor interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional
import logging
import re

from ..errors import EnumerationError, MigrationError
from ..models.migration import AccountConfig, MigrationConfig
from ..models.resource import ComparableRecord, ResourceSnapshot, ResourceType

logger = logging.getLogger(__name__)


@dataclass
class Page:
    """One page of an item-level listing."""
    items: List[ComparableRecord] = field(default_factory=list)
    next_cursor: Any = None  # Opaque; None marks the terminal page

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None


@dataclass
class ResourceFilter:
    """
    Name filters applied to every listing.

    The container filter and exclude patterns match case-insensitively;
    the blob prefix is case-sensitive.

    The same filter is applied on both sides of a reconciliation, so a
    destination resource hidden by it is never planned for deletion.
    """
    container_filter: str = ""
    blob_prefix: str = ""
    exclude_patterns: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: Optional[MigrationConfig]) -> "ResourceFilter":
        if config is None:
            return cls()
        return cls(
            container_filter=config.container_filter,
            blob_prefix=config.blob_prefix,
            exclude_patterns=list(config.exclude_patterns),
        )

    def matches(self, record: ComparableRecord) -> bool:
        if record.resource_type in (ResourceType.DOCUMENT, ResourceType.QUEUE_MESSAGE):
            return True

        name = getattr(record, "name", str(record.key))

        if record.resource_type == ResourceType.BLOB_CONTAINER and self.container_filter:
            if not re.search(self.container_filter, name, re.IGNORECASE):
                return False

        if record.resource_type == ResourceType.BLOB and self.blob_prefix:
            if not name.startswith(self.blob_prefix):
                return False

        return not any(re.search(pattern, name, re.IGNORECASE) for pattern in self.exclude_patterns)

    def apply(self, records: List[ComparableRecord]) -> List[ComparableRecord]:
        return [r for r in records if self.matches(r)]


class BaseExtractor(ABC):
    """
    Base class for the read side of a storage account.

    Extractors list metadata-level resources in full and read item-level
    collections one page at a time. Subclasses implement the raw fetches;
    this class applies the configured filters and turns failures into
    EnumerationError.
    """

    def __init__(
        self,
        account: AccountConfig,
        config: Optional[MigrationConfig] = None,
        database_name: Optional[str] = None
    ):
        """
        Initialize the extractor.

        Args:
            account: Account to read from
            config: Migration configuration (filters)
            database_name: Document database holding containers and documents
        """
        self.account = account
        self.config = config
        self.database_name = database_name or (config.database_name if config else None)
        self.filter = ResourceFilter.from_config(config)

    @abstractmethod
    async def fetch_records(self, resource_type: ResourceType, scope: Optional[str] = None) -> List[ComparableRecord]:
        """
        Fetch the complete, unfiltered listing of a resource type.

        Args:
            resource_type: Type of resource to list
            scope: Parent container for item-level resources

        Returns:
            List of records
        """
        pass

    @abstractmethod
    async def fetch_page(
        self,
        resource_type: ResourceType,
        scope: Optional[str],
        cursor: Any,
        page_size: int
    ) -> Page:
        """
        Fetch one unfiltered page of an item-level collection.

        Args:
            resource_type: Item-level resource type
            scope: Parent container
            cursor: Cursor returned with the previous page, None for the first
            page_size: Maximum items per page

        Returns:
            Page with items and the next cursor
        """
        pass

    async def list_records(self, resource_type: ResourceType, scope: Optional[str] = None) -> List[ComparableRecord]:
        """List a resource type with filters applied."""
        try:
            records = await self.fetch_records(resource_type, scope)
        except MigrationError:
            raise
        except Exception as e:
            raise EnumerationError(
                f"Failed to list {resource_type.label}s: {e}",
                resource_type=resource_type.value,
                account=self.account.label,
            ) from e
        return self.filter.apply(records)

    async def snapshot(self, resource_type: ResourceType, scope: Optional[str] = None) -> ResourceSnapshot:
        """Capture an immutable snapshot of a resource type."""
        records = await self.list_records(resource_type, scope)
        snapshot = ResourceSnapshot(resource_type, records, account=self.account.label, scope=scope)
        logger.debug(f"Snapshot of {len(snapshot)} {resource_type.label}s from {self.account.label}")
        return snapshot

    async def read_page(
        self,
        resource_type: ResourceType,
        scope: Optional[str],
        cursor: Any,
        page_size: int
    ) -> Page:
        """Read one page with filters applied; the cursor is passed through untouched."""
        try:
            page = await self.fetch_page(resource_type, scope, cursor, page_size)
        except MigrationError:
            raise
        except Exception as e:
            raise EnumerationError(
                f"Failed to read {resource_type.label}s in {scope}: {e}",
                resource_type=resource_type.value,
                account=self.account.label,
            ) from e
        return Page(items=self.filter.apply(page.items), next_cursor=page.next_cursor)
