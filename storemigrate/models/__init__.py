"""Data models for the migration application."""

from .resource import (
    ResourceType,
    AccessLevel,
    DifferenceType,
    PropertyDifference,
    ComparableRecord,
    BlobContainerRecord,
    QueueRecord,
    DatabaseContainerRecord,
    BlobRecord,
    DocumentRecord,
    QueueMessageRecord,
    ResourceSnapshot,
    compare_metadata,
    record_from_dict,
)
from .plan import ActionPlan, UpdateAction
from .migration import (
    MigrationConfig,
    MigrationRun,
    MigrationStep,
    MigrationStatus,
    AccountConfig,
    AuthType,
)
from .record import (
    TransferOperation,
    TransferItem,
    ItemOutcome,
    ApplyResult,
    ApplyStatus,
    RunStatistics,
)

__all__ = [
    "ResourceType",
    "AccessLevel",
    "DifferenceType",
    "PropertyDifference",
    "ComparableRecord",
    "BlobContainerRecord",
    "QueueRecord",
    "DatabaseContainerRecord",
    "BlobRecord",
    "DocumentRecord",
    "QueueMessageRecord",
    "ResourceSnapshot",
    "compare_metadata",
    "record_from_dict",
    "ActionPlan",
    "UpdateAction",
    "MigrationConfig",
    "MigrationRun",
    "MigrationStep",
    "MigrationStatus",
    "AccountConfig",
    "AuthType",
    "TransferOperation",
    "TransferItem",
    "ItemOutcome",
    "ApplyResult",
    "ApplyStatus",
    "RunStatistics",
]
