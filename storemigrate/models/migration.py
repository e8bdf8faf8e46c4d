"""Migration configuration and run report models."""

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import uuid

from ..errors import ConfigurationError
from .record import RunStatistics
from .resource import ResourceType


class MigrationStatus(str, Enum):
    """Status of a migration run or step."""
    PENDING = "pending"
    ENUMERATING = "enumerating"
    APPLYING = "applying"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class AuthType(str, Enum):
    BEARER = "bearer"
    BASIC = "basic"
    HEADER = "header"


@dataclass
class AccountConfig:
    """Connection settings for one storage account."""
    name: str = ""
    base_url: str = ""
    api_key: Optional[str] = None
    auth_type: AuthType = AuthType.BEARER
    auth_header: str = "Authorization"
    rate_limit: float = 0.0  # Requests per second, 0 disables throttling
    timeout: float = 30.0

    @property
    def label(self) -> str:
        return self.name or self.base_url

    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (the API key is never exported)."""
        return {
            "name": self.name,
            "base_url": self.base_url,
            "auth_type": self.auth_type.value,
            "auth_header": self.auth_header,
            "rate_limit": self.rate_limit,
            "timeout": self.timeout,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccountConfig":
        return cls(
            name=data.get("name", ""),
            base_url=(data.get("base_url") or "").rstrip("/"),
            api_key=data.get("api_key"),
            auth_type=AuthType(data.get("auth_type", "bearer")),
            auth_header=data.get("auth_header", "Authorization"),
            rate_limit=float(data.get("rate_limit") or 0.0),
            timeout=float(data.get("timeout") or 30.0),
        )


@dataclass
class MigrationStep:
    """Reconciliation of one resource type, or migration of one item collection."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    resource_type: Optional[ResourceType] = None
    scope: Optional[str] = None
    status: MigrationStatus = MigrationStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    statistics: RunStatistics = field(default_factory=RunStatistics)
    plan_summary: Optional[Dict[str, Any]] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self, error_limit: Optional[int] = None) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "resource_type": self.resource_type.value if self.resource_type else None,
            "scope": self.scope,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statistics": self.statistics.to_dict(error_limit),
            "plan": self.plan_summary,
            "warnings": self.warnings,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class MigrationRun:
    """A complete migration run across resource types."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    status: MigrationStatus = MigrationStatus.PENDING
    dry_run: bool = False
    source: str = ""
    destination: str = ""

    # Timing
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    steps: List[MigrationStep] = field(default_factory=list)
    totals: RunStatistics = field(default_factory=RunStatistics)
    errors: List[str] = field(default_factory=list)  # Run-level, not tied to a step

    def to_dict(self, error_limit: Optional[int] = None) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "source": self.source,
            "destination": self.destination,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "steps": [s.to_dict(error_limit) for s in self.steps],
            "totals": self.totals.to_dict(error_limit),
            "errors": self.errors,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def success(self) -> bool:
        return self.status == MigrationStatus.COMPLETED and self.totals.failed == 0 and not self.errors

    def add_step(self, name: str, resource_type: ResourceType, scope: Optional[str] = None) -> MigrationStep:
        """Add a new step to the run."""
        step = MigrationStep(name=name, resource_type=resource_type, scope=scope)
        self.steps.append(step)
        return step

    def update_totals(self) -> None:
        """Recompute totals from steps; counters add up, errors concatenate in step order."""
        self.totals = RunStatistics.combine([s.statistics for s in self.steps])
        self.totals.errors.extend(self.errors)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MigrationConfig:
    """Configuration for a migration run."""
    name: str = "storage-migration"

    source: AccountConfig = field(default_factory=AccountConfig)
    destination: AccountConfig = field(default_factory=AccountConfig)

    # Resource selection
    include_blobs: bool = True
    include_queues: bool = False
    include_database: bool = False
    include_data: bool = False  # Documents inside database containers
    include_messages: bool = False  # Messages inside queues
    database_name: Optional[str] = None
    destination_database_name: Optional[str] = None

    # Execution options
    batch_size: int = 10
    page_size: int = 100
    max_retries: int = 3
    backoff_seconds: float = 1.0
    continue_on_error: bool = True
    skip_existing: bool = False
    overwrite: bool = False
    preserve_destination_only: bool = False
    preserve_metadata: bool = True
    preserve_access_tier: bool = True
    dry_run: bool = False
    copy_poll_interval: float = 1.0
    copy_timeout: float = 300.0  # Seconds to wait for a pending blob copy

    # Filters
    container_filter: str = ""  # Case-insensitive regex on container names
    blob_prefix: str = ""
    exclude_patterns: List[str] = field(default_factory=list)

    # Output
    output_dir: str = "./data"
    save_report: bool = False
    max_displayed_errors: int = 10

    @property
    def target_database_name(self) -> Optional[str]:
        return self.destination_database_name or self.database_name

    @property
    def resource_types(self) -> List[ResourceType]:
        """Metadata-level resource types enabled for reconciliation."""
        types = []
        if self.include_blobs:
            types.append(ResourceType.BLOB_CONTAINER)
        if self.include_queues:
            types.append(ResourceType.QUEUE)
        if self.include_database:
            types.append(ResourceType.DATABASE_CONTAINER)
        return types

    def validate(self) -> None:
        """
        Check the configuration before any enumeration.

        Raises:
            ConfigurationError: listing every problem found
        """
        errors = []

        if not self.source.is_configured():
            errors.append("Source account credentials are required (base_url and api_key)")
        if not self.destination.is_configured():
            errors.append("Destination account credentials are required (base_url and api_key)")

        if not (
            self.include_blobs or self.include_queues or self.include_messages
            or self.include_database or self.include_data
        ):
            errors.append("At least one resource type must be selected (blobs, queues, messages, database or data)")

        if (self.include_database or self.include_data) and not self.database_name:
            errors.append("database_name is required for database container or document migration")

        for option in ("batch_size", "page_size"):
            if getattr(self, option) < 1:
                errors.append(f"{option} must be a positive integer")
        if self.max_retries < 0:
            errors.append("max_retries cannot be negative")
        if self.backoff_seconds < 0:
            errors.append("backoff_seconds cannot be negative")
        if self.copy_poll_interval < 0 or self.copy_timeout < 0:
            errors.append("copy_poll_interval and copy_timeout cannot be negative")

        for pattern in [self.container_filter, *self.exclude_patterns]:
            if not pattern:
                continue
            try:
                re.compile(pattern)
            except re.error as e:
                errors.append(f"Invalid pattern {pattern!r}: {e}")

        if errors:
            raise ConfigurationError(errors)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "source": self.source.to_dict(),
            "destination": self.destination.to_dict(),
            "include_blobs": self.include_blobs,
            "include_queues": self.include_queues,
            "include_database": self.include_database,
            "include_data": self.include_data,
            "include_messages": self.include_messages,
            "database_name": self.database_name,
            "destination_database_name": self.destination_database_name,
            "batch_size": self.batch_size,
            "page_size": self.page_size,
            "max_retries": self.max_retries,
            "backoff_seconds": self.backoff_seconds,
            "continue_on_error": self.continue_on_error,
            "skip_existing": self.skip_existing,
            "overwrite": self.overwrite,
            "preserve_destination_only": self.preserve_destination_only,
            "preserve_metadata": self.preserve_metadata,
            "preserve_access_tier": self.preserve_access_tier,
            "dry_run": self.dry_run,
            "copy_poll_interval": self.copy_poll_interval,
            "copy_timeout": self.copy_timeout,
            "container_filter": self.container_filter,
            "blob_prefix": self.blob_prefix,
            "exclude_patterns": self.exclude_patterns,
            "output_dir": self.output_dir,
            "save_report": self.save_report,
            "max_displayed_errors": self.max_displayed_errors,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        exclude_patterns = data.get("exclude_patterns", [])
        if isinstance(exclude_patterns, str):
            exclude_patterns = [p.strip() for p in exclude_patterns.split(",") if p.strip()]

        return cls(
            name=data.get("name", "storage-migration"),
            source=AccountConfig.from_dict(data.get("source", {})),
            destination=AccountConfig.from_dict(data.get("destination", {})),
            include_blobs=data.get("include_blobs", True),
            include_queues=data.get("include_queues", False),
            include_database=data.get("include_database", False),
            include_data=data.get("include_data", False),
            include_messages=data.get("include_messages", False),
            database_name=data.get("database_name"),
            destination_database_name=data.get("destination_database_name"),
            batch_size=int(data.get("batch_size", 10)),
            page_size=int(data.get("page_size", 100)),
            max_retries=int(data.get("max_retries", 3)),
            backoff_seconds=float(data.get("backoff_seconds", 1.0)),
            continue_on_error=data.get("continue_on_error", True),
            skip_existing=data.get("skip_existing", False),
            overwrite=data.get("overwrite", False),
            preserve_destination_only=data.get("preserve_destination_only", False),
            preserve_metadata=data.get("preserve_metadata", True),
            preserve_access_tier=data.get("preserve_access_tier", True),
            dry_run=data.get("dry_run", False),
            copy_poll_interval=float(data.get("copy_poll_interval", 1.0)),
            copy_timeout=float(data.get("copy_timeout", 300.0)),
            container_filter=data.get("container_filter", ""),
            blob_prefix=data.get("blob_prefix", ""),
            exclude_patterns=list(exclude_patterns),
            output_dir=data.get("output_dir", "./data"),
            save_report=data.get("save_report", False),
            max_displayed_errors=int(data.get("max_displayed_errors", 10)),
        )

    @classmethod
    def from_env(cls) -> "MigrationConfig":
        """Create a configuration from environment variables only."""
        return cls().merged_with_env()

    def merged_with_env(self) -> "MigrationConfig":
        """
        Apply environment variables to the configuration.

        Credentials and the database name are only filled when unset.
        Toggles, numeric options and filters present in the environment
        override the configured values.
        """
        env = os.environ
        self.source.base_url = self.source.base_url or env.get("SOURCE_STORE_URL", "").rstrip("/")
        self.source.api_key = self.source.api_key or env.get("SOURCE_STORE_KEY")
        self.destination.base_url = self.destination.base_url or env.get("DESTINATION_STORE_URL", "").rstrip("/")
        self.destination.api_key = self.destination.api_key or env.get("DESTINATION_STORE_KEY")
        self.database_name = self.database_name or env.get("STORE_DATABASE_NAME")

        self.include_queues = _env_bool("INCLUDE_QUEUES", self.include_queues)
        self.include_database = _env_bool("INCLUDE_DATABASE", self.include_database)
        self.include_data = _env_bool("INCLUDE_DATA", self.include_data)
        self.include_messages = _env_bool("INCLUDE_MESSAGES", self.include_messages)
        self.skip_existing = _env_bool("SKIP_EXISTING", self.skip_existing)
        self.overwrite = _env_bool("OVERWRITE", self.overwrite)

        if env.get("BATCH_SIZE"):
            self.batch_size = int(env["BATCH_SIZE"])
        if env.get("MAX_RETRIES"):
            self.max_retries = int(env["MAX_RETRIES"])
        if env.get("CONTAINER_FILTER"):
            self.container_filter = env["CONTAINER_FILTER"]
        if env.get("BLOB_PREFIX"):
            self.blob_prefix = env["BLOB_PREFIX"]
        if env.get("EXCLUDE_PATTERNS"):
            self.exclude_patterns = [p.strip() for p in env["EXCLUDE_PATTERNS"].split(",") if p.strip()]

        return self
