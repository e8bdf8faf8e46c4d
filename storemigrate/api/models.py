"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum

from ..models.migration import MigrationConfig


class AuthTypeEnum(str, Enum):
    BEARER = "bearer"
    BASIC = "basic"
    HEADER = "header"


# Request Models
class AccountSettings(BaseModel):
    name: str = ""
    base_url: str = ""
    api_key: Optional[str] = None
    auth_type: AuthTypeEnum = AuthTypeEnum.BEARER
    auth_header: str = "Authorization"
    rate_limit: float = Field(default=0.0, ge=0)
    timeout: float = Field(default=30.0, gt=0)


class MigrationRequest(BaseModel):
    name: str = "storage-migration"
    source: AccountSettings = Field(default_factory=AccountSettings)
    destination: AccountSettings = Field(default_factory=AccountSettings)

    include_blobs: bool = True
    include_queues: bool = False
    include_database: bool = False
    include_data: bool = False
    include_messages: bool = False
    database_name: Optional[str] = None
    destination_database_name: Optional[str] = None

    batch_size: int = Field(default=10, ge=1)
    page_size: int = Field(default=100, ge=1)
    max_retries: int = Field(default=3, ge=0)
    backoff_seconds: float = Field(default=1.0, ge=0)
    continue_on_error: bool = True
    skip_existing: bool = False
    overwrite: bool = False
    preserve_destination_only: bool = False
    preserve_metadata: bool = True
    preserve_access_tier: bool = True
    dry_run: bool = True
    copy_poll_interval: float = Field(default=1.0, ge=0)
    copy_timeout: float = Field(default=300.0, ge=0)

    container_filter: str = ""
    blob_prefix: str = ""
    exclude_patterns: List[str] = Field(default_factory=list)
    max_displayed_errors: int = Field(default=10, ge=1)

    def to_config(self) -> MigrationConfig:
        """Build the migration configuration, filling gaps from the environment."""
        return MigrationConfig.from_dict(self.model_dump(mode="json")).merged_with_env()


# Response Models
class CompareResponse(BaseModel):
    plans: Dict[str, Dict[str, Any]]
    errors: Dict[str, str] = Field(default_factory=dict)
    in_sync: bool
    report: str


class RunResponse(BaseModel):
    run: Dict[str, Any]
    aborted: bool = False
    report: str
