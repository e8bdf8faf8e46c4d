"""Base loader interface for destination accounts."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

from ..models.migration import AccountConfig, MigrationConfig
from ..models.plan import UpdateAction
from ..models.record import ApplyResult, TransferItem, TransferOperation
from ..models.resource import ComparableRecord

logger = logging.getLogger(__name__)


def classify_status(
    status_code: int,
    reason: str = "",
    creating: bool = False,
    modifying: bool = False
) -> ApplyResult:
    """
    Map an HTTP status to an apply result.

    Args:
        status_code: Response status
        reason: Message used for non-success results
        creating: True when the request created a resource
        modifying: True when the request updated or deleted an existing resource

    Returns:
        ok for 2xx, retryable for 429 and 5xx, terminal otherwise.
        A 409 on create is a terminal "already exists" conflict; a 404 on
        update or delete is a terminal "does not exist" conflict.
    """
    if 200 <= status_code < 300:
        return ApplyResult.ok(status_code=status_code)
    if status_code == 429 or status_code >= 500:
        return ApplyResult.retryable(reason or f"HTTP {status_code}", status_code=status_code)
    if status_code == 409 and creating:
        return ApplyResult.terminal(reason or "Resource already exists", status_code=status_code, conflict=True)
    if status_code == 404 and modifying:
        return ApplyResult.terminal(reason or "Target does not exist", status_code=status_code, conflict=True)
    return ApplyResult.terminal(reason or f"HTTP {status_code}", status_code=status_code)


def target_record(item: TransferItem) -> ComparableRecord:
    """Record an item writes: the source side for updates, the payload otherwise."""
    if isinstance(item.payload, UpdateAction):
        return item.payload.source
    return item.payload


class BaseLoader(ABC):
    """
    Base class for the write side of a storage account.

    Loaders apply one transfer item at a time and report the outcome as
    an ApplyResult instead of raising. Retries are owned by the executor.
    """

    def __init__(
        self,
        account: AccountConfig,
        config: Optional[MigrationConfig] = None,
        database_name: Optional[str] = None,
        dry_run: Optional[bool] = None,
        overwrite: Optional[bool] = None
    ):
        """
        Initialize the loader.

        Args:
            account: Account to write to
            config: Migration configuration
            database_name: Document database name on this account
            dry_run: If True, simulate without making changes
            overwrite: If True, an existing target is deleted and re-created
        """
        self.account = account
        self.config = config
        self.database_name = database_name or (config.target_database_name if config else None)
        self.dry_run = dry_run if dry_run is not None else bool(config and config.dry_run)
        self.overwrite = overwrite if overwrite is not None else bool(config and config.overwrite)
        self.preserve_metadata = config.preserve_metadata if config else True
        self.preserve_access_tier = config.preserve_access_tier if config else True

    @abstractmethod
    async def exists(self, item: TransferItem) -> bool:
        """
        Check whether the item's target already exists.

        Raises:
            Exception: when the check itself fails
        """
        pass

    @abstractmethod
    async def create(self, item: TransferItem) -> ApplyResult:
        pass

    @abstractmethod
    async def update(self, item: TransferItem) -> ApplyResult:
        pass

    @abstractmethod
    async def delete(self, item: TransferItem) -> ApplyResult:
        pass

    async def copy(self, item: TransferItem) -> ApplyResult:
        """Copy an item-level resource; creates it on the destination by default."""
        return await self.create(item)

    def payload_for(self, record: ComparableRecord) -> Dict[str, Any]:
        """Body written for a record, honoring the preserve options."""
        payload = record.to_payload()
        if not self.preserve_metadata and "metadata" in payload:
            payload.pop("metadata")
        if not self.preserve_access_tier and "access_tier" in payload:
            payload.pop("access_tier")
        return payload

    async def apply(self, item: TransferItem) -> ApplyResult:
        """
        Apply a transfer item according to its operation.

        Args:
            item: Item to apply

        Returns:
            ApplyResult of the write
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would {item.operation.value} {item.display_name}")
            return ApplyResult.ok()

        if item.operation == TransferOperation.DELETE:
            return await self.delete(item)
        if item.operation == TransferOperation.UPDATE:
            return await self.update(item)

        handler = self.copy if item.operation == TransferOperation.COPY else self.create
        result = await handler(item)

        if result.conflict and self.overwrite:
            logger.warning(f"{item.display_name} already exists, deleting before re-create")
            removed = await self.delete(item)
            # A target gone since the conflict is fine to re-create
            if not removed.success and not removed.conflict:
                return removed
            result = await handler(item)

        return result
