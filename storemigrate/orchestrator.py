"""Migration orchestrator - coordinates reconciliation and item transfer."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .errors import DuplicateKeyError, EnumerationError, MigrationError, TransferAbortedError
from .extractors.api_extractor import APIExtractor
from .extractors.base import BaseExtractor, Page
from .loaders.api_loader import APILoader
from .loaders.base import BaseLoader
from .models.migration import MigrationConfig, MigrationRun, MigrationStatus, MigrationStep
from .models.plan import ActionPlan
from .models.record import ItemOutcome, RunStatistics, TransferItem, TransferOperation
from .models.resource import ComparableRecord, DatabaseContainerRecord, ResourceType
from .services.executor import BatchExecutor, ExecutorOptions, SleepFn
from .services.pager import for_each_page
from .services.planner import Comparator, default_comparator, plan, plan_items

logger = logging.getLogger(__name__)

# Item collections and the resource type that holds them
ITEM_PARENTS = {
    ResourceType.BLOB: ResourceType.BLOB_CONTAINER,
    ResourceType.DOCUMENT: ResourceType.DATABASE_CONTAINER,
    ResourceType.QUEUE_MESSAGE: ResourceType.QUEUE,
}


@dataclass
class ReconcileResult:
    """Outcome of reconciling one resource type."""
    resource_type: ResourceType
    plan: ActionPlan
    statistics: RunStatistics = field(default_factory=RunStatistics)

    def to_dict(self, error_limit: Optional[int] = None) -> Dict:
        return {
            "resource_type": self.resource_type.value,
            "plan": self.plan.to_dict(),
            "statistics": self.statistics.to_dict(error_limit),
        }


class MigrationOrchestrator:
    """
    Orchestrates a migration between two storage accounts.

    Handles:
    - Reconciliation of container, queue and database container listings
    - Paged transfer of blobs, queue messages and documents
    - Copying selected blob containers
    - Comparison and listing without changes
    - Per resource type isolation of enumeration failures
    - Run reporting
    """

    def __init__(
        self,
        config: MigrationConfig,
        source: BaseExtractor,
        destination_reader: BaseExtractor,
        destination: BaseLoader,
        sleep: SleepFn = asyncio.sleep
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            source: Reads the source account
            destination_reader: Reads the destination account
            destination: Writes the destination account
            sleep: Awaitable used for retry backoff
        """
        self.config = config
        self.source = source
        self.destination_reader = destination_reader
        self.destination = destination
        self.sleep = sleep

        # Runtime state
        self.run: Optional[MigrationRun] = None
        self.comparison_errors: Dict[ResourceType, str] = {}

    @classmethod
    def from_config(cls, config: MigrationConfig, sleep: SleepFn = asyncio.sleep) -> "MigrationOrchestrator":
        """Build an orchestrator talking to both accounts over REST."""
        return cls(
            config,
            source=APIExtractor(config.source, config, database_name=config.database_name,
                                max_retries=config.max_retries),
            destination_reader=APIExtractor(config.destination, config, database_name=config.target_database_name,
                                            max_retries=config.max_retries),
            destination=APILoader(config.destination, config, source_account=config.source, sleep=sleep),
            sleep=sleep,
        )

    def _executor(self) -> BatchExecutor:
        return BatchExecutor(ExecutorOptions.from_config(self.config), sleep=self.sleep)

    async def reconcile(
        self,
        resource_type: ResourceType,
        scope: Optional[str] = None,
        comparator: Optional[Comparator] = None
    ) -> ReconcileResult:
        """
        Converge one resource type of the destination onto the source.

        Creates run first, then updates, then deletes. Destination-only
        resources kept by the preserve policy count as skipped.

        Args:
            resource_type: Resource type to reconcile
            scope: Parent container for item-level types
            comparator: Difference function; defaults to the record's compare

        Returns:
            ReconcileResult with the plan and combined statistics

        Raises:
            EnumerationError: either listing could not be read
            TransferAbortedError: an item failed with continue_on_error off
        """
        source_snapshot = await self.source.snapshot(resource_type, scope)
        destination_snapshot = await self.destination_reader.snapshot(resource_type, scope)

        comparator = comparator or default_comparator(include_metadata=self.config.preserve_metadata)
        action_plan = plan(
            source_snapshot,
            destination_snapshot,
            comparator=comparator,
            preserve_destination_only=self.config.preserve_destination_only,
        )
        logger.info(
            f"{resource_type.label.capitalize()}s: {len(action_plan.create)} to create, "
            f"{len(action_plan.update)} to update, {len(action_plan.delete)} to delete, "
            f"{action_plan.skipped_deletes} preserved"
        )

        if self.config.dry_run:
            logger.info(f"[DRY RUN] No changes applied to {resource_type.label}s")
            return ReconcileResult(resource_type, action_plan, RunStatistics(
                started_at=datetime.utcnow(), completed_at=datetime.utcnow()))

        executor = self._executor()
        passes: List[RunStatistics] = []
        try:
            for items in plan_items(action_plan).values():
                part = RunStatistics()
                passes.append(part)
                await executor.execute(items, self.destination.apply, check_exists=self.destination.exists, stats=part)
        except TransferAbortedError as e:
            e.statistics = self._combine(passes, action_plan)
            raise

        return ReconcileResult(resource_type, action_plan, self._combine(passes, action_plan))

    @staticmethod
    def _combine(passes: List[RunStatistics], action_plan: ActionPlan) -> RunStatistics:
        stats = RunStatistics.combine(passes)
        for _ in action_plan.preserved:
            stats.record_skip()
        started = [p.started_at for p in passes if p.started_at]
        completed = [p.completed_at for p in passes if p.completed_at]
        stats.started_at = min(started) if started else datetime.utcnow()
        stats.completed_at = max(completed) if completed else datetime.utcnow()
        return stats

    async def migrate_items(self, resource_type: ResourceType, scope: str) -> RunStatistics:
        """
        Copy an item collection page by page without a destination snapshot.

        Queue messages are appended without an existence check and stay in
        the source queue.

        Args:
            resource_type: BLOB, QUEUE_MESSAGE or DOCUMENT
            scope: Container or queue holding the items

        Returns:
            Statistics of the copied items

        Raises:
            EnumerationError: a page could not be read; its ``statistics``
                hold the items transferred before the failure
            TransferAbortedError: an item failed with continue_on_error off
        """
        if not resource_type.is_item_level:
            raise ValueError(f"{resource_type.value} is not an item-level resource type")

        stats = RunStatistics(started_at=datetime.utcnow())

        if resource_type == ResourceType.DOCUMENT and not await self._destination_container_exists(scope, stats):
            stats.completed_at = datetime.utcnow()
            return stats

        executor = self._executor()
        check_exists = None if resource_type == ResourceType.QUEUE_MESSAGE else self.destination.exists

        async def read_page(cursor, page_size: int) -> Page:
            return await self.source.read_page(resource_type, scope, cursor, page_size)

        async def visit(records: List[ComparableRecord], is_last: bool) -> None:
            items = [
                TransferItem(key=r.key, operation=TransferOperation.COPY, payload=r, scope=scope)
                for r in records
            ]
            await executor.execute(items, self.destination.apply, check_exists=check_exists, stats=stats)

        try:
            pages = await for_each_page(read_page, self.config.page_size, visit)
        except EnumerationError as e:
            stats.completed_at = datetime.utcnow()
            e.statistics = stats
            raise
        stats.completed_at = datetime.utcnow()

        logger.info(
            f"{resource_type.label.capitalize()}s in {scope}: {stats.succeeded} migrated, "
            f"{stats.skipped} skipped, {stats.failed} failed ({pages} pages)"
        )
        return stats

    async def _destination_container_exists(self, name: str, stats: RunStatistics) -> bool:
        container_item = TransferItem(
            key=name,
            operation=TransferOperation.CREATE,
            payload=DatabaseContainerRecord(name=name),
        )
        try:
            exists = await self.destination.exists(container_item)
        except MigrationError as e:
            stats.add_error(f"Could not check destination container {name}: {e}")
            logger.error(f"Could not check destination container {name}: {e}")
            return False

        if not exists:
            message = f"Destination container {name} does not exist. Create schema first."
            stats.add_error(message)
            logger.warning(f"Skipping documents in {name}: {message}")
        return exists

    async def compare(self, resource_types: Optional[Iterable[ResourceType]] = None) -> Dict[ResourceType, ActionPlan]:
        """
        Plan every resource type without applying anything.

        Types whose listings cannot be read are left out of the result and
        recorded in ``comparison_errors``.
        """
        resource_types = list(resource_types) if resource_types is not None else self.config.resource_types
        comparator = default_comparator(include_metadata=self.config.preserve_metadata)
        plans: Dict[ResourceType, ActionPlan] = {}
        self.comparison_errors = {}

        for resource_type in resource_types:
            try:
                source_snapshot = await self.source.snapshot(resource_type)
                destination_snapshot = await self.destination_reader.snapshot(resource_type)
            except (EnumerationError, DuplicateKeyError) as e:
                logger.error(f"Comparison of {resource_type.label}s failed: {e}")
                self.comparison_errors[resource_type] = str(e)
                continue

            plans[resource_type] = plan(
                source_snapshot,
                destination_snapshot,
                comparator=comparator,
                preserve_destination_only=self.config.preserve_destination_only,
            )

        return plans

    async def list_resources(self) -> Dict[ResourceType, List[str]]:
        """Names of the source resources per enabled type."""
        listings: Dict[ResourceType, List[str]] = {}
        for resource_type in self.config.resource_types:
            snapshot = await self.source.snapshot(resource_type)
            listings[resource_type] = snapshot.names()
        return listings

    async def validate_connections(self) -> Dict[str, Optional[str]]:
        """
        Check that both accounts answer a listing request.

        Returns:
            Error message per side ("source", "destination"), None when reachable
        """
        resource_type = (self.config.resource_types or [ResourceType.BLOB_CONTAINER])[0]
        results: Dict[str, Optional[str]] = {}

        for side, extractor in (("source", self.source), ("destination", self.destination_reader)):
            try:
                await extractor.list_records(resource_type)
                results[side] = None
                logger.info(f"Connected to {side} account {extractor.account.label}")
            except MigrationError as e:
                results[side] = str(e)
                logger.error(f"Could not connect to {side} account {extractor.account.label}: {e}")

        return results

    async def run_migration(self) -> MigrationRun:
        """
        Run the complete migration.

        Returns:
            MigrationRun with results and statistics

        Raises:
            ConfigurationError: before anything is read
            TransferAbortedError: after the run has been marked failed
        """
        self.config.validate()

        self.run = self._new_run()

        try:
            for resource_type in self.config.resource_types:
                logger.info(f"=== {resource_type.label.upper()}S ===")
                await self._run_reconcile_step(resource_type)

            if self.config.include_blobs:
                logger.info("=== BLOBS ===")
                await self._run_item_steps(ResourceType.BLOB)

            if self.config.include_messages:
                logger.info("=== QUEUE MESSAGES ===")
                await self._run_item_steps(ResourceType.QUEUE_MESSAGE)

            if self.config.include_data:
                logger.info("=== DOCUMENTS ===")
                await self._run_item_steps(ResourceType.DOCUMENT)

            self.run.status = MigrationStatus.COMPLETED
            logger.info("=== MIGRATION COMPLETED ===")

        except TransferAbortedError as e:
            logger.error(f"Migration failed: {e}")
            self.run.status = MigrationStatus.FAILED
            self.run.errors.append(str(e))
            raise

        finally:
            self.run.completed_at = datetime.utcnow()
            self.run.update_totals()
            if self.config.save_report:
                self._save_report()

        return self.run

    async def copy_containers(self, names: Iterable[str]) -> MigrationRun:
        """
        Copy selected blob containers with their blobs.

        A container missing on the destination is created from its source
        record first. Names not found in the source listing are recorded
        as errors of their step.

        Args:
            names: Container names to copy

        Returns:
            MigrationRun with one step per container

        Raises:
            ConfigurationError: before anything is read
            TransferAbortedError: after the run has been marked failed
        """
        self.config.validate()
        self.run = self._new_run()

        try:
            try:
                containers = await self.source.snapshot(ResourceType.BLOB_CONTAINER)
            except (EnumerationError, DuplicateKeyError) as e:
                logger.error(f"Enumeration of blob containers failed: {e}")
                self.run.status = MigrationStatus.FAILED
                self.run.errors.append(f"Enumeration of blob containers failed: {e}")
                return self.run

            for name in names:
                logger.info(f"=== CONTAINER {name} ===")
                await self._copy_container_step(name, containers.get(name))

            self.run.status = MigrationStatus.COMPLETED

        except TransferAbortedError as e:
            logger.error(f"Copy failed: {e}")
            self.run.status = MigrationStatus.FAILED
            self.run.errors.append(str(e))
            raise

        finally:
            self.run.completed_at = datetime.utcnow()
            self.run.update_totals()
            if self.config.save_report:
                self._save_report()

        return self.run

    async def _copy_container_step(self, name: str, record: Optional[ComparableRecord]) -> MigrationStep:
        step = self.run.add_step(name=f"Copy container {name}", resource_type=ResourceType.BLOB, scope=name)
        step.status = MigrationStatus.APPLYING
        step.started_at = datetime.utcnow()

        try:
            if record is None:
                message = f"Container {name} not found in source account"
                step.status = MigrationStatus.FAILED
                step.statistics.add_error(message)
                logger.error(message)
                if not self.config.continue_on_error:
                    raise TransferAbortedError(name, "not found in source account", statistics=step.statistics)
                return step

            container_stats = RunStatistics()
            container_item = TransferItem(key=name, operation=TransferOperation.CREATE, payload=record)
            try:
                exists = await self.destination.exists(container_item)
            except MigrationError as e:
                step.status = MigrationStatus.FAILED
                step.statistics.add_error(f"Could not check destination container {name}: {e}")
                logger.error(f"Could not check destination container {name}: {e}")
                return step

            if not exists:
                await self._executor().execute([container_item], self.destination.apply, stats=container_stats)
                if container_item.outcome != ItemOutcome.MIGRATED:
                    step.statistics = container_stats
                    step.status = MigrationStatus.FAILED
                    return step

            blob_stats = await self.migrate_items(ResourceType.BLOB, name)
            step.statistics = RunStatistics.combine([container_stats, blob_stats])
            step.status = MigrationStatus.COMPLETED

        except EnumerationError as e:
            step.status = MigrationStatus.FAILED
            if e.statistics is not None:
                step.statistics = e.statistics
            step.statistics.add_error(f"Reading blobs in {name} failed: {e}")
            logger.error(f"Reading blobs in {name} failed: {e}")

        except TransferAbortedError as e:
            step.status = MigrationStatus.FAILED
            if e.statistics is not None:
                step.statistics = e.statistics
            raise

        finally:
            step.completed_at = datetime.utcnow()

        return step

    def _new_run(self) -> MigrationRun:
        run = MigrationRun(
            name=self.config.name,
            dry_run=self.config.dry_run,
            source=self.config.source.label,
            destination=self.config.destination.label,
        )
        run.started_at = datetime.utcnow()
        run.status = MigrationStatus.APPLYING
        return run

    async def _run_reconcile_step(self, resource_type: ResourceType) -> MigrationStep:
        step = self.run.add_step(name=f"Reconcile {resource_type.label}s", resource_type=resource_type)
        step.status = MigrationStatus.ENUMERATING
        step.started_at = datetime.utcnow()

        try:
            result = await self.reconcile(resource_type)
            step.statistics = result.statistics
            step.plan_summary = result.plan.summary()
            step.status = MigrationStatus.COMPLETED

        except (EnumerationError, DuplicateKeyError) as e:
            step.status = MigrationStatus.FAILED
            step.statistics.add_error(f"Enumeration of {resource_type.label}s failed: {e}")
            logger.error(f"Enumeration of {resource_type.label}s failed: {e}")

        except TransferAbortedError as e:
            step.status = MigrationStatus.FAILED
            if e.statistics is not None:
                step.statistics = e.statistics
            raise

        finally:
            step.completed_at = datetime.utcnow()

        return step

    async def _run_item_steps(self, resource_type: ResourceType) -> None:
        parent_type = ITEM_PARENTS[resource_type]

        try:
            containers = await self.source.list_records(parent_type)
        except EnumerationError as e:
            step = self.run.add_step(name=f"Migrate {resource_type.label}s", resource_type=resource_type)
            step.status = MigrationStatus.FAILED
            step.started_at = step.completed_at = datetime.utcnow()
            step.statistics.add_error(f"Enumeration of {parent_type.label}s failed: {e}")
            logger.error(f"Enumeration of {parent_type.label}s failed: {e}")
            return

        for container in sorted(containers, key=lambda r: str(r.key)):
            name = str(container.key)
            step = self.run.add_step(
                name=f"Migrate {resource_type.label}s in {name}",
                resource_type=resource_type,
                scope=name,
            )
            step.status = MigrationStatus.APPLYING
            step.started_at = datetime.utcnow()

            try:
                stats = await self.migrate_items(resource_type, name)
                step.statistics = stats
                # Documents of a container missing on the destination are not attempted
                if resource_type == ResourceType.DOCUMENT and stats.total == 0 and stats.errors:
                    step.status = MigrationStatus.SKIPPED
                    step.warnings.extend(stats.errors)
                else:
                    step.status = MigrationStatus.COMPLETED

            except EnumerationError as e:
                step.status = MigrationStatus.FAILED
                if e.statistics is not None:
                    step.statistics = e.statistics
                step.statistics.add_error(f"Reading {resource_type.label}s in {name} failed: {e}")
                logger.error(f"Reading {resource_type.label}s in {name} failed: {e}")

            except TransferAbortedError as e:
                step.status = MigrationStatus.FAILED
                if e.statistics is not None:
                    step.statistics = e.statistics
                raise

            finally:
                step.completed_at = datetime.utcnow()

    def _save_report(self) -> Path:
        """Save the migration report."""
        logs_dir = Path(self.config.output_dir) / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        filepath = logs_dir / f"migration_report_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
        with open(filepath, 'w') as f:
            json.dump(self.run.to_dict(), f, indent=2, default=str)
        logger.info(f"Saved migration report to {filepath}")
        return filepath
