"""
Tests for the reconciliation orchestrator.
"""

import json

import pytest

from storemigrate.errors import ConfigurationError, EnumerationError, TransferAbortedError
from storemigrate.models.migration import MigrationStatus
from storemigrate.models.record import ApplyResult
from storemigrate.models.resource import DatabaseContainerRecord, DocumentRecord, QueueMessageRecord, ResourceType
from storemigrate.orchestrator import MigrationOrchestrator

from conftest import FakeExtractor, FakeLoader, blob, container, queue


def build(config, source_store, destination_store, sleep, failing=(), fail_at_cursor=None):
    source = FakeExtractor(source_store, config, name="source", failing=failing, fail_at_cursor=fail_at_cursor)
    reader = FakeExtractor(destination_store, config, name="destination")
    loader = FakeLoader(destination_store, config)
    return MigrationOrchestrator(config, source, reader, loader, sleep=sleep), loader


@pytest.fixture
def queues(source_store, destination_store):
    source_store.add(queue("a", tag="x"), queue("b", tag="y"))
    destination_store.add(queue("b", tag="z"), queue("c", tag="w"))


class TestReconcile:
    """Tests for reconcile()."""

    @pytest.mark.asyncio
    async def test_converges_destination(self, config, source_store, destination_store, sleep, queues):
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        result = await orchestrator.reconcile(ResourceType.QUEUE)

        assert loader.calls == [("create", "a"), ("update", "b"), ("delete", "c")]
        assert (result.statistics.total, result.statistics.succeeded) == (3, 3)
        assert [r.name for r in destination_store.records(ResourceType.QUEUE)] == ["a", "b"]
        assert destination_store.records(ResourceType.QUEUE)[1].metadata == {"tag": "y"}

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, config, source_store, destination_store, sleep, queues):
        orchestrator, loader = build(config, source_store, destination_store, sleep)
        await orchestrator.reconcile(ResourceType.QUEUE)
        loader.calls.clear()

        result = await orchestrator.reconcile(ResourceType.QUEUE)

        assert result.plan.is_empty
        assert loader.calls == []
        assert result.statistics.total == 0

    @pytest.mark.asyncio
    async def test_preserved_deletes_count_as_skipped(self, config, source_store, destination_store, sleep, queues):
        config.preserve_destination_only = True
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        result = await orchestrator.reconcile(ResourceType.QUEUE)

        assert ("delete", "c") not in loader.calls
        assert result.plan.skipped_deletes == 1
        assert result.statistics.skipped == 1
        assert result.statistics.total == 3
        assert "c" in [r.name for r in destination_store.records(ResourceType.QUEUE)]

    @pytest.mark.asyncio
    async def test_dry_run_applies_nothing(self, config, source_store, destination_store, sleep, queues):
        config.dry_run = True
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        result = await orchestrator.reconcile(ResourceType.QUEUE)

        assert loader.calls == []
        assert len(result.plan.create) == 1
        assert result.statistics.total == 0

    @pytest.mark.asyncio
    async def test_creates_then_updates_then_deletes(self, config, source_store, destination_store, sleep):
        source_store.add(*[queue(f"new{i}") for i in range(4)], queue("u1", v="1"), queue("u2", v="1"))
        destination_store.add(queue("u1", v="2"), queue("u2", v="2"), queue("old1"), queue("old2"))
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        await orchestrator.reconcile(ResourceType.QUEUE)

        operations = [op for op, _ in loader.calls]
        assert operations == ["create"] * 4 + ["update"] * 2 + ["delete"] * 2

    @pytest.mark.asyncio
    async def test_metadata_ignored_when_not_preserved(self, config, source_store, destination_store, sleep, queues):
        config.preserve_metadata = False
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        result = await orchestrator.reconcile(ResourceType.QUEUE)

        assert result.plan.update == []
        assert ("update", "b") not in loader.calls

    @pytest.mark.asyncio
    async def test_retryable_failure_is_retried(self, config, source_store, destination_store, sleep, queues):
        orchestrator, loader = build(config, source_store, destination_store, sleep)
        loader.script["a"] = [ApplyResult.retryable("throttled", 429)]

        result = await orchestrator.reconcile(ResourceType.QUEUE)

        assert sleep.delays == [1.0]
        assert result.statistics.failed == 0
        assert loader.calls.count(("create", "a")) == 2


class TestMigrateItems:
    """Tests for migrate_items()."""

    @pytest.fixture
    def blobs(self, source_store):
        source_store.add(container("images"), *[blob("images", f"img{i}.png") for i in range(5)])

    @pytest.mark.asyncio
    async def test_copies_every_page(self, config, source_store, destination_store, sleep, blobs):
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        stats = await orchestrator.migrate_items(ResourceType.BLOB, "images")

        assert orchestrator.source.cursors == [None, 2, 4]
        assert stats.succeeded == 5
        assert len(destination_store.records(ResourceType.BLOB, "images")) == 5

    @pytest.mark.asyncio
    async def test_skip_existing(self, config, source_store, destination_store, sleep, blobs):
        config.skip_existing = True
        destination_store.add(blob("images", "img1.png"))
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        stats = await orchestrator.migrate_items(ResourceType.BLOB, "images")

        assert stats.skipped == 1
        assert stats.succeeded == 4
        assert ("create", "img1.png") not in loader.calls

    @pytest.mark.asyncio
    async def test_blob_prefix_filter(self, config, source_store, destination_store, sleep, blobs):
        config.blob_prefix = "img1"
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        stats = await orchestrator.migrate_items(ResourceType.BLOB, "images")

        assert stats.total == 1
        assert loader.calls == [("create", "img1.png")]

    @pytest.mark.asyncio
    async def test_documents_need_destination_container(self, config, source_store, destination_store, sleep):
        source_store.add(DocumentRecord(container="orders", id="1", partition_key="1", body={"id": "1"}))
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        stats = await orchestrator.migrate_items(ResourceType.DOCUMENT, "orders")

        assert stats.total == 0
        assert loader.calls == []
        assert "Create schema first" in stats.errors[0]

    @pytest.mark.asyncio
    async def test_documents_are_copied(self, config, source_store, destination_store, sleep):
        source_store.add(*[
            DocumentRecord(container="orders", id=str(i), partition_key=str(i), body={"id": str(i), "_etag": "e"})
            for i in range(3)
        ])
        destination_store.add(DatabaseContainerRecord(name="orders"))
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        stats = await orchestrator.migrate_items(ResourceType.DOCUMENT, "orders")

        assert stats.succeeded == 3
        assert len(destination_store.records(ResourceType.DOCUMENT, "orders")) == 3

    @pytest.mark.asyncio
    async def test_rejects_metadata_types(self, config, source_store, destination_store, sleep):
        orchestrator, _ = build(config, source_store, destination_store, sleep)
        with pytest.raises(ValueError):
            await orchestrator.migrate_items(ResourceType.QUEUE, "x")

    @pytest.mark.asyncio
    async def test_page_failure_keeps_transferred_counts(self, config, source_store, destination_store, sleep, blobs):
        orchestrator, _ = build(config, source_store, destination_store, sleep, fail_at_cursor=4)

        with pytest.raises(EnumerationError) as exc_info:
            await orchestrator.migrate_items(ResourceType.BLOB, "images")

        stats = exc_info.value.statistics
        assert (stats.total, stats.succeeded) == (4, 4)
        assert stats.completed_at is not None
        assert len(destination_store.records(ResourceType.BLOB, "images")) == 4

    @pytest.mark.asyncio
    async def test_queue_messages_are_appended(self, config, source_store, destination_store, sleep):
        config.skip_existing = True
        source_store.add(*[QueueMessageRecord(queue="orders", id=f"m{i}", content=f"order {i}") for i in range(3)])
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        stats = await orchestrator.migrate_items(ResourceType.QUEUE_MESSAGE, "orders")

        assert stats.succeeded == 3
        assert loader.exists_calls == []
        copied = destination_store.records(ResourceType.QUEUE_MESSAGE, "orders")
        assert [m.content for m in copied] == ["order 0", "order 1", "order 2"]
        assert len(source_store.records(ResourceType.QUEUE_MESSAGE, "orders")) == 3


class TestRunMigration:
    """Tests for run_migration()."""

    @pytest.mark.asyncio
    async def test_full_run(self, config, source_store, destination_store, sleep, queues):
        source_store.add(container("images"), blob("images", "x.png"), blob("images", "y.png"))
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        run = await orchestrator.run_migration()

        assert run.status == MigrationStatus.COMPLETED
        assert [s.name for s in run.steps] == [
            "Reconcile blob containers",
            "Reconcile queues",
            "Migrate blobs in images",
        ]
        assert run.totals.total == 1 + 3 + 2
        assert run.totals.failed == 0
        assert run.steps[1].plan_summary["delete"]["names"] == ["c"]
        assert run.success

    @pytest.mark.asyncio
    async def test_enumeration_failure_is_isolated(self, config, source_store, destination_store, sleep, queues):
        source_store.add(container("images"))
        orchestrator, loader = build(config, source_store, destination_store, sleep, failing=[ResourceType.QUEUE])

        run = await orchestrator.run_migration()

        containers_step, queues_step = run.steps[0], run.steps[1]
        assert containers_step.status == MigrationStatus.COMPLETED
        assert queues_step.status == MigrationStatus.FAILED
        assert "Enumeration of queues failed" in queues_step.statistics.errors[0]
        assert ("create", "images") in loader.calls
        assert not any(key in ("a", "b", "c") for _, key in loader.calls)
        assert run.status == MigrationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_abort_marks_run_failed(self, config, source_store, destination_store, sleep):
        config.continue_on_error = False
        source_store.add(queue("a"), queue("b"), queue("c"))
        source_store.add(container("images"), blob("images", "x.png"))
        orchestrator, loader = build(config, source_store, destination_store, sleep)
        loader.script["b"] = [ApplyResult.terminal("HTTP 400: invalid name", 400)]

        with pytest.raises(TransferAbortedError):
            await orchestrator.run_migration()

        run = orchestrator.run
        assert run.status == MigrationStatus.FAILED
        assert run.completed_at is not None
        assert "Transfer aborted at b" in run.errors[0]
        queues_step = run.steps[1]
        assert queues_step.status == MigrationStatus.FAILED
        assert (queues_step.statistics.succeeded, queues_step.statistics.failed) == (1, 1)
        assert ("create", "c") not in loader.calls
        assert ("create", "x.png") not in loader.calls

    @pytest.mark.asyncio
    async def test_configuration_fails_fast(self, config, source_store, destination_store, sleep):
        config.source.api_key = None
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        with pytest.raises(ConfigurationError):
            await orchestrator.run_migration()

        assert orchestrator.run is None
        assert loader.calls == []

    @pytest.mark.asyncio
    async def test_documents_skipped_without_schema(self, config, source_store, destination_store, sleep):
        config.include_blobs = False
        config.include_queues = False
        config.include_data = True
        config.database_name = "app"
        source_store.add(DatabaseContainerRecord(name="orders"))
        source_store.add(DocumentRecord(container="orders", id="1", partition_key="1", body={"id": "1"}))
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        run = await orchestrator.run_migration()

        assert run.steps[0].status == MigrationStatus.SKIPPED
        assert "Create schema first" in run.steps[0].warnings[0]
        assert run.totals.total == 0
        assert any("Create schema first" in e for e in run.totals.errors)

    @pytest.mark.asyncio
    async def test_page_failure_step_keeps_counts(self, config, source_store, destination_store, sleep):
        config.include_queues = False
        source_store.add(container("images"), *[blob("images", f"img{i}.png") for i in range(5)])
        orchestrator, _ = build(config, source_store, destination_store, sleep, fail_at_cursor=4)

        run = await orchestrator.run_migration()

        blobs_step = run.steps[1]
        assert blobs_step.name == "Migrate blobs in images"
        assert blobs_step.status == MigrationStatus.FAILED
        assert blobs_step.statistics.succeeded == 4
        assert "Reading blobs in images failed" in blobs_step.statistics.errors[-1]
        assert run.totals.succeeded == 1 + 4

    @pytest.mark.asyncio
    async def test_queue_messages_follow_queues(self, config, source_store, destination_store, sleep, queues):
        config.include_messages = True
        source_store.add(QueueMessageRecord(queue="a", id="m1", content="hello"))
        orchestrator, _ = build(config, source_store, destination_store, sleep)

        run = await orchestrator.run_migration()

        assert [s.name for s in run.steps] == [
            "Reconcile blob containers",
            "Reconcile queues",
            "Migrate queue messages in a",
            "Migrate queue messages in b",
        ]
        assert run.steps[2].statistics.succeeded == 1
        assert run.steps[3].statistics.total == 0
        assert [m.content for m in destination_store.records(ResourceType.QUEUE_MESSAGE, "a")] == ["hello"]

    @pytest.mark.asyncio
    async def test_saves_report(self, config, source_store, destination_store, sleep, tmp_path, queues):
        config.save_report = True
        config.output_dir = str(tmp_path)
        orchestrator, _ = build(config, source_store, destination_store, sleep)

        run = await orchestrator.run_migration()

        reports = list((tmp_path / "logs").glob("migration_report_*.json"))
        assert len(reports) == 1
        data = json.loads(reports[0].read_text())
        assert data["id"] == run.id
        assert data["totals"]["total"] == run.totals.total


class TestCompareAndList:
    """Tests for compare() and list_resources()."""

    @pytest.mark.asyncio
    async def test_compare_plans_without_applying(self, config, source_store, destination_store, sleep, queues):
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        plans = await orchestrator.compare()

        assert set(plans) == {ResourceType.BLOB_CONTAINER, ResourceType.QUEUE}
        assert [r.key for r in plans[ResourceType.QUEUE].delete] == ["c"]
        assert loader.calls == []

    @pytest.mark.asyncio
    async def test_compare_records_listing_errors(self, config, source_store, destination_store, sleep, queues):
        orchestrator, _ = build(config, source_store, destination_store, sleep, failing=[ResourceType.QUEUE])

        plans = await orchestrator.compare()

        assert ResourceType.QUEUE not in plans
        assert ResourceType.QUEUE in orchestrator.comparison_errors

    @pytest.mark.asyncio
    async def test_list_resources(self, config, source_store, destination_store, sleep, queues):
        config.exclude_patterns = ["^b$"]
        orchestrator, _ = build(config, source_store, destination_store, sleep)

        listings = await orchestrator.list_resources()

        assert listings[ResourceType.QUEUE] == ["a"]
        assert listings[ResourceType.BLOB_CONTAINER] == []


class TestCopyContainers:
    """Tests for copy_containers()."""

    @pytest.fixture
    def containers(self, source_store):
        source_store.add(container("images", team="web"), blob("images", "a.png"), blob("images", "b.png"))
        source_store.add(container("logs"), blob("logs", "app.log"))

    @pytest.mark.asyncio
    async def test_copies_only_named_containers(self, config, source_store, destination_store, sleep, containers):
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        run = await orchestrator.copy_containers(["images"])

        assert run.status == MigrationStatus.COMPLETED
        assert [s.name for s in run.steps] == ["Copy container images"]
        assert loader.calls == [("create", "images"), ("create", "a.png"), ("create", "b.png")]
        assert destination_store.records(ResourceType.BLOB_CONTAINER)[0].metadata == {"team": "web"}
        assert destination_store.records(ResourceType.BLOB, "logs") == []
        assert run.totals.succeeded == 3

    @pytest.mark.asyncio
    async def test_existing_destination_container_is_reused(
        self, config, source_store, destination_store, sleep, containers
    ):
        destination_store.add(container("images"))
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        run = await orchestrator.copy_containers(["images"])

        assert ("create", "images") not in loader.calls
        assert run.steps[0].statistics.succeeded == 2

    @pytest.mark.asyncio
    async def test_unknown_container_is_recorded(self, config, source_store, destination_store, sleep, containers):
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        run = await orchestrator.copy_containers(["missing", "logs"])

        missing_step, logs_step = run.steps
        assert missing_step.status == MigrationStatus.FAILED
        assert "Container missing not found in source account" in missing_step.statistics.errors[0]
        assert logs_step.status == MigrationStatus.COMPLETED
        assert ("create", "app.log") in loader.calls

    @pytest.mark.asyncio
    async def test_unknown_container_aborts_without_continue_on_error(
        self, config, source_store, destination_store, sleep, containers
    ):
        config.continue_on_error = False
        orchestrator, loader = build(config, source_store, destination_store, sleep)

        with pytest.raises(TransferAbortedError):
            await orchestrator.copy_containers(["missing", "logs"])

        assert orchestrator.run.status == MigrationStatus.FAILED
        assert loader.calls == []

    @pytest.mark.asyncio
    async def test_dry_run_copies_nothing(self, config, source_store, destination_store, sleep, containers):
        config.dry_run = True
        orchestrator, _ = build(config, source_store, destination_store, sleep)

        run = await orchestrator.copy_containers(["images"])

        assert run.dry_run
        assert destination_store.records(ResourceType.BLOB_CONTAINER) == []
        assert destination_store.records(ResourceType.BLOB, "images") == []


class TestValidateConnections:
    """Tests for validate_connections()."""

    @pytest.mark.asyncio
    async def test_both_accounts_reachable(self, config, source_store, destination_store, sleep):
        orchestrator, _ = build(config, source_store, destination_store, sleep)

        assert await orchestrator.validate_connections() == {"source": None, "destination": None}

    @pytest.mark.asyncio
    async def test_unreachable_source_is_reported(self, config, source_store, destination_store, sleep):
        orchestrator, loader = build(
            config, source_store, destination_store, sleep, failing=[ResourceType.BLOB_CONTAINER]
        )

        results = await orchestrator.validate_connections()

        assert "listing unavailable" in results["source"]
        assert results["destination"] is None
        assert loader.calls == []
