"""Command line interface for storage account migrations."""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .errors import ConfigurationError, MigrationError, TransferAbortedError
from .models.migration import MigrationConfig, MigrationStatus
from .orchestrator import MigrationOrchestrator
from .services.reporter import comparison_report, listing_report, run_summary

logger = logging.getLogger(__name__)


def load_config(args) -> MigrationConfig:
    """Build the configuration from the config file, environment and flags."""
    config_data = {}
    if getattr(args, "config", None):
        with open(args.config) as f:
            config_data = json.load(f)

    config = MigrationConfig.from_dict(config_data).merged_with_env()

    if getattr(args, "dry_run", False):
        config.dry_run = True
    if getattr(args, "skip_existing", False):
        config.skip_existing = True
    if getattr(args, "overwrite", False):
        config.overwrite = True
    if getattr(args, "preserve_destination", False):
        config.preserve_destination_only = True
    if getattr(args, "include_messages", False):
        config.include_messages = True

    return config


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Storage Migration Tool - Migrate blobs, queues, messages and documents between storage accounts"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    run_parser = subparsers.add_parser("run", help="Run a migration")
    _add_common_arguments(run_parser)
    run_parser.add_argument("--dry-run", action="store_true", help="Plan and report without changes")
    run_parser.add_argument("--skip-existing", action="store_true", help="Skip items already in the destination")
    run_parser.add_argument("--overwrite", action="store_true", help="Delete and re-create conflicting resources")
    run_parser.add_argument(
        "--preserve-destination", action="store_true",
        help="Keep resources that only exist in the destination"
    )
    run_parser.add_argument(
        "--include-messages", action="store_true", help="Copy queue messages into the destination queues"
    )

    # Copy selected containers
    copy_parser = subparsers.add_parser("copy", help="Copy selected blob containers with their blobs")
    _add_common_arguments(copy_parser)
    copy_parser.add_argument("containers", nargs="+", help="Names of the containers to copy")
    copy_parser.add_argument("--dry-run", action="store_true", help="Report without changes")
    copy_parser.add_argument("--skip-existing", action="store_true", help="Skip blobs already in the destination")
    copy_parser.add_argument("--overwrite", action="store_true", help="Delete and re-create conflicting blobs")

    # Compare accounts
    compare_parser = subparsers.add_parser("compare", help="Show differences between the accounts")
    _add_common_arguments(compare_parser)
    compare_parser.add_argument(
        "--preserve-destination", action="store_true",
        help="Report destination-only resources as preserved"
    )
    compare_parser.add_argument("--summary", action="store_true", help="Counts only, no per-resource lines")

    # List source resources
    list_parser = subparsers.add_parser("list", help="List resources in the source account")
    _add_common_arguments(list_parser)

    # Check connectivity
    validate_parser = subparsers.add_parser("validate", help="Check connectivity to both accounts")
    _add_common_arguments(validate_parser)

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.command not in ("run", "copy", "compare", "list", "validate"):
        parser.print_help()
        return 1

    try:
        config = load_config(args)
        if args.command == "run":
            return asyncio.run(run_migration(config))
        if args.command == "copy":
            return asyncio.run(run_copy(config, args.containers))
        if args.command == "compare":
            return asyncio.run(run_compare(config, show_details=not args.summary))
        if args.command == "validate":
            return asyncio.run(run_validate(config))
        return asyncio.run(run_list(config))

    except ConfigurationError as e:
        print(f"\n{e}", file=sys.stderr)
        return 2
    except (OSError, json.JSONDecodeError) as e:
        print(f"\nCould not read configuration: {e}", file=sys.stderr)
        return 2
    except MigrationError as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1


def _add_common_arguments(subparser: argparse.ArgumentParser):
    subparser.add_argument("--config", help="Path to migration config file (JSON)")
    subparser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")


async def run_migration(config: MigrationConfig) -> int:
    """Run a migration and print the final report."""
    config.validate()
    orchestrator = MigrationOrchestrator.from_config(config)

    try:
        result = await orchestrator.run_migration()
    except TransferAbortedError as e:
        print("\n" + run_summary(orchestrator.run, config.max_displayed_errors))
        print(f"\nMigration aborted: {e}", file=sys.stderr)
        return 1

    print("\n" + run_summary(result, config.max_displayed_errors))
    return 0 if result.totals.failed == 0 else 1


async def run_compare(config: MigrationConfig, show_details: bool = True) -> int:
    """Print the differences between the two accounts."""
    config.validate()
    orchestrator = MigrationOrchestrator.from_config(config)
    plans = await orchestrator.compare()

    print("\n" + comparison_report(plans, config.source.label, config.destination.label, show_details))
    for resource_type, error in orchestrator.comparison_errors.items():
        print(f"Could not compare {resource_type.label}s: {error}", file=sys.stderr)
    return 1 if orchestrator.comparison_errors else 0


async def run_list(config: MigrationConfig) -> int:
    """Print the resources in the source account."""
    config.validate()
    orchestrator = MigrationOrchestrator.from_config(config)
    listings = await orchestrator.list_resources()
    print("\n" + listing_report(listings, config.source.label))
    return 0


async def run_copy(config: MigrationConfig, containers: List[str]) -> int:
    """Copy the named blob containers and print the final report."""
    config.include_blobs = True
    config.validate()
    orchestrator = MigrationOrchestrator.from_config(config)

    try:
        result = await orchestrator.copy_containers(containers)
    except TransferAbortedError as e:
        print("\n" + run_summary(orchestrator.run, config.max_displayed_errors))
        print(f"\nCopy aborted: {e}", file=sys.stderr)
        return 1

    print("\n" + run_summary(result, config.max_displayed_errors))
    failed_steps = [s for s in result.steps if s.status == MigrationStatus.FAILED]
    return 0 if result.success and not failed_steps else 1


async def run_validate(config: MigrationConfig) -> int:
    """Check that both accounts can be reached with the configured credentials."""
    config.validate()
    orchestrator = MigrationOrchestrator.from_config(config)
    results = await orchestrator.validate_connections()

    for side, error in results.items():
        if error is None:
            print(f"{side.capitalize()} account connectivity: OK")
        else:
            print(f"{side.capitalize()} account connectivity: FAILED ({error})")
    return 0 if all(error is None for error in results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
