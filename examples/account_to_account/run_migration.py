#!/usr/bin/env python3
"""
Example: copy one storage account into another

Compares the two accounts first, then applies the plan and copies the
blobs and documents.

Usage:
    # Dry run (simulation)
    python run_migration.py --dry-run

    # Full migration, keeping anything that only exists in the destination
    python run_migration.py --preserve-destination

Credentials come from SOURCE_STORE_URL, SOURCE_STORE_KEY,
DESTINATION_STORE_URL and DESTINATION_STORE_KEY.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from storemigrate.errors import MigrationError
from storemigrate.models.migration import AccountConfig, MigrationConfig
from storemigrate.orchestrator import MigrationOrchestrator
from storemigrate.services.reporter import comparison_report, run_summary

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('migration.log')
    ]
)
logger = logging.getLogger(__name__)


def create_config(dry_run: bool = True, preserve_destination: bool = False) -> MigrationConfig:
    """Create migration configuration programmatically."""
    source = AccountConfig(
        name="production",
        base_url=os.environ.get("SOURCE_STORE_URL", ""),
        api_key=os.environ.get("SOURCE_STORE_KEY"),
        rate_limit=25,
    )
    destination = AccountConfig(
        name="disaster-recovery",
        base_url=os.environ.get("DESTINATION_STORE_URL", ""),
        api_key=os.environ.get("DESTINATION_STORE_KEY"),
        rate_limit=25,
    )

    return MigrationConfig(
        name="Production to DR",
        source=source,
        destination=destination,
        include_blobs=True,
        include_queues=True,
        include_database=bool(os.environ.get("STORE_DATABASE_NAME")),
        include_data=bool(os.environ.get("STORE_DATABASE_NAME")),
        database_name=os.environ.get("STORE_DATABASE_NAME"),
        batch_size=20,
        page_size=500,
        skip_existing=True,
        preserve_destination_only=preserve_destination,
        exclude_patterns=[r"^\$logs$", r"\.tmp$"],
        dry_run=dry_run,
        output_dir=str(Path(__file__).parent / "output"),
        save_report=True,
    )


async def run_migration(config: MigrationConfig) -> int:
    """Preview the differences, then run the migration."""
    config.validate()
    orchestrator = MigrationOrchestrator.from_config(config)

    logger.info("\n=== Comparison ===")
    plans = await orchestrator.compare()
    print(comparison_report(plans, config.source.label, config.destination.label, show_details=False))

    logger.info("\n=== Migration ===")
    try:
        run = await orchestrator.run_migration()
    except MigrationError as e:
        logger.error(f"Migration stopped: {e}")
        if orchestrator.run:
            print(run_summary(orchestrator.run))
        return 1

    print(run_summary(run))
    return 0 if run.success else 1


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Copy one storage account into another")
    parser.add_argument("--dry-run", action="store_true", help="Simulate migration without making changes")
    parser.add_argument(
        "--preserve-destination", action="store_true",
        help="Keep resources that only exist in the destination"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = create_config(dry_run=args.dry_run, preserve_destination=args.preserve_destination)
    sys.exit(asyncio.run(run_migration(config)))


if __name__ == "__main__":
    main()
