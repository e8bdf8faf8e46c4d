"""Human-readable reports built from plans, statistics and run records."""

from typing import Dict, List, Optional

from ..models.migration import MigrationRun
from ..models.plan import ActionPlan
from ..models.record import RunStatistics
from ..models.resource import ResourceType

RULE = "=" * 60


def format_plan(plan: ActionPlan, show_details: bool = True) -> List[str]:
    """Lines describing one action plan."""
    label = plan.resource_type.label.capitalize()
    lines = [
        f"{label}s: {plan.source_count} in source, {plan.destination_count} in destination",
        f"  To create: {len(plan.create)}",
        f"  To update: {len(plan.update)}",
        f"  To delete: {len(plan.delete)}",
    ]
    if plan.preserved:
        lines.append(f"  Preserved (destination only): {len(plan.preserved)}")
    lines.append(f"  Unchanged: {len(plan.unchanged)}")

    if not show_details:
        return lines

    for record in plan.create:
        lines.append(f"  + {record.display_name}")
    for action in plan.update:
        lines.append(f"  ~ {action.display_name}")
        for difference in action.differences:
            lines.append(f"      {difference.describe()}")
    for record in plan.delete:
        lines.append(f"  - {record.display_name}")
    for record in plan.preserved:
        lines.append(f"  = {record.display_name} (kept)")
    return lines


def comparison_report(
    plans: Dict[ResourceType, ActionPlan],
    source: str = "source",
    destination: str = "destination",
    show_details: bool = True
) -> str:
    """
    Report of the differences between two accounts.

    Args:
        plans: Plan per resource type
        source: Label of the source account
        destination: Label of the destination account
        show_details: Include one line per differing resource

    Returns:
        Multi-line report text
    """
    lines = [RULE, f"COMPARISON: {source} -> {destination}", RULE]

    total = 0
    for resource_type, plan in plans.items():
        lines.extend(format_plan(plan, show_details))
        lines.append("")
        total += plan.total_differences

    if total == 0:
        lines.append("Accounts are in sync.")
    else:
        lines.append(f"Total differences: {total}")
    return "\n".join(lines)


def statistics_lines(stats: RunStatistics, label: str, max_errors: int = 10) -> List[str]:
    lines = [
        f"{label}: {stats.total} total, {stats.succeeded} succeeded, "
        f"{stats.skipped} skipped, {stats.failed} failed"
    ]
    for error in stats.error_summary(max_errors):
        lines.append(f"  {error}")
    return lines


def run_summary(run: MigrationRun, max_errors: int = 10) -> str:
    """Final report of a migration run: counters per step plus the capped error list."""
    lines = [RULE, "MIGRATION DRY RUN COMPLETE" if run.dry_run else "MIGRATION COMPLETE", RULE]
    lines.append(f"Status: {run.status.value}")

    for step in run.steps:
        lines.append(
            f"{step.name}: {step.statistics.total} total, {step.statistics.succeeded} succeeded, "
            f"{step.statistics.skipped} skipped, {step.statistics.failed} failed ({step.status.value})"
        )
        for warning in step.warnings:
            lines.append(f"  Warning: {warning}")

    lines.append("")
    lines.extend(statistics_lines(run.totals, "Total", max_errors))
    if run.duration_seconds is not None:
        lines.append(f"Duration: {run.duration_seconds:.2f} seconds")
    return "\n".join(lines)


def listing_report(listings: Dict[ResourceType, List[str]], account: Optional[str] = None) -> str:
    """Report of resource names per type."""
    lines = [RULE, f"RESOURCES in {account}" if account else "RESOURCES", RULE]
    for resource_type, names in listings.items():
        lines.append(f"{resource_type.label.capitalize()}s ({len(names)}):")
        for name in names:
            lines.append(f"  {name}")
    return "\n".join(lines)
