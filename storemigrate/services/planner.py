"""Action planner: diff two snapshots into create, update and delete sets."""

import logging
from typing import Callable, Dict, List, Optional

from ..models.plan import ActionPlan, UpdateAction
from ..models.record import TransferItem, TransferOperation
from ..models.resource import ComparableRecord, PropertyDifference, ResourceSnapshot

logger = logging.getLogger(__name__)

Comparator = Callable[[ComparableRecord, ComparableRecord], List[PropertyDifference]]


def default_comparator(include_metadata: bool = True) -> Comparator:
    """Comparator delegating to the record's own compare method."""
    def compare(source: ComparableRecord, destination: ComparableRecord) -> List[PropertyDifference]:
        return source.compare(destination, include_metadata=include_metadata)
    return compare


def plan(
    source: ResourceSnapshot,
    destination: ResourceSnapshot,
    comparator: Optional[Comparator] = None,
    preserve_destination_only: bool = False
) -> ActionPlan:
    """
    Compute the actions that converge the destination onto the source.

    Args:
        source: Snapshot of the source account
        destination: Snapshot of the destination account
        comparator: Returns the differences between two records with the
            same key; defaults to the record's own compare
        preserve_destination_only: Keep destination-only records instead
            of deleting them

    Returns:
        ActionPlan with disjoint create, update and delete lists
    """
    if source.resource_type != destination.resource_type:
        raise ValueError(
            f"Cannot plan {source.resource_type.value} against {destination.resource_type.value}"
        )

    comparator = comparator or default_comparator()
    result = ActionPlan(
        resource_type=source.resource_type,
        source_count=len(source),
        destination_count=len(destination),
    )

    for key in source:
        record = source[key]
        if key not in destination:
            result.create.append(record)
            continue

        differences = comparator(record, destination[key])
        if differences:
            result.update.append(UpdateAction(
                key=key,
                source=record,
                destination=destination[key],
                differences=list(differences),
            ))
        else:
            result.unchanged.append(key)

    for key in destination:
        if key in source:
            continue
        if preserve_destination_only:
            result.preserved.append(destination[key])
        else:
            result.delete.append(destination[key])

    logger.debug(
        f"Planned {source.resource_type.label}: {len(result.create)} create, "
        f"{len(result.update)} update, {len(result.delete)} delete, {len(result.preserved)} preserved"
    )
    return result


def plan_items(action_plan: ActionPlan) -> Dict[TransferOperation, List[TransferItem]]:
    """Transfer items per operation, in create, update, delete order."""
    return {
        TransferOperation.CREATE: [
            TransferItem(key=r.key, operation=TransferOperation.CREATE, payload=r, scope=r.scope)
            for r in action_plan.create
        ],
        TransferOperation.UPDATE: [
            TransferItem(key=u.key, operation=TransferOperation.UPDATE, payload=u, scope=u.source.scope)
            for u in action_plan.update
        ],
        TransferOperation.DELETE: [
            TransferItem(key=r.key, operation=TransferOperation.DELETE, payload=r, scope=r.scope)
            for r in action_plan.delete
        ],
    }
