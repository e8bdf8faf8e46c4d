"""Action plan models produced by the planner."""

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List

from .resource import ComparableRecord, PropertyDifference, ResourceType


@dataclass
class UpdateAction:
    """A key present on both sides with at least one differing property."""
    key: Hashable
    source: ComparableRecord
    destination: ComparableRecord
    differences: List[PropertyDifference] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.source.display_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.display_name,
            "differences": [d.to_dict() for d in self.differences],
        }


@dataclass
class ActionPlan:
    """
    Convergence plan for one resource type.

    create, update and delete are disjoint. Destination-only records kept
    because of the preserve policy are listed in ``preserved`` and are
    never deleted.
    """
    resource_type: ResourceType
    create: List[ComparableRecord] = field(default_factory=list)
    update: List[UpdateAction] = field(default_factory=list)
    delete: List[ComparableRecord] = field(default_factory=list)
    preserved: List[ComparableRecord] = field(default_factory=list)
    unchanged: List[Hashable] = field(default_factory=list)
    source_count: int = 0
    destination_count: int = 0

    @property
    def skipped_deletes(self) -> int:
        return len(self.preserved)

    @property
    def is_empty(self) -> bool:
        """True when applying the plan would change nothing."""
        return not (self.create or self.update or self.delete)

    @property
    def total_differences(self) -> int:
        return len(self.create) + len(self.update) + len(self.delete) + len(self.preserved)

    def summary(self) -> Dict[str, Any]:
        """Counts and names per category."""
        return {
            "resource_type": self.resource_type.value,
            "source_count": self.source_count,
            "destination_count": self.destination_count,
            "create": {"count": len(self.create), "names": [r.display_name for r in self.create]},
            "update": {"count": len(self.update), "names": [u.display_name for u in self.update]},
            "delete": {"count": len(self.delete), "names": [r.display_name for r in self.delete]},
            "skipped_deletes": {"count": self.skipped_deletes, "names": [r.display_name for r in self.preserved]},
            "unchanged": len(self.unchanged),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.summary()
        data["update_details"] = [u.to_dict() for u in self.update]
        return data
