"""Service layer for the migration application."""

from .planner import plan, plan_items, default_comparator
from .executor import BatchExecutor, ExecutorOptions, backoff_delay
from .pager import for_each_page

__all__ = [
    "plan",
    "plan_items",
    "default_comparator",
    "BatchExecutor",
    "ExecutorOptions",
    "backoff_delay",
    "for_each_page",
]
