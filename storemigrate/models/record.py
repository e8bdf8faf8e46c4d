"""Transfer items, apply results and run statistics."""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional
from enum import Enum
from datetime import datetime


class TransferOperation(str, Enum):
    """Kind of write applied to the destination for one item."""
    COPY = "copy"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def creates(self) -> bool:
        return self in (TransferOperation.COPY, TransferOperation.CREATE)


class ItemOutcome(str, Enum):
    """Terminal outcome of a transfer item."""
    MIGRATED = "migrated"
    SKIPPED = "skipped"
    FAILED = "failed"


class ApplyStatus(str, Enum):
    OK = "ok"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclass
class ApplyResult:
    """Result of applying one operation against the destination store."""
    status: ApplyStatus
    reason: Optional[str] = None
    status_code: Optional[int] = None
    conflict: bool = False  # Target already existed on create
    response_data: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, response_data: Optional[Dict[str, Any]] = None, status_code: Optional[int] = None) -> "ApplyResult":
        return cls(status=ApplyStatus.OK, response_data=response_data, status_code=status_code)

    @classmethod
    def retryable(cls, reason: str, status_code: Optional[int] = None) -> "ApplyResult":
        return cls(status=ApplyStatus.RETRYABLE, reason=reason, status_code=status_code)

    @classmethod
    def terminal(cls, reason: str, status_code: Optional[int] = None, conflict: bool = False) -> "ApplyResult":
        return cls(status=ApplyStatus.TERMINAL, reason=reason, status_code=status_code, conflict=conflict)

    @property
    def success(self) -> bool:
        return self.status == ApplyStatus.OK

    @property
    def is_retryable(self) -> bool:
        return self.status == ApplyStatus.RETRYABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "status_code": self.status_code,
            "conflict": self.conflict,
        }


@dataclass
class TransferItem:
    """One unit of work handed to the executor."""
    key: Hashable
    operation: TransferOperation
    payload: Any = None  # ComparableRecord, or UpdateAction for updates
    scope: Optional[str] = None  # Parent container for item-level resources
    attempts: int = 0
    outcome: Optional[ItemOutcome] = None
    error: Optional[str] = None

    @property
    def display_name(self) -> str:
        name = getattr(self.payload, "display_name", None)
        return name or str(self.key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.display_name,
            "operation": self.operation.value,
            "attempts": self.attempts,
            "outcome": self.outcome.value if self.outcome else None,
            "error": self.error,
        }


@dataclass
class RunStatistics:
    """
    Cumulative counters for a run or one part of it.

    Updated concurrently by the items of a batch, so all mutations go
    through the lock-guarded record_* methods. ``errors`` keeps every
    message; only the display is capped.
    """
    total: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_success(self) -> None:
        with self._lock:
            self.total += 1
            self.succeeded += 1

    def record_skip(self) -> None:
        with self._lock:
            self.total += 1
            self.skipped += 1

    def record_failure(self, message: str) -> None:
        with self._lock:
            self.total += 1
            self.failed += 1
            self.errors.append(message)

    def add_error(self, message: str) -> None:
        """Record an error that is not tied to a counted item."""
        with self._lock:
            self.errors.append(message)

    def merge(self, other: "RunStatistics") -> "RunStatistics":
        """Add another statistics object into this one."""
        with self._lock:
            self.total += other.total
            self.succeeded += other.succeeded
            self.skipped += other.skipped
            self.failed += other.failed
            self.errors.extend(other.errors)
        return self

    @classmethod
    def combine(cls, parts: List["RunStatistics"]) -> "RunStatistics":
        combined = cls()
        for part in parts:
            combined.merge(part)
        return combined

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.succeeded / self.total

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def error_summary(self, limit: int = 10) -> List[str]:
        """Errors for display: the first ``limit`` plus a count of the rest."""
        lines = list(self.errors[:limit])
        if len(self.errors) > limit:
            lines.append(f"... and {len(self.errors) - limit} more errors")
        return lines

    def to_dict(self, error_limit: Optional[int] = None) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "errors": self.error_summary(error_limit) if error_limit is not None else list(self.errors),
            "error_count": len(self.errors),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }
