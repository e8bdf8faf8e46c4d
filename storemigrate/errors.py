"""Exception hierarchy for migration runs."""

from typing import Any, Dict, List, Optional


class MigrationError(Exception):
    """
    Base exception for all migration errors.

    Carries a human readable message plus optional structured details
    that end up in the run report.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class ConfigurationError(MigrationError):
    """Raised before any enumeration when the configuration is unusable."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        message = "Configuration validation failed:\n" + "\n".join(self.problems)
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class DuplicateKeyError(MigrationError):
    """Two records in one snapshot share the same key."""

    def __init__(self, resource_type: str, key: Any):
        super().__init__(
            f"Duplicate {resource_type} key in snapshot: {key!r}",
            details={"resource_type": resource_type, "key": key},
        )
        self.resource_type = resource_type
        self.key = key


class EnumerationError(MigrationError):
    """
    A resource listing could not be read from an account.

    ``statistics`` holds what was transferred before a paged read failed.
    """

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        account: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            message,
            details={
                k: v for k, v in {
                    "resource_type": resource_type,
                    "account": account,
                    "status_code": status_code,
                }.items() if v is not None
            },
        )
        self.resource_type = resource_type
        self.account = account
        self.status_code = status_code
        self.statistics: Any = None


class TransferAbortedError(MigrationError):
    """
    Raised by the executor when continue_on_error is disabled and an item
    failed for good. Items applied before the failure are left in place.
    """

    def __init__(self, key: Any, reason: str, statistics: Any = None):
        super().__init__(f"Transfer aborted at {key}: {reason}")
        self.key = key
        self.reason = reason
        self.statistics = statistics

    def __str__(self) -> str:
        return self.message
