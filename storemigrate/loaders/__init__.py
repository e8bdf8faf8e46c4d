"""Writers for destination storage accounts."""

from .base import BaseLoader, classify_status
from .api_loader import APILoader

__all__ = [
    "BaseLoader",
    "classify_status",
    "APILoader",
]
