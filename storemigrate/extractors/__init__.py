"""Readers for storage accounts."""

from .base import BaseExtractor, Page, ResourceFilter
from .api_extractor import APIExtractor

__all__ = [
    "BaseExtractor",
    "Page",
    "ResourceFilter",
    "APIExtractor",
]
