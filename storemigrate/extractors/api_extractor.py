"""REST extractor for storage accounts."""

import asyncio
import base64
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import BaseExtractor, Page
from ..errors import EnumerationError
from ..models.migration import AccountConfig, AuthType, MigrationConfig
from ..models.resource import (
    ComparableRecord,
    DocumentRecord,
    QueueMessageRecord,
    ResourceType,
    record_from_dict,
)

logger = logging.getLogger(__name__)


def collection_path(resource_type: ResourceType, database_name: Optional[str] = None, scope: Optional[str] = None) -> str:
    """Path of the collection holding a resource type."""
    if resource_type == ResourceType.BLOB_CONTAINER:
        return "/containers"
    if resource_type == ResourceType.QUEUE:
        return "/queues"
    if resource_type == ResourceType.DATABASE_CONTAINER:
        return f"/databases/{quote(database_name or '', safe='')}/containers"
    if resource_type == ResourceType.BLOB:
        return f"/containers/{quote(scope or '', safe='')}/blobs"
    if resource_type == ResourceType.QUEUE_MESSAGE:
        return f"/queues/{quote(scope or '', safe='')}/messages"
    if resource_type == ResourceType.DOCUMENT:
        return f"/databases/{quote(database_name or '', safe='')}/containers/{quote(scope or '', safe='')}/docs"
    raise ValueError(f"Unknown resource type: {resource_type}")


def item_path(record: ComparableRecord, database_name: Optional[str] = None) -> str:
    """Path of a single resource."""
    scope = record.scope
    base = collection_path(record.resource_type, database_name, scope)
    if isinstance(record, (DocumentRecord, QueueMessageRecord)):
        return f"{base}/{quote(record.id, safe='')}"
    return f"{base}/{quote(record.name, safe='')}"


def auth_headers(account: AccountConfig) -> Dict[str, str]:
    """Authentication headers for an account."""
    if not account.api_key:
        return {}
    if account.auth_type == AuthType.BEARER:
        return {"Authorization": f"Bearer {account.api_key}"}
    if account.auth_type == AuthType.BASIC:
        credentials = base64.b64encode(f"{account.api_key}:".encode()).decode()
        return {"Authorization": f"Basic {credentials}"}
    return {account.auth_header: account.api_key}


class APIExtractor(BaseExtractor):
    """
    Extractor for storage accounts exposed through the JSON REST dialect.

    Listings return ``{"items": [...]}``; paged collections also return a
    ``continuation`` token that is sent back verbatim. Requests are
    blocking and run in a worker thread.
    """

    def __init__(
        self,
        account: AccountConfig,
        config: Optional[MigrationConfig] = None,
        database_name: Optional[str] = None,
        session: Optional[requests.Session] = None,
        max_retries: int = 3
    ):
        """
        Initialize the API extractor.

        Args:
            account: Account to read from
            config: Migration configuration (filters)
            database_name: Document database name
            session: Custom requests session
            max_retries: Transport-level retries for listing reads
        """
        super().__init__(account, config, database_name)
        self.max_retries = max_retries
        self._session = session or self._create_session()
        self._rate_limit_delay = 1 / account.rate_limit if account.rate_limit else 0

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self.max_retries,
            backoff_factor=1.0,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        session.headers.update(auth_headers(self.account))

        return session

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Blocking GET returning the decoded body."""
        if self._rate_limit_delay > 0:
            time.sleep(self._rate_limit_delay)

        url = f"{self.account.base_url}{path}"
        response = self._session.get(url, params=params, timeout=self.account.timeout)
        if response.status_code >= 400:
            raise EnumerationError(
                f"HTTP {response.status_code} listing {path}: {response.text[:200]}",
                account=self.account.label,
                status_code=response.status_code,
            )
        return response.json() if response.text else {}

    def _parse_items(self, resource_type: ResourceType, data: Dict[str, Any], scope: Optional[str]) -> List[ComparableRecord]:
        items = data.get("items", [])
        if not isinstance(items, list):
            items = [items]
        return [record_from_dict(resource_type, item, scope=scope) for item in items]

    async def fetch_records(self, resource_type: ResourceType, scope: Optional[str] = None) -> List[ComparableRecord]:
        """Fetch a complete listing; item-level collections are followed to their last page."""
        if resource_type.is_item_level:
            records: List[ComparableRecord] = []
            cursor = None
            while True:
                page = await self.fetch_page(resource_type, scope, cursor, 1000)
                records.extend(page.items)
                if page.is_last:
                    break
                cursor = page.next_cursor
            return records

        path = collection_path(resource_type, self.database_name, scope)
        data = await asyncio.to_thread(self._get_json, path)
        records = self._parse_items(resource_type, data, scope)

        logger.info(f"Listed {len(records)} {resource_type.label}s from {self.account.label}")
        return records

    async def fetch_page(
        self,
        resource_type: ResourceType,
        scope: Optional[str],
        cursor: Any,
        page_size: int
    ) -> Page:
        """Fetch one page using ``maxItemCount`` and ``continuation``."""
        path = collection_path(resource_type, self.database_name, scope)
        params: Dict[str, Any] = {"maxItemCount": page_size}
        if cursor is not None:
            params["continuation"] = cursor

        data = await asyncio.to_thread(self._get_json, path, params)
        return Page(
            items=self._parse_items(resource_type, data, scope),
            next_cursor=data.get("continuation") or None,
        )
