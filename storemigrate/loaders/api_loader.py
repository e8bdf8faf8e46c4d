"""REST loader for storage accounts."""

import asyncio
import json
import threading
import time
import logging
import requests
from typing import Any, Awaitable, Callable, Dict, Optional

from .base import BaseLoader, classify_status, target_record
from ..errors import MigrationError
from ..extractors.api_extractor import auth_headers, collection_path, item_path
from ..models.migration import AccountConfig, MigrationConfig
from ..models.record import ApplyResult, TransferItem
from ..models.resource import BlobRecord, DocumentRecord

logger = logging.getLogger(__name__)


def _copy_status(response_data: Any) -> Optional[str]:
    if isinstance(response_data, dict):
        return response_data.get("copy_status")
    return None


class APILoader(BaseLoader):
    """
    Loader for storage accounts exposed through the JSON REST dialect.

    POST on the collection creates, PUT on the item updates, DELETE
    removes and GET checks existence. Blobs are copied server side from
    ``source_account``. The session carries no transport retries;
    retryable statuses are returned to the executor.
    """

    def __init__(
        self,
        account: AccountConfig,
        config: Optional[MigrationConfig] = None,
        database_name: Optional[str] = None,
        session: Optional[requests.Session] = None,
        dry_run: Optional[bool] = None,
        overwrite: Optional[bool] = None,
        source_account: Optional[AccountConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        super().__init__(account, config, database_name, dry_run, overwrite)
        self.source_account = source_account
        self.sleep = sleep
        self.copy_poll_interval = config.copy_poll_interval if config else 1.0
        self.copy_timeout = config.copy_timeout if config else 300.0
        self.rate_limit = account.rate_limit
        self._next_request_time = 0.0
        self._rate_lock = threading.Lock()
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with authentication."""
        session = requests.Session()
        session.headers.update(auth_headers(self.account))
        session.headers["Content-Type"] = "application/json"
        return session

    def _rate_limit_wait(self):
        """
        Wait to respect rate limits.

        Requests of one batch run in parallel worker threads, so each
        caller reserves the next free slot under the lock before sleeping.
        """
        if self.rate_limit <= 0:
            return
        with self._rate_lock:
            now = time.time()
            slot = max(now, self._next_request_time)
            self._next_request_time = slot + 1.0 / self.rate_limit
        wait_time = slot - now
        if wait_time > 0:
            time.sleep(wait_time)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        self._rate_limit_wait()
        url = f"{self.account.base_url}{path}"
        return self._session.request(method, url, timeout=self.account.timeout, **kwargs)

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            error_data = response.json()
        except ValueError:
            return f"HTTP {response.status_code}: {response.text[:200]}"
        if isinstance(error_data, dict):
            message = error_data.get("message") or error_data.get("error") or str(error_data)
        else:
            message = str(error_data)
        return f"HTTP {response.status_code}: {message}"

    def _params_for(self, item: TransferItem) -> Dict[str, Any]:
        record = target_record(item)
        if isinstance(record, DocumentRecord):
            return {"partitionKey": json.dumps(record.partition_key)}
        return {}

    async def _send(
        self, method: str, path: str, creating: bool = False, modifying: bool = False, **kwargs
    ) -> ApplyResult:
        try:
            response = await asyncio.to_thread(self._request, method, path, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            return ApplyResult.retryable(f"Network error: {e}")

        if response.ok:
            try:
                response_data = response.json() if response.text else {}
            except ValueError:
                response_data = {}
            return ApplyResult.ok(response_data=response_data, status_code=response.status_code)

        return classify_status(
            response.status_code, self._error_message(response), creating=creating, modifying=modifying
        )

    async def exists(self, item: TransferItem) -> bool:
        """Check with GET; 404 means the target does not exist."""
        path = item_path(target_record(item), self.database_name)
        try:
            response = await asyncio.to_thread(self._request, "GET", path, params=self._params_for(item))
        except requests.exceptions.RequestException as e:
            raise MigrationError(f"Existence check failed for {item.display_name}: {e}") from e

        if response.status_code == 404:
            return False
        if response.ok:
            return True
        raise MigrationError(
            f"Existence check failed for {item.display_name}: {self._error_message(response)}",
            details={"status_code": response.status_code},
        )

    async def create(self, item: TransferItem) -> ApplyResult:
        record = target_record(item)
        path = collection_path(record.resource_type, self.database_name, record.scope)
        return await self._send("POST", path, creating=True, json=self.payload_for(record))

    async def copy(self, item: TransferItem) -> ApplyResult:
        """
        Copy an item-level resource.

        Blobs are copied server side: the destination is told where to read
        the content from and the copy status is polled until it leaves
        "pending". Other records are created from their payload.
        """
        record = target_record(item)
        if not isinstance(record, BlobRecord):
            return await self.create(item)
        if self.source_account is None or not self.source_account.base_url:
            return ApplyResult.terminal(f"No source account to copy {item.display_name} from")

        payload = self.payload_for(record)
        payload["copy_source"] = f"{self.source_account.base_url}{item_path(record)}"
        path = collection_path(record.resource_type, self.database_name, record.scope)
        result = await self._send("POST", path, creating=True, json=payload)
        if not result.success:
            return result
        return await self._wait_for_copy(item, result)

    async def _wait_for_copy(self, item: TransferItem, result: ApplyResult) -> ApplyResult:
        status = _copy_status(result.response_data)
        waited = 0.0
        path = item_path(target_record(item))

        while status == "pending":
            if waited >= self.copy_timeout:
                return ApplyResult.terminal(f"Copy of {item.display_name} still pending after {waited:g}s")
            await self.sleep(self.copy_poll_interval)
            waited += self.copy_poll_interval

            polled = await self._send("GET", path)
            if polled.is_retryable:
                logger.warning(f"Copy status of {item.display_name} unavailable: {polled.reason}")
                continue
            if not polled.success:
                return polled
            status = _copy_status(polled.response_data)

        if status is None or status == "success":
            return ApplyResult.ok(response_data=result.response_data, status_code=result.status_code)
        return ApplyResult.terminal(f"Copy failed with status: {status}", status_code=result.status_code)

    async def update(self, item: TransferItem) -> ApplyResult:
        record = target_record(item)
        return await self._send(
            "PUT", item_path(record, self.database_name), modifying=True,
            json=self.payload_for(record), params=self._params_for(item),
        )

    async def delete(self, item: TransferItem) -> ApplyResult:
        """Delete the target; a 404 is a "does not exist" conflict."""
        path = item_path(target_record(item), self.database_name)
        return await self._send("DELETE", path, modifying=True, params=self._params_for(item))
