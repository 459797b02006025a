"""Collect Devices Use Case - Gathers device references across MDM server scopes.

Workflow, per scope (in the order supplied):
1. Request a page of device references (limit 1000) via IDeviceAPI
2. Merge the page into the WorkingSet (a device listed twice is kept once)
3. Follow ``meta.paging.nextCursor`` until it is absent or empty
4. Pause briefly between pages of the same scope

A page that cannot be fetched ends that scope only; references already
gathered, from this and other scopes, are kept. An HTTP 401 is an
authentication failure and ends the run.
"""

import asyncio
import logging
from typing import Any

from ...api.client import next_cursor
from ...api.config import DEVICES_PAGINATION, PaginationConfig
from ...api.exceptions import NetworkError, TokenExpiredError
from ..domain.entities import DeviceReference, WorkingSet
from ..domain.ports import IDeviceAPI

logger = logging.getLogger(__name__)


class CollectDevicesUseCase:
    """Walks the cursor-paginated device listing of each MDM server.

    Example:
        use_case = CollectDevicesUseCase(device_api=ABMDeviceAPI(client))
        working_set = await use_case.execute(["SERVER-1", "SERVER-2"])
    """

    def __init__(
        self,
        device_api: IDeviceAPI,
        pagination: PaginationConfig | None = None,
    ):
        self.api = device_api
        self.pagination = pagination or DEVICES_PAGINATION

    async def execute(self, scope_ids: list[str]) -> WorkingSet:
        """Collect unique device references from every scope.

        Args:
            scope_ids: MDM server ids, processed in this order

        Returns:
            WorkingSet in first-seen order

        Raises:
            TokenExpiredError: If the API rejects the access token
        """
        working_set = WorkingSet()

        for scope_id in scope_ids:
            before = len(working_set)
            await self._collect_scope(scope_id, working_set)
            logger.info(
                f"MDM server {scope_id}: {len(working_set) - before} new devices "
                f"({len(working_set)} unique so far)"
            )

        logger.info(f"Collected {len(working_set)} unique devices from {len(scope_ids)} MDM server(s)")
        return working_set

    async def _collect_scope(self, scope_id: str, working_set: WorkingSet) -> int:
        """Follow one scope's cursor chain. Returns the number of pages read."""
        cursor: str | None = None
        pages = 0

        while True:
            try:
                response = await self.api.list_server_devices(
                    scope_id,
                    cursor=cursor,
                    limit=self.pagination.page_size,
                )
            except NetworkError as e:
                logger.warning(f"Stopping MDM server {scope_id} after {pages} page(s): {e}")
                return pages

            if response.status == 401:
                raise TokenExpiredError(
                    "Access token rejected while listing devices",
                    details={"server_id": scope_id},
                )

            if response.status != 200:
                logger.warning(
                    f"Stopping MDM server {scope_id} after {pages} page(s): "
                    f"HTTP {response.status}"
                )
                return pages

            payload = response.json()
            if not isinstance(payload, dict):
                logger.warning(f"Stopping MDM server {scope_id}: unreadable page body")
                return pages

            pages += 1
            added = working_set.union(self._references(payload.get("data")))
            logger.debug(f"MDM server {scope_id} page {pages}: {added} new devices")

            cursor = next_cursor(payload)
            if not cursor:
                return pages

            if self.pagination.max_pages and pages >= self.pagination.max_pages:
                logger.warning(
                    f"Reached max_pages limit ({self.pagination.max_pages}) "
                    f"for MDM server {scope_id}"
                )
                return pages

            await asyncio.sleep(self.pagination.delay_between_pages)

    @staticmethod
    def _references(items: Any) -> list[DeviceReference]:
        if not isinstance(items, list):
            return []
        return [
            DeviceReference(id=str(item["id"]))
            for item in items
            if isinstance(item, dict) and item.get("id")
        ]
