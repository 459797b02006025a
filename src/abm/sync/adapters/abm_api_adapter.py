"""ABM API adapter for device and activity operations.

This adapter implements IDeviceAPI and IActivityAPI by wrapping ABMClient,
mapping each port method to its Apple Business / School Manager endpoint.
"""

from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..domain.ports import IActivityAPI, IDeviceAPI

if TYPE_CHECKING:
    from ...api.client import ABMClient, ApiResponse
    from ...api.config import PaginationConfig


class ABMDeviceAPI(IDeviceAPI, IActivityAPI):
    """Apple Business / School Manager API adapter.

    Wraps ABMClient. Device reads return raw ApiResponse objects so the
    use cases can apply their own status handling; only the MDM server
    listing raises, since without it nothing can be selected or resolved.
    """

    SERVERS_ENDPOINT = "/mdmServers"
    DEVICES_ENDPOINT = "/orgDevices"
    ACTIVITIES_ENDPOINT = "/orgDeviceActivities"

    def __init__(
        self,
        client: "ABMClient",
        servers_pagination: "PaginationConfig | None" = None,
    ):
        """Initialize the API adapter.

        Args:
            client: Configured ABMClient instance (inside its context)
            servers_pagination: Optional pagination override for /mdmServers.
                               Defaults to SERVERS_PAGINATION if not provided.
        """
        self.client = client
        self._servers_pagination = servers_pagination

    @property
    def servers_pagination(self) -> "PaginationConfig":
        """Get servers pagination config, importing default if needed."""
        if self._servers_pagination is None:
            from ...api.config import SERVERS_PAGINATION
            self._servers_pagination = SERVERS_PAGINATION
        return self._servers_pagination

    # ----------------------------------------
    # Devices
    # ----------------------------------------

    async def list_server_devices(
        self,
        server_id: str,
        cursor: str | None = None,
        limit: int = 1000,
    ) -> "ApiResponse":
        params: dict[str, Any] = {"limit": limit}
        if cursor:
            params["cursor"] = cursor
        return await self.client.get(
            f"{self.SERVERS_ENDPOINT}/{server_id}/relationships/devices",
            params=params,
        )

    async def get_device(self, device_id: str) -> "ApiResponse":
        return await self.client.get(f"{self.DEVICES_ENDPOINT}/{device_id}")

    async def get_assigned_server(self, device_id: str) -> "ApiResponse":
        return await self.client.get(
            f"{self.DEVICES_ENDPOINT}/{device_id}/relationships/assignedServer"
        )

    async def get_coverage(self, device_id: str) -> "ApiResponse":
        return await self.client.get(f"{self.DEVICES_ENDPOINT}/{device_id}/appleCareCoverage")

    async def list_mdm_servers(self) -> list[dict[str, Any]]:
        """Fetch every MDM server, following the cursor chain."""
        return await self.client.fetch_all(
            self.SERVERS_ENDPOINT,
            config=self.servers_pagination,
        )

    # ----------------------------------------
    # Activities
    # ----------------------------------------

    async def create_activity(self, body: dict[str, Any]) -> "ApiResponse":
        return await self.client.post(self.ACTIVITIES_ENDPOINT, json_body=body)

    async def get_activity(self, activity_id: str) -> "ApiResponse":
        return await self.client.get(f"{self.ACTIVITIES_ENDPOINT}/{activity_id}")

    async def download_report(self, url: str, destination: Any) -> Path:
        return await self.client.download(url, destination)
