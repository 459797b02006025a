"""Port interfaces for device sync operations.

Ports define the contracts between the domain/use cases and the infrastructure.
These are abstract base classes that adapters must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations

The API ports return raw responses (status + body) rather than raising on
HTTP errors: each use case owns its own failure policy.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .entities import AssignedServer, CoverageEntry, DeviceRecord, ManagementServer

if TYPE_CHECKING:
    from ...api.client import ApiResponse


class IDeviceAPI(ABC):
    """Port for device read operations."""

    @abstractmethod
    async def list_server_devices(
        self,
        server_id: str,
        cursor: str | None = None,
        limit: int = 1000,
    ) -> "ApiResponse":
        """Fetch one page of device references assigned to an MDM server.

        Args:
            server_id: MDM server id (the scope)
            cursor: Cursor from the previous page, None for the first page
            limit: Page size

        Returns:
            Raw response; on success the body holds ``data`` and
            ``meta.paging.nextCursor``
        """
        ...

    @abstractmethod
    async def get_device(self, device_id: str) -> "ApiResponse":
        """Fetch the full detail of one device."""
        ...

    @abstractmethod
    async def get_assigned_server(self, device_id: str) -> "ApiResponse":
        """Fetch the assigned-server relationship of one device."""
        ...

    @abstractmethod
    async def get_coverage(self, device_id: str) -> "ApiResponse":
        """Fetch the AppleCare coverage of one device."""
        ...

    @abstractmethod
    async def list_mdm_servers(self) -> list[dict[str, Any]]:
        """Fetch every MDM server of the organization.

        Raises:
            APIError: If a page cannot be fetched
        """
        ...


class IActivityAPI(ABC):
    """Port for device activity (bulk mutation) operations."""

    @abstractmethod
    async def create_activity(self, body: dict[str, Any]) -> "ApiResponse":
        """Submit a device activity request document."""
        ...

    @abstractmethod
    async def get_activity(self, activity_id: str) -> "ApiResponse":
        """Fetch the current status of a device activity."""
        ...

    @abstractmethod
    async def download_report(self, url: str, destination: Any) -> Any:
        """Download an activity report from its pre-signed URL."""
        ...


class IFieldMapper(ABC):
    """Port for field mapping between API resources and domain entities."""

    @abstractmethod
    def map_to_record(self, raw: dict[str, Any]) -> DeviceRecord:
        """Transform an ``orgDevices`` resource object into a DeviceRecord.

        Assignment and coverage are left at their defaults.
        """
        ...

    @abstractmethod
    def map_assignment(
        self,
        payload: Any,
        server_lookup: Mapping[str, str],
    ) -> AssignedServer:
        """Resolve an ``assignedServer`` document against the server lookup."""
        ...

    @abstractmethod
    def map_coverage(self, raw: dict[str, Any]) -> list[CoverageEntry]:
        """Transform an ``appleCareCoverage`` document into coverage entries."""
        ...

    @abstractmethod
    def map_server(self, raw: dict[str, Any]) -> ManagementServer:
        """Transform an ``mdmServers`` resource object into a ManagementServer."""
        ...
