"""Field mapper adapter for transforming ABM/ASM API resources into domain entities.

This adapter implements IFieldMapper and encapsulates all field transformation
logic between the JSON:API documents returned by Apple and the domain layer.
"""

from collections.abc import Mapping
from typing import Any

from ..domain.entities import (
    NO_END_DATE,
    UNASSIGNED,
    AssignedServer,
    CoverageEntry,
    DeviceRecord,
    ManagementServer,
)
from ..domain.ports import IFieldMapper


class DeviceFieldMapper(IFieldMapper):
    """Maps Apple Business / School Manager resources to domain entities.

    This class handles:
    - ``orgDevices`` attribute extraction (camelCase -> snake_case)
    - Renamed fields (deviceModel -> model, deviceCapacity -> capacity)
    - Assignment resolution against the MDM server lookup table
    - AppleCare coverage flattening, with "No end date" for open plans
    - Missing or null attributes degrade to empty strings
    """

    def map_to_record(self, raw: dict[str, Any]) -> DeviceRecord:
        """Transform an ``orgDevices`` resource object to a DeviceRecord.

        Args:
            raw: The ``data`` object of a device detail response

        Returns:
            DeviceRecord with assignment and coverage at their defaults
        """
        attributes = raw.get("attributes")
        if not isinstance(attributes, dict):
            attributes = {}

        return DeviceRecord(
            id=str(raw["id"]),
            serial_number=self._text(attributes.get("serialNumber")),
            model=self._text(attributes.get("deviceModel")),
            product_family=self._text(attributes.get("productFamily")),
            product_type=self._text(attributes.get("productType")),
            status=self._text(attributes.get("status")),
            color=self._text(attributes.get("color")),
            capacity=self._text(attributes.get("deviceCapacity")),
            wifi_mac_address=self._text(attributes.get("wifiMacAddress")),
            added_to_org_date_time=self._text(attributes.get("addedToOrgDateTime")),
            released_from_org_date_time=self._text(attributes.get("releasedFromOrgDateTime")),
            raw_data=attributes,
        )

    def map_assignment(
        self,
        payload: Any,
        server_lookup: Mapping[str, str],
    ) -> AssignedServer:
        """Resolve an ``assignedServer`` relationship document.

        A missing or null ``data.id`` means unassigned. The server name comes
        from ``server_lookup``, falling back to the raw id.
        """
        if not isinstance(payload, dict):
            return UNASSIGNED

        data = payload.get("data")
        if not isinstance(data, dict) or not data.get("id"):
            return UNASSIGNED

        server_id = str(data["id"])
        return AssignedServer(id=server_id, name=server_lookup.get(server_id) or server_id)

    def map_coverage(self, raw: Any) -> list[CoverageEntry]:
        """Transform an ``appleCareCoverage`` document to coverage entries.

        Malformed items (not objects, or without an attributes object) are
        skipped.
        """
        if not isinstance(raw, dict):
            return []

        items = raw.get("data")
        if not isinstance(items, list):
            return []

        entries = []
        for item in items:
            attributes = item.get("attributes") if isinstance(item, dict) else None
            if not isinstance(attributes, dict):
                continue
            entries.append(
                CoverageEntry(
                    description=self._text(attributes.get("description")),
                    status=self._text(attributes.get("status")),
                    start_date_time=self._text(attributes.get("startDateTime")),
                    end_date_time=self._text(attributes.get("endDateTime")) or NO_END_DATE,
                    payment_type=self._text(attributes.get("paymentType")),
                )
            )
        return entries

    def map_server(self, raw: dict[str, Any]) -> ManagementServer:
        """Transform an ``mdmServers`` resource object to a ManagementServer."""
        attributes = raw.get("attributes")
        if not isinstance(attributes, dict):
            attributes = {}
        server_id = str(raw["id"])
        return ManagementServer(
            id=server_id,
            name=attributes.get("serverName") or server_id,
            server_type=attributes.get("serverType"),
        )

    @staticmethod
    def _text(value: Any) -> str:
        """Render an attribute as text; None becomes an empty string."""
        if value is None:
            return ""
        return str(value)
