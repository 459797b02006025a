"""Domain layer - Pure domain entities and port interfaces.

This layer contains:
- Entities: Pure data structures representing business objects
- Ports: Abstract interfaces defining contracts for adapters

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
    NO_END_DATE,
    UNASSIGNED,
    ActivitySnapshot,
    ActivityState,
    AssignedServer,
    Cancelled,
    CoverageEntry,
    DeviceRecord,
    DeviceReference,
    EnrichmentResult,
    Invalid,
    ManagementServer,
    MonitorResult,
    MutationKind,
    Selected,
    ServerSelection,
    WorkingSet,
    parse_device_ids,
    parse_server_selection,
)
from .ports import IActivityAPI, IDeviceAPI, IFieldMapper

__all__ = [
    # Collection
    "DeviceReference",
    "WorkingSet",
    # Devices
    "ManagementServer",
    "AssignedServer",
    "UNASSIGNED",
    "CoverageEntry",
    "NO_END_DATE",
    "DeviceRecord",
    "EnrichmentResult",
    # Activities
    "ActivityState",
    "MutationKind",
    "ActivitySnapshot",
    "MonitorResult",
    # Input parsing
    "ServerSelection",
    "Cancelled",
    "Invalid",
    "Selected",
    "parse_server_selection",
    "parse_device_ids",
    # Ports
    "IDeviceAPI",
    "IActivityAPI",
    "IFieldMapper",
]
