"""Sync module - Clean Architecture implementation of the ABM/ASM device sync engine.

Architecture:
    domain/     - Pure domain entities and port interfaces
    use_cases/  - Collection, enrichment and activity orchestration
    adapters/   - Infrastructure implementations (ABM API, field mapping)
"""

from .adapters import ABMDeviceAPI, DeviceFieldMapper
from .domain.entities import (
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
from .domain.ports import IActivityAPI, IDeviceAPI, IFieldMapper
from .use_cases import (
    CollectDevicesUseCase,
    DeviceActivitiesUseCase,
    EnrichDevicesUseCase,
    build_activity_body,
)

__all__ = [
    # Collection Entities
    "DeviceReference",
    "WorkingSet",
    # Device Entities
    "ManagementServer",
    "AssignedServer",
    "UNASSIGNED",
    "CoverageEntry",
    "NO_END_DATE",
    "DeviceRecord",
    "EnrichmentResult",
    # Activity Entities
    "ActivityState",
    "MutationKind",
    "ActivitySnapshot",
    "MonitorResult",
    # Input Parsing
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
    # Use Cases
    "CollectDevicesUseCase",
    "EnrichDevicesUseCase",
    "DeviceActivitiesUseCase",
    "build_activity_body",
    # Adapters
    "ABMDeviceAPI",
    "DeviceFieldMapper",
]
