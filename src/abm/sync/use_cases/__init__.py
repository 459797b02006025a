"""Use cases layer - Business logic orchestration for device sync operations.

This layer contains use case classes that orchestrate the sync workflow:
- Collect device references across MDM server scopes (via IDeviceAPI)
- Enrich each device with detail, assignment and coverage (via IDeviceAPI/IFieldMapper)
- Submit and monitor assign/unassign activities (via IActivityAPI)

Use cases depend only on ports, not concrete implementations.
"""

from .collect_devices import CollectDevicesUseCase
from .device_activities import DeviceActivitiesUseCase, build_activity_body
from .enrich_devices import EnrichDevicesUseCase

__all__ = [
    "CollectDevicesUseCase",
    "EnrichDevicesUseCase",
    "DeviceActivitiesUseCase",
    "build_activity_body",
]
