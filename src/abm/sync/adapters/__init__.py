"""Adapters layer - Infrastructure implementations for sync operations.

This layer contains concrete implementations of the ports defined in the domain layer:
- ABMDeviceAPI: Apple Business / School Manager implementation of IDeviceAPI and IActivityAPI
- DeviceFieldMapper: Field mapping implementation of IFieldMapper
"""

from .abm_api_adapter import ABMDeviceAPI
from .field_mapper import DeviceFieldMapper

__all__ = [
    "ABMDeviceAPI",
    "DeviceFieldMapper",
]
