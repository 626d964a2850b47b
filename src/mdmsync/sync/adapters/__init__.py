"""Adapters layer - Infrastructure implementations for group sync.

This layer contains concrete implementations of the ports defined in the domain layer:
- GraphDeviceCatalog: Intune managed devices implementation of IDeviceCatalog
- GraphDirectory: Entra ID devices implementation of IDirectory
- GraphGroupMembershipAPI: Entra ID groups implementation of IGroupMembershipAPI
- DeviceFieldMapper: Record mapping implementation of IDeviceMapper
"""

from .field_mapper import DeviceFieldMapper
from .graph_api_adapter import (
    GraphDeviceCatalog,
    GraphDirectory,
    GraphGroupMembershipAPI,
    odata_quote,
)

__all__ = [
    "DeviceFieldMapper",
    "GraphDeviceCatalog",
    "GraphDirectory",
    "GraphGroupMembershipAPI",
    "odata_quote",
]
