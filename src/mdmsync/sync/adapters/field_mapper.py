"""Field mapper adapter for turning Graph records into Device entities.

Intune and Entra ID name the same identifiers differently:

    managedDevice.id              -> Device.management_id
    managedDevice.serialNumber    -> Device.serial_number
    managedDevice.azureADDeviceId -> Device.platform_device_id
    device.id                     -> Device.directory_object_id
    device.deviceId               -> Device.platform_device_id
"""

from typing import Any

from ..domain.entities import Device, Entity
from ..domain.ports import IDeviceMapper


def _as_entity(raw: dict[str, Any] | Entity) -> Entity:
    return raw if isinstance(raw, Entity) else Entity(raw)


class DeviceFieldMapper(IDeviceMapper):
    """Maps Graph managed-device and directory-device records to Device."""

    def from_managed_device(self, raw: dict[str, Any] | Entity) -> Device:
        entity = _as_entity(raw)
        return Device(
            management_id=entity.id,
            serial_number=entity.serial_number,
            platform_device_id=entity.azure_ad_device_id,
            display_name=entity.device_name or entity.display_name,
            raw=entity,
        )

    def from_directory_device(self, raw: dict[str, Any] | Entity) -> Device:
        entity = _as_entity(raw)
        return Device(
            directory_object_id=entity.id,
            platform_device_id=entity.device_id,
            display_name=entity.display_name,
            raw=entity,
        )
