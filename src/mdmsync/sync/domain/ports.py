"""Port interfaces for group membership sync.

Ports define the contracts between the use cases and the infrastructure.
These are abstract base classes that adapters must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from .entities import Device, Entity


@dataclass(frozen=True)
class MembershipSnapshot:
    """Directory object ids currently in a group, as read once.

    ``complete`` is False when the listing stopped early; the member set is
    then a lower bound and must not be used to plan removals.
    """

    group_id: str
    members: frozenset[str]
    complete: bool = True
    error: str | None = None


class IDeviceCatalog(ABC):
    """Port for the management catalogue (managed device inventory).

    Lookup methods return every match so callers can detect ambiguity.
    """

    @abstractmethod
    async def get_device(self, management_id: str) -> Entity | None:
        """Fetch one managed device by its management id (None if absent)."""
        ...

    @abstractmethod
    async def find_by_serial(self, serial_number: str) -> list[Entity]:
        """Find managed devices with this hardware serial number."""
        ...

    @abstractmethod
    async def find_by_platform_id(self, platform_device_id: str) -> list[Entity]:
        """Find managed devices reporting this platform (directory) device id."""
        ...

    @abstractmethod
    async def find_by_name(self, device_name: str) -> list[Entity]:
        """Find managed devices with this device name."""
        ...

    @abstractmethod
    async def list_devices(self, filter_expr: str | None = None) -> list[Entity]:
        """List managed devices, optionally narrowed by a filter expression."""
        ...

    @abstractmethod
    async def devices_with_app(self, app_name: str) -> list[Entity]:
        """List managed devices on which an app with this name was detected."""
        ...


class IDirectory(ABC):
    """Port for the directory that owns group member objects."""

    @abstractmethod
    async def get_device(self, object_id: str) -> Entity | None:
        """Fetch one directory device object by object id (None if absent)."""
        ...

    @abstractmethod
    async def find_by_device_id(self, platform_device_id: str) -> list[Entity]:
        """Find directory device objects with this platform device id."""
        ...

    @abstractmethod
    async def find_by_device_ids(self, platform_device_ids: list[str]) -> list[Entity]:
        """Find directory device objects for several platform ids in one query.

        Implementations may cap how many ids they accept per call.
        """
        ...


class IGroupMembershipAPI(ABC):
    """Port for reading and writing group membership."""

    MAX_MEMBERS_PER_ADD = 20

    @abstractmethod
    async def get_group(self, group_id: str) -> Entity | None:
        """Fetch a group by id (None if absent)."""
        ...

    @abstractmethod
    async def find_groups_by_name(self, display_name: str) -> list[Entity]:
        """Find groups with exactly this display name."""
        ...

    @abstractmethod
    async def create_group(self, display_name: str, description: str | None = None) -> Entity:
        """Create a security group and return it."""
        ...

    @abstractmethod
    async def list_device_members(self, group_id: str) -> MembershipSnapshot:
        """Read the device members of a group (walks every page)."""
        ...

    @abstractmethod
    async def add_members(self, group_id: str, object_ids: list[str]) -> None:
        """Add up to MAX_MEMBERS_PER_ADD directory objects in one write."""
        ...

    @abstractmethod
    async def remove_member(self, group_id: str, object_id: str) -> None:
        """Remove one directory object from the group."""
        ...


class IDeviceMapper(ABC):
    """Port for mapping raw records to Device entities."""

    @abstractmethod
    def from_managed_device(self, raw: dict[str, Any] | Entity) -> Device:
        """Map a management-catalogue record to a Device."""
        ...

    @abstractmethod
    def from_directory_device(self, raw: dict[str, Any] | Entity) -> Device:
        """Map a directory device object to a Device."""
        ...
