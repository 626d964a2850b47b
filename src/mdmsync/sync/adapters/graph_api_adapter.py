"""Graph API adapters for the device catalogue, directory and groups.

These adapters implement the domain ports and wrap GraphClient to provide
the Intune / Entra ID specific endpoints, filters and payload shapes.
"""

import logging
import re
from typing import TYPE_CHECKING, Any

from ...api.exceptions import BatchLimitError, NotFoundError, ValidationError
from ..domain.entities import Entity
from ..domain.ports import (
    IDeviceCatalog,
    IDirectory,
    IGroupMembershipAPI,
    MembershipSnapshot,
)

if TYPE_CHECKING:
    from ...api.client import GraphClient, PaginationConfig

logger = logging.getLogger(__name__)


def odata_quote(value: str) -> str:
    """Quote a string literal for an OData $filter expression."""
    return "'" + value.replace("'", "''") + "'"


class _GraphAdapter:
    """Shared plumbing: optional pagination config and filtered lookups."""

    def __init__(
        self,
        client: "GraphClient",
        pagination_config: "PaginationConfig | None" = None,
    ):
        self.client = client
        self.pagination_config = pagination_config

    async def _get_or_none(self, endpoint: str, params: dict | None = None) -> Entity | None:
        try:
            data = await self.client.get(endpoint, params=params)
        except NotFoundError:
            return None
        return Entity(data)

    async def _find(self, endpoint: str, params: dict[str, Any]) -> list[Entity]:
        """Walk a filtered listing; raise if the walk could not finish."""
        result = await self.client.walk(endpoint, config=self.pagination_config, params=params)
        if not result.complete and result.error is not None:
            raise result.error
        return [Entity(item) for item in result.items]


class GraphDeviceCatalog(_GraphAdapter, IDeviceCatalog):
    """Intune managed device inventory (deviceManagement/managedDevices)."""

    ENDPOINT = "deviceManagement/managedDevices"
    DETECTED_APPS_ENDPOINT = "deviceManagement/detectedApps"
    SELECT = "id,deviceName,serialNumber,azureADDeviceId,operatingSystem,userPrincipalName"

    async def get_device(self, management_id: str) -> Entity | None:
        return await self._get_or_none(
            f"{self.ENDPOINT}/{management_id}",
            params={"$select": self.SELECT},
        )

    async def _find_eq(self, field: str, value: str) -> list[Entity]:
        return await self._find(
            self.ENDPOINT,
            {"$filter": f"{field} eq {odata_quote(value)}", "$select": self.SELECT},
        )

    async def find_by_serial(self, serial_number: str) -> list[Entity]:
        return await self._find_eq("serialNumber", serial_number)

    async def find_by_platform_id(self, platform_device_id: str) -> list[Entity]:
        return await self._find_eq("azureADDeviceId", platform_device_id)

    async def find_by_name(self, device_name: str) -> list[Entity]:
        return await self._find_eq("deviceName", device_name)

    async def list_devices(self, filter_expr: str | None = None) -> list[Entity]:
        params = {"$select": self.SELECT}
        if filter_expr:
            params["$filter"] = filter_expr
        return await self._find(self.ENDPOINT, params)

    async def devices_with_app(self, app_name: str) -> list[Entity]:
        """Managed devices where any detected app with this name was seen.

        The detected-apps inventory keeps one record per app version, so
        several apps can match and a device can appear under more than one.
        """
        apps = await self._find(
            self.DETECTED_APPS_ENDPOINT,
            {"$filter": f"displayName eq {odata_quote(app_name)}"},
        )
        logger.info(f"Found {len(apps)} detected app record(s) named '{app_name}'")

        devices: dict[str, Entity] = {}
        for app in apps:
            found = await self._find(
                f"{self.DETECTED_APPS_ENDPOINT}/{app.id}/managedDevices",
                {},
            )
            for device in found:
                devices.setdefault(device.id, device)
        return list(devices.values())


class GraphDirectory(_GraphAdapter, IDirectory):
    """Entra ID device objects (devices)."""

    ENDPOINT = "devices"
    SELECT = "id,deviceId,displayName,operatingSystem"

    # Graph rejects more than 15 values in a single `in` filter
    MAX_IDS_PER_QUERY = 15

    async def get_device(self, object_id: str) -> Entity | None:
        return await self._get_or_none(
            f"{self.ENDPOINT}/{object_id}",
            params={"$select": self.SELECT},
        )

    async def find_by_device_id(self, platform_device_id: str) -> list[Entity]:
        return await self._find(
            self.ENDPOINT,
            {
                "$filter": f"deviceId eq {odata_quote(platform_device_id)}",
                "$select": self.SELECT,
            },
        )

    async def find_by_device_ids(self, platform_device_ids: list[str]) -> list[Entity]:
        if not platform_device_ids:
            return []
        if len(platform_device_ids) > self.MAX_IDS_PER_QUERY:
            raise ValidationError(
                f"At most {self.MAX_IDS_PER_QUERY} device ids per query, "
                f"got {len(platform_device_ids)}",
                field="platform_device_ids",
            )
        values = ",".join(odata_quote(v) for v in platform_device_ids)
        return await self._find(
            self.ENDPOINT,
            {"$filter": f"deviceId in ({values})", "$select": self.SELECT},
        )


class GraphGroupMembershipAPI(_GraphAdapter, IGroupMembershipAPI):
    """Entra ID groups and their device members."""

    ENDPOINT = "groups"

    def _member_ref(self, object_id: str) -> str:
        return f"{self.client.base_url}/directoryObjects/{object_id}"

    async def get_group(self, group_id: str) -> Entity | None:
        return await self._get_or_none(f"{self.ENDPOINT}/{group_id}")

    async def find_groups_by_name(self, display_name: str) -> list[Entity]:
        return await self._find(
            self.ENDPOINT,
            {
                "$filter": f"displayName eq {odata_quote(display_name)}",
                "$select": "id,displayName,description",
            },
        )

    async def create_group(self, display_name: str, description: str | None = None) -> Entity:
        nickname = re.sub(r"[^A-Za-z0-9]", "", display_name)[:56] or "devicegroup"
        payload = {
            "displayName": display_name,
            "description": description or display_name,
            "mailEnabled": False,
            "mailNickname": nickname,
            "securityEnabled": True,
        }
        logger.info(f"Creating group '{display_name}'")
        data = await self.client.post(self.ENDPOINT, json_body=payload)
        return Entity(data)

    async def list_device_members(self, group_id: str) -> MembershipSnapshot:
        # The type-cast segment limits the listing to device objects, so
        # users or nested groups are never planned for removal
        result = await self.client.walk(
            f"{self.ENDPOINT}/{group_id}/members/microsoft.graph.device",
            config=self.pagination_config,
            params={"$select": "id"},
        )
        members = frozenset(item["id"] for item in result.items if item.get("id"))
        return MembershipSnapshot(
            group_id=group_id,
            members=members,
            complete=result.complete,
            error=str(result.error) if result.error else None,
        )

    async def add_members(self, group_id: str, object_ids: list[str]) -> None:
        if not object_ids:
            raise ValidationError(
                "At least one member id is required",
                field="object_ids",
            )
        if len(object_ids) > self.MAX_MEMBERS_PER_ADD:
            raise BatchLimitError(
                member_count=len(object_ids),
                max_members=self.MAX_MEMBERS_PER_ADD,
            )

        payload = {"members@odata.bind": [self._member_ref(oid) for oid in object_ids]}
        await self.client.patch(f"{self.ENDPOINT}/{group_id}", json_body=payload)

    async def remove_member(self, group_id: str, object_id: str) -> None:
        await self.client.delete(f"{self.ENDPOINT}/{group_id}/members/{object_id}/$ref")
