"""Resolve Identities use case - translate devices between identifier namespaces.

The desired membership of a group is usually expressed in terms the
management catalogue understands (serial number, management id, device
name), while group membership writes need directory object ids. This use
case bridges the two.

Resolution to a directory object id:
1. Use a directory object id already present on the record (no call)
2. Otherwise find the platform device id: from the record, or by looking
   the device up in the catalogue by management id or serial number
3. Query the directory for that platform device id
4. Zero matches -> NOT_FOUND, several -> AMBIGUOUS (never guess)

Failures never raise: each device gets a Resolution, and unresolved
devices are reported by the caller while the rest proceed.

Two lookup modes:
- Default: one directory query per device (simple, many round-trips)
- Batched: directory queries grouped into `deviceId in (...)` filters
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Iterator, TypeVar

from ...api.exceptions import MDMError
from ..domain.entities import (
    Device,
    Entity,
    IdentityNamespace,
    Resolution,
    ResolutionStatus,
)
from ..domain.ports import IDeviceCatalog, IDirectory

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunk(items: list[T], size: int) -> Iterator[list[T]]:
    """Split a list into chunks of specified size."""
    for i in range(0, len(items), size):
        yield items[i : i + size]


class _Unresolved(Exception):
    """Internal signal: stop resolving this device with the given status."""

    def __init__(self, status: ResolutionStatus, error: str):
        super().__init__(error)
        self.status = status
        self.error = error


@dataclass
class ResolutionReport:
    """Resolutions for a whole desired set, split by outcome."""

    resolved: list[Resolution] = field(default_factory=list)
    unresolved: list[Resolution] = field(default_factory=list)

    @property
    def values(self) -> frozenset[str]:
        """Distinct resolved identifiers (duplicates collapse)."""
        return frozenset(r.value for r in self.resolved if r.value)

    def add(self, resolution: Resolution) -> None:
        if resolution.resolved:
            self.resolved.append(resolution)
        else:
            self.unresolved.append(resolution)


class IdentityResolver:
    """Maps devices between management id, serial and directory object id.

    Example:
        resolver = IdentityResolver(
            catalog=GraphDeviceCatalog(client),
            directory=GraphDirectory(client),
        )
        resolution = await resolver.resolve(
            device,
            IdentityNamespace.HARDWARE_SERIAL,
            IdentityNamespace.DIRECTORY_OBJECT_ID,
        )
    """

    def __init__(self, catalog: IDeviceCatalog, directory: IDirectory):
        self.catalog = catalog
        self.directory = directory
        self.lookup_count = 0

    # ----------------------------------------
    # Single device
    # ----------------------------------------

    async def resolve(
        self,
        device: Device,
        from_namespace: IdentityNamespace,
        to_namespace: IdentityNamespace,
    ) -> Resolution:
        """Translate one device into ``to_namespace``.

        Args:
            device: Device with at least the ``from_namespace`` key populated
            from_namespace: Which identifier on the device the caller trusts
            to_namespace: Identifier space the result must be in

        Returns:
            Resolution whose status explains a missing value
        """
        try:
            if to_namespace is IdentityNamespace.DIRECTORY_OBJECT_ID:
                value = await self._to_directory_object_id(device, from_namespace)
            else:
                value = await self._to_catalog_key(device, from_namespace, to_namespace)

        except _Unresolved as u:
            self._log_unresolved(device, u)
            return Resolution(device, to_namespace, u.status, error=u.error)

        except MDMError as e:
            logger.warning(f"Identity lookup failed for {device.label}: {e}")
            return Resolution(
                device,
                to_namespace,
                ResolutionStatus.LOOKUP_FAILED,
                error=str(e),
            )

        return Resolution(device, to_namespace, ResolutionStatus.RESOLVED, value=value)

    async def _to_directory_object_id(
        self,
        device: Device,
        from_namespace: IdentityNamespace,
    ) -> str:
        if device.directory_object_id:
            return device.directory_object_id

        platform_id = await self._platform_id(device, from_namespace)

        self.lookup_count += 1
        matches = await self.directory.find_by_device_id(platform_id)
        return self._single(matches, f"directory device with deviceId {platform_id}").id

    async def _to_catalog_key(
        self,
        device: Device,
        from_namespace: IdentityNamespace,
        to_namespace: IdentityNamespace,
    ) -> str:
        known = device.key(to_namespace)
        if known:
            return known.value

        record = await self._managed_record(device, from_namespace)
        if to_namespace is IdentityNamespace.MANAGEMENT_ID:
            return record.id

        serial = record.serial_number
        if not serial:
            raise _Unresolved(
                ResolutionStatus.NOT_FOUND,
                f"managed device {record.id} reports no serial number",
            )
        return serial

    # ----------------------------------------
    # Lookup helpers
    # ----------------------------------------

    def _require_key(self, device: Device, namespace: IdentityNamespace) -> str:
        key = device.key(namespace)
        if key is None:
            raise _Unresolved(
                ResolutionStatus.MISSING_KEY,
                f"device has no {namespace.value} to resolve from",
            )
        return key.value

    def _single(self, matches: list[Entity], what: str) -> Entity:
        if not matches:
            raise _Unresolved(ResolutionStatus.NOT_FOUND, f"no {what}")
        if len(matches) > 1:
            raise _Unresolved(
                ResolutionStatus.AMBIGUOUS,
                f"{len(matches)} matches for {what}",
            )
        return matches[0]

    async def _managed_record(
        self,
        device: Device,
        from_namespace: IdentityNamespace,
    ) -> Entity:
        """Find the catalogue record for a device via its trusted key."""
        # Sparse records (e.g. detectedApps listings) may omit azureADDeviceId
        if (
            device.raw is not None
            and "azureADDeviceId" in device.raw
            and device.management_id
            and from_namespace is IdentityNamespace.MANAGEMENT_ID
        ):
            return device.raw

        value = self._require_key(device, from_namespace)
        self.lookup_count += 1

        if from_namespace is IdentityNamespace.MANAGEMENT_ID:
            record = await self.catalog.get_device(value)
            if record is None:
                raise _Unresolved(ResolutionStatus.NOT_FOUND, f"no managed device {value}")
            return record

        if from_namespace is IdentityNamespace.HARDWARE_SERIAL:
            matches = await self.catalog.find_by_serial(value)
            return self._single(matches, f"managed device with serial {value}")

        directory_record = await self.directory.get_device(value)
        if directory_record is None or not directory_record.device_id:
            raise _Unresolved(ResolutionStatus.NOT_FOUND, f"no directory device {value}")

        self.lookup_count += 1
        matches = await self.catalog.find_by_platform_id(directory_record.device_id)
        return self._single(
            matches,
            f"managed device with azureADDeviceId {directory_record.device_id}",
        )

    async def _platform_id(
        self,
        device: Device,
        from_namespace: IdentityNamespace,
    ) -> str:
        """Platform device id, from the record or via the catalogue."""
        if device.platform_device_id:
            return device.platform_device_id

        if from_namespace is IdentityNamespace.DIRECTORY_OBJECT_ID:
            raise _Unresolved(
                ResolutionStatus.MISSING_KEY,
                "device has no directory object id or platform device id",
            )

        record = await self._managed_record(device, from_namespace)
        platform_id = record.azure_ad_device_id
        if not platform_id:
            raise _Unresolved(
                ResolutionStatus.NOT_FOUND,
                f"managed device {record.id} is not directory-joined",
            )
        return platform_id

    def _log_unresolved(self, device: Device, u: _Unresolved) -> None:
        if u.status is ResolutionStatus.AMBIGUOUS:
            logger.warning(
                f"Ambiguous identity for {device.label}, skipping: {u.error}"
            )
        else:
            logger.warning(f"Could not resolve {device.label}: {u.error}")

    # ----------------------------------------
    # Whole desired set
    # ----------------------------------------

    async def resolve_many(
        self,
        devices: Iterable[Device],
        from_namespace: IdentityNamespace = IdentityNamespace.MANAGEMENT_ID,
        batched: bool = False,
    ) -> ResolutionReport:
        """Resolve every device to a directory object id.

        Args:
            devices: Desired devices
            from_namespace: Which identifier on each device the caller trusts
            batched: Group directory queries into `in` filters instead of one
                query per device

        Returns:
            ResolutionReport with resolved and unresolved devices
        """
        devices = list(devices)
        report = ResolutionReport()

        if not batched:
            for device in devices:
                report.add(
                    await self.resolve(
                        device,
                        from_namespace,
                        IdentityNamespace.DIRECTORY_OBJECT_ID,
                    )
                )
        else:
            await self._resolve_batched(devices, from_namespace, report)

        logger.info(
            f"Resolved {len(report.resolved)}/{len(devices)} device(s) "
            f"({len(report.values)} distinct), {len(report.unresolved)} unresolved"
        )
        return report

    async def _resolve_batched(
        self,
        devices: list[Device],
        from_namespace: IdentityNamespace,
        report: ResolutionReport,
    ) -> None:
        target = IdentityNamespace.DIRECTORY_OBJECT_ID
        pending: list[tuple[Device, str]] = []

        for device in devices:
            if device.directory_object_id:
                report.add(Resolution(device, target, ResolutionStatus.RESOLVED, value=device.directory_object_id))
                continue
            try:
                pending.append((device, await self._platform_id(device, from_namespace)))
            except _Unresolved as u:
                self._log_unresolved(device, u)
                report.add(Resolution(device, target, u.status, error=u.error))
            except MDMError as e:
                logger.warning(f"Identity lookup failed for {device.label}: {e}")
                report.add(Resolution(device, target, ResolutionStatus.LOOKUP_FAILED, error=str(e)))

        size = getattr(self.directory, "MAX_IDS_PER_QUERY", 15)
        for group in chunk(pending, size):
            platform_ids = list(dict.fromkeys(pid for _, pid in group))
            try:
                self.lookup_count += 1
                matches = await self.directory.find_by_device_ids(platform_ids)
            except MDMError as e:
                logger.warning(f"Batched directory lookup failed for {len(group)} device(s): {e}")
                for device, _ in group:
                    report.add(Resolution(device, target, ResolutionStatus.LOOKUP_FAILED, error=str(e)))
                continue

            by_platform_id: dict[str, list[Entity]] = {}
            for match in matches:
                if match.device_id:
                    by_platform_id.setdefault(match.device_id.lower(), []).append(match)

            for device, platform_id in group:
                try:
                    found = self._single(
                        by_platform_id.get(platform_id.lower(), []),
                        f"directory device with deviceId {platform_id}",
                    )
                except _Unresolved as u:
                    self._log_unresolved(device, u)
                    report.add(Resolution(device, target, u.status, error=u.error))
                    continue
                report.add(Resolution(device, target, ResolutionStatus.RESOLVED, value=found.id))
