"""Desired Set use case - build the set of devices a group should contain.

Sources:
- Devices with a detected app (e.g. every device with "Zoom" installed)
- Devices named in a file (serials, management ids, object ids or names)
- Devices matching a raw managed-device filter expression
"""

import csv
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from ..domain.entities import Device, Entity, IdentityNamespace
from ..domain.ports import IDeviceCatalog, IDeviceMapper

logger = logging.getLogger(__name__)

HEADER_CELLS = {
    "id",
    "name",
    "serial",
    "serialnumber",
    "serial number",
    "devicename",
    "device name",
    "deviceid",
    "manageddeviceid",
    "objectid",
}


@dataclass
class DesiredSet:
    """Devices that should be members, plus criteria that matched nothing."""

    devices: list[Device] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.devices)


def read_identifiers(path: str | Path) -> list[str]:
    """Read one identifier per line from a text or CSV file.

    Blank lines and lines starting with '#' are skipped. For .csv files the
    first column is used and a header row is dropped. Order is kept and
    duplicates removed.
    """
    path = Path(path)
    values: list[str] = []

    with open(path, newline="", encoding="utf-8-sig") as f:
        if path.suffix.lower() == ".csv":
            for row_number, row in enumerate(csv.reader(f)):
                if not row:
                    continue
                cell = row[0].strip()
                if row_number == 0 and cell.lower() in HEADER_CELLS:
                    continue
                if cell and not cell.startswith("#"):
                    values.append(cell)
        else:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    values.append(line)

    unique = list(dict.fromkeys(values))
    logger.info(f"Read {len(unique)} identifier(s) from {path}")
    return unique


def devices_from_identifiers(
    identifiers: Iterable[str],
    namespace: IdentityNamespace,
) -> list[Device]:
    """Wrap bare identifiers as Devices keyed in ``namespace``."""
    if namespace is IdentityNamespace.HARDWARE_SERIAL:
        return [Device(serial_number=v, display_name=v) for v in identifiers]
    if namespace is IdentityNamespace.MANAGEMENT_ID:
        return [Device(management_id=v) for v in identifiers]
    return [Device(directory_object_id=v) for v in identifiers]


class DesiredSetBuilder:
    """Builds desired sets from the management catalogue."""

    def __init__(self, catalog: IDeviceCatalog, mapper: IDeviceMapper):
        self.catalog = catalog
        self.mapper = mapper

    def _to_devices(self, records: list[Entity]) -> list[Device]:
        return [self.mapper.from_managed_device(r) for r in records]

    async def devices_with_app(self, app_name: str) -> DesiredSet:
        """Every managed device on which ``app_name`` was detected."""
        records = await self.catalog.devices_with_app(app_name)
        if not records:
            logger.warning(f"No managed device reports '{app_name}' installed")
        else:
            logger.info(f"{len(records)} device(s) have '{app_name}' installed")
        return DesiredSet(devices=self._to_devices(records))

    async def devices_matching(self, filter_expr: str) -> DesiredSet:
        """Managed devices matching an OData filter expression."""
        records = await self.catalog.list_devices(filter_expr)
        logger.info(f"{len(records)} device(s) match filter {filter_expr!r}")
        return DesiredSet(devices=self._to_devices(records))

    async def devices_by_name(self, names: Iterable[str]) -> DesiredSet:
        """Look each device name up in the catalogue.

        A name with no match, or with several (names are not unique), is
        reported as unmatched rather than guessed.
        """
        result = DesiredSet()
        for name in names:
            records = await self.catalog.find_by_name(name)
            if len(records) == 1:
                result.devices.extend(self._to_devices(records))
            elif not records:
                logger.warning(f"No managed device named '{name}'")
                result.unmatched.append(name)
            else:
                logger.warning(
                    f"Ambiguous device name '{name}' ({len(records)} matches), skipping"
                )
                result.unmatched.append(name)
        return result

    async def devices_from_file(
        self,
        path: str | Path,
        namespace: IdentityNamespace | None,
    ) -> DesiredSet:
        """Devices listed in a file.

        Args:
            path: Text or CSV file, one identifier per line
            namespace: Identifier space of the values, or None for device names
        """
        identifiers = read_identifiers(path)
        if namespace is None:
            return await self.devices_by_name(identifiers)
        return DesiredSet(devices=devices_from_identifiers(identifiers, namespace))
