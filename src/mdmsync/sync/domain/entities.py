"""Domain entities for group membership sync.

These are pure data structures with no infrastructure dependencies.
They represent the records read from the management catalogue and the
directory, the identity keys that link them, and the plan/outcome of a
reconciliation run.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class MissingFieldError(KeyError):
    """Raised when a required field is absent from an Entity."""

    def __init__(self, field_name: str, entity_id: str | None = None):
        super().__init__(field_name)
        self.field_name = field_name
        self.entity_id = entity_id

    def __str__(self) -> str:
        where = f" on entity {self.entity_id}" if self.entity_id else ""
        return f"Required field '{self.field_name}' missing{where}"


class Entity(Mapping):
    """Read-only snapshot of one record returned by a listing endpoint.

    Behaves like a mapping over the raw JSON, with typed accessors for the
    well-known fields so a missing field fails at the boundary instead of
    deep inside the reconciliation logic.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any]):
        self._data = dict(data)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Entity(id={self._data.get('id')!r})"

    def require_str(self, key: str) -> str:
        """Return a non-empty string field or raise MissingFieldError."""
        value = self._data.get(key)
        if value is None or value == "":
            raise MissingFieldError(key, self._data.get("id"))
        return str(value)

    def optional_str(self, key: str) -> str | None:
        """Return a string field, or None if absent/empty."""
        value = self._data.get(key)
        if value is None or value == "":
            return None
        return str(value)

    @property
    def id(self) -> str:
        return self.require_str("id")

    @property
    def display_name(self) -> str | None:
        return self.optional_str("displayName")

    @property
    def serial_number(self) -> str | None:
        return self.optional_str("serialNumber")

    @property
    def device_name(self) -> str | None:
        return self.optional_str("deviceName")

    @property
    def azure_ad_device_id(self) -> str | None:
        """Platform device id as reported by the management catalogue."""
        value = self.optional_str("azureADDeviceId")
        # Intune reports never-joined devices with the all-zero GUID
        if value and value.strip("0-") == "":
            return None
        return value

    @property
    def device_id(self) -> str | None:
        """Platform device id as reported by the directory."""
        return self.optional_str("deviceId")

    @property
    def odata_type(self) -> str | None:
        return self.optional_str("@odata.type")

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)


class IdentityNamespace(str, Enum):
    """Addressing schemes used to refer to a device."""

    MANAGEMENT_ID = "management_id"
    HARDWARE_SERIAL = "hardware_serial"
    DIRECTORY_OBJECT_ID = "directory_object_id"


@dataclass(frozen=True)
class IdentityKey:
    """A (namespace, value) pair naming one device."""

    namespace: IdentityNamespace
    value: str

    def __str__(self) -> str:
        return f"{self.namespace.value}:{self.value}"


@dataclass(frozen=True)
class Device:
    """A device as known to the caller, with whatever identifiers are known.

    Any identifier may be missing (never checked in, never directory-joined).
    ``platform_device_id`` is the directory's deviceId, which the management
    catalogue reports as azureADDeviceId; it is the hardware/platform key used
    to find the directory object.
    """

    management_id: str | None = None
    serial_number: str | None = None
    platform_device_id: str | None = None
    directory_object_id: str | None = None
    display_name: str | None = None
    raw: Entity | None = field(default=None, compare=False, hash=False)

    def key(self, namespace: IdentityNamespace) -> IdentityKey | None:
        """Return this device's key in a namespace, if known."""
        value = {
            IdentityNamespace.MANAGEMENT_ID: self.management_id,
            IdentityNamespace.HARDWARE_SERIAL: self.serial_number,
            IdentityNamespace.DIRECTORY_OBJECT_ID: self.directory_object_id,
        }[namespace]
        if not value:
            return None
        return IdentityKey(namespace, value)

    @property
    def label(self) -> str:
        """Best human-readable name for logs and reports."""
        return (
            self.display_name
            or self.serial_number
            or self.management_id
            or self.directory_object_id
            or self.platform_device_id
            or "<unknown device>"
        )


@dataclass(frozen=True)
class TargetCollection:
    """A group whose membership is being synchronized.

    ``id`` is None when the group is only known by name (it may not exist yet).
    """

    display_name: str
    id: str | None = None
    description: str | None = None

    @property
    def exists(self) -> bool:
        return self.id is not None


class ReconcileMode(str, Enum):
    """How reconcile() treats the target group."""

    CREATE_ONLY = "create-only"
    CREATE_OR_UPDATE = "create-or-update"
    DRY_RUN = "dry-run"


class ResolutionStatus(str, Enum):
    """Why an identity resolution produced (or failed to produce) a value."""

    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    LOOKUP_FAILED = "lookup_failed"
    MISSING_KEY = "missing_key"


@dataclass(frozen=True)
class Resolution:
    """Result of translating one device into another namespace."""

    device: Device
    namespace: IdentityNamespace
    status: ResolutionStatus
    value: str | None = None
    error: str | None = None

    @property
    def resolved(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED and self.value is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "device": self.device.label,
            "management_id": self.device.management_id,
            "serial_number": self.device.serial_number,
            "namespace": self.namespace.value,
            "status": self.status.value,
            "value": self.value,
            "error": self.error,
        }


@dataclass(frozen=True)
class ReconciliationPlan:
    """Membership changes needed to move current membership to desired.

    Invariants: to_add and current are disjoint, to_remove is a subset of
    current, and (current | to_add) - to_remove == desired when pruning.
    """

    current: frozenset[str]
    desired: frozenset[str]
    to_add: frozenset[str]
    to_remove: frozenset[str]
    prune: bool = True

    @classmethod
    def compute(
        cls,
        current: set[str] | frozenset[str],
        desired: set[str] | frozenset[str],
        prune: bool = True,
    ) -> "ReconciliationPlan":
        current = frozenset(current)
        desired = frozenset(desired)
        return cls(
            current=current,
            desired=desired,
            to_add=desired - current,
            to_remove=(current - desired) if prune else frozenset(),
            prune=prune,
        )

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    def projected_membership(self) -> frozenset[str]:
        """Membership after applying the plan with no failures."""
        return (self.current | self.to_add) - self.to_remove


@dataclass
class BatchFailure:
    """One membership write that failed after throttle handling."""

    operation: str  # "add" or "remove"
    members: list[str]
    error: str
    batch_index: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "batch_index": self.batch_index,
            "members": list(self.members),
            "error": self.error,
        }


@dataclass
class ReconciliationOutcome:
    """Structured record of one reconcile() run.

    A non-zero failed_batch_count or unresolved_count, or an unreadable
    membership, means the run should be reported as failed even though
    partial progress was made.
    """

    target: TargetCollection
    plan: ReconciliationPlan | None = None
    added_count: int = 0
    removed_count: int = 0
    unresolved: list[Resolution] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    created: bool = False
    dry_run: bool = False
    membership_incomplete: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def unresolved_count(self) -> int:
        return len(self.unresolved)

    @property
    def failed_batch_count(self) -> int:
        return len(self.failures)

    @property
    def success(self) -> bool:
        return (
            self.failed_batch_count == 0
            and self.unresolved_count == 0
            and not self.membership_incomplete
        )

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready summary."""
        return {
            "target": {"id": self.target.id, "display_name": self.target.display_name},
            "success": self.success,
            "dry_run": self.dry_run,
            "created": self.created,
            "membership_incomplete": self.membership_incomplete,
            "added_count": self.added_count,
            "removed_count": self.removed_count,
            "unresolved_count": self.unresolved_count,
            "failed_batch_count": self.failed_batch_count,
            "planned_add": sorted(self.plan.to_add) if self.plan else [],
            "planned_remove": sorted(self.plan.to_remove) if self.plan else [],
            "unresolved": [r.to_dict() for r in self.unresolved],
            "failures": [f.to_dict() for f in self.failures],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }
