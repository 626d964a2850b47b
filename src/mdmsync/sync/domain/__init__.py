"""Domain layer - Pure domain entities and port interfaces.

This layer contains:
- Entities: Pure data structures representing devices, groups and plans
- Ports: Abstract interfaces defining contracts for adapters

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
    BatchFailure,
    Device,
    Entity,
    IdentityKey,
    IdentityNamespace,
    MissingFieldError,
    ReconcileMode,
    ReconciliationOutcome,
    ReconciliationPlan,
    Resolution,
    ResolutionStatus,
    TargetCollection,
)
from .ports import (
    IDeviceCatalog,
    IDeviceMapper,
    IDirectory,
    IGroupMembershipAPI,
    MembershipSnapshot,
)

__all__ = [
    # Record entities
    "Entity",
    "MissingFieldError",
    "Device",
    "IdentityKey",
    "IdentityNamespace",
    "TargetCollection",
    # Plan/result entities
    "ReconcileMode",
    "ReconciliationPlan",
    "ReconciliationOutcome",
    "Resolution",
    "ResolutionStatus",
    "BatchFailure",
    # Ports
    "IDeviceCatalog",
    "IDirectory",
    "IGroupMembershipAPI",
    "IDeviceMapper",
    "MembershipSnapshot",
]
