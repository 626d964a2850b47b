"""Sync module - Clean Architecture implementation for group membership sync.

Architecture:
    domain/     - Pure domain entities and port interfaces
    use_cases/  - Identity resolution and membership reconciliation
    adapters/   - Infrastructure implementations (Microsoft Graph)
"""

from .domain.entities import (
    BatchFailure,
    Device,
    Entity,
    IdentityKey,
    IdentityNamespace,
    ReconcileMode,
    ReconciliationOutcome,
    ReconciliationPlan,
    Resolution,
    ResolutionStatus,
    TargetCollection,
)
from .domain.ports import (
    IDeviceCatalog,
    IDeviceMapper,
    IDirectory,
    IGroupMembershipAPI,
    MembershipSnapshot,
)

__all__ = [
    # Entities
    "Entity",
    "Device",
    "IdentityKey",
    "IdentityNamespace",
    "TargetCollection",
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
