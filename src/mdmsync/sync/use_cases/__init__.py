"""Use cases layer - Business logic orchestration for group sync.

This layer contains use case classes that orchestrate the sync workflow:
- Build the desired device set (via IDeviceCatalog)
- Resolve device identities (via IDeviceCatalog/IDirectory)
- Reconcile group membership (via IGroupMembershipAPI)

Use cases depend only on ports, not concrete implementations.
"""

from .desired_set import DesiredSet, DesiredSetBuilder, read_identifiers
from .reconcile_membership import SetReconciler
from .resolve_identities import IdentityResolver, ResolutionReport

__all__ = [
    "DesiredSet",
    "DesiredSetBuilder",
    "IdentityResolver",
    "ResolutionReport",
    "SetReconciler",
    "read_identifiers",
]
