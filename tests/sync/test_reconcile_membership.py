"""Tests for the SetReconciler use case.

These tests use an in-memory group membership API to check the plan, the
batches written, and the outcome reported for each mode.
"""

import math
from typing import Any

import pytest

from src.mdmsync.api.exceptions import (
    BatchLimitError,
    CollectionExistsError,
    ForbiddenError,
    NotFoundError,
    SyncError,
)
from src.mdmsync.sync.domain.entities import (
    Device,
    Entity,
    ReconcileMode,
    ResolutionStatus,
    TargetCollection,
)
from src.mdmsync.sync.domain.ports import (
    IDeviceCatalog,
    IDirectory,
    IGroupMembershipAPI,
    MembershipSnapshot,
)
from src.mdmsync.sync.use_cases.reconcile_membership import SetReconciler
from src.mdmsync.sync.use_cases.resolve_identities import IdentityResolver


class MockCatalog(IDeviceCatalog):
    """Catalogue that knows no devices."""

    async def get_device(self, management_id: str) -> Entity | None:
        return None

    async def find_by_serial(self, serial_number: str) -> list[Entity]:
        return []

    async def find_by_platform_id(self, platform_device_id: str) -> list[Entity]:
        return []

    async def find_by_name(self, device_name: str) -> list[Entity]:
        return []

    async def list_devices(self, filter_expr: str | None = None) -> list[Entity]:
        return []

    async def devices_with_app(self, app_name: str) -> list[Entity]:
        return []


class MockDirectory(IDirectory):
    """Directory that knows no devices."""

    async def get_device(self, object_id: str) -> Entity | None:
        return None

    async def find_by_device_id(self, platform_device_id: str) -> list[Entity]:
        return []

    async def find_by_device_ids(self, platform_device_ids: list[str]) -> list[Entity]:
        return []


class MockGroupAPI(IGroupMembershipAPI):
    """In-memory groups with write recording and failure injection."""

    def __init__(
        self,
        groups: dict[str, tuple[str, set[str]]] | None = None,
        fail_add_batches: set[int] | None = None,
        fail_removes: set[str] | None = None,
        already_removed: set[str] | None = None,
        incomplete_listing: bool = False,
    ):
        self.names = {gid: name for gid, (name, _) in (groups or {}).items()}
        self.members = {gid: set(m) for gid, (_, m) in (groups or {}).items()}
        self.fail_add_batches = fail_add_batches or set()
        self.fail_removes = fail_removes or set()
        self.already_removed = already_removed or set()
        self.incomplete_listing = incomplete_listing

        self.add_calls: list[list[str]] = []
        self.remove_calls: list[str] = []
        self.created: list[str] = []

    def _entity(self, group_id: str) -> Entity:
        return Entity({"id": group_id, "displayName": self.names[group_id]})

    @property
    def writes(self) -> int:
        return len(self.add_calls) + len(self.remove_calls) + len(self.created)

    async def get_group(self, group_id: str) -> Entity | None:
        return self._entity(group_id) if group_id in self.names else None

    async def find_groups_by_name(self, display_name: str) -> list[Entity]:
        return [self._entity(gid) for gid, name in self.names.items() if name == display_name]

    async def create_group(self, display_name: str, description: str | None = None) -> Entity:
        group_id = f"g-new-{len(self.created) + 1}"
        self.created.append(display_name)
        self.names[group_id] = display_name
        self.members[group_id] = set()
        return self._entity(group_id)

    async def list_device_members(self, group_id: str) -> MembershipSnapshot:
        if self.incomplete_listing:
            return MembershipSnapshot(
                group_id=group_id,
                members=frozenset(sorted(self.members[group_id])[:1]),
                complete=False,
                error="Forbidden",
            )
        return MembershipSnapshot(group_id=group_id, members=frozenset(self.members[group_id]))

    async def add_members(self, group_id: str, object_ids: list[str]) -> None:
        self.add_calls.append(list(object_ids))
        if len(object_ids) > self.MAX_MEMBERS_PER_ADD:
            raise BatchLimitError(member_count=len(object_ids))
        if len(self.add_calls) - 1 in self.fail_add_batches:
            raise ForbiddenError("Insufficient privileges to complete the operation.")
        self.members[group_id].update(object_ids)

    async def remove_member(self, group_id: str, object_id: str) -> None:
        self.remove_calls.append(object_id)
        if object_id in self.fail_removes:
            raise ForbiddenError("Insufficient privileges to complete the operation.")
        if object_id in self.already_removed:
            raise NotFoundError(resource_type="Resource", resource_id=object_id)
        self.members[group_id].discard(object_id)


def devices(*object_ids: str) -> list[Device]:
    return [Device(directory_object_id=oid) for oid in object_ids]


def make_reconciler(groups: MockGroupAPI, **kwargs: Any) -> SetReconciler:
    return SetReconciler(
        resolver=IdentityResolver(MockCatalog(), MockDirectory()),
        groups=groups,
        **kwargs,
    )


ZOOM = TargetCollection(display_name="Devices with Zoom")


# ============================================
# Plan and Apply
# ============================================

class TestReconcile:
    """Tests for the create-or-update path."""

    @pytest.mark.asyncio
    async def test_adds_and_removes(self):
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", {"A", "B", "C"})})

        outcome = await make_reconciler(groups).reconcile(ZOOM, devices("B", "C", "D"))

        assert outcome.plan.to_add == {"D"}
        assert outcome.plan.to_remove == {"A"}
        assert outcome.added_count == 1
        assert outcome.removed_count == 1
        assert outcome.success
        assert groups.members["g-1"] == {"B", "C", "D"}

    @pytest.mark.asyncio
    async def test_additive_never_removes(self):
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", {"A", "B", "C"})})

        outcome = await make_reconciler(groups).reconcile(
            ZOOM, devices("B", "C", "D"), prune=False
        )

        assert outcome.plan.to_remove == frozenset()
        assert groups.remove_calls == []
        assert groups.members["g-1"] == {"A", "B", "C", "D"}

    @pytest.mark.asyncio
    async def test_additive_scenario_adds_only_missing(self):
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", {"X"})})

        outcome = await make_reconciler(groups).reconcile(
            ZOOM, devices("X", "Y", "Z"), prune=False
        )

        assert outcome.added_count == 2
        assert outcome.removed_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("k", [0, 1, 19, 20, 21, 40, 45])
    async def test_add_batches_never_exceed_twenty(self, k):
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", set())})
        desired = devices(*[f"o-{i:03d}" for i in range(k)])

        outcome = await make_reconciler(groups).reconcile(ZOOM, desired)

        assert len(groups.add_calls) == math.ceil(k / 20)
        assert all(1 <= len(batch) <= 20 for batch in groups.add_calls)
        assert outcome.added_count == k

    @pytest.mark.asyncio
    async def test_smaller_batch_size(self):
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", set())})

        await make_reconciler(groups, batch_size=5).reconcile(
            ZOOM, devices(*[f"o-{i}" for i in range(12)])
        )

        assert [len(b) for b in groups.add_calls] == [5, 5, 2]

    @pytest.mark.asyncio
    async def test_removals_one_call_per_member(self):
        current = {f"o-{i:02d}" for i in range(25)}
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", current)})

        outcome = await make_reconciler(groups).reconcile(ZOOM, [])

        assert sorted(groups.remove_calls) == sorted(current)
        assert outcome.removed_count == 25
        assert groups.members["g-1"] == set()

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self):
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", {"A", "B"})})
        reconciler = make_reconciler(groups)

        await reconciler.reconcile(ZOOM, devices("B", "C"))
        writes_after_first = groups.writes
        second = await reconciler.reconcile(ZOOM, devices("B", "C"))

        assert second.plan.is_empty
        assert groups.writes == writes_after_first
        assert second.added_count == second.removed_count == 0

    @pytest.mark.asyncio
    async def test_unresolved_devices_are_skipped_and_reported(self):
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", set())})
        desired = devices("o-1", "o-2", "o-3", "o-4") + [Device(management_id="m-ghost")]

        outcome = await make_reconciler(groups).reconcile(ZOOM, desired)

        assert outcome.added_count == 4
        assert outcome.unresolved_count == 1
        assert outcome.unresolved[0].status is ResolutionStatus.NOT_FOUND
        assert not outcome.success

    @pytest.mark.asyncio
    async def test_target_by_id(self):
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", set())})

        outcome = await make_reconciler(groups).reconcile(
            TargetCollection(display_name="ignored", id="g-1"), devices("A")
        )

        assert outcome.target.id == "g-1"
        assert outcome.target.display_name == "Devices with Zoom"
        assert groups.members["g-1"] == {"A"}

    @pytest.mark.asyncio
    async def test_unknown_target_id_raises(self):
        groups = MockGroupAPI()

        with pytest.raises(NotFoundError):
            await make_reconciler(groups).reconcile(
                TargetCollection(display_name="x", id="g-missing"), devices("A")
            )

    @pytest.mark.asyncio
    async def test_duplicate_group_names_raise(self):
        groups = MockGroupAPI(
            {
                "g-1": ("Devices with Zoom", set()),
                "g-2": ("Devices with Zoom", set()),
            }
        )

        with pytest.raises(SyncError) as exc:
            await make_reconciler(groups).reconcile(ZOOM, devices("A"))

        assert exc.value.details["group_ids"] == ["g-1", "g-2"]
        assert groups.writes == 0


# ============================================
# Failure Handling
# ============================================

class TestFailures:
    """Tests for partial failures."""

    @pytest.mark.asyncio
    async def test_failed_add_batch_does_not_stop_others(self):
        groups = MockGroupAPI(
            {"g-1": ("Devices with Zoom", set())},
            fail_add_batches={1},
        )
        desired = devices(*[f"o-{i:03d}" for i in range(45)])

        outcome = await make_reconciler(groups).reconcile(ZOOM, desired)

        assert len(groups.add_calls) == 3
        assert outcome.added_count == 25
        assert outcome.failed_batch_count == 1
        failure = outcome.failures[0]
        assert failure.operation == "add"
        assert failure.batch_index == 1
        assert len(failure.members) == 20
        assert not outcome.success

    @pytest.mark.asyncio
    async def test_failed_removal_does_not_stop_others(self):
        groups = MockGroupAPI(
            {"g-1": ("Devices with Zoom", {"A", "B", "C"})},
            fail_removes={"B"},
        )

        outcome = await make_reconciler(groups).reconcile(ZOOM, [])

        assert outcome.removed_count == 2
        assert outcome.failures[0].operation == "remove"
        assert outcome.failures[0].members == ["B"]
        assert groups.members["g-1"] == {"B"}

    @pytest.mark.asyncio
    async def test_removal_of_already_removed_member_is_not_a_failure(self):
        groups = MockGroupAPI(
            {"g-1": ("Devices with Zoom", {"A", "B"})},
            already_removed={"A"},
        )

        outcome = await make_reconciler(groups).reconcile(ZOOM, [])

        assert outcome.failed_batch_count == 0
        assert outcome.removed_count == 1

    @pytest.mark.asyncio
    async def test_incomplete_membership_blocks_writes(self):
        groups = MockGroupAPI(
            {"g-1": ("Devices with Zoom", {"A", "B", "C"})},
            incomplete_listing=True,
        )

        outcome = await make_reconciler(groups).reconcile(ZOOM, devices("D"))

        assert outcome.membership_incomplete
        assert outcome.plan is None
        assert groups.writes == 0
        assert not outcome.success


# ============================================
# Modes
# ============================================

class TestModes:
    """Tests for CREATE_ONLY, CREATE_OR_UPDATE and DRY_RUN."""

    @pytest.mark.asyncio
    async def test_dry_run_issues_no_writes(self):
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", {"A", "B", "C"})})

        outcome = await make_reconciler(groups).reconcile(
            ZOOM, devices("B", "C", "D"), mode=ReconcileMode.DRY_RUN
        )

        assert outcome.dry_run
        assert outcome.plan.to_add == {"D"}
        assert outcome.plan.to_remove == {"A"}
        assert outcome.added_count == outcome.removed_count == 0
        assert groups.writes == 0

    @pytest.mark.asyncio
    async def test_dry_run_missing_group_plans_against_empty(self):
        groups = MockGroupAPI()

        outcome = await make_reconciler(groups).reconcile(
            ZOOM, devices("A", "B"), mode=ReconcileMode.DRY_RUN
        )

        assert outcome.plan.to_add == {"A", "B"}
        assert not outcome.created
        assert groups.writes == 0

    @pytest.mark.asyncio
    async def test_create_only_refuses_existing_group(self):
        groups = MockGroupAPI({"g-1": ("Devices with Zoom", {"A"})})

        with pytest.raises(CollectionExistsError) as exc:
            await make_reconciler(groups).reconcile(
                ZOOM, devices("B"), mode=ReconcileMode.CREATE_ONLY
            )

        assert exc.value.collection_id == "g-1"
        assert groups.writes == 0

    @pytest.mark.asyncio
    async def test_create_only_creates_missing_group(self):
        groups = MockGroupAPI()

        outcome = await make_reconciler(groups).reconcile(
            ZOOM, devices("A", "B"), mode=ReconcileMode.CREATE_ONLY
        )

        assert outcome.created
        assert groups.created == ["Devices with Zoom"]
        assert groups.members[outcome.target.id] == {"A", "B"}

    @pytest.mark.asyncio
    async def test_create_or_update_creates_missing_group(self):
        groups = MockGroupAPI()

        outcome = await make_reconciler(groups).reconcile(ZOOM, devices("A"))

        assert outcome.created
        assert outcome.target.id == "g-new-1"
        assert outcome.added_count == 1


class TestConstruction:
    """Tests for SetReconciler setup."""

    def test_batch_size_over_limit(self):
        with pytest.raises(BatchLimitError):
            make_reconciler(MockGroupAPI(), batch_size=21)

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            make_reconciler(MockGroupAPI(), batch_size=0)

    def test_plan_is_pure(self):
        plan = SetReconciler.plan(["A", "B"], ["B", "C"], prune=True)

        assert plan.to_add == {"C"}
        assert plan.to_remove == {"A"}
