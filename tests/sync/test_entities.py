"""Tests for sync domain entities."""

from datetime import datetime, timedelta, timezone

import pytest

from src.mdmsync.sync.domain.entities import (
    BatchFailure,
    Device,
    Entity,
    IdentityKey,
    IdentityNamespace,
    MissingFieldError,
    ReconciliationOutcome,
    ReconciliationPlan,
    Resolution,
    ResolutionStatus,
    TargetCollection,
)


class TestEntity:
    """Tests for the Entity record wrapper."""

    def test_mapping_access(self):
        entity = Entity({"id": "abc", "deviceName": "LAPTOP-01"})

        assert entity["deviceName"] == "LAPTOP-01"
        assert dict(entity) == {"id": "abc", "deviceName": "LAPTOP-01"}
        assert len(entity) == 2

    def test_copy_is_independent(self):
        """Mutating the source dict does not change the entity."""
        raw = {"id": "abc"}
        entity = Entity(raw)
        raw["id"] = "changed"

        assert entity.id == "abc"

    def test_missing_id_raises(self):
        with pytest.raises(MissingFieldError) as exc:
            Entity({"deviceName": "x"}).id

        assert exc.value.field_name == "id"
        assert "id" in str(exc.value)

    def test_empty_string_counts_as_missing(self):
        entity = Entity({"id": "abc", "serialNumber": ""})

        assert entity.serial_number is None
        with pytest.raises(MissingFieldError):
            entity.require_str("serialNumber")

    def test_typed_accessors(self):
        entity = Entity(
            {
                "id": "abc",
                "displayName": "Laptop",
                "serialNumber": "SN1",
                "deviceName": "LAPTOP-01",
                "azureADDeviceId": "aad-1",
                "deviceId": "aad-1",
                "@odata.type": "#microsoft.graph.device",
            }
        )

        assert entity.display_name == "Laptop"
        assert entity.serial_number == "SN1"
        assert entity.device_name == "LAPTOP-01"
        assert entity.azure_ad_device_id == "aad-1"
        assert entity.device_id == "aad-1"
        assert entity.odata_type == "#microsoft.graph.device"

    def test_zero_guid_platform_id_is_none(self):
        """Never-joined devices report the all-zero GUID."""
        entity = Entity({"id": "abc", "azureADDeviceId": "00000000-0000-0000-0000-000000000000"})
        assert entity.azure_ad_device_id is None


class TestDevice:
    """Tests for Device entity."""

    def test_key_per_namespace(self):
        device = Device(management_id="m-1", serial_number="SN1", directory_object_id="o-1")

        assert device.key(IdentityNamespace.MANAGEMENT_ID) == IdentityKey(
            IdentityNamespace.MANAGEMENT_ID, "m-1"
        )
        assert device.key(IdentityNamespace.HARDWARE_SERIAL).value == "SN1"
        assert str(device.key(IdentityNamespace.DIRECTORY_OBJECT_ID)) == "directory_object_id:o-1"

    def test_missing_key_is_none(self):
        assert Device(serial_number="SN1").key(IdentityNamespace.MANAGEMENT_ID) is None

    def test_raw_not_part_of_equality(self):
        a = Device(management_id="m-1", raw=Entity({"id": "m-1", "x": 1}))
        b = Device(management_id="m-1", raw=Entity({"id": "m-1", "x": 2}))

        assert a == b
        assert hash(a) == hash(b)

    def test_label_prefers_display_name(self):
        assert Device(display_name="LAPTOP-01", serial_number="SN1").label == "LAPTOP-01"
        assert Device(serial_number="SN1").label == "SN1"
        assert Device().label == "<unknown device>"


class TestTargetCollection:
    """Tests for TargetCollection."""

    def test_exists(self):
        assert not TargetCollection(display_name="Zoom").exists
        assert TargetCollection(display_name="Zoom", id="g-1").exists


class TestReconciliationPlan:
    """Tests for plan computation."""

    def test_prune_plan(self):
        plan = ReconciliationPlan.compute({"A", "B", "C"}, {"B", "C", "D"})

        assert plan.to_add == {"D"}
        assert plan.to_remove == {"A"}
        assert plan.projected_membership() == {"B", "C", "D"}

    def test_additive_plan(self):
        plan = ReconciliationPlan.compute({"A", "B", "C"}, {"B", "C", "D"}, prune=False)

        assert plan.to_add == {"D"}
        assert plan.to_remove == frozenset()
        assert plan.projected_membership() == {"A", "B", "C", "D"}

    @pytest.mark.parametrize(
        "current,desired",
        [
            (set(), set()),
            (set(), {"A"}),
            ({"A"}, set()),
            ({"A", "B"}, {"A", "B"}),
            ({"A", "B", "C"}, {"C", "D", "E"}),
        ],
    )
    def test_invariants(self, current, desired):
        plan = ReconciliationPlan.compute(current, desired)

        assert plan.to_add.isdisjoint(plan.current)
        assert plan.to_remove <= plan.current
        assert plan.projected_membership() == plan.desired

    def test_matching_sets_give_empty_plan(self):
        assert ReconciliationPlan.compute({"A"}, {"A"}).is_empty


class TestReconciliationOutcome:
    """Tests for ReconciliationOutcome."""

    def _resolution(self, status=ResolutionStatus.NOT_FOUND):
        return Resolution(
            Device(serial_number="SN9"),
            IdentityNamespace.DIRECTORY_OBJECT_ID,
            status,
            error="no managed device with serial SN9",
        )

    def test_success_when_clean(self):
        outcome = ReconciliationOutcome(target=TargetCollection("Zoom", id="g-1"), added_count=3)

        assert outcome.success
        assert outcome.failed_batch_count == 0
        assert outcome.unresolved_count == 0

    def test_unresolved_means_failure(self):
        outcome = ReconciliationOutcome(
            target=TargetCollection("Zoom", id="g-1"),
            unresolved=[self._resolution()],
        )

        assert outcome.unresolved_count == 1
        assert not outcome.success

    def test_failed_batch_means_failure(self):
        outcome = ReconciliationOutcome(
            target=TargetCollection("Zoom", id="g-1"),
            failures=[BatchFailure("add", ["o-1"], "Forbidden")],
        )

        assert outcome.failed_batch_count == 1
        assert not outcome.success

    def test_incomplete_membership_means_failure(self):
        outcome = ReconciliationOutcome(
            target=TargetCollection("Zoom", id="g-1"),
            membership_incomplete=True,
        )
        assert not outcome.success

    def test_to_dict(self):
        started = datetime(2026, 1, 1, tzinfo=timezone.utc)
        outcome = ReconciliationOutcome(
            target=TargetCollection("Zoom", id="g-1"),
            plan=ReconciliationPlan.compute({"A"}, {"B"}),
            added_count=1,
            removed_count=1,
            unresolved=[self._resolution()],
            failures=[BatchFailure("remove", ["A"], "Forbidden", batch_index=0)],
            started_at=started,
            completed_at=started + timedelta(seconds=2),
        )

        data = outcome.to_dict()

        assert data["target"] == {"id": "g-1", "display_name": "Zoom"}
        assert data["success"] is False
        assert data["planned_add"] == ["B"]
        assert data["planned_remove"] == ["A"]
        assert data["unresolved"][0]["status"] == "not_found"
        assert data["unresolved"][0]["device"] == "SN9"
        assert data["failures"][0]["operation"] == "remove"
        assert data["duration_seconds"] == 2.0
