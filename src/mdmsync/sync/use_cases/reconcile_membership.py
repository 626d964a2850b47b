"""Reconcile Membership use case - move a group's members to a desired set.

Workflow:
1. Locate the target group (by id, else by display name) and apply the
   mode rules (create-only refuses an existing group)
2. Resolve every desired device to a directory object id; unresolved
   devices are reported and skipped
3. Read the group's current device members once (every page)
4. Plan: to_add = desired - current, to_remove = current - desired
   (to_remove is empty in additive mode)
5. Apply additions in batches of at most 20 references per PATCH, then
   removals one DELETE per member (enumerated in batches of 20)
6. Continue past failed writes and report everything in one outcome

Writes go through GraphClient, so throttled writes are waited out and
repeated exactly like throttled page reads. A run that is interrupted
leaves the group partly updated; the next run re-reads membership and
converges.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from ...api.exceptions import (
    BatchLimitError,
    CollectionExistsError,
    MDMError,
    NotFoundError,
    SyncError,
)
from ..domain.entities import (
    BatchFailure,
    Device,
    IdentityNamespace,
    ReconcileMode,
    ReconciliationOutcome,
    ReconciliationPlan,
    TargetCollection,
)
from ..domain.ports import IGroupMembershipAPI, MembershipSnapshot
from .resolve_identities import IdentityResolver, chunk

logger = logging.getLogger(__name__)


class SetReconciler:
    """Computes and applies the minimal membership change for a group.

    Example:
        reconciler = SetReconciler(
            resolver=IdentityResolver(catalog, directory),
            groups=GraphGroupMembershipAPI(client),
        )
        outcome = await reconciler.reconcile(
            TargetCollection(display_name="Devices with Zoom"),
            desired_devices,
            ReconcileMode.CREATE_OR_UPDATE,
        )
    """

    MAX_BATCH_SIZE = 20  # Graph limit for members@odata.bind per request

    def __init__(
        self,
        resolver: IdentityResolver,
        groups: IGroupMembershipAPI,
        batch_size: int = MAX_BATCH_SIZE,
    ):
        """Initialize the use case with its dependencies.

        Args:
            resolver: Translates desired devices to directory object ids
            groups: Port for reading and writing group membership
            batch_size: References per add request (1-20)

        Raises:
            BatchLimitError: If batch_size exceeds the API limit
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if batch_size > self.MAX_BATCH_SIZE:
            raise BatchLimitError(member_count=batch_size, max_members=self.MAX_BATCH_SIZE)

        self.resolver = resolver
        self.groups = groups
        self.batch_size = batch_size

    @staticmethod
    def plan(
        current: Iterable[str],
        desired: Iterable[str],
        prune: bool = True,
    ) -> ReconciliationPlan:
        """Compute the add/remove sets (no I/O)."""
        return ReconciliationPlan.compute(set(current), set(desired), prune=prune)

    async def reconcile(
        self,
        target: TargetCollection,
        desired: Iterable[Device],
        mode: ReconcileMode = ReconcileMode.CREATE_OR_UPDATE,
        prune: bool = True,
        from_namespace: IdentityNamespace = IdentityNamespace.MANAGEMENT_ID,
        batched_lookup: bool = False,
    ) -> ReconciliationOutcome:
        """Make the target group's device members match ``desired``.

        Args:
            target: Group to synchronize (id, or display name to look up)
            desired: Devices that should be members
            mode: CREATE_ONLY, CREATE_OR_UPDATE or DRY_RUN
            prune: Remove members that are not desired (False = additive)
            from_namespace: Which identifier on each desired device to trust
            batched_lookup: Use grouped directory queries for resolution

        Returns:
            ReconciliationOutcome with counts, plan and per-item failures

        Raises:
            CollectionExistsError: CREATE_ONLY and the group already exists
            NotFoundError: target.id was given but no such group exists
            SyncError: target name matches more than one group
        """
        started_at = datetime.now(timezone.utc)
        dry_run = mode is ReconcileMode.DRY_RUN

        logger.info(
            f"Reconciling '{target.display_name}' (mode={mode.value}, "
            f"prune={prune}) at {started_at.isoformat()}"
        )

        existing = await self._locate(target)
        if existing is not None and mode is ReconcileMode.CREATE_ONLY:
            raise CollectionExistsError(existing.display_name, collection_id=existing.id)

        outcome = ReconciliationOutcome(
            target=existing or target,
            dry_run=dry_run,
            started_at=started_at,
        )

        # Step 1: resolve desired devices
        report = await self.resolver.resolve_many(desired, from_namespace, batched=batched_lookup)
        outcome.unresolved = list(report.unresolved)

        # Step 2: current membership
        if existing is None:
            if dry_run:
                logger.info(f"Group '{target.display_name}' does not exist; planning against empty membership")
                snapshot = MembershipSnapshot(group_id="", members=frozenset())
            else:
                created = await self.groups.create_group(target.display_name, target.description)
                existing = TargetCollection(
                    display_name=created.display_name or target.display_name,
                    id=created.id,
                    description=target.description,
                )
                outcome.target = existing
                outcome.created = True
                snapshot = MembershipSnapshot(group_id=existing.id, members=frozenset())
        else:
            snapshot = await self.groups.list_device_members(existing.id)

        if not snapshot.complete:
            logger.error(
                f"Could not read full membership of '{outcome.target.display_name}' "
                f"({snapshot.error}); no changes applied"
            )
            outcome.membership_incomplete = True
            return self._finish(outcome)

        # Step 3: plan
        plan = self.plan(snapshot.members, report.values, prune=prune)
        outcome.plan = plan
        logger.info(
            f"Plan for '{outcome.target.display_name}': {len(plan.current)} current, "
            f"{len(plan.desired)} desired, +{len(plan.to_add)} / -{len(plan.to_remove)}"
        )

        if dry_run:
            logger.info("Dry run: no changes applied")
            return self._finish(outcome)

        if plan.is_empty:
            logger.info("Membership already matches; nothing to do")
            return self._finish(outcome)

        # Step 4: apply
        await self._apply_additions(outcome.target.id, plan, outcome)
        await self._apply_removals(outcome.target.id, plan, outcome)

        return self._finish(outcome)

    async def _locate(self, target: TargetCollection) -> TargetCollection | None:
        """Find the group by id or exact display name."""
        if target.id:
            group = await self.groups.get_group(target.id)
            if group is None:
                raise NotFoundError(resource_type="Group", resource_id=target.id)
            return TargetCollection(
                display_name=group.display_name or target.display_name,
                id=group.id,
                description=target.description,
            )

        matches = await self.groups.find_groups_by_name(target.display_name)
        if not matches:
            return None
        if len(matches) > 1:
            raise SyncError(
                f"{len(matches)} groups are named '{target.display_name}'; pass the group id",
                details={"group_ids": [m.id for m in matches]},
            )
        return TargetCollection(
            display_name=matches[0].display_name or target.display_name,
            id=matches[0].id,
            description=target.description,
        )

    async def _apply_additions(
        self,
        group_id: str,
        plan: ReconciliationPlan,
        outcome: ReconciliationOutcome,
    ) -> None:
        batches = list(chunk(sorted(plan.to_add), self.batch_size))
        for index, batch in enumerate(batches):
            try:
                logger.info(f"Add batch {index + 1}/{len(batches)}: {len(batch)} member(s)")
                await self.groups.add_members(group_id, batch)
                outcome.added_count += len(batch)
            except MDMError as e:
                logger.error(f"Add batch {index + 1} failed: {e}")
                outcome.failures.append(
                    BatchFailure(operation="add", members=batch, error=str(e), batch_index=index)
                )

    async def _apply_removals(
        self,
        group_id: str,
        plan: ReconciliationPlan,
        outcome: ReconciliationOutcome,
    ) -> None:
        # The membership API removes one reference per call
        batches = list(chunk(sorted(plan.to_remove), self.batch_size))
        for index, batch in enumerate(batches):
            logger.info(f"Remove batch {index + 1}/{len(batches)}: {len(batch)} member(s)")
            for object_id in batch:
                try:
                    await self.groups.remove_member(group_id, object_id)
                    outcome.removed_count += 1
                except NotFoundError:
                    logger.info(f"Member {object_id} already removed")
                except MDMError as e:
                    logger.error(f"Removing {object_id} failed: {e}")
                    outcome.failures.append(
                        BatchFailure(
                            operation="remove",
                            members=[object_id],
                            error=str(e),
                            batch_index=index,
                        )
                    )

    def _finish(self, outcome: ReconciliationOutcome) -> ReconciliationOutcome:
        outcome.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"Reconciliation of '{outcome.target.display_name}' finished in "
            f"{outcome.duration_seconds:.2f}s: {outcome.added_count} added, "
            f"{outcome.removed_count} removed, {outcome.unresolved_count} unresolved, "
            f"{outcome.failed_batch_count} failed"
        )
        return outcome
