#!/usr/bin/env python3
"""Device Group Membership Sync CLI.

This module provides a command-line interface for keeping an Entra ID
security group's device members in line with a desired set of managed
devices. The desired set comes from Intune (devices with an app installed,
a managed-device filter) or from a file of identifiers.

Architecture:
    - Uses GraphClient as the shared HTTP layer for all API calls
    - TokenManager handles OAuth2 client credentials flow
    - DesiredSetBuilder, IdentityResolver and SetReconciler work through
      the Graph adapters (ports/adapters)

Environment Variables Required:
    - MDM_TENANT_ID: Directory tenant id
    - MDM_CLIENT_ID: App registration client id
    - MDM_CLIENT_SECRET: App registration client secret
    - GRAPH_BASE_URL: Graph API base URL (optional)
    - MDM_THROTTLE_MAX_RETRIES: Throttle retry ceiling (optional)

Example Usage:
    $ python main.py --app "Zoom" --group-name "Devices with Zoom"
    $ python main.py --file serials.txt --group-id <id> --additive
    $ python main.py --filter "operatingSystem eq 'Windows'" --group-name Win --mode dry-run
"""
import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.mdmsync.api import (
    ConfigurationError,
    GraphClient,
    MDMError,
    PaginationConfig,
    TokenManager,
)
from src.mdmsync.sync.adapters import (
    DeviceFieldMapper,
    GraphDeviceCatalog,
    GraphDirectory,
    GraphGroupMembershipAPI,
)
from src.mdmsync.sync.domain.entities import (
    IdentityNamespace,
    ReconcileMode,
    ReconciliationOutcome,
    TargetCollection,
)
from src.mdmsync.sync.use_cases import (
    DesiredSet,
    DesiredSetBuilder,
    IdentityResolver,
    SetReconciler,
)

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_CONFIG = 2

NAMESPACES = {
    "serial": IdentityNamespace.HARDWARE_SERIAL,
    "management-id": IdentityNamespace.MANAGEMENT_ID,
    "directory-id": IdentityNamespace.DIRECTORY_OBJECT_ID,
    "name": None,
}


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


async def build_desired_set(builder: DesiredSetBuilder, args: argparse.Namespace) -> DesiredSet:
    """Build the desired device set from whichever source was selected."""
    if args.app:
        return await builder.devices_with_app(args.app)
    if args.file:
        return await builder.devices_from_file(args.file, NAMESPACES[args.namespace])
    return await builder.devices_matching(args.filter)


def source_namespace(args: argparse.Namespace) -> IdentityNamespace:
    """Identifier the resolver should trust on each desired device."""
    if args.file:
        return NAMESPACES[args.namespace] or IdentityNamespace.MANAGEMENT_ID
    return IdentityNamespace.MANAGEMENT_ID


def exit_code(outcome: ReconciliationOutcome, desired: DesiredSet) -> int:
    if outcome.membership_incomplete or outcome.failed_batch_count or outcome.unresolved_count:
        return EXIT_INCOMPLETE
    if desired.unmatched:
        return EXIT_INCOMPLETE
    return EXIT_OK


def print_summary(outcome: ReconciliationOutcome, desired: DesiredSet) -> None:
    print("\n" + "=" * 60)
    print("DRY RUN" if outcome.dry_run else "SYNC COMPLETE")
    print("=" * 60)
    print(f"[Main] Group:       {outcome.target.display_name} ({outcome.target.id or 'not created'})")
    print(f"[Main] Desired:     {len(desired)} device(s)")
    if outcome.plan is not None:
        print(f"[Main] Current:     {len(outcome.plan.current)} member(s)")
        print(f"[Main] Planned:     +{len(outcome.plan.to_add)} / -{len(outcome.plan.to_remove)}")
    print(f"[Main] Added:       {outcome.added_count}")
    print(f"[Main] Removed:     {outcome.removed_count}")
    print(f"[Main] Unresolved:  {outcome.unresolved_count}")
    print(f"[Main] Failed:      {outcome.failed_batch_count}")
    if outcome.created:
        print("[Main] Group was created")
    if outcome.membership_incomplete:
        print("[Main] Membership could not be read completely; no changes applied")
    for name in desired.unmatched:
        print(f"[Main] No device matched: {name}")
    for resolution in outcome.unresolved:
        print(f"[Main] Unresolved {resolution.device.label}: {resolution.status.value} ({resolution.error})")
    for failure in outcome.failures:
        print(f"[Main] {failure.operation} batch {failure.batch_index} failed: {failure.error}")


async def run_sync(args: argparse.Namespace) -> int:
    """Main sync orchestration function.

    Args:
        args: Parsed command-line arguments

    Returns:
        Process exit code
    """
    start_time = datetime.now(timezone.utc)
    print(f"[Main] Starting at {start_time.isoformat()}")

    try:
        token_manager = TokenManager()
        client = GraphClient(token_manager)
        pagination = PaginationConfig.from_env()
    except ConfigurationError as e:
        print(f"[Main] Configuration error: {e}")
        return EXIT_CONFIG

    async with client:
        catalog = GraphDeviceCatalog(client, pagination)
        directory = GraphDirectory(client, pagination)
        groups = GraphGroupMembershipAPI(client, pagination)

        builder = DesiredSetBuilder(catalog, DeviceFieldMapper())
        reconciler = SetReconciler(
            resolver=IdentityResolver(catalog, directory),
            groups=groups,
        )

        try:
            desired = await build_desired_set(builder, args)
            outcome = await reconciler.reconcile(
                TargetCollection(
                    display_name=args.group_name or args.group_id,
                    id=args.group_id,
                    description=args.description,
                ),
                desired.devices,
                mode=ReconcileMode(args.mode),
                prune=not args.additive,
                from_namespace=source_namespace(args),
                batched_lookup=args.batched_lookup,
            )
        except ConfigurationError as e:
            print(f"[Main] Configuration error: {e}")
            return EXIT_CONFIG
        except MDMError as e:
            print(f"[Main] Sync failed: {e}")
            return EXIT_INCOMPLETE

    print_summary(outcome, desired)

    if args.json:
        summary = outcome.to_dict()
        summary["unmatched"] = desired.unmatched
        with open(args.json, "w") as f:
            json.dump(summary, f, indent=2)
        print(f"[Main] Outcome saved to {args.json}")

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    print(f"\n[Main] Completed in {duration:.1f} seconds")
    return exit_code(outcome, desired)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sync an Entra ID group's device members to a desired set of Intune devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --app Zoom --group-name "Devices with Zoom"
  python main.py --file serials.txt --namespace serial --group-id <id>
  python main.py --file names.csv --namespace name --group-name Lab --additive
  python main.py --filter "operatingSystem eq 'macOS'" --group-name Macs --mode dry-run
  python main.py --app Zoom --group-name Zoom --json outcome.json
        """,
    )

    # Desired set source
    source_group = parser.add_argument_group("Source Selection")
    source = source_group.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--app",
        type=str,
        metavar="NAME",
        help="Devices on which the app NAME was detected",
    )
    source.add_argument(
        "--file",
        type=str,
        metavar="FILE",
        help="Devices listed in FILE (one identifier per line, or first CSV column)",
    )
    source.add_argument(
        "--filter",
        type=str,
        metavar="EXPR",
        help="Managed devices matching an OData filter expression",
    )
    source_group.add_argument(
        "--namespace",
        choices=sorted(NAMESPACES),
        default="serial",
        help="Identifier type used in --file (default: serial)",
    )

    # Target group
    target_group = parser.add_argument_group("Target Group")
    target = target_group.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--group-id",
        type=str,
        metavar="ID",
        help="Object id of an existing group",
    )
    target.add_argument(
        "--group-name",
        type=str,
        metavar="NAME",
        help="Display name of the group (created if missing)",
    )
    target_group.add_argument(
        "--description",
        type=str,
        help="Description for a newly created group",
    )

    # Behaviour
    behaviour_group = parser.add_argument_group("Sync Options")
    behaviour_group.add_argument(
        "--mode",
        choices=[m.value for m in ReconcileMode],
        default=ReconcileMode.CREATE_OR_UPDATE.value,
        help="create-only refuses an existing group; dry-run plans without writing",
    )
    behaviour_group.add_argument(
        "--additive",
        action="store_true",
        help="Only add members, never remove",
    )
    behaviour_group.add_argument(
        "--batched-lookup",
        action="store_true",
        help="Resolve directory ids with grouped queries instead of one per device",
    )

    # Output
    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--json",
        type=str,
        metavar="FILE",
        help="Save the outcome summary as JSON to FILE",
    )
    output_group.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Debug logging",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    return asyncio.run(run_sync(args))


if __name__ == "__main__":
    sys.exit(main())
