#!/usr/bin/env python3
"""Apple Business / School Manager Device Sync CLI.

This module provides a command-line interface for exporting the device
inventory of Apple Business Manager (ABM) or Apple School Manager (ASM)
and for assigning devices to, or unassigning them from, MDM servers.

Architecture:
    - ABMClient is the shared HTTP layer for all API calls
    - TokenManager handles the OAuth2 client-assertion flow
    - CollectDevicesUseCase walks MDM server device listings
    - EnrichDevicesUseCase fetches details, assignment and AppleCare coverage
    - DeviceActivitiesUseCase submits and monitors assign/unassign activities
    - DeviceExporter writes JSON / CSV exports and summaries

Environment Variables Required:
    - ABM_MANAGER_TYPE: "business" or "school"
    - ABM_CLIENT_ID: API client id
    - ABM_CLIENT_ASSERTION or ABM_CLIENT_ASSERTION_FILE: Signed client assertion
    - ABM_OUTPUT_DIR: Export directory (optional, defaults to the current one)

Example Usage:
    $ python main.py servers
    $ python main.py export --server SERVER_ID --coverage --format both
    $ python main.py assign --server SERVER_ID --devices SERIAL1,SERIAL2 --monitor
    $ python main.py activity ACTIVITY_ID --download
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from src.abm.api import (
    ABMClient,
    ABMConfig,
    ABMError,
    AuthenticationError,
    ConfigurationError,
)
from src.abm.reports import DeviceExporter
from src.abm.sync import (
    ABMDeviceAPI,
    ActivityState,
    Cancelled,
    CollectDevicesUseCase,
    DeviceActivitiesUseCase,
    DeviceFieldMapper,
    EnrichDevicesUseCase,
    Invalid,
    ManagementServer,
    MonitorResult,
    MutationKind,
    parse_device_ids,
    parse_server_selection,
)

logger = logging.getLogger("abm.main")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


async def fetch_servers(api: ABMDeviceAPI, mapper: DeviceFieldMapper) -> list[ManagementServer]:
    """Fetch every MDM server once; used for selection and name lookup."""
    raw_servers = await api.list_mdm_servers()
    return [mapper.map_server(raw) for raw in raw_servers]


def read_device_ids(args: argparse.Namespace) -> list[str]:
    """Device ids from --devices and/or --devices-file (one per line)."""
    text = args.devices or ""
    if getattr(args, "devices_file", None):
        text += "\n" + Path(args.devices_file).expanduser().read_text()
    return parse_device_ids(text)


def print_monitor_result(result: MonitorResult) -> None:
    print("\n" + "=" * 60)
    print(f"ACTIVITY {result.activity_id}: {result.state.value}")
    print("=" * 60)
    if result.snapshot:
        snapshot = result.snapshot
        print(f"  Status:      {snapshot.status or 'N/A'}")
        print(f"  Sub-status:  {snapshot.sub_status or 'N/A'}")
        print(f"  Created:     {snapshot.created_at or 'N/A'}")
        print(f"  Completed:   {snapshot.completed_at or 'N/A'}")
        if snapshot.download_url:
            print(f"  Report:      {snapshot.download_url}")
    print(f"  Checks:      {result.checks}")
    if result.timed_out:
        print(f"\nStill running. Check later with: python main.py activity {result.activity_id}")


# ============================================
# Commands
# ============================================

async def cmd_servers(args: argparse.Namespace, config: ABMConfig) -> int:
    async with ABMClient(config) as client:
        api = ABMDeviceAPI(client)
        servers = await fetch_servers(api, DeviceFieldMapper())

    if not servers:
        print("No MDM servers found")
        return 0

    print(f"\n{'ID':<40} {'Name':<40} {'Type':<15}")
    print("-" * 95)
    for server in servers:
        print(f"{server.id:<40} {server.name[:38]:<40} {server.server_type or 'N/A':<15}")
    print(f"\n{len(servers)} MDM server(s)")
    return 0


async def cmd_export(args: argparse.Namespace, config: ABMConfig) -> int:
    exporter = DeviceExporter(config.output_dir)
    mapper = DeviceFieldMapper()

    async with ABMClient(config) as client:
        api = ABMDeviceAPI(client)
        servers = await fetch_servers(api, mapper)
        server_lookup = {server.id: server.name for server in servers}

        if args.all_servers:
            scope_ids = [server.id for server in servers]
            if not scope_ids:
                print("No MDM servers found. Nothing to export.")
                return 1
        else:
            selection = parse_server_selection(args.server, servers)
            if isinstance(selection, Cancelled):
                print("Export canceled: no MDM server given (use --server or --all-servers)")
                return 0
            if isinstance(selection, Invalid):
                print(f"Export canceled: {selection.reason}")
                return 1
            scope_ids = list(selection.ids)

        print(f"\nSelected MDM Servers ({len(scope_ids)}):")
        for server_id in scope_ids:
            print(f"  - {server_id} ({server_lookup.get(server_id, server_id)})")

        collector = CollectDevicesUseCase(api, config.pagination)
        working_set = await collector.execute(scope_ids)
        if not working_set:
            print("No devices found in the selected MDM server(s).")
            return 0

        print(f"\nFetching details for {len(working_set)} devices...")
        if args.coverage:
            print("Including AppleCare coverage (one extra request per device).")

        enricher = EnrichDevicesUseCase(api, mapper, config.retry_policy)
        result = await enricher.execute(working_set, server_lookup, fetch_coverage=args.coverage)

    records = result.records
    if args.format in ("json", "both"):
        path = await exporter.write_json(records)
        print(f"JSON export: {path}")
    if args.format in ("csv", "both"):
        path = await exporter.write_csv(records, include_coverage=args.coverage)
        print(f"CSV export:  {path}")

    print("\n" + "=" * 60)
    print("EXPORT SUMMARY")
    print("=" * 60)
    print(exporter.format_summary(exporter.summarize(records)))
    if args.format == "details":
        print("\n" + "=" * 60)
        print("DEVICE DETAILS")
        print("=" * 60)
        print(exporter.format_details(records, include_coverage=args.coverage))
    if result.has_failures:
        print(f"\n{result.error_count} device(s) could not be fetched:")
        for device_id in result.failed_ids:
            print(f"  - {device_id}")

    return 0


async def cmd_mutate(args: argparse.Namespace, config: ABMConfig, kind: MutationKind) -> int:
    try:
        device_ids = read_device_ids(args)
    except OSError as e:
        print(f"[Main] Cannot read device file: {e}")
        return 1

    if not device_ids:
        print("No device ids given. Nothing to do.")
        return 1

    async with ABMClient(config) as client:
        api = ABMDeviceAPI(client)
        activities = DeviceActivitiesUseCase(api, config.monitor_policy)

        target = None
        if kind.requires_target:
            servers = await fetch_servers(api, DeviceFieldMapper())
            selection = parse_server_selection(args.server, servers)
            if isinstance(selection, (Cancelled, Invalid)):
                reason = selection.reason if isinstance(selection, Invalid) else "no MDM server given"
                print(f"Assignment canceled: {reason}")
                return 1
            if len(selection.ids) != 1:
                print("Assignment canceled: give exactly one target MDM server")
                return 1
            target = selection.ids[0]

        activity_id = await activities.submit(kind, device_ids, target_server_id=target)
        print(f"Activity submitted: {activity_id} ({len(device_ids)} device(s))")

        if not args.monitor:
            print(f"Check progress with: python main.py activity {activity_id}")
            return 0

        result = await activities.monitor(activity_id)
        print_monitor_result(result)

        if args.download and result.snapshot and result.download_url:
            exporter = DeviceExporter(config.output_dir)
            path = await activities.download_report(
                result.snapshot, exporter.activity_report_path(activity_id)
            )
            print(f"Activity report: {path}")

    return 0 if result.state is not ActivityState.FAILED else 1


async def cmd_activity(args: argparse.Namespace, config: ABMConfig) -> int:
    async with ABMClient(config) as client:
        activities = DeviceActivitiesUseCase(ABMDeviceAPI(client), config.monitor_policy)
        snapshot = await activities.poll(args.activity_id)

        state = snapshot.terminal_state or ActivityState.POLLING
        print_monitor_result(MonitorResult(snapshot.id, state, snapshot, checks=1))

        if args.download:
            if not snapshot.download_url:
                print("No report available for this activity yet.")
                return 1
            exporter = DeviceExporter(config.output_dir)
            path = await activities.download_report(
                snapshot, exporter.activity_report_path(snapshot.id)
            )
            print(f"Activity report: {path}")

    return 0


async def run(args: argparse.Namespace) -> int:
    """Main orchestration function.

    Args:
        args: Parsed command-line arguments

    Returns:
        Process exit code
    """
    start_time = datetime.now(timezone.utc)

    try:
        config = ABMConfig.from_env(
            manager_type=args.manager_type,
            output_dir=getattr(args, "output_dir", None),
        )
    except ConfigurationError as e:
        print(f"[Main] Configuration error: {e}")
        return 2

    logger.debug(f"Starting {args.command} at {start_time.isoformat()}")

    try:
        if args.command == "servers":
            code = await cmd_servers(args, config)
        elif args.command == "export":
            code = await cmd_export(args, config)
        elif args.command == "assign":
            code = await cmd_mutate(args, config, MutationKind.ASSIGN)
        elif args.command == "unassign":
            code = await cmd_mutate(args, config, MutationKind.UNASSIGN)
        else:
            code = await cmd_activity(args, config)

    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        print(f"[Main] Authentication failed: {e.message}")
        return 1

    except ABMError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"[Main] Error: {e.message}")
        return 1

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    print(f"\n[Main] Completed in {duration:.1f} seconds")
    return code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Export Apple Business / School Manager devices and manage MDM assignments",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py servers                                 # List MDM servers
  python main.py export --server ID1,ID2 --format csv    # Export devices of two servers
  python main.py export --all-servers --coverage         # Export everything with AppleCare
  python main.py export --server ID --format details     # Print every device
  python main.py assign --server ID --devices S1,S2 --monitor
  python main.py unassign --devices-file serials.txt --monitor
  python main.py activity ACTIVITY_ID --download         # Check an activity, fetch its report
        """
    )
    parser.add_argument(
        "--manager-type",
        choices=["business", "school"],
        help="Override ABM_MANAGER_TYPE"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("servers", help="List MDM servers")

    # Export
    export = subparsers.add_parser("export", help="Export devices of MDM servers")
    scope_group = export.add_argument_group("Server Selection")
    scope_group.add_argument(
        "--server",
        metavar="ID[,ID...]",
        help="Comma-separated MDM server ids"
    )
    scope_group.add_argument(
        "--all-servers",
        action="store_true",
        help="Export devices of every MDM server"
    )
    output_group = export.add_argument_group("Output Options")
    output_group.add_argument(
        "--coverage",
        action="store_true",
        help="Include AppleCare coverage (one extra request per device)"
    )
    output_group.add_argument(
        "--format",
        choices=["json", "csv", "both", "summary", "details"],
        default="csv",
        help="Export format (default: csv); 'summary' and 'details' write no file"
    )
    output_group.add_argument(
        "--output-dir",
        metavar="DIR",
        help="Directory for export files (default: ABM_OUTPUT_DIR or .)"
    )

    # Assign / unassign
    for name, help_text in (
        ("assign", "Assign devices to an MDM server"),
        ("unassign", "Unassign devices from their MDM server"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        if name == "assign":
            command.add_argument(
                "--server",
                required=True,
                metavar="ID",
                help="Target MDM server id"
            )
        device_group = command.add_argument_group("Devices")
        device_group.add_argument(
            "--devices",
            metavar="ID[,ID...]",
            help="Comma-separated device ids (serial numbers)"
        )
        device_group.add_argument(
            "--devices-file",
            metavar="FILE",
            help="File with one device id per line"
        )
        monitor_group = command.add_argument_group("Monitoring")
        monitor_group.add_argument(
            "--monitor",
            action="store_true",
            help="Poll the activity until it finishes (5 minute budget by default)"
        )
        monitor_group.add_argument(
            "--download",
            action="store_true",
            help="With --monitor, download the activity report when available"
        )
        monitor_group.add_argument(
            "--output-dir",
            metavar="DIR",
            help="Directory for the activity report"
        )

    # Activity status
    activity = subparsers.add_parser("activity", help="Check a device activity")
    activity.add_argument("activity_id", help="Activity id returned by assign/unassign")
    activity.add_argument(
        "--download",
        action="store_true",
        help="Download the activity report when available"
    )
    activity.add_argument(
        "--output-dir",
        metavar="DIR",
        help="Directory for the activity report"
    )

    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
