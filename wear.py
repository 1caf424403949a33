#!/usr/bin/env python3
"""
Command line front end for a garage file.

Commands:
  status      - Show which service plans of a part are due
  usage       - Show accumulated usage of parts (or of gear)
  timeline    - Show where a part has been mounted
  attach      - Mount a part at a gear position
  detach      - Close an attachment
  ride        - Record an activity
  edit-ride   - Correct an activity
  delete-ride - Delete an activity
  service     - Log a service performed on a part
  rescan      - Rebuild every usage aggregate from the records
"""

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path
from tabulate import tabulate
from typing import List, Optional

from gearwear import (
    Attachment,
    GearwearError,
    MetricKind,
    MutationCoordinator,
    ServiceDue,
    Status,
    User,
    UsageAggregate,
    YamlStore,
    configure_logging,
    load_config,
)
from gearwear.loader import parse_time

CLI_USER = "cli"

# =============================================================================
# Formatting helpers
# =============================================================================


def format_km(meters: Optional[int]) -> str:
    """Format a distance in meters as kilometers."""
    return f"{meters / 1000:,.1f}" if meters is not None else "-"


def format_duration(seconds: Optional[int]) -> str:
    """Format seconds for display (e.g., '12h 05m' or '-1h 30m')."""
    if seconds is None:
        return "-"
    sign = "-" if seconds < 0 else ""
    minutes = abs(seconds) // 60
    return f"{sign}{minutes // 60}h {minutes % 60:02d}m"


def format_metric(kind: MetricKind, value: Optional[int]) -> str:
    """Format a metric value with its unit."""
    if value is None:
        return "-"
    if kind is MetricKind.DISTANCE:
        return f"{format_km(value)} km"
    if kind is MetricKind.DURATION:
        return format_duration(value)
    if kind in (MetricKind.ELEVATION, MetricKind.DESCENT):
        return f"{value:,} m"
    if kind is MetricKind.ENERGY:
        return f"{value:,} kJ"
    if kind is MetricKind.DAYS:
        return f"{value}d"
    return f"{value:,}"


def format_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value is not None else "-"


def truncate(text: Optional[str], max_len: int = 30) -> str:
    """Truncate text with ellipsis if too long."""
    if text is None:
        return "-"
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def parse_when(value: Optional[str]) -> datetime:
    """Parse a command line timestamp; default is now."""
    if value is None:
        return datetime.now(timezone.utc)
    return parse_time(value)


# =============================================================================
# Status command
# =============================================================================


def make_status_table(services: List[ServiceDue]) -> List[List[str]]:
    """Convert service status list to table rows."""
    rows = []
    for svc in services:
        metric = svc.plan.metric
        rows.append(
            [
                truncate(svc.plan.name),
                metric.value,
                format_metric(metric, svc.plan.threshold),
                format_metric(metric, svc.since_baseline),
                format_metric(metric, svc.margin),
                format_time(svc.last_service),
            ]
        )
    return rows


def cmd_status(coordinator, args):
    """Show which service plans of a part are due."""
    garage = coordinator.store.snapshot()
    part = garage.get_part(args.part)
    statuses = coordinator.get_service_status(args.part, parse_when(args.as_of))

    print(f"Part: {part.display_name}")
    if part.retired:
        print(f"Retired: {format_time(part.retired)}")
    print(f"Plans: {len(statuses)}")
    print()

    headers = ["Plan", "Metric", "Threshold", "Since Service", "Remaining", "Last Service"]
    for status, title in (
        (Status.DUE, "DUE:"),
        (Status.OK, "OK:"),
        (Status.SATISFIED, "SATISFIED:"),
    ):
        group = sorted(
            (s for s in statuses if s.status is status), key=lambda s: s.plan.name
        )
        if group:
            print(title)
            print(tabulate(make_status_table(group), headers=headers, tablefmt="simple"))
            print()

    return 0


# =============================================================================
# Usage command
# =============================================================================


def make_usage_table(rows_in: List[tuple]) -> List[List[str]]:
    """Convert (name, aggregate) pairs to table rows."""
    rows = []
    for name, agg in rows_in:
        usage = agg.usage
        rows.append(
            [
                truncate(name),
                usage.count,
                format_duration(usage.duration),
                format_km(usage.distance),
                f"{usage.elevation:,}",
                f"{usage.descent:,}",
                f"{usage.energy:,}",
            ]
        )
    return rows


def cmd_usage(coordinator, args):
    """Show accumulated usage of parts, or of every gear with --gear."""
    garage = coordinator.store.snapshot()
    headers = ["Name", "Rides", "Time", "Distance (km)", "Climb (m)", "Descent (m)", "Energy (kJ)"]

    if args.gear:
        entries = [
            (gear.display_name, UsageAggregate(gear.id, coordinator.gear_usage(gear.id)))
            for gear in sorted(garage.gears.values(), key=lambda g: g.display_name)
        ]
    else:
        parts = [garage.get_part(p) for p in args.parts] or sorted(
            garage.parts.values(), key=lambda p: p.display_name
        )
        if not args.all:
            parts = [p for p in parts if p.retired is None or p.id in args.parts]
        entries = [(p.display_name, coordinator.get_usage(p.id)) for p in parts]

    if not entries:
        print("Nothing to show.")
        return 0

    print(tabulate(make_usage_table(entries), headers=headers, tablefmt="simple"))
    return 0


# =============================================================================
# Attachment commands
# =============================================================================


def make_timeline_table(attachments: List[Attachment], garage) -> List[List[str]]:
    """Convert attachments to table rows."""
    rows = []
    for att in attachments:
        host = garage.gears.get(att.gear_id) or garage.parts.get(att.gear_id)
        rows.append(
            [
                att.id,
                host.display_name if host else att.gear_id,
                att.position,
                format_time(att.start),
                format_time(att.end) if att.end else "(mounted)",
            ]
        )
    return rows


def cmd_timeline(coordinator, args):
    """Show where a part has been mounted."""
    garage = coordinator.store.snapshot()
    part = garage.get_part(args.part)
    attachments = coordinator.timeline(args.part)

    print(f"Part: {part.display_name}")
    print(f"Attachments: {len(attachments)}")
    print()
    if not attachments:
        print("Never mounted.")
        return 0

    headers = ["Attachment", "Gear", "Position", "From", "Until"]
    print(tabulate(make_timeline_table(attachments, garage), headers=headers, tablefmt="simple"))
    return 0


def cmd_attach(coordinator, args):
    """Mount a part at a gear or assembly position."""
    when = parse_when(args.at)
    if args.swap or args.bare:
        att_id = coordinator.attach_assembly(
            args.actor, args.part, args.gear, args.position, when, with_subparts=not args.bare
        )
    else:
        att_id = coordinator.create_attachment(
            args.actor, args.part, args.gear, args.position, when
        )
    print(f"Attached {args.part} to {args.gear}/{args.position} ({att_id}).")
    return 0


def cmd_detach(coordinator, args):
    """Close an attachment."""
    coordinator.close_attachment(args.actor, args.attachment, parse_when(args.at))
    print(f"Detached {args.attachment}.")
    return 0


# =============================================================================
# Activity commands
# =============================================================================


def ride_fields(args) -> dict:
    """Activity fields given on the command line, in model names."""
    fields = {}
    for name in ("distance", "moving_time", "elevation", "descent", "energy", "name", "duration"):
        value = getattr(args, name, None)
        if value is not None:
            fields[name] = value
    if getattr(args, "gear", None) is not None:
        fields["gear_id"] = args.gear
    if getattr(args, "start", None) is not None:
        fields["start"] = parse_time(args.start)
    return fields


def cmd_ride(coordinator, args):
    """Record an activity."""
    fields = ride_fields(args)
    start = fields.pop("start", None) or datetime.now(timezone.utc)
    activity_id = coordinator.record_activity(
        args.actor,
        args.owner,
        fields.pop("gear_id", None),
        start,
        fields.pop("duration"),
        **fields,
    )
    print(f"Recorded activity {activity_id}.")
    return 0


def cmd_edit_ride(coordinator, args):
    """Correct an activity."""
    fields = ride_fields(args)
    if args.no_gear:
        fields["gear_id"] = None
    if not fields:
        print("Error: nothing to change")
        return 1
    coordinator.edit_activity(args.actor, args.activity, **fields)
    print(f"Updated activity {args.activity}.")
    return 0


def cmd_delete_ride(coordinator, args):
    """Delete an activity."""
    coordinator.delete_activity(args.actor, args.activity)
    print(f"Deleted activity {args.activity}.")
    return 0


# =============================================================================
# Service and maintenance commands
# =============================================================================


def cmd_service(coordinator, args):
    """Log a service performed on a part."""
    event_id = coordinator.record_service_event(
        args.actor, args.part, parse_when(args.at), args.plan, args.notes
    )
    print(f"Logged service {event_id} on {args.part}.")
    return 0


def cmd_rescan(coordinator, args):
    """Rebuild every usage aggregate from the records."""
    fixed = coordinator.rescan_all()
    if not fixed:
        print("All aggregates were up to date.")
        return 0
    print(f"Corrected {len(fixed)} aggregate(s):")
    for part_id, delta in fixed.items():
        print(f"  {part_id}: {format_km(delta.distance)} km, {format_duration(delta.duration)}")
    return 0


# =============================================================================
# Main
# =============================================================================


COMMANDS = {
    "status": cmd_status,
    "usage": cmd_usage,
    "timeline": cmd_timeline,
    "attach": cmd_attach,
    "detach": cmd_detach,
    "ride": cmd_ride,
    "edit-ride": cmd_edit_ride,
    "delete-ride": cmd_delete_ride,
    "service": cmd_service,
    "rescan": cmd_rescan,
}


def add_ride_arguments(parser, required: bool):
    parser.add_argument("--start", type=str, help="Start time, ISO 8601 (default: now)")
    parser.add_argument(
        "--duration", type=int, required=required, help="Elapsed time in seconds"
    )
    parser.add_argument("--moving-time", type=int, help="Moving time in seconds")
    parser.add_argument("--distance", type=int, help="Distance in meters")
    parser.add_argument("--elevation", type=int, help="Climb in meters")
    parser.add_argument("--descent", type=int, help="Descent in meters (default: climb)")
    parser.add_argument("--energy", type=int, help="Energy in kJ")
    parser.add_argument("--name", type=str, help="Activity name")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bike part wear tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s garage.yaml usage
  %(prog)s garage.yaml usage --gear
  %(prog)s garage.yaml status chain-1
  %(prog)s garage.yaml attach chain-1 bike-1 chain --at 2024-05-01T08:00
  %(prog)s garage.yaml ride bike-1 --owner alice --duration 7200 --distance 50000
  %(prog)s garage.yaml service chain-1 --notes "waxed"
""",
    )
    parser.add_argument("garage_file", type=Path, help="Path to garage YAML file")
    parser.add_argument("--config", type=Path, help="Path to config YAML file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="Show which service plans are due")
    status_parser.add_argument("part", type=str, help="Part id")
    status_parser.add_argument("--as-of", type=str, help="Evaluate at this time (default: now)")

    usage_parser = subparsers.add_parser("usage", help="Show accumulated usage")
    usage_parser.add_argument("parts", nargs="*", help="Part ids (default: all)")
    usage_parser.add_argument("--gear", action="store_true", help="Show gear totals instead")
    usage_parser.add_argument("--all", action="store_true", help="Include retired parts")

    timeline_parser = subparsers.add_parser("timeline", help="Show where a part was mounted")
    timeline_parser.add_argument("part", type=str, help="Part id")

    attach_parser = subparsers.add_parser("attach", help="Mount a part at a gear position")
    attach_parser.add_argument("part", type=str, help="Part id")
    attach_parser.add_argument("gear", type=str, help="Gear or assembly id")
    attach_parser.add_argument("position", type=str, help="Mount position, e.g. 'chain'")
    attach_parser.add_argument("--at", type=str, help="Mount time (default: now)")
    attach_parser.add_argument(
        "--swap",
        action="store_true",
        help="Take the part and the current occupant off first; subparts ride along",
    )
    attach_parser.add_argument(
        "--bare", action="store_true", help="Like --swap, but leave subparts behind"
    )

    detach_parser = subparsers.add_parser("detach", help="Close an attachment")
    detach_parser.add_argument("attachment", type=str, help="Attachment id (see timeline)")
    detach_parser.add_argument("--at", type=str, help="Removal time (default: now)")

    ride_parser = subparsers.add_parser("ride", help="Record an activity")
    ride_parser.add_argument("gear", type=str, nargs="?", help="Gear id")
    ride_parser.add_argument("--owner", type=str, default=CLI_USER, help="Activity owner")
    add_ride_arguments(ride_parser, required=True)

    edit_parser = subparsers.add_parser("edit-ride", help="Correct an activity")
    edit_parser.add_argument("activity", type=str, help="Activity id")
    edit_parser.add_argument("--gear", type=str, help="Move the activity to this gear")
    edit_parser.add_argument("--no-gear", action="store_true", help="Detach from any gear")
    add_ride_arguments(edit_parser, required=False)

    delete_parser = subparsers.add_parser("delete-ride", help="Delete an activity")
    delete_parser.add_argument("activity", type=str, help="Activity id")

    service_parser = subparsers.add_parser("service", help="Log a service on a part")
    service_parser.add_argument("part", type=str, help="Part id")
    service_parser.add_argument(
        "--plan",
        action="append",
        help="Plan id the service satisfies; repeatable (default: all plans)",
    )
    service_parser.add_argument("--at", type=str, help="Service time (default: now)")
    service_parser.add_argument("--notes", type=str, help="Notes about the service")

    subparsers.add_parser("rescan", help="Rebuild every usage aggregate")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    configure_logging(config)

    try:
        coordinator = MutationCoordinator(YamlStore(args.garage_file), config)
        args.actor = User(CLI_USER, is_admin=True)
        return COMMANDS[args.command](coordinator, args)
    except GearwearError as e:
        print(f"Error: {type(e).__name__}: {e}")
        return 1
    except ValueError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
