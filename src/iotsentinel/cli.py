"""
IoT Sentinel Command Line Interface.

Provides commands for operating IoT Sentinel:
- start: Run the daemon in the foreground
- status: Show audit store statistics
- devices: List and inspect recorded devices
- events: Query the security event log
- policy: Show, validate and test policy rules
- identify: Classify and score a device offline
- catalogs: Show catalog load status
- check-config: Validate the configuration file
- export: Export devices, events or policy
"""

from __future__ import annotations

import argparse
import csv
import io
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from iotsentinel import __version__
from iotsentinel.audit.database import AuditDatabase
from iotsentinel.catalog.loader import load_catalogs
from iotsentinel.config import SentinelConfig, load_config, validate_config
from iotsentinel.fingerprint.matcher import FingerprintMatcher
from iotsentinel.forwarding.events import SecurityEventType
from iotsentinel.policy.engine import PolicyEngine, create_default_policy
from iotsentinel.policy.parser import PolicyParseError, load_policy, validate_policy
from iotsentinel.registry.models import Device, Observation, RiskLevel
from iotsentinel.risk.assessor import ExcessiveAccessCheck, RiskAssessor

RISK_LEVELS = [level.value for level in RiskLevel]
EVENT_TYPES = [event_type.value for event_type in SecurityEventType]


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="iotsentinel",
        description="IoT device identification, risk scoring and policy enforcement",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # start command
    start_parser = subparsers.add_parser("start", help="Run the daemon in the foreground")
    start_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    start_parser.set_defaults(func=cmd_start)

    # status command
    status_parser = subparsers.add_parser("status", help="Show audit store statistics")
    status_parser.set_defaults(func=cmd_status)

    # devices command
    devices_parser = subparsers.add_parser("devices", help="List and inspect devices")
    devices_sub = devices_parser.add_subparsers(dest="devices_cmd")

    list_parser = devices_sub.add_parser("list", help="List recorded devices")
    list_parser.add_argument(
        "--risk",
        choices=RISK_LEVELS,
        help="Filter by risk level",
    )
    list_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=100,
        help="Number of devices to show",
    )

    show_parser = devices_sub.add_parser("show", help="Show device details")
    show_parser.add_argument("hardware_address", help="Device MAC address")

    devices_parser.set_defaults(func=cmd_devices)

    # events command
    events_parser = subparsers.add_parser("events", help="Query the event log")
    events_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=20,
        help="Number of events to show",
    )
    events_parser.add_argument(
        "-d", "--device",
        help="Filter by device MAC address",
    )
    events_parser.add_argument(
        "-t", "--type",
        choices=EVENT_TYPES,
        help="Filter by event type",
    )
    events_parser.add_argument(
        "--since",
        help="Show events since (YYYY-MM-DD)",
    )
    events_parser.set_defaults(func=cmd_events)

    # policy command
    policy_parser = subparsers.add_parser("policy", help="Show, validate and test policy")
    policy_sub = policy_parser.add_subparsers(dest="policy_cmd")

    policy_sub.add_parser("show", help="Show current policy")
    policy_sub.add_parser("validate", help="Validate policy file")

    test_parser = policy_sub.add_parser("test", help="Select the policy for a device")
    test_parser.add_argument("device_type", help="Device type (e.g. camera)")
    test_parser.add_argument("risk_level", choices=RISK_LEVELS, help="Risk level")

    policy_parser.set_defaults(func=cmd_policy)

    # identify command
    identify_parser = subparsers.add_parser(
        "identify", help="Classify, score and select a policy for a device offline"
    )
    identify_parser.add_argument("hardware_address", help="Device MAC address")
    identify_parser.add_argument(
        "-p", "--protocol",
        action="append",
        default=[],
        help="Observed protocol (repeatable)",
    )
    identify_parser.add_argument(
        "--port",
        action="append",
        type=int,
        default=[],
        help="Observed port (repeatable)",
    )
    identify_parser.add_argument(
        "--banner",
        action="append",
        default=[],
        metavar="PORT=TEXT",
        help="Service banner seen on a port (repeatable)",
    )
    identify_parser.add_argument(
        "--destination",
        action="append",
        default=[],
        help="Connection target (repeatable)",
    )
    identify_parser.set_defaults(func=cmd_identify)

    # catalogs command
    catalogs_parser = subparsers.add_parser("catalogs", help="Show catalog load status")
    catalogs_parser.set_defaults(func=cmd_catalogs)

    # check-config command
    check_parser = subparsers.add_parser("check-config", help="Validate the configuration")
    check_parser.set_defaults(func=cmd_check_config)

    # export command
    export_parser = subparsers.add_parser("export", help="Export data")
    export_parser.add_argument(
        "what",
        choices=["devices", "events", "policy"],
        help="What to export",
    )
    export_parser.add_argument(
        "-o", "--output",
        help="Output file (default: stdout)",
    )
    export_parser.add_argument(
        "--format",
        choices=["json", "csv"],
        default="json",
        help="Output format",
    )
    export_parser.set_defaults(func=cmd_export)

    # Parse arguments
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    # Execute command
    try:
        return args.func(args)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def get_config(args: argparse.Namespace) -> SentinelConfig:
    return load_config(args.config)


def get_db(args: argparse.Namespace) -> AuditDatabase:
    """Open the configured audit database; it must already exist."""
    config = get_config(args)
    db_path = Path(config.database.path)
    if not db_path.exists():
        raise FileNotFoundError(f"Audit database not found: {db_path}")
    return AuditDatabase(db_path, wal_mode=config.database.wal_mode, create_if_missing=False)


def get_policy_engine(config: SentinelConfig) -> PolicyEngine:
    """Load the configured policy, or the built-in default if none is configured."""
    if not config.policy.rules_file:
        return PolicyEngine(policy=create_default_policy())
    return PolicyEngine(policy=load_policy(config.policy.rules_file))


def output(data: Any, args: argparse.Namespace) -> None:
    """Output data in requested format."""
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, dict):
        for key, value in data.items():
            print(f"{key}: {value}")
    elif isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                for key, value in item.items():
                    print(f"  {key}: {value}")
                print()
            else:
                print(f"  {item}")
    else:
        print(data)


def cmd_start(args: argparse.Namespace) -> int:
    """Run the daemon."""
    from iotsentinel.daemon import main as daemon_main

    daemon_args = []
    if args.config:
        daemon_args.extend(["-c", args.config])
    if args.verbose:
        daemon_args.append("-v")

    return daemon_main(daemon_args)


def cmd_status(args: argparse.Namespace) -> int:
    """Show audit store statistics."""
    config = get_config(args)
    db = get_db(args)
    try:
        stats = db.get_statistics()
    finally:
        db.close()

    status_data = {
        "version": __version__,
        "config_file": args.config or "default",
        "database": config.database.path,
        "policy_file": config.policy.rules_file,
        **stats,
    }

    if getattr(args, "json", False):
        output(status_data, args)
    else:
        print("IoT Sentinel Status")
        print("=" * 50)
        print(f"Version:        {status_data['version']}")
        print(f"Config:         {status_data['config_file']}")
        print(f"Database:       {status_data['database']}")
        print(f"Policy:         {status_data['policy_file']}")
        print()
        print("Statistics:")
        print(f"  Total Devices:  {stats['total_devices']}")
        print(f"  Total Events:   {stats['total_events']}")
        print(f"  Unauthorized:   {stats['unauthorized_devices']}")
        for level, count in sorted(stats["risk_levels"].items()):
            print(f"  Risk {level:<9} {count}")

    return 0


def cmd_devices(args: argparse.Namespace) -> int:
    """List and inspect devices."""
    db = get_db(args)

    try:
        if args.devices_cmd == "list" or args.devices_cmd is None:
            records = db.get_all_devices(
                risk_level=getattr(args, "risk", None),
                limit=getattr(args, "limit", 100),
            )

            if getattr(args, "json", False):
                output([r.to_dict() for r in records], args)
            else:
                print(f"Known Devices ({len(records)} shown)")
                print("=" * 78)
                if not records:
                    print("No devices found.")
                else:
                    print(f"{'MAC':<18} {'Manufacturer':<16} {'Type':<12} {'Risk':<8} Policy")
                    print("-" * 78)
                    for record in records:
                        print(
                            f"{record.hardware_address:<18} "
                            f"{record.manufacturer[:16]:<16} "
                            f"{record.device_type[:12]:<12} "
                            f"{record.risk_level:<8} "
                            f"{record.applied_policy or '-'}"
                        )

        elif args.devices_cmd == "show":
            record = db.get_device(args.hardware_address)
            if record is None:
                print(f"Device not found: {args.hardware_address}")
                return 1

            if getattr(args, "json", False):
                output({**record.to_dict(), "snapshot": record.snapshot_data}, args)
            else:
                snapshot = record.snapshot_data
                print("Device Details")
                print("=" * 50)
                print(f"MAC:            {record.hardware_address}")
                print(f"IP:             {record.network_address or 'N/A'}")
                print(f"Manufacturer:   {record.manufacturer}")
                print(f"Model:          {record.model}")
                print(f"Type:           {record.device_type}")
                print(f"Firmware:       {record.firmware_version or 'N/A'}")
                print(f"Identified by:  {record.identification_method}")
                print(f"Authorized:     {'yes' if record.authorized else 'no'}")
                print(f"Risk:           {record.risk_level} ({record.risk_score:.2f})")
                print(f"Policy:         {record.applied_policy or 'none'}")
                print(f"First Seen:     {record.first_seen}")
                print(f"Last Seen:      {record.last_seen}")
                for factor in snapshot.get("risk_factors", []):
                    print(f"  - {factor}")

        return 0

    finally:
        db.close()


def cmd_events(args: argparse.Namespace) -> int:
    """Query event log."""
    db = get_db(args)

    try:
        since = None
        if args.since:
            since = datetime.strptime(args.since, "%Y-%m-%d").replace(tzinfo=timezone.utc)

        events = db.get_events(
            hardware_address=args.device,
            event_type=args.type,
            since=since,
            limit=args.limit,
        )

        if getattr(args, "json", False):
            output([e.to_dict() for e in events], args)
        else:
            print(f"Event Log ({len(events)} events)")
            print("=" * 80)
            if not events:
                print("No events found.")
            else:
                print(f"{'Time':<20} {'Device':<18} {'Type':<24} {'Risk':<8} {'Score':<6}")
                print("-" * 80)
                for event in events:
                    time_str = event.timestamp.strftime("%Y-%m-%d %H:%M:%S")
                    score = f"{event.risk_score:.2f}" if event.risk_score is not None else "-"
                    print(
                        f"{time_str:<20} "
                        f"{event.hardware_address:<18} "
                        f"{event.event_type:<24} "
                        f"{event.risk_level or '-':<8} "
                        f"{score:<6}"
                    )

        return 0

    finally:
        db.close()


def cmd_policy(args: argparse.Namespace) -> int:
    """Show, validate and test policy rules."""
    config = get_config(args)
    policy_path = Path(config.policy.rules_file) if config.policy.rules_file else None

    if args.policy_cmd == "validate":
        if policy_path is None or not policy_path.exists():
            print(f"Policy file not found: {policy_path}")
            return 1

        try:
            policy = load_policy(policy_path)
        except PolicyParseError as e:
            print(f"Policy validation failed: {e}")
            return 1

        print(f"Policy valid: {len(policy.rules)} rules loaded")
        messages = validate_policy(policy)
        errors = [m for m in messages if not m.startswith("Warning")]
        if messages:
            print("\nFindings:")
            for message in messages:
                print(f"  - {message}")
        return 1 if errors else 0

    try:
        engine = get_policy_engine(config)
    except PolicyParseError as e:
        print(f"Failed to load policy: {e}")
        return 1

    if args.policy_cmd == "show":
        if getattr(args, "json", False):
            output(engine.policy.to_dict(), args)
        else:
            print(f"Current Policy ({len(engine.policy.rules)} rules)")
            print("=" * 60)
            for i, rule in enumerate(engine.policy.rules, 1):
                action = rule.network_control.value if rule.network_control else "none"
                print(f"{i}. {rule.name} (priority {rule.priority})")
                print(f"   Types: {', '.join(sorted(rule.device_types))}")
                print(f"   Risk:  {', '.join(sorted(rule.risk_levels))}")
                print(f"   Network: {action}  Monitoring: "
                      f"{'enhanced' if rule.enhanced_monitoring else 'normal'}")
                if rule.comment:
                    print(f"   Comment: {rule.comment}")
                print()

    elif args.policy_cmd == "test":
        rule = engine.select(args.device_type, args.risk_level)
        result = {
            "device_type": args.device_type,
            "risk_level": args.risk_level,
            "policy": rule.to_dict() if rule else None,
        }

        if getattr(args, "json", False):
            output(result, args)
        else:
            print(f"Testing policy for {args.device_type} at {args.risk_level} risk")
            print("=" * 40)
            print(f"Policy:  {rule.name if rule else 'No match (policy gap)'}")
            if rule and rule.network_control:
                print(f"Network: {rule.network_control.value}")

    else:
        print("Usage: iotsentinel policy {show|validate|test}")

    return 0


def _parse_banners(values: list[str]) -> dict[int, str]:
    banners: dict[int, str] = {}
    for value in values:
        port, sep, text = value.partition("=")
        if not sep or not port.strip().isdigit():
            raise ValueError(f"Invalid banner '{value}' (expected PORT=TEXT)")
        banners[int(port)] = text
    return banners


def cmd_identify(args: argparse.Namespace) -> int:
    """Classify, score and select a policy for a device without the daemon."""
    config = get_config(args)

    try:
        banners = _parse_banners(args.banner)
        observation = Observation(
            hardware_address=args.hardware_address,
            network_address=None,
            timestamp=datetime.now(timezone.utc),
            protocols=set(args.protocol),
            ports=set(args.port),
            destinations=set(args.destination),
            banners=banners,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    catalogs = load_catalogs(
        fingerprints=config.catalogs.fingerprints,
        vulnerabilities=config.catalogs.vulnerabilities,
        authorized=config.catalogs.authorized_devices,
        oui=config.catalogs.oui,
        banners=config.catalogs.banners,
    )
    matcher = FingerprintMatcher(catalogs.fingerprints, catalogs.oui, catalogs.banners)
    assessor = RiskAssessor(
        authorized=catalogs.authorized,
        vulnerabilities=catalogs.vulnerabilities,
        excessive_access=ExcessiveAccessCheck(config.risk.type_profiles),
    )
    try:
        engine = get_policy_engine(config)
    except PolicyParseError as e:
        print(f"Failed to load policy: {e}")
        return 1

    device = Device.from_observation(observation)
    classification = matcher.identify_device(device)
    classification.apply_to(device)
    assessment = assessor.assess(device)
    assessment.apply_to(device)
    rule = engine.select_for(device)

    result = {
        "hardware_address": device.hardware_address,
        "classification": classification.to_dict(),
        "assessment": assessment.to_dict(),
        "policy": rule.to_dict() if rule else None,
        "catalogs_degraded": catalogs.degraded,
    }

    if getattr(args, "json", False):
        output(result, args)
    else:
        print(f"Device {device.hardware_address}")
        print("=" * 50)
        print(f"Manufacturer:   {classification.manufacturer}")
        print(f"Model:          {classification.model}")
        print(f"Type:           {classification.device_type}")
        print(f"Identified by:  {classification.identified_by.value}")
        print(f"Risk:           {assessment.level.value} ({assessment.score:.2f})")
        for factor in assessment.factors:
            print(f"  - {factor}")
        print(f"Policy:         {rule.name if rule else 'none (policy gap)'}")
        if catalogs.degraded:
            print("\nWarning: one or more catalogs failed to load")

    return 0


def cmd_catalogs(args: argparse.Namespace) -> int:
    """Show catalog load status."""
    config = get_config(args)
    catalogs = load_catalogs(
        fingerprints=config.catalogs.fingerprints,
        vulnerabilities=config.catalogs.vulnerabilities,
        authorized=config.catalogs.authorized_devices,
        oui=config.catalogs.oui,
        banners=config.catalogs.banners,
    )
    status = catalogs.status()

    if getattr(args, "json", False):
        output({"degraded": catalogs.degraded, "catalogs": status}, args)
    else:
        print(f"Catalogs ({'DEGRADED' if catalogs.degraded else 'ok'})")
        print("=" * 60)
        for name, state in status.items():
            loaded = "loaded" if state["catalog_loaded"] else "FAILED"
            print(f"{name:<16} {loaded:<8} {state['entries']:>6} entries")
            if state["error"]:
                print(f"  {state['error']}")

    return 1 if catalogs.degraded else 0


def cmd_check_config(args: argparse.Namespace) -> int:
    """Validate the configuration file."""
    config = get_config(args)
    errors = validate_config(config)
    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        return 1
    print("Configuration valid")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export data."""
    if args.what == "policy":
        data: Any = get_policy_engine(get_config(args)).policy.to_dict()
    else:
        db = get_db(args)
        try:
            if args.what == "devices":
                data = [r.to_dict() for r in db.get_all_devices()]
            else:
                data = [e.to_dict() for e in db.get_events(limit=None)]
        finally:
            db.close()

    # Format output
    if args.format == "csv" and args.what in ("devices", "events"):
        output_io = io.StringIO()
        if data:
            writer = csv.DictWriter(output_io, fieldnames=list(data[0].keys()))
            writer.writeheader()
            writer.writerows(data)
        output_str = output_io.getvalue()
    else:
        output_str = json.dumps(data, indent=2, default=str)

    # Write output
    if args.output:
        Path(args.output).write_text(output_str)
        print(f"Exported to: {args.output}")
    else:
        print(output_str)

    return 0


if __name__ == "__main__":
    sys.exit(main())
