#!/usr/bin/env python3
"""
LanScout - Local Network Device Discovery

Main entry point for the command line tool.

Architecture:
    1. **Scope** - local interfaces and the default gateway decide which
       subnet is scanned (or ``--subnet`` overrides it)

    2. **One discovery pass** (bounded by ``--deadline``)
       - mDNS / DNS-SD browse, one listener per service type
       - Per-host reverse DNS, HTTP, UPnP and vendor handshake probes
       - Kernel neighbour table for MAC addresses

    3. **Report** - merged device inventory printed as a table or JSON,
       optionally relabelled from a device override file
"""

import argparse
import ipaddress
import json
import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from config import (
    LOG_FILE,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_MAX_BYTES,
    LOG_BACKUP_COUNT,
    DEBUG_MODE,
    OVERRIDES_FILE,
    MAX_IN_FLIGHT,
    MDNS_TIMEOUT,
    SCAN_DEADLINE,
)

from modules import (
    DeviceNameOverrides,
    DiscoveredDevice,
    DiscoveryEngine,
    ScanLogger,
    ScanReport,
    ScanSettings,
    collect_network_items,
    items_to_json,
    list_interfaces,
    update_vendor_database,
)

VERSION = "1.0.0"


def setup_logging(verbose: bool = False, log_file: Path = LOG_FILE) -> None:
    """
    Setup application logging.

    Args:
        verbose: Enable debug logging on the console
        log_file: Rotating log file (always at DEBUG level)
    """
    level = logging.DEBUG if verbose else logging.INFO

    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # File handler with rotation
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)
    except OSError as e:
        print(f"Warning: cannot write log file {log_file}: {e}", file=sys.stderr)

    # Console handler on stderr keeps stdout clean for --json
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('zeroconf').setLevel(logging.WARNING)

    logging.info("Logging initialized")


logger = logging.getLogger(__name__)


def subnet_arg(value: str) -> str:
    try:
        return str(ipaddress.ip_network(value, strict=False))
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a valid subnet: {value}")


def positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="LanScout - Local Network Device Discovery",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  python main.py --subnet 192.168.1.0/24 --deadline 20
  python main.py --interface wlan0 --json
  python main.py --items
  python main.py --update-vendors
        """
    )

    parser.add_argument(
        '-s', '--subnet',
        type=subnet_arg,
        default=None,
        help='Subnet to scan in CIDR notation (default: from the scan interface)'
    )

    parser.add_argument(
        '-i', '--interface',
        type=str,
        default=None,
        help='Network interface to scan from (default: auto-detect)'
    )

    parser.add_argument(
        '--deadline',
        type=positive_float,
        default=SCAN_DEADLINE,
        help=f'Global scan deadline in seconds (default: {SCAN_DEADLINE})'
    )

    parser.add_argument(
        '--max-in-flight',
        type=int,
        default=MAX_IN_FLIGHT,
        help=f'Maximum concurrent probes (default: {MAX_IN_FLIGHT})'
    )

    parser.add_argument(
        '--mdns-timeout',
        type=positive_float,
        default=MDNS_TIMEOUT,
        help=f'mDNS listening window in seconds (default: {MDNS_TIMEOUT})'
    )

    parser.add_argument(
        '--overrides',
        type=Path,
        default=None,
        help=f'Device override file (default: {OVERRIDES_FILE} if present)'
    )

    parser.add_argument(
        '--no-mdns',
        action='store_true',
        help='Disable mDNS / DNS-SD discovery'
    )

    parser.add_argument(
        '--no-vendor',
        action='store_true',
        help='Disable vendor handshake probes'
    )

    parser.add_argument(
        '--update-vendors',
        action='store_true',
        help='Download the IEEE MAC vendor database before scanning'
    )

    parser.add_argument(
        '--items',
        action='store_true',
        help='List connected interfaces and visible Wi-Fi networks instead of scanning'
    )

    parser.add_argument(
        '--json',
        action='store_true',
        help='Print JSON instead of a table'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'LanScout {VERSION}'
    )

    return parser


def settings_from_args(args: argparse.Namespace) -> ScanSettings:
    settings = ScanSettings(
        interface=args.interface,
        deadline=args.deadline,
        max_in_flight=max(1, args.max_in_flight),
        mdns_timeout=args.mdns_timeout,
    )
    if args.subnet:
        settings.subnet = args.subnet
    if args.no_mdns:
        settings.enable_mdns = False
    if args.no_vendor:
        settings.enable_vendor_probes = False
    return settings


def load_overrides(path: Optional[Path], scan_logger: ScanLogger) -> Optional[DeviceNameOverrides]:
    """An explicit path is always loaded; the default file only if it exists."""
    if path is not None:
        return DeviceNameOverrides.load(path, scan_logger)
    if OVERRIDES_FILE.exists():
        return DeviceNameOverrides.load(OVERRIDES_FILE, scan_logger)
    return None


def format_device_table(devices: List[DiscoveredDevice]) -> str:
    headers = ["IP", "MAC", "Name", "Type", "Manufacturer", "IoT", "Sources"]
    rows = [
        [
            d.ip,
            d.mac or "-",
            d.display_name,
            d.device_type,
            d.manufacturer or "-",
            "yes" if d.is_iot_device else "",
            ",".join(sorted(d.sources)),
        ]
        for d in devices
    ]
    widths = [
        max([len(headers[i])] + [len(row[i]) for row in rows])
        for i in range(len(headers))
    ]
    lines = ["  ".join(h.ljust(w) for h, w in zip(headers, widths))]
    lines.append("  ".join("-" * w for w in widths))
    for row in rows:
        lines.append("  ".join(cell.ljust(w) for cell, w in zip(row, widths)))
    return "\n".join(lines)


def format_report(report: ScanReport) -> str:
    scope = report.scope
    lines = [
        f"Scanned {scope.cidr if scope and scope.cidr else 'no subnet'} "
        f"in {report.elapsed:.1f}s - {len(report.devices)} devices",
    ]
    for warning in report.warnings:
        lines.append(f"warning: {warning}")
    if report.probes_abandoned:
        lines.append(f"{report.probes_abandoned} probes did not finish before the deadline")
    lines.append("")
    lines.append(format_device_table(report.devices) if report.devices else "No devices found.")
    return "\n".join(lines)


def run_scan(engine: DiscoveryEngine) -> ScanReport:
    """Run the scan on a worker thread so Ctrl-C can cancel it cleanly."""
    outcome = {}

    def target():
        outcome["report"] = engine.scan()

    worker = threading.Thread(target=target, name="scan", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(timeout=0.2)
    except KeyboardInterrupt:
        logger.info("Interrupted - returning partial results")
        engine.cancel()
        worker.join()
    return outcome["report"]


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose or DEBUG_MODE)

    scan_logger = ScanLogger()
    try:
        if args.update_vendors:
            # Network fetch; done before the scan deadline starts
            if update_vendor_database():
                logger.info("MAC vendor database updated")
            else:
                logger.warning("MAC vendor database update failed; using the local copy")

        if args.items:
            interfaces, _ = list_interfaces(scan_logger=scan_logger)
            items = collect_network_items(interfaces)
            if args.json:
                print(items_to_json(items))
            else:
                for item in items:
                    category = item.category.value if item.category else "-"
                    print(f"{category:16} {item.name}")
            return

        engine = DiscoveryEngine(
            settings_from_args(args),
            scan_logger=scan_logger,
            overrides=load_overrides(args.overrides, scan_logger),
        )
        report = run_scan(engine)
        if args.json:
            print(json.dumps(report.to_dict(), indent=2))
        else:
            print(format_report(report))

    except KeyboardInterrupt:
        logger.info("Application stopped by user")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
