"""
LanScout Modules Package

Discovery engine, protocol probes and the data model they share.
"""

from .errors import DiscoveryError, ErrorKind
from .scan_logger import LogCategory, LogEntry, ScanLogger
from .models import (
    Protocol, ScanState,
    NetworkInterfaceInfo, DefaultGateway, ScanScope,
    ProbeResult, DiscoveredDevice, ScanReport,
)
from .interface_detector import list_interfaces, select_scan_interface
from .gateway import (
    GatewayResolver, GatewayStrategy,
    ProcRouteStrategy, RouteGetStrategy, RoutePrintStrategy,
)
from .mdns_probe import discover_mdns
from .dns_probe import reverse_lookup
from .http_probe import UpnpDescription, probe_http, probe_upnp, read_upnp_description
from .vendor_probes import (
    VENDOR_PROBES, kasa_encrypt, kasa_decrypt,
    probe_hue, probe_kasa, probe_tuya, probe_smart_bulb, probe_udp_discovery,
)
from .arp_table import (
    read_arp_table, lookup_vendor, load_vendor_database, update_vendor_database,
)
from .aggregator import aggregate, classify_device_type
from .overrides import DeviceNameOverrides, DeviceOverride
from .discovery import DiscoveryEngine, ScanSettings
from .network_items import (
    UnifiedNetworkItem, ConnectedInterface, AvailableWifiHotspot,
    ItemCategory, collect_network_items, items_to_json,
)

__all__ = [
    "DiscoveryError",
    "ErrorKind",
    "LogCategory",
    "LogEntry",
    "ScanLogger",
    "Protocol",
    "ScanState",
    "NetworkInterfaceInfo",
    "DefaultGateway",
    "ScanScope",
    "ProbeResult",
    "DiscoveredDevice",
    "ScanReport",
    "list_interfaces",
    "select_scan_interface",
    "GatewayResolver",
    "GatewayStrategy",
    "ProcRouteStrategy",
    "RouteGetStrategy",
    "RoutePrintStrategy",
    "discover_mdns",
    "reverse_lookup",
    "probe_http",
    "probe_upnp",
    "read_upnp_description",
    "UpnpDescription",
    "VENDOR_PROBES",
    "kasa_encrypt",
    "kasa_decrypt",
    "probe_hue",
    "probe_kasa",
    "probe_tuya",
    "probe_smart_bulb",
    "probe_udp_discovery",
    "read_arp_table",
    "lookup_vendor",
    "load_vendor_database",
    "update_vendor_database",
    "aggregate",
    "classify_device_type",
    "DeviceNameOverrides",
    "DeviceOverride",
    "DiscoveryEngine",
    "ScanSettings",
    "UnifiedNetworkItem",
    "ConnectedInterface",
    "AvailableWifiHotspot",
    "ItemCategory",
    "collect_network_items",
    "items_to_json",
]
