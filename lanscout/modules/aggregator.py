"""
Device Aggregator

Folds the probe findings of one scan into one record per physical device.
The fold only uses set unions, max() and min() over sortable keys, so the
outcome does not depend on the order results arrived in, and feeding the
same findings twice changes nothing.
"""

import ipaddress
import logging
import re
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from config import IOT_SERVICE_ALLOWLIST
from .arp_table import lookup_vendor, normalize_mac
from .models import DiscoveredDevice, ProbeResult, Protocol

logger = logging.getLogger(__name__)

# Lower rank wins when several protocols name the same device
NAME_PRIORITY: Dict[Protocol, int] = {
    Protocol.VENDOR: 0,
    Protocol.UPNP: 1,
    Protocol.HTTP: 2,
    Protocol.MDNS: 3,
    Protocol.REVERSE_DNS: 4,
    Protocol.ARP: 5,
}

HOSTNAME_PRIORITY: Dict[Protocol, int] = {
    Protocol.MDNS: 0,
    Protocol.REVERSE_DNS: 1,
}

MANUFACTURER_KEYS = ("manufacturer", "vendor")


def ip_sort_key(ip: str) -> Tuple[int, int, str]:
    try:
        addr = ipaddress.ip_address(ip)
        return (addr.version, int(addr), ip)
    except ValueError:
        return (99, 0, ip)


def _mac_of(result: ProbeResult) -> Optional[str]:
    return normalize_mac(result.mac) if result.mac else None


def build_ip_mac_map(results: Iterable[ProbeResult]) -> Dict[str, str]:
    """IP -> MAC from every finding that carries one; conflicts keep the lowest MAC."""
    mapping: Dict[str, str] = {}
    for result in results:
        mac = _mac_of(result)
        if mac is None:
            continue
        current = mapping.get(result.ip)
        if current is None or mac < current:
            mapping[result.ip] = mac
    return mapping


def merge_key(result: ProbeResult, ip_to_mac: Dict[str, str]) -> str:
    return _mac_of(result) or ip_to_mac.get(result.ip) or result.ip


def _name_candidate(result: ProbeResult) -> Optional[str]:
    # A PTR answer has no separate display name; its hostname stands in
    if result.name:
        return result.name
    if result.protocol == Protocol.REVERSE_DNS:
        return result.hostname
    return None


def _best(candidates: List[Tuple[int, str]]) -> Optional[str]:
    return min(candidates)[1] if candidates else None


# ---------------------------------------------------------------------------
# Device type heuristics
# ---------------------------------------------------------------------------

# Checked in order against the words of every name plus the manufacturer
KEYWORD_TYPES: List[Tuple[str, Set[str]]] = [
    ("smart_hub", {"bridge", "hub", "smartthings", "homekit"}),
    ("smart_bulb", {"bulb", "lifx", "light", "lighting", "lamp", "sengled", "homemate"}),
    ("smart_plug", {"plug", "outlet", "socket", "wemo", "kasa"}),
    ("speaker", {"sonos", "echo", "alexa", "speaker", "homepod"}),
    ("camera", {"camera", "wyze", "arlo", "doorbell"}),
    ("media_player", {"roku", "chromecast", "tv", "appletv", "firetv"}),
    ("printer", {"printer", "laserjet", "officejet"}),
]

# Checked in order against advertised mDNS service types
SERVICE_TYPES: List[Tuple[str, Set[str]]] = [
    ("printer", {"_ipp._tcp.local.", "_printer._tcp.local."}),
    ("smart_hub", {"_hue._tcp.local."}),
    ("speaker", {"_sonos._tcp.local.", "_spotify-connect._tcp.local."}),
    ("media_player", {"_googlecast._tcp.local.", "_airplay._tcp.local.", "_raop._tcp.local."}),
    ("smart_home", {"_hap._tcp.local.", "_homekit._tcp.local."}),
    ("computer", {
        "_smb._tcp.local.",
        "_afpovertcp._tcp.local.",
        "_ssh._tcp.local.",
        "_workstation._tcp.local.",
    }),
]


def classify_device_type(
    services: Iterable[str],
    names: Iterable[str],
    manufacturer: Optional[str] = None,
    is_iot: bool = False,
    is_gateway: bool = False,
) -> str:
    """Best-effort device category from what the probes reported."""
    if is_gateway:
        return "router"

    text = " ".join(list(names) + [manufacturer or ""]).lower()
    words = set(re.split(r'[^a-z0-9]+', text))
    for device_type, keywords in KEYWORD_TYPES:
        if words & keywords:
            return device_type

    service_set = set(services)
    for device_type, types in SERVICE_TYPES:
        if service_set & types:
            return device_type

    return "iot_device" if is_iot else "unknown"


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def _merge_group(
    key: str,
    group: List[ProbeResult],
    vendor_lookup: Callable[[str], Optional[str]],
    gateway_ip: Optional[str],
) -> DiscoveredDevice:
    mac = key if normalize_mac(key) == key else None
    ip = min((r.ip for r in group), key=ip_sort_key)

    names: List[Tuple[int, str]] = []
    hostnames: List[Tuple[int, str]] = []
    manufacturers: List[Tuple[int, str]] = []
    services: Set[str] = set()
    ports: Set[int] = set()
    sources: Set[str] = set()
    vendor_matched = False

    for result in group:
        rank = NAME_PRIORITY.get(result.protocol, len(NAME_PRIORITY))
        sources.add(result.protocol.value)
        services |= result.service_types
        ports |= result.ports

        name = _name_candidate(result)
        if name:
            names.append((rank, name))
            if result.protocol == Protocol.VENDOR:
                vendor_matched = True

        if result.hostname and result.protocol in HOSTNAME_PRIORITY:
            hostnames.append((HOSTNAME_PRIORITY[result.protocol], result.hostname))

        for meta_key in MANUFACTURER_KEYS:
            value = result.meta(meta_key)
            if value:
                manufacturers.append((rank, value))

    manufacturer = _best(manufacturers)
    if manufacturer is None and mac:
        manufacturer = vendor_lookup(mac)

    is_iot = vendor_matched or bool(services & set(IOT_SERVICE_ALLOWLIST))

    return DiscoveredDevice(
        ip=ip,
        mac=mac,
        hostname=_best(hostnames),
        name=_best(names),
        device_type=classify_device_type(
            services,
            [n for _, n in names],
            manufacturer,
            is_iot=is_iot,
            is_gateway=gateway_ip is not None and gateway_ip == ip,
        ),
        open_ports=frozenset(ports),
        services=frozenset(services),
        last_seen=max(r.timestamp for r in group),
        manufacturer=manufacturer,
        is_iot_device=is_iot,
        sources=frozenset(sources),
    )


def aggregate(
    results: Iterable[ProbeResult],
    vendor_lookup: Callable[[str], Optional[str]] = lookup_vendor,
    gateway_ip: Optional[str] = None,
) -> List[DiscoveredDevice]:
    """
    Merge probe findings into devices.

    Args:
        results: Findings from every protocol, in any order
        vendor_lookup: MAC -> manufacturer, used when no probe reported one
        gateway_ip: Address of the default gateway, classified as a router

    Returns:
        One DiscoveredDevice per MAC (or per IP when no MAC is known),
        sorted by IP
    """
    results = list(results)
    ip_to_mac = build_ip_mac_map(results)

    groups: Dict[str, List[ProbeResult]] = defaultdict(list)
    for result in results:
        groups[merge_key(result, ip_to_mac)].append(result)

    devices = [
        _merge_group(key, group, vendor_lookup, gateway_ip)
        for key, group in groups.items()
    ]
    devices.sort(key=lambda d: (ip_sort_key(d.ip), d.id))
    logger.debug("Aggregated %d findings into %d devices", len(results), len(devices))
    return devices
