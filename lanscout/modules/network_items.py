"""
Unified Network Item View

One list describing both the interfaces this host is connected through and
the Wi-Fi networks it can see but is not associated with.  Categories are
always computed locally: ``from_dict`` ignores any category in its input, and
the internal ``is_primary_connected`` flag is never serialized.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ClassVar, Dict, List, Optional

from .arp_table import normalize_mac
from .interface_detector import run_command
from .models import NetworkInterfaceInfo

logger = logging.getLogger(__name__)


class ItemCategory(str, Enum):
    WIRED = "wired"
    WIRELESS = "wireless"
    LOOPBACK = "loopback"
    VIRTUAL = "virtual"
    OPEN_HOTSPOT = "open_hotspot"
    SECURED_HOTSPOT = "secured_hotspot"


WIRELESS_PREFIXES = ("wl", "wlan", "wifi", "wi-fi", "ath", "ra", "awdl")
VIRTUAL_PREFIXES = (
    "docker", "veth", "br-", "virbr", "vmnet", "vboxnet", "tun", "tap",
    "utun", "wg", "zt", "bridge", "vethernet",
)
OPEN_SECURITY = ("", "--", "open", "none")


@dataclass
class UnifiedNetworkItem:
    id: str
    name: str
    mac: Optional[str] = None
    category: Optional[ItemCategory] = None
    is_primary_connected: bool = False

    kind: ClassVar[str] = ""

    def _extra_fields(self) -> Dict:
        return {}

    def to_dict(self) -> Dict:
        data = {
            "kind": self.kind,
            "id": self.id,
            "name": self.name,
            "mac": self.mac,
            "category": self.category.value if self.category else None,
        }
        data.update(self._extra_fields())
        return data

    @staticmethod
    def from_dict(data: Dict) -> "UnifiedNetworkItem":
        """Rebuild an item; the category is recomputed, never trusted."""
        kind = data.get("kind")
        if kind == ConnectedInterface.kind:
            item = ConnectedInterface(
                id=data["id"],
                name=data["name"],
                mac=data.get("mac"),
                ipv4=data.get("ipv4"),
                ipv6=data.get("ipv6"),
                cidr=data.get("cidr"),
                network=data.get("network"),
                broadcast=data.get("broadcast"),
                is_up=bool(data.get("is_up", False)),
            )
        elif kind == AvailableWifiHotspot.kind:
            item = AvailableWifiHotspot(
                id=data["id"],
                name=data["name"],
                mac=data.get("mac"),
                channel=data.get("channel"),
                signal_level=data.get("signal_level"),
                security=data.get("security") or "",
                frequency=data.get("frequency"),
            )
        else:
            raise ValueError(f"Unknown network item kind: {kind!r}")
        item.category = classify_item(item)
        return item


@dataclass
class ConnectedInterface(UnifiedNetworkItem):
    ipv4: Optional[str] = None
    ipv6: Optional[str] = None
    cidr: Optional[str] = None
    network: Optional[str] = None
    broadcast: Optional[str] = None
    is_up: bool = False

    kind: ClassVar[str] = "connected_interface"

    def _extra_fields(self) -> Dict:
        return {
            "ipv4": self.ipv4,
            "ipv6": self.ipv6,
            "cidr": self.cidr,
            "network": self.network,
            "broadcast": self.broadcast,
            "is_up": self.is_up,
        }

    @classmethod
    def from_interface(cls, info: NetworkInterfaceInfo) -> "ConnectedInterface":
        item = cls(
            id=f"iface:{info.name}",
            name=info.name,
            mac=info.mac,
            is_primary_connected=info.is_primary,
            ipv4=info.ipv4,
            ipv6=info.ipv6,
            cidr=info.ipv4_cidr,
            network=info.network_address,
            broadcast=info.broadcast_address,
            is_up=info.is_up,
        )
        item.category = classify_item(item)
        return item


@dataclass
class AvailableWifiHotspot(UnifiedNetworkItem):
    channel: Optional[int] = None
    signal_level: Optional[float] = None  # dBm
    security: str = ""
    frequency: Optional[int] = None  # MHz

    kind: ClassVar[str] = "wifi_hotspot"

    def _extra_fields(self) -> Dict:
        return {
            "channel": self.channel,
            "signal_level": self.signal_level,
            "security": self.security,
            "frequency": self.frequency,
        }


def classify_item(item: UnifiedNetworkItem) -> ItemCategory:
    if isinstance(item, AvailableWifiHotspot):
        if item.security.strip().lower() in OPEN_SECURITY:
            return ItemCategory.OPEN_HOTSPOT
        return ItemCategory.SECURED_HOTSPOT

    name = item.name.lower()
    ipv4 = getattr(item, "ipv4", None) or ""
    if name == "lo" or name.startswith("loopback") or ipv4.startswith("127."):
        return ItemCategory.LOOPBACK
    if name.startswith(VIRTUAL_PREFIXES):
        return ItemCategory.VIRTUAL
    if name.startswith(WIRELESS_PREFIXES):
        return ItemCategory.WIRELESS
    return ItemCategory.WIRED


# ---------------------------------------------------------------------------
# Wi-Fi scanning
# ---------------------------------------------------------------------------

NMCLI_FIELDS = "IN-USE,SSID,BSSID,CHAN,FREQ,SIGNAL,SECURITY"
_NMCLI_SPLIT = re.compile(r'(?<!\\):')


def percent_to_dbm(percent: float) -> float:
    """NetworkManager's signal percentage back to an approximate dBm value."""
    return round(percent / 2.0 - 100.0, 1)


def _hotspot(ssid: str, bssid: Optional[str], **kwargs) -> AvailableWifiHotspot:
    mac = normalize_mac(bssid) if bssid else None
    item = AvailableWifiHotspot(
        id=f"wifi:{mac or ssid}",
        name=ssid or "<hidden>",
        mac=mac,
        **kwargs,
    )
    item.category = classify_item(item)
    return item


def parse_nmcli_wifi(output: str) -> List[AvailableWifiHotspot]:
    """Parse ``nmcli -t`` output, skipping the network currently in use."""
    hotspots = []
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = [f.replace("\\:", ":") for f in _NMCLI_SPLIT.split(line)]
        if len(fields) < 7:
            continue
        in_use, ssid, bssid, chan, freq, signal, security = fields[:7]
        if in_use.strip() == "*":
            continue

        freq_match = re.search(r'(\d+)', freq)
        hotspots.append(_hotspot(
            ssid,
            bssid,
            channel=int(chan) if chan.isdigit() else None,
            frequency=int(freq_match.group(1)) if freq_match else None,
            signal_level=percent_to_dbm(float(signal)) if signal.isdigit() else None,
            security=security.strip(),
        ))
    return hotspots


def parse_iw_scan(output: str) -> List[AvailableWifiHotspot]:
    """Parse ``iw dev <iface> scan`` output, skipping the associated BSS."""
    hotspots = []
    current: Optional[Dict] = None

    def flush():
        if current and not current.get("associated"):
            security = current.get("security") or (
                "WEP" if current.get("privacy") else ""
            )
            hotspots.append(_hotspot(
                current.get("ssid", ""),
                current.get("bssid"),
                channel=current.get("channel"),
                frequency=current.get("frequency"),
                signal_level=current.get("signal"),
                security=security,
            ))

    for line in output.split('\n'):
        line = line.strip()

        if line.startswith('BSS '):
            flush()
            mac_match = re.search(r'BSS ([0-9a-fA-F:]+)', line)
            current = {
                'bssid': mac_match.group(1) if mac_match else None,
                'associated': 'associated' in line,
            }
        elif current is None:
            continue
        elif line.startswith('SSID:'):
            current['ssid'] = line.split(':', 1)[1].strip()
        elif 'signal:' in line:
            signal_match = re.search(r'signal:\s*(-?\d+\.?\d*)\s*dBm', line)
            if signal_match:
                current['signal'] = float(signal_match.group(1))
        elif line.startswith('freq:'):
            freq_match = re.search(r'(\d+)', line.split(':', 1)[1])
            if freq_match:
                current['frequency'] = int(freq_match.group(1))
        elif 'DS Parameter set: channel' in line:
            channel_match = re.search(r'channel\s*(\d+)', line)
            if channel_match:
                current['channel'] = int(channel_match.group(1))
        elif line.startswith('RSN:'):
            current['security'] = 'WPA2'
        elif line.startswith('WPA:') and not current.get('security'):
            current['security'] = 'WPA'
        elif line.startswith('capability:') and 'Privacy' in line:
            current['privacy'] = True

    flush()
    return hotspots


def scan_wifi_networks(
    interface: Optional[str] = None,
    runner: Callable = run_command,
) -> List[AvailableWifiHotspot]:
    """
    List Wi-Fi networks visible from ``interface`` that it is not joined to.

    Tries NetworkManager first and falls back to ``iw`` (which usually needs
    root).  Returns an empty list when neither tool works.
    """
    cmd = ["nmcli", "-t", "-f", NMCLI_FIELDS, "dev", "wifi", "list"]
    if interface:
        cmd += ["ifname", interface]
    stdout, stderr, returncode = runner(cmd, timeout=15)
    if returncode == 0:
        return parse_nmcli_wifi(stdout)
    logger.debug(f"nmcli Wi-Fi scan unavailable: {stderr.strip()}")

    if not interface:
        return []
    stdout, stderr, returncode = runner(["iw", "dev", interface, "scan"], timeout=30)
    if returncode != 0:
        logger.debug(f"iw Wi-Fi scan failed: {stderr.strip()}")
        return []
    return parse_iw_scan(stdout)


def collect_network_items(
    interfaces: List[NetworkInterfaceInfo],
    wifi_scanner: Optional[Callable[[Optional[str]], List[AvailableWifiHotspot]]] = scan_wifi_networks,
) -> List[UnifiedNetworkItem]:
    """
    Build the unified view: connected interfaces first, then visible hotspots.

    Wi-Fi scans run once per wireless interface that is up; hotspots seen
    from several radios are reported once.
    """
    items: List[UnifiedNetworkItem] = [
        ConnectedInterface.from_interface(info) for info in interfaces
    ]
    if wifi_scanner is None:
        return items

    seen = set()
    for item in list(items):
        if item.category != ItemCategory.WIRELESS or not item.is_up:
            continue
        try:
            hotspots = wifi_scanner(item.name)
        except Exception as e:
            logger.warning(f"Wi-Fi scan on {item.name} failed: {e}")
            continue
        for hotspot in hotspots:
            if hotspot.id in seen:
                continue
            seen.add(hotspot.id)
            items.append(hotspot)
    return items


def items_to_json(items: List[UnifiedNetworkItem], indent: Optional[int] = 2) -> str:
    return json.dumps([item.to_dict() for item in items], indent=indent)


def items_from_json(text: str) -> List[UnifiedNetworkItem]:
    return [UnifiedNetworkItem.from_dict(entry) for entry in json.loads(text)]
