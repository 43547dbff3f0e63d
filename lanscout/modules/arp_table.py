"""
Neighbour Table Module

Reads IP -> MAC bindings the kernel already learned (no packets are sent)
and maps MAC OUIs to manufacturers.
"""

import ipaddress
import logging
import re
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from mac_vendor_lookup import MacLookup

from config import ENABLE_MAC_VENDOR_LOOKUP
from .interface_detector import run_command

logger = logging.getLogger(__name__)

ZERO_MAC = "00:00:00:00:00:00"
PROC_ARP = Path("/proc/net/arp")

_IP_NEIGH_RE = re.compile(
    r'^(\d+\.\d+\.\d+\.\d+)\s+.*?\blladdr\s+([0-9a-fA-F:]{11,17})'
)
_ARP_A_RE = re.compile(
    r'\(?(\d+\.\d+\.\d+\.\d+)\)?\s+(?:at\s+)?([0-9a-fA-F]{1,2}(?:[:-][0-9a-fA-F]{1,2}){5})'
)


def normalize_mac(mac: str) -> Optional[str]:
    """'a:b:c:d:e:f' / 'AA-BB-..' -> 'AA:BB:CC:DD:EE:FF'; None if not a MAC."""
    parts = re.split(r'[:-]', mac.strip())
    if len(parts) != 6:
        return None
    try:
        octets = [int(part, 16) for part in parts]
    except ValueError:
        return None
    if any(octet > 0xFF for octet in octets):
        return None
    return ":".join(f"{octet:02X}" for octet in octets)


def _filter_to_network(
    pairs: List[Tuple[str, str]], net: ipaddress.IPv4Network
) -> List[Tuple[str, str]]:
    results = []
    seen = set()
    for ip, raw_mac in pairs:
        mac = normalize_mac(raw_mac)
        if mac is None or mac == ZERO_MAC or ip in seen:
            continue
        try:
            if ipaddress.IPv4Address(ip) not in net:
                continue
        except ValueError:
            continue
        seen.add(ip)
        results.append((ip, mac))
    return results


def _read_proc_arp(path: Path) -> List[Tuple[str, str]]:
    pairs = []
    with open(path, "r") as f:
        for line in f.readlines()[1:]:  # skip header
            parts = line.split()
            if len(parts) >= 4:
                pairs.append((parts[0], parts[3]))
    return pairs


def parse_ip_neigh(output: str) -> List[Tuple[str, str]]:
    pairs = []
    for line in output.splitlines():
        match = _IP_NEIGH_RE.search(line.strip())
        if match:
            pairs.append((match.group(1), match.group(2)))
    return pairs


def parse_arp_a(output: str) -> List[Tuple[str, str]]:
    """Parse BSD/macOS ('? (ip) at mac on en0') and Windows ('ip  mac  dynamic') output."""
    pairs = []
    for line in output.splitlines():
        match = _ARP_A_RE.search(line)
        if match:
            pairs.append((match.group(1), match.group(2)))
    return pairs


def read_arp_table(
    network_cidr: str,
    proc_path: Path = PROC_ARP,
    runner: Callable = run_command,
) -> List[Tuple[str, str]]:
    """
    Return (ip, mac) pairs from the kernel neighbour cache inside ``network_cidr``.

    /proc/net/arp is read first; ``ip neigh`` and then ``arp -a`` are tried
    when it is unavailable.  Incomplete entries (zero MAC) are skipped.
    """
    try:
        net = ipaddress.IPv4Network(network_cidr, strict=False)
    except ValueError:
        logger.debug("Not an IPv4 network, skipping neighbour table: %s", network_cidr)
        return []

    try:
        return _filter_to_network(_read_proc_arp(proc_path), net)
    except OSError as e:
        logger.debug("Could not read %s: %s", proc_path, e)

    stdout, _, rc = runner(["ip", "neigh", "show"])
    if rc == 0 and stdout:
        return _filter_to_network(parse_ip_neigh(stdout), net)

    stdout, _, rc = runner(["arp", "-a"])
    if rc == 0 and stdout:
        return _filter_to_network(parse_arp_a(stdout), net)

    logger.debug("No neighbour table source available")
    return []


# ---------------------------------------------------------------------------
# OUI / MAC vendor lookup
# ---------------------------------------------------------------------------

# Smart-home families the IEEE registry names unhelpfully (or not at all)
SMART_HOME_OUIS: Dict[str, str] = {}


def _register(vendor: str, prefixes: str) -> None:
    for prefix in prefixes.split():
        SMART_HOME_OUIS[prefix] = vendor


_register("Apple Device", """
    D8BE65 001D4F 001E58 001F5B 002332 002436 002500 40A36B 7C11BE A8B86E
    34E2FD 8C8590 A4C361 3C0754 ACDE48 10DD20 4C8D79 8863DF A8FAD8 BC52B7
    F0DBE2 6C94F8 7831C1 F4F951 043E0A 049226 044BED 2C1F23 A4B197 6C709F
    70A8E3 F0F61C 74F0D3 E8CD2D 705A0F FC253F 90FD61 D89695 B0481A A45E60
    28E02C 6CAB31 28A02B 503237 78CA39 AC7F3E EC3586 20AB37
""")
_register("HomeKit Hub", """
    98F0AB CC08E0 F437B7 7CC3A1 A85C2C 38ECE4 6C4008 C869CD 90B21F A8968A
    E06267 4480EB 88E9FE D0E140 50ED3C B8C75A
""")
_register("Philips Hue/Smart Lighting", """
    CC4085 001788 ECFD9F 00178D 001742 7CB94E B4E62D E0E429 54AF97 5C0E8B
    001CA8 001CDB 0017C0 001DF6 001F12 0007B8 0008DC 0015BC 0010DD 0004F3
    F0B429 001E06 00236C E4E4AB 0001DB
""")
_register("LIFX Smart Bulb", "D073D5 EC23F6 A4DA22 68B686 C4935D 5C313E")
_register("SmartThings Hub", "D052A8 286AB8 24E124 44724C 24FD52")
_register("Amazon/Alexa", """
    C482E1 84C9B2 68B599 50DCE7 AC63BE F0D2F1 38F73D 747548 44650D F81A67
    6837E9 0071BC FC65DE 88C2B0 4C11AE 8871E5 F0272D 34D270 74C246 A002DC
    FCF152 78E103 AC3743 B47C9C 0C8268
""")
_register("Google/Nest", """
    B0CFCB 64168D F8CF7E 4C49E3 B4F1DA 54FA3E F04F7C 6476BA 6C1FFD 98AA3C
    1C1AC0 F4F5D8 18B905 54EAA8 4C5765 30FD38 9C5C8E
""")
_register("Tuya Smart Device", "843A4B 508A06 E0E2E6 6C5AB0 70039F 5C02A8 381F8D 600194")
_register("Belkin WeMo", "94103E B4750E 001E8C 0030BD 001CDF")
_register("Raspberry Pi Hub", "DC86D8 B827EB E45F01 28CD4C D83ADD")
_register("TP-Link Kasa", """
    3C0B59 50C7BF EC086B C46E1F AC15A2 A42BB0 4C72B9 5065F3 10FEED B07FB9
    C8D719 98DAC4 502B73 84D81F 98B4C6
""")
_register("HomeMATE Smart Bulb", "CC8CBF CC4CBF")
_register("Sengled Smart Bulb", "18FE34 C83AE0")
_register("Kasa Smart Bulb", "5CCF7F 68C63A")
_register("Smart Life Bulb", "E8DB84 50E549")
_register("Generic WiFi Smart Bulb", "DC4F22 3C71BF")
_register("Sonos", "6C5697 000E58 B8E937 5CAAFE 48A6B8 347E5C")
_register("Ring Camera", "EC0BAB A0C5F2 DC2B2A B8D50B 90324B 5043B2")
_register("ESP32/IoT Device", "240AC4 30AEA4 807D3A 246F28 84CCA8 8CCAB3 7CDFA1")
_register("Wyze Camera", "2CAA8E 7C78B2 A4CF12 BCFFEB 8CAAB5")
_register("Roku", "C83A35 B0A737 CCF435 DC3A5E 088536")

LOCALLY_ADMINISTERED = "Local Admin"

_mac_lookup: Optional[MacLookup] = None
_mac_lookup_loaded = False
_mac_lookup_lock = threading.Lock()


def load_vendor_database() -> Optional[MacLookup]:
    """
    Load the locally cached IEEE OUI file, once per process.

    Never touches the network: mac-vendor-lookup would otherwise download
    the whole registry on first use.  Returns None when there is no local
    copy; ``update_vendor_database`` fetches one.
    """
    global _mac_lookup, _mac_lookup_loaded
    with _mac_lookup_lock:
        if _mac_lookup_loaded:
            return _mac_lookup
        _mac_lookup_loaded = True
        try:
            lookup = MacLookup()
            if not lookup.find_vendors_list():
                logger.info(
                    "No local MAC vendor database; run with --update-vendors to fetch it"
                )
                return None
            lookup.load_vendors()
            if lookup.async_lookup.prefixes:
                _mac_lookup = lookup
        except Exception as e:
            logger.debug(f"MAC vendor database unreadable: {e}")
        return _mac_lookup


def update_vendor_database() -> bool:
    """Download the IEEE OUI file into the local cache. Returns True on success."""
    global _mac_lookup, _mac_lookup_loaded
    lookup = MacLookup()
    try:
        lookup.update_vendors()
    except Exception as e:
        logger.error(f"MAC vendor database update failed: {e}")
        return False
    with _mac_lookup_lock:
        _mac_lookup = lookup if lookup.async_lookup.prefixes else None
        _mac_lookup_loaded = True
        return _mac_lookup is not None


def oui_prefix(mac: str) -> Optional[str]:
    prefix = re.sub(r'[^0-9A-Fa-f]', "", mac).upper()
    if len(prefix) < 6:
        return None
    return prefix[:6]


def builtin_vendor(mac: str) -> Optional[str]:
    """Look up the bundled smart-home OUI table."""
    prefix = oui_prefix(mac)
    if prefix is None:
        return None
    if prefix in SMART_HOME_OUIS:
        return SMART_HOME_OUIS[prefix]
    # Second-least-significant bit of the first octet marks a random MAC
    if int(prefix[:2], 16) & 0x02:
        return LOCALLY_ADMINISTERED
    return None


def lookup_vendor(mac: str) -> Optional[str]:
    """Look up vendor from MAC OUI prefix.

    Uses the local mac-vendor-lookup IEEE database first and the bundled
    smart-home table when that has no answer.  Returns None when neither
    knows the OUI.
    """
    if not mac:
        return None
    database = load_vendor_database() if ENABLE_MAC_VENDOR_LOOKUP else None
    if database is not None:
        try:
            return database.lookup(mac)
        except KeyError:
            pass  # unknown OUI
        except Exception as e:
            logger.debug("MAC vendor lookup failed: %s", e)
    return builtin_vendor(mac)
