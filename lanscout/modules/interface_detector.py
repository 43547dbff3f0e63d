"""
Interface Detector Module

Enumerates local network interfaces with their IPv4/IPv6 addressing and
derives network, broadcast and CIDR values.  Also picks the interface the
discovery pass should scan from.
"""

import ipaddress
import logging
import platform
import subprocess
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Tuple

import netifaces
import psutil

from config import PRIMARY_INTERFACE_NAMES
from .errors import DiscoveryError, ErrorKind
from .models import DefaultGateway, NetworkInterfaceInfo
from .scan_logger import LogCategory, ScanLogger

logger = logging.getLogger(__name__)

_ZERO_MAC = "00:00:00:00:00:00"


def run_command(cmd: List[str], timeout: int = 5) -> Tuple[str, str, int]:
    """
    Execute a command and return stdout, stderr, and return code.

    Args:
        cmd: Command and arguments as list
        timeout: Command timeout in seconds

    Returns:
        Tuple of (stdout, stderr, return_code)
    """
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.stdout, result.stderr, result.returncode
    except subprocess.TimeoutExpired:
        logger.warning(f"Command timed out: {' '.join(cmd)}")
        return "", f"Command timed out after {timeout}s", -1
    except FileNotFoundError:
        logger.debug(f"Command not found: {cmd[0]}")
        return "", f"Command not found: {cmd[0]}", -1
    except OSError as e:
        logger.error(f"Error running command {' '.join(cmd)}: {e}")
        return "", str(e), -1


# ---------------------------------------------------------------------------
# Address math
# ---------------------------------------------------------------------------

def netmask_prefix_length(netmask: str) -> int:
    """Population count of the mask bits (works for IPv4 and IPv6 masks)."""
    mask = ipaddress.ip_address(netmask.split("/", 1)[0])
    return sum(bin(octet).count("1") for octet in mask.packed)


def ipv4_network_info(ip: str, netmask: str) -> Tuple[str, str, str]:
    """
    Compute addressing facts for an IPv4 address and netmask.

    Args:
        ip: Interface address, e.g. '192.168.1.50'
        netmask: Dotted netmask, e.g. '255.255.255.0'

    Returns:
        Tuple of (cidr, network_address, broadcast_address) where cidr keeps
        the host address, e.g. ('192.168.1.50/24', '192.168.1.0', '192.168.1.255')
    """
    addr = int(ipaddress.IPv4Address(ip))
    mask = int(ipaddress.IPv4Address(netmask))
    network = addr & mask
    broadcast = network | (~mask & 0xFFFFFFFF)
    prefix = bin(mask).count("1")
    return (
        f"{ip}/{prefix}",
        str(ipaddress.IPv4Address(network)),
        str(ipaddress.IPv4Address(broadcast)),
    )


def is_link_local_ipv6(address: str) -> bool:
    try:
        return ipaddress.IPv6Address(address.split("%", 1)[0]).is_link_local
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Per-interface queries
# ---------------------------------------------------------------------------

def get_interface_mac(interface_name: str) -> Optional[str]:
    """
    Get MAC address for a network interface.

    Args:
        interface_name: Network interface name

    Returns:
        Upper-case MAC address or None if not available
    """
    try:
        addrs = netifaces.ifaddresses(interface_name)
        if netifaces.AF_LINK in addrs:
            mac = addrs[netifaces.AF_LINK][0].get('addr')
            if mac and mac != _ZERO_MAC:
                return mac.upper()
    except (ValueError, KeyError, IndexError):
        pass

    # Fallback: read from sysfs
    mac_path = Path(f"/sys/class/net/{interface_name}/address")
    if mac_path.exists():
        try:
            mac = mac_path.read_text().strip()
            if mac and mac != _ZERO_MAC:
                return mac.upper()
        except OSError:
            pass

    return None


def is_interface_up(interface_name: str) -> bool:
    try:
        stats = psutil.net_if_stats().get(interface_name)
        if stats:
            return stats.isup
    except Exception as e:
        logger.debug(f"Error checking if {interface_name} is up: {e}")

    return False


def is_primary_name(interface_name: str, platform_name: Optional[str] = None) -> bool:
    names = PRIMARY_INTERFACE_NAMES.get(platform_name or platform.system(), [])
    return interface_name in names


def get_interface_info(
    interface_name: str,
    platform_name: Optional[str] = None,
) -> Optional[NetworkInterfaceInfo]:
    """
    Build an immutable snapshot for one interface.

    Returns:
        NetworkInterfaceInfo, or None for interfaces with neither addresses
        nor a MAC (inactive or purely virtual)
    """
    try:
        addrs = netifaces.ifaddresses(interface_name)
    except ValueError as e:
        logger.debug(f"Cannot query interface {interface_name}: {e}")
        return None

    mac = get_interface_mac(interface_name)
    pairs: List[Tuple[str, str]] = []

    ipv4 = netmask = cidr = network = broadcast = None
    for entry in addrs.get(netifaces.AF_INET, []):
        ip, mask = entry.get('addr'), entry.get('netmask')
        if not ip:
            continue
        pairs.append((ip, mask or ""))
        if ipv4 is None and mask:
            try:
                cidr, network, broadcast = ipv4_network_info(ip, mask)
                ipv4, netmask = ip, mask
            except ValueError:
                logger.debug(f"Bad IPv4 netmask {mask!r} on {interface_name}")

    ipv6 = ipv6_prefix = None
    for entry in addrs.get(netifaces.AF_INET6, []):
        ip, mask = entry.get('addr'), entry.get('netmask')
        if not ip:
            continue
        ip = ip.split("%", 1)[0]
        pairs.append((ip, mask or ""))
        if ipv6 is None and not is_link_local_ipv6(ip):
            ipv6 = ip
            if mask:
                try:
                    ipv6_prefix = netmask_prefix_length(mask)
                except ValueError:
                    ipv6_prefix = None

    if not pairs and not mac:
        logger.debug(f"Skipping interface {interface_name} (no addresses, no MAC)")
        return None

    return NetworkInterfaceInfo(
        name=interface_name,
        addresses=tuple(pairs),
        mac=mac,
        ipv4=ipv4,
        ipv4_netmask=netmask,
        ipv4_cidr=cidr,
        network_address=network,
        broadcast_address=broadcast,
        ipv6=ipv6,
        ipv6_prefix=ipv6_prefix,
        is_up=is_interface_up(interface_name),
        is_primary=ipv4 is not None and is_primary_name(interface_name, platform_name),
    )


# ---------------------------------------------------------------------------
# Enumeration
# ---------------------------------------------------------------------------

def list_interfaces(
    scan_logger: Optional[ScanLogger] = None,
    platform_name: Optional[str] = None,
    include_loopback: bool = False,
) -> Tuple[List[NetworkInterfaceInfo], Optional[DiscoveryError]]:
    """
    Enumerate local interfaces.

    Returns:
        (interfaces, error).  When the OS listing call fails the list is empty
        and error is an INTERFACE_LIST_FAILED warning; callers may carry on in
        degraded mode.
    """
    try:
        names = netifaces.interfaces()
    except Exception as e:
        err = DiscoveryError(ErrorKind.INTERFACE_LIST_FAILED, f"Interface listing failed: {e}")
        if scan_logger:
            scan_logger.error(LogCategory.NETWORK_SCANNER, err)
        return [], err

    interfaces: List[NetworkInterfaceInfo] = []
    for name in names:
        info = get_interface_info(name, platform_name)
        if info is None:
            continue
        if not include_loopback and info.ipv4 and ipaddress.IPv4Address(info.ipv4).is_loopback:
            continue
        if not include_loopback and name == "lo":
            continue
        interfaces.append(info)

    if scan_logger:
        scan_logger.progress(
            LogCategory.NETWORK_SCANNER,
            f"Detected {len(interfaces)} interfaces: {', '.join(i.name for i in interfaces) or 'none'}",
        )
    return interfaces, None


def promote_primary(
    interfaces: List[NetworkInterfaceInfo],
    gateway: Optional[DefaultGateway],
) -> List[NetworkInterfaceInfo]:
    """
    Mark the interface owning the default route as primary when the naming
    heuristic matched nothing.  Leaves the list untouched otherwise.
    """
    if any(i.is_primary for i in interfaces) or gateway is None:
        return interfaces

    owner = interface_for_gateway(interfaces, gateway)
    if owner is None:
        return interfaces
    return [replace(i, is_primary=True) if i is owner else i for i in interfaces]


def interface_for_gateway(
    interfaces: List[NetworkInterfaceInfo],
    gateway: DefaultGateway,
) -> Optional[NetworkInterfaceInfo]:
    if gateway.interface:
        for iface in interfaces:
            if iface.name == gateway.interface and iface.ipv4:
                return iface
    try:
        gw = ipaddress.IPv4Address(gateway.ip)
    except ValueError:
        return None
    for iface in interfaces:
        if iface.network_cidr and gw in ipaddress.IPv4Network(iface.network_cidr):
            return iface
    return None


def select_scan_interface(
    interfaces: List[NetworkInterfaceInfo],
    gateway: Optional[DefaultGateway] = None,
    preferred: Optional[str] = None,
) -> Optional[NetworkInterfaceInfo]:
    """
    Pick the interface to scan from.

    Priority:
    1. Explicitly requested interface (if it has IPv4)
    2. Interface whose subnet contains the default gateway
    3. Primary interface
    4. First up interface with IPv4
    """
    candidates = [i for i in interfaces if i.ipv4]
    if not candidates:
        return None

    if preferred:
        for iface in candidates:
            if iface.name == preferred:
                return iface
        logger.warning(f"Requested interface '{preferred}' has no IPv4 address")

    if gateway is not None:
        owner = interface_for_gateway(candidates, gateway)
        if owner is not None:
            return owner

    for iface in candidates:
        if iface.is_primary:
            return iface

    for iface in candidates:
        if iface.is_up:
            return iface

    return candidates[0]
