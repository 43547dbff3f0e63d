"""
mDNS / DNS-SD Probe Module

Browses a catalogue of service types with one independent zeroconf listener
per type, all running in parallel for the same window.  A listener that cannot
bind its multicast socket is dropped quietly; the probe returns the union of
whatever the remaining listeners saw before the deadline.
"""

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from zeroconf import IPVersion, ServiceBrowser, ServiceListener, Zeroconf

from config import MDNS_SERVICES, MDNS_TIMEOUT
from .models import ProbeResult, Protocol
from .name_extractors import device_name_from_mdns, ip_from_record_name
from .scan_logger import LogCategory, ScanLogger

logger = logging.getLogger(__name__)

# Share of the window spent browsing; the rest resolves what was announced
_BROWSE_SHARE = 0.6
_MAX_RESOLVE_MS = 500


@dataclass
class MdnsDevice:
    """What the mDNS listeners learned about one IP."""
    name: str
    hostname: Optional[str] = None
    service_types: List[str] = field(default_factory=list)
    ports: Set[int] = field(default_factory=set)

    def merge(self, other: "MdnsDevice") -> None:
        # The first non-empty name stays; devices rarely rename mid-scan
        if not self.name and other.name:
            self.name = other.name
        if not self.hostname and other.hostname:
            self.hostname = other.hostname
        for service in other.service_types:
            if service not in self.service_types:
                self.service_types.append(service)
        self.ports |= other.ports


class _ServiceCollector(ServiceListener):
    """Records announced instance names; resolution happens afterwards."""

    def __init__(self):
        self._lock = threading.Lock()
        self._names: List[str] = []

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        with self._lock:
            if name not in self._names:
                self._names.append(name)

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.add_service(zc, type_, name)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        pass

    @property
    def names(self) -> List[str]:
        with self._lock:
            return list(self._names)


def _address_for(info, record_name: str) -> Optional[str]:
    """
    One address per instance: the first IPv4 record, else the first IPv6
    record, else an IP encoded in the record name.

    A dual-stack advertiser must not turn into two devices, and only the
    IPv4 address can be joined to the neighbour table's MAC.
    """
    try:
        addresses = list(info.parsed_addresses(IPVersion.All))
    except Exception:
        addresses = []
    if addresses:
        return min(addresses, key=lambda a: ":" in a)

    for candidate in (info.server, record_name):
        if candidate:
            ip = ip_from_record_name(candidate)
            if ip:
                return ip
    return None


def listen_for_service(
    service_type: str,
    timeout: float,
    zeroconf_factory: Callable[[], Zeroconf] = Zeroconf,
    cancel: Optional[threading.Event] = None,
) -> Dict[str, MdnsDevice]:
    """
    Run one listener for ``service_type`` for at most ``timeout`` seconds.

    Setting ``cancel`` closes the listener straight away; whatever was
    resolved up to that point is returned.

    Returns:
        Mapping of IP -> MdnsDevice for every resolved instance
    """
    cancel = cancel or threading.Event()
    deadline = time.monotonic() + timeout
    try:
        zc = zeroconf_factory()
    except Exception as e:
        logger.debug(f"mDNS listener for {service_type} unavailable: {e}")
        return {}

    devices: Dict[str, MdnsDevice] = {}
    browser = None
    try:
        collector = _ServiceCollector()
        browser = ServiceBrowser(zc, service_type, collector)
        if cancel.wait(max(0.0, timeout * _BROWSE_SHARE)):
            return devices

        for instance in collector.names:
            if cancel.is_set():
                break
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                break
            info = zc.get_service_info(
                service_type, instance, timeout=min(remaining_ms, _MAX_RESOLVE_MS)
            )
            if info is None:
                continue

            hostname = (info.server or "").rstrip(".") or None
            name = device_name_from_mdns(instance) or (
                device_name_from_mdns(hostname) if hostname else ""
            )
            ip = _address_for(info, instance)
            if ip is None:
                continue
            found = MdnsDevice(
                name=name,
                hostname=hostname,
                service_types=[service_type],
                ports={info.port} if info.port else set(),
            )
            if ip in devices:
                devices[ip].merge(found)
            else:
                devices[ip] = found
    except Exception as e:
        logger.debug(f"mDNS listener for {service_type} failed: {e}")
    finally:
        if browser is not None:
            browser.cancel()
        zc.close()

    return devices


def discover_mdns(
    service_catalogue: Optional[List[str]] = None,
    timeout: float = MDNS_TIMEOUT,
    scan_logger: Optional[ScanLogger] = None,
    zeroconf_factory: Callable[[], Zeroconf] = Zeroconf,
    cancel: Optional[threading.Event] = None,
) -> Dict[str, MdnsDevice]:
    """
    Browse every catalogue entry in parallel and merge the findings per IP.

    Args:
        service_catalogue: Service types such as '_airplay._tcp.local.'
        timeout: Listening window shared by all listeners, in seconds
        scan_logger: Optional structured logger
        zeroconf_factory: Builds the zeroconf instance for each listener
        cancel: Closes every listener early when set

    Returns:
        Mapping of IP -> MdnsDevice (first name seen, accumulated services)
    """
    catalogue = list(MDNS_SERVICES if service_catalogue is None else service_catalogue)
    if not catalogue:
        return {}

    if scan_logger:
        scan_logger.progress(
            LogCategory.MDNS_DISCOVERY,
            f"Browsing {len(catalogue)} mDNS service types for {timeout:.1f}s",
        )

    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=len(catalogue), thread_name_prefix="mdns"
    )
    futures = {
        executor.submit(listen_for_service, service, timeout, zeroconf_factory, cancel): service
        for service in catalogue
    }
    # Small grace for listeners to close their sockets
    done, not_done = concurrent.futures.wait(futures, timeout=timeout + 1.0)
    executor.shutdown(wait=False, cancel_futures=True)

    per_service: Dict[str, List[Dict[str, MdnsDevice]]] = {}
    for future in done:
        try:
            per_service.setdefault(futures[future], []).append(future.result())
        except Exception as e:
            logger.debug(f"mDNS listener for {futures[future]} crashed: {e}")

    merged: Dict[str, MdnsDevice] = {}
    # Catalogue order keeps the merge deterministic
    for service in dict.fromkeys(catalogue):
        for found in per_service.get(service, []):
            for ip, device in found.items():
                if ip not in merged:
                    merged[ip] = MdnsDevice(name="")
                merged[ip].merge(device)

    if scan_logger:
        if not_done:
            scan_logger.debug(
                LogCategory.MDNS_DISCOVERY,
                f"{len(not_done)} mDNS listeners missed the deadline",
            )
        scan_logger.progress(
            LogCategory.MDNS_DISCOVERY, f"mDNS found {len(merged)} advertising hosts"
        )
    return merged


def to_probe_results(devices: Dict[str, MdnsDevice]) -> List[ProbeResult]:
    return [
        ProbeResult(
            protocol=Protocol.MDNS,
            ip=ip,
            name=device.name or None,
            hostname=device.hostname,
            service_types=frozenset(device.service_types),
            ports=frozenset(device.ports),
        )
        for ip, device in devices.items()
    ]
