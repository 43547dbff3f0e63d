"""
Discovery Orchestrator

Runs one best-effort discovery pass over the local subnet and returns a
ScanReport.  Nothing is retried; a caller wanting fresher data starts a new
pass.

Architecture:
    - Scope:       interfaces + default gateway -> scan interface, CIDR and
                   the candidate host list (own address excluded, capped)
    - Dispatch:    mDNS browse once per scan, plus every IP-targeted probe
                   (reverse DNS, HTTP, UPnP, vendor handshakes) per candidate
                   on a worker pool bounded by ``max_in_flight``
    - Collect:     probe outcomes land on one results queue; the pass ends
                   when every probe reported or the global deadline expired.
                   Outstanding work is cancelled and late results discarded
    - Aggregate:   the kernel neighbour table supplies MACs, then findings
                   are folded into devices and user overrides applied

States: IDLE -> SCOPE_RESOLVED -> PROBES_DISPATCHED -> AGGREGATING -> COMPLETE
"""

import ipaddress
import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from itertools import islice
from typing import Callable, List, Optional

from config import (
    ENABLE_MDNS,
    ENABLE_VENDOR_PROBES,
    HTTP_PROBE_TIMEOUT,
    MAX_HOSTS,
    MAX_IN_FLIGHT,
    MDNS_SERVICE_CATALOGUE,
    MDNS_TIMEOUT,
    REVERSE_DNS_TIMEOUT,
    SCAN_DEADLINE,
    SUBNET_OVERRIDE,
    UPNP_PROBE_TIMEOUT,
)
from .aggregator import aggregate
from .arp_table import load_vendor_database, lookup_vendor, read_arp_table
from .dns_probe import reverse_lookup
from .errors import DiscoveryError
from .gateway import GatewayResolver
from .http_probe import probe_http, read_upnp_description
from .interface_detector import list_interfaces, promote_primary, select_scan_interface
from .mdns_probe import discover_mdns, to_probe_results
from .models import ProbeResult, Protocol, ScanReport, ScanScope, ScanState
from .overrides import DeviceNameOverrides
from .scan_logger import LogCategory, ScanLogger
from .vendor_probes import VENDOR_PROBES, VendorProbe

logger = logging.getLogger(__name__)

StateCallback = Callable[[ScanState], None]


@dataclass
class ScanSettings:
    """Per-scan knobs; defaults come from config (and its LANSCOUT_* env overrides)."""
    subnet: Optional[str] = SUBNET_OVERRIDE or None
    interface: Optional[str] = None
    max_hosts: int = MAX_HOSTS
    max_in_flight: int = MAX_IN_FLIGHT
    deadline: float = SCAN_DEADLINE
    enable_mdns: bool = ENABLE_MDNS
    mdns_timeout: float = MDNS_TIMEOUT
    mdns_services: List[str] = field(default_factory=lambda: list(MDNS_SERVICE_CATALOGUE))
    enable_vendor_probes: bool = ENABLE_VENDOR_PROBES
    reverse_dns_timeout: float = REVERSE_DNS_TIMEOUT
    http_timeout: float = HTTP_PROBE_TIMEOUT
    upnp_timeout: float = UPNP_PROBE_TIMEOUT


@dataclass(frozen=True)
class IpProbe:
    """An IP-targeted probe: ``run(ip, cancel)`` returns a finding or None.

    ``deferred`` probes are multi-request sweeps; they are queued only after
    every host has had its quick probes queued.
    """
    tag: str
    run: Callable[[str, threading.Event], Optional[ProbeResult]]
    deferred: bool = False


def _vendor_ip_probe(probe: VendorProbe) -> IpProbe:
    def run(ip: str, cancel: threading.Event) -> Optional[ProbeResult]:
        name = probe.func(ip, cancel=cancel)
        if not name:
            return None
        return ProbeResult(
            protocol=Protocol.VENDOR,
            ip=ip,
            name=name,
            ports=probe.ports,
            metadata=(("probe", probe.tag),),
        )

    return IpProbe(probe.tag, run, deferred=probe.sweep)


def default_ip_probes(settings: ScanSettings) -> List[IpProbe]:
    """The per-IP probe set for ``settings``."""

    def reverse_dns(ip: str, cancel: threading.Event) -> Optional[ProbeResult]:
        hostname = reverse_lookup(ip, timeout=settings.reverse_dns_timeout)
        if not hostname:
            return None
        return ProbeResult(protocol=Protocol.REVERSE_DNS, ip=ip, hostname=hostname)

    def http(ip: str, cancel: threading.Event) -> Optional[ProbeResult]:
        name = probe_http(ip, timeout=settings.http_timeout)
        if not name:
            return None
        return ProbeResult(protocol=Protocol.HTTP, ip=ip, name=name, ports=frozenset({80}))

    def upnp(ip: str, cancel: threading.Event) -> Optional[ProbeResult]:
        description = read_upnp_description(ip, timeout=settings.upnp_timeout)
        if description is None or not (description.name or description.manufacturer):
            return None
        metadata = (("manufacturer", description.manufacturer),) if description.manufacturer else ()
        return ProbeResult(
            protocol=Protocol.UPNP,
            ip=ip,
            name=description.name,
            ports=frozenset({80}),
            metadata=metadata,
        )

    probes = [
        IpProbe("reverse_dns", reverse_dns),
        IpProbe("http", http),
        IpProbe("upnp", upnp),
    ]
    if settings.enable_vendor_probes:
        probes.extend(_vendor_ip_probe(p) for p in VENDOR_PROBES)
    return probes


def candidate_hosts(cidr: str, exclude: Optional[str] = None, max_hosts: int = MAX_HOSTS) -> List[str]:
    """Host addresses of ``cidr`` minus ``exclude``, at most ``max_hosts`` of them."""
    net = ipaddress.ip_network(cidr, strict=False)
    hosts = (str(h) for h in net.hosts() if str(h) != exclude)
    return list(islice(hosts, max(0, max_hosts)))


class DiscoveryEngine:
    """Single-pass discovery engine.

    Usage::

        engine = DiscoveryEngine(ScanSettings(deadline=20), scan_logger=ScanLogger())
        report = engine.scan()
        for device in report.devices:
            print(device.ip, device.display_name)

    ``cancel()`` may be called from another thread; the running scan stops
    dispatching, abandons outstanding probes and returns what it has.
    Every collaborator can be injected, which is how the tests run without a
    network.
    """

    def __init__(
        self,
        settings: Optional[ScanSettings] = None,
        scan_logger: Optional[ScanLogger] = None,
        gateway_resolver: Optional[GatewayResolver] = None,
        interface_lister: Optional[Callable] = None,
        ip_probes: Optional[List[IpProbe]] = None,
        mdns_discoverer: Optional[Callable] = None,
        neighbour_reader: Optional[Callable] = None,
        vendor_lookup: Optional[Callable] = None,
        overrides: Optional[DeviceNameOverrides] = None,
        progress_callback: Optional[StateCallback] = None,
    ):
        self.settings = settings or ScanSettings()
        self.scan_logger = scan_logger or ScanLogger()
        self.gateway_resolver = gateway_resolver or GatewayResolver(scan_logger=self.scan_logger)
        self._list_interfaces = interface_lister or list_interfaces
        self._ip_probes = ip_probes
        self._discover_mdns = mdns_discoverer or discover_mdns
        self._read_neighbours = neighbour_reader or read_arp_table
        self._vendor_lookup = vendor_lookup or lookup_vendor
        self.overrides = overrides
        self._progress_callback = progress_callback

        self._state = ScanState.IDLE
        self._cancel = threading.Event()
        self._user_cancelled = False
        self._lock = threading.Lock()

    # -- public API ----------------------------------------------------------

    @property
    def state(self) -> ScanState:
        return self._state

    def cancel(self):
        """Abort the running scan; it returns whatever was collected."""
        with self._lock:
            self._user_cancelled = True
            self._cancel.set()
        self.scan_logger.progress(LogCategory.DEVICE_DISCOVERY, "Scan cancelled by caller")

    def resolve_scope(self, warnings: Optional[List[Exception]] = None) -> ScanScope:
        """
        Establish interfaces, gateway, CIDR and candidate IPs.

        Interface and gateway failures are appended to ``warnings`` and the
        scope degrades instead of failing.
        """
        warnings = warnings if warnings is not None else []
        interfaces, err = self._list_interfaces(scan_logger=self.scan_logger)
        if err is not None:
            warnings.append(err)

        gateway = None
        try:
            gateway = self.gateway_resolver.get_default_gateway()
        except DiscoveryError as e:
            warnings.append(e)

        interfaces = promote_primary(interfaces, gateway)
        interface = select_scan_interface(interfaces, gateway, preferred=self.settings.interface)
        cidr = self.settings.subnet or (interface.network_cidr if interface else None)

        candidate_ips: List[str] = []
        if cidr:
            try:
                candidate_ips = candidate_hosts(
                    cidr,
                    exclude=interface.ipv4 if interface else None,
                    max_hosts=self.settings.max_hosts,
                )
            except ValueError as e:
                self.scan_logger.error(LogCategory.NETWORK_SCANNER, f"Invalid subnet {cidr}: {e}")
                cidr = None
        else:
            self.scan_logger.warning(
                LogCategory.NETWORK_SCANNER,
                "No IPv4 subnet available; only multicast discovery will run",
            )

        scope = ScanScope(
            interfaces=interfaces,
            gateway=gateway,
            interface=interface,
            cidr=cidr,
            candidate_ips=candidate_ips,
        )
        self.scan_logger.progress(
            LogCategory.NETWORK_SCANNER,
            f"Scope: {cidr or 'none'} via {interface.name if interface else 'no interface'}, "
            f"{len(candidate_ips)} candidate hosts",
        )
        return scope

    def scan(self) -> ScanReport:
        """Run one discovery pass."""
        with self._lock:
            self._cancel = threading.Event()
            self._user_cancelled = False
        cancel = self._cancel

        if self._vendor_lookup is lookup_vendor:
            # Local file read only; kept off the deadline's clock
            load_vendor_database()

        report = ScanReport()
        started = time.monotonic()
        deadline = started + self.settings.deadline
        self._set_state(ScanState.IDLE)

        scope = self.resolve_scope(report.warnings)
        report.scope = scope
        self._set_state(ScanState.SCOPE_RESOLVED)

        results = self._dispatch(scope, deadline, cancel, report)

        self._set_state(ScanState.AGGREGATING)
        results.extend(self._neighbour_results(scope))
        devices = aggregate(
            results,
            vendor_lookup=self._vendor_lookup,
            gateway_ip=scope.gateway.ip if scope.gateway else None,
        )
        if self.overrides is not None:
            devices = self.overrides.apply(devices)

        report.devices = devices
        report.cancelled = self._user_cancelled
        report.elapsed = time.monotonic() - started
        self._set_state(ScanState.COMPLETE)
        report.state = self._state

        self.scan_logger.progress(
            LogCategory.DEVICE_DISCOVERY,
            f"Scan complete: {len(devices)} devices in {report.elapsed:.1f}s "
            f"({report.probes_abandoned} probes abandoned)",
        )
        return report

    # -- internal helpers ----------------------------------------------------

    def _set_state(self, state: ScanState):
        self._state = state
        logger.debug("Scan state -> %s", state.value)
        if self._progress_callback:
            try:
                self._progress_callback(state)
            except Exception as e:
                logger.error("Progress callback error for %s: %s", state.value, e)

    def _dispatch(
        self,
        scope: ScanScope,
        deadline: float,
        cancel: threading.Event,
        report: ScanReport,
    ) -> List[ProbeResult]:
        """Fan probes out on the worker pool and drain the results queue."""
        results_queue: "queue.Queue[List[ProbeResult]]" = queue.Queue()
        ip_probes = self._ip_probes if self._ip_probes is not None else default_ip_probes(self.settings)

        executor = ThreadPoolExecutor(
            max_workers=max(1, self.settings.max_in_flight),
            thread_name_prefix="probe",
        )
        dispatched = 0
        if self.settings.enable_mdns and self.settings.mdns_services:
            mdns_timeout = min(self.settings.mdns_timeout, max(0.0, deadline - time.monotonic()))
            executor.submit(self._run_mdns, mdns_timeout, cancel, results_queue)
            dispatched += 1

        # Quick probes for every host go first so a slow sweep on the low
        # addresses cannot starve the high ones
        for deferred in (False, True):
            wave = [p for p in ip_probes if p.deferred == deferred]
            for ip in scope.candidate_ips:
                for probe in wave:
                    executor.submit(self._run_probe, probe, ip, cancel, results_queue)
                    dispatched += 1

        report.probes_dispatched = dispatched
        self._set_state(ScanState.PROBES_DISPATCHED)
        self.scan_logger.progress(
            LogCategory.DEVICE_DISCOVERY,
            f"Dispatched {dispatched} probes across {len(scope.candidate_ips)} hosts",
        )

        collected: List[ProbeResult] = []
        pending = dispatched
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0 or cancel.is_set():
                break
            try:
                # Short waits so a caller's cancel() is noticed promptly
                batch = results_queue.get(timeout=min(remaining, 0.1))
            except queue.Empty:
                continue
            pending -= 1
            collected.extend(batch)

        # Stops in-flight probes between requests; queued ones never start
        cancel.set()
        executor.shutdown(wait=False, cancel_futures=True)

        report.probes_abandoned = pending
        if pending:
            self.scan_logger.progress(
                LogCategory.DEVICE_DISCOVERY,
                f"Deadline reached; abandoned {pending} outstanding probes",
            )
        return collected

    def _run_probe(
        self,
        probe: IpProbe,
        ip: str,
        cancel: threading.Event,
        results_queue: queue.Queue,
    ):
        if cancel.is_set():
            results_queue.put([])
            return
        try:
            result = probe.run(ip, cancel)
        except Exception as e:
            logger.debug("Probe %s on %s failed: %s", probe.tag, ip, e)
            result = None

        if result is not None:
            self.scan_logger.debug(
                LogCategory.SMART_DEVICE_PROBE,
                f"{probe.tag} {ip}: {result.name or result.hostname}",
            )
        results_queue.put([result] if result is not None else [])

    def _run_mdns(self, timeout: float, cancel: threading.Event, results_queue: queue.Queue):
        if cancel.is_set():
            results_queue.put([])
            return
        try:
            devices = self._discover_mdns(
                self.settings.mdns_services,
                timeout=timeout,
                scan_logger=self.scan_logger,
                cancel=cancel,
            )
            results = to_probe_results(devices)
        except Exception as e:
            logger.debug("mDNS discovery failed: %s", e)
            results = []
        results_queue.put(results)

    def _neighbour_results(self, scope: ScanScope) -> List[ProbeResult]:
        """MACs the kernel learned for the scanned subnet, as ARP findings."""
        if not scope.cidr:
            return []
        try:
            pairs = self._read_neighbours(scope.cidr)
        except Exception as e:
            self.scan_logger.error(LogCategory.ARP_SCAN, e, context=scope.cidr)
            return []

        self.scan_logger.progress(
            LogCategory.ARP_SCAN, f"Neighbour table has {len(pairs)} entries in {scope.cidr}"
        )
        return [ProbeResult(protocol=Protocol.ARP, ip=ip, mac=mac) for ip, mac in pairs]
