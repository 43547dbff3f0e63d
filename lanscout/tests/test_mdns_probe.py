"""
Unit tests for the mDNS / DNS-SD probe.

zeroconf is replaced by small fakes: the browser announces canned instance
names synchronously and the fake Zeroconf resolves them from a table.
"""

import itertools
import threading
import time
from unittest.mock import MagicMock, patch

from modules.mdns_probe import (
    MdnsDevice,
    discover_mdns,
    listen_for_service,
    to_probe_results,
)
from modules.aggregator import aggregate
from modules.models import ProbeResult, Protocol
from modules.scan_logger import LogCategory, ScanLogger

HUE = "_hue._tcp.local."
HAP = "_hap._tcp.local."
CAST = "_googlecast._tcp.local."


def _info(addresses, server=None, port=80):
    info = MagicMock()
    info.parsed_addresses.return_value = list(addresses)
    info.server = server
    info.port = port
    return info


class FakeZeroconf:
    """Resolves (service_type, instance) pairs from a dict."""

    def __init__(self, infos):
        self.infos = infos
        self.closed = False

    def get_service_info(self, service_type, instance, timeout=3000):
        return self.infos.get((service_type, instance))

    def close(self):
        self.closed = True


def _fake_browser(announcements):
    """ServiceBrowser stand-in that announces ``announcements[type]`` immediately."""

    def browser(zc, service_type, listener):
        for name in announcements.get(service_type, []):
            listener.add_service(zc, service_type, name)
        return MagicMock()

    return browser


ANNOUNCEMENTS = {
    HUE: ["Lamp1-a1b2._hue._tcp.local."],
    HAP: ["Lamp1 Bridge._hap._tcp.local."],
    CAST: ["Living-Room-TV-4f2a._googlecast._tcp.local."],
}

INFOS = {
    (HUE, "Lamp1-a1b2._hue._tcp.local."): _info(["192.168.1.20"], "lamp1.local.", 443),
    (HAP, "Lamp1 Bridge._hap._tcp.local."): _info(["192.168.1.20"], "lamp1.local.", 8080),
    (CAST, "Living-Room-TV-4f2a._googlecast._tcp.local."): _info(
        ["fe80::1234", "192.168.1.40"], "tv.local.", 8009
    ),
}


# ─── Single Listener Tests ───────────────────────────────────────────────────


class TestListenForService:
    """Tests for one per-service listener."""

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(ANNOUNCEMENTS))
    def test_resolves_announced_instances(self, mock_browser):
        zc = FakeZeroconf(INFOS)
        devices = listen_for_service(CAST, 0.3, zeroconf_factory=lambda: zc)

        # One address per instance, IPv4 preferred
        assert list(devices) == ["192.168.1.40"]
        device = devices["192.168.1.40"]
        assert device.name == "Living-Room-TV"
        assert device.hostname == "tv.local"
        assert device.service_types == [CAST]
        assert device.ports == {8009}
        assert zc.closed is True

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(
        {HUE: ["Porch._hue._tcp.local."]}
    ))
    def test_name_embedded_ip_is_fallback(self, mock_browser):
        infos = {(HUE, "Porch._hue._tcp.local."): _info([], "192.168.1.77.local.")}
        devices = listen_for_service(HUE, 0.3, zeroconf_factory=lambda: FakeZeroconf(infos))
        assert list(devices) == ["192.168.1.77"]

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(
        {HUE: ["Porch._hue._tcp.local."]}
    ))
    def test_typed_address_is_authoritative(self, mock_browser):
        infos = {(HUE, "Porch._hue._tcp.local."): _info(["192.168.1.5"], "192.168.1.77.local.")}
        devices = listen_for_service(HUE, 0.3, zeroconf_factory=lambda: FakeZeroconf(infos))
        assert list(devices) == ["192.168.1.5"]

    def test_bind_failure_is_silent(self):
        def broken_factory():
            raise OSError("Address already in use")

        assert listen_for_service(HUE, 0.3, zeroconf_factory=broken_factory) == {}

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(ANNOUNCEMENTS))
    def test_unresolved_instance_skipped(self, mock_browser):
        devices = listen_for_service(HUE, 0.3, zeroconf_factory=lambda: FakeZeroconf({}))
        assert devices == {}

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(
        {HAP: ["Thermostat._hap._tcp.local."]}
    ))
    def test_ipv6_only_advertiser(self, mock_browser):
        infos = {(HAP, "Thermostat._hap._tcp.local."): _info(["fe80::99", "fd00::99"], "thermo.local.")}
        devices = listen_for_service(HAP, 0.3, zeroconf_factory=lambda: FakeZeroconf(infos))
        assert list(devices) == ["fe80::99"]

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(ANNOUNCEMENTS))
    def test_cancel_closes_listener_early(self, mock_browser):
        zc = FakeZeroconf(INFOS)
        cancel = threading.Event()
        threading.Timer(0.1, cancel.set).start()

        start = time.monotonic()
        devices = listen_for_service(CAST, 5.0, zeroconf_factory=lambda: zc, cancel=cancel)

        assert time.monotonic() - start < 1.0
        assert devices == {}
        assert zc.closed is True


# ─── Catalogue Tests ─────────────────────────────────────────────────────────


class TestDiscoverMdns:
    """Tests for the parallel catalogue browse."""

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(ANNOUNCEMENTS))
    def test_merges_services_per_ip(self, mock_browser):
        scan_logger = ScanLogger()
        devices = discover_mdns(
            [HUE, HAP, CAST],
            timeout=0.3,
            scan_logger=scan_logger,
            zeroconf_factory=lambda: FakeZeroconf(INFOS),
        )

        lamp = devices["192.168.1.20"]
        # First non-empty name in catalogue order is kept
        assert lamp.name == "Lamp1"
        assert lamp.service_types == [HUE, HAP]
        assert lamp.ports == {443, 8080}
        assert "192.168.1.40" in devices
        assert scan_logger.entries(LogCategory.MDNS_DISCOVERY)

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(ANNOUNCEMENTS))
    def test_one_failing_listener_does_not_sink_the_rest(self, mock_browser):
        calls = itertools.count()

        def factory():
            if next(calls) == 0:
                raise OSError("bind failed")
            return FakeZeroconf(INFOS)

        devices = discover_mdns([CAST, CAST, CAST], timeout=0.3, zeroconf_factory=factory)
        assert "192.168.1.40" in devices

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(ANNOUNCEMENTS))
    def test_listeners_run_in_parallel(self, mock_browser):
        start = time.monotonic()
        discover_mdns(
            [HUE, HAP, CAST] * 4,
            timeout=0.3,
            zeroconf_factory=lambda: FakeZeroconf(INFOS),
        )
        # Twelve sequential listeners would need over two seconds
        assert time.monotonic() - start < 1.5

    def test_empty_catalogue(self):
        assert discover_mdns([], timeout=0.3) == {}

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(ANNOUNCEMENTS))
    def test_cancelled_catalogue_returns_promptly(self, mock_browser):
        cancel = threading.Event()
        cancel.set()

        start = time.monotonic()
        devices = discover_mdns(
            [HUE, HAP, CAST],
            timeout=5.0,
            zeroconf_factory=lambda: FakeZeroconf(INFOS),
            cancel=cancel,
        )
        assert time.monotonic() - start < 1.0
        assert devices == {}

    @patch("modules.mdns_probe.ServiceBrowser", side_effect=_fake_browser(ANNOUNCEMENTS))
    def test_dual_stack_device_joins_neighbour_entry(self, mock_browser):
        devices = discover_mdns(
            [CAST], timeout=0.3, zeroconf_factory=lambda: FakeZeroconf(INFOS)
        )
        findings = to_probe_results(devices) + [
            ProbeResult(protocol=Protocol.ARP, ip="192.168.1.40", mac="AA:BB:CC:DD:EE:40"),
        ]

        merged = aggregate(findings, vendor_lookup=lambda mac: None)

        assert len(merged) == 1
        assert merged[0].ip == "192.168.1.40"
        assert merged[0].mac == "AA:BB:CC:DD:EE:40"
        assert merged[0].name == "Living-Room-TV"


# ─── Conversion Tests ────────────────────────────────────────────────────────


class TestToProbeResults:
    """Tests for to_probe_results()."""

    def test_conversion(self):
        results = to_probe_results({
            "192.168.1.20": MdnsDevice(
                name="Lamp1", hostname="lamp1.local", service_types=[HUE], ports={443}
            ),
        })
        assert len(results) == 1
        result = results[0]
        assert result.protocol == Protocol.MDNS
        assert result.name == "Lamp1"
        assert result.hostname == "lamp1.local"
        assert result.service_types == frozenset({HUE})
        assert result.ports == frozenset({443})
