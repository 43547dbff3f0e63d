"""
Unit tests for the unified interface / Wi-Fi hotspot view.
"""

import json
from unittest.mock import MagicMock

import pytest

from modules.models import NetworkInterfaceInfo
from modules.network_items import (
    AvailableWifiHotspot,
    ConnectedInterface,
    ItemCategory,
    UnifiedNetworkItem,
    classify_item,
    collect_network_items,
    items_from_json,
    items_to_json,
    parse_iw_scan,
    parse_nmcli_wifi,
    percent_to_dbm,
    scan_wifi_networks,
)

NMCLI_OUTPUT = (
    "*:HomeNet:A4\\:2B\\:B0\\:11\\:22\\:33:6:2437 MHz:82:WPA2\n"
    " :CoffeeShop:10\\:20\\:30\\:40\\:50\\:60:11:2462 MHz:40:\n"
    " :Neighbour\\:5G:70\\:80\\:90\\:A0\\:B0\\:C0:36:5180 MHz:20:WPA1 WPA2\n"
)

IW_OUTPUT = """BSS a4:2b:b0:11:22:33(on wlan0) -- associated
\tfreq: 2437
\tsignal: -41.00 dBm
\tSSID: HomeNet
\tRSN:\t * Version: 1
BSS 10:20:30:40:50:60(on wlan0)
\tfreq: 2462
\tcapability: ESS ShortSlotTime (0x0401)
\tsignal: -80.00 dBm
\tSSID: CoffeeShop
\tDS Parameter set: channel 11
BSS 70:80:90:a0:b0:c0(on wlan0)
\tfreq: 2412
\tcapability: ESS Privacy ShortSlotTime (0x0411)
\tsignal: -67.50 dBm
\tSSID: OldRouter
\tDS Parameter set: channel 1
"""


def _iface(name, ipv4="192.168.1.50", is_up=True, is_primary=False):
    return NetworkInterfaceInfo(
        name=name,
        mac="08:00:27:0A:0B:0C",
        ipv4=ipv4,
        ipv4_netmask="255.255.255.0",
        ipv4_cidr=f"{ipv4}/24",
        network_address="192.168.1.0",
        broadcast_address="192.168.1.255",
        is_up=is_up,
        is_primary=is_primary,
    )


# ─── Classification Tests ────────────────────────────────────────────────────


class TestClassification:
    """Tests for classify_item()."""

    @pytest.mark.parametrize("name,ipv4,expected", [
        ("eth0", "192.168.1.50", ItemCategory.WIRED),
        ("enp3s0", "192.168.1.50", ItemCategory.WIRED),
        ("wlan0", "192.168.1.50", ItemCategory.WIRELESS),
        ("wlp2s0", "192.168.1.50", ItemCategory.WIRELESS),
        ("lo", "127.0.0.1", ItemCategory.LOOPBACK),
        ("docker0", "172.17.0.1", ItemCategory.VIRTUAL),
        ("veth12ab", None, ItemCategory.VIRTUAL),
        ("tun0", "10.8.0.2", ItemCategory.VIRTUAL),
    ])
    def test_interfaces(self, name, ipv4, expected):
        item = ConnectedInterface(id=f"iface:{name}", name=name, ipv4=ipv4)
        assert classify_item(item) == expected

    @pytest.mark.parametrize("security,expected", [
        ("", ItemCategory.OPEN_HOTSPOT),
        ("--", ItemCategory.OPEN_HOTSPOT),
        ("WPA2", ItemCategory.SECURED_HOTSPOT),
        ("WEP", ItemCategory.SECURED_HOTSPOT),
    ])
    def test_hotspots(self, security, expected):
        item = AvailableWifiHotspot(id="wifi:x", name="x", security=security)
        assert classify_item(item) == expected


# ─── Serialization Tests ─────────────────────────────────────────────────────


class TestSerialization:
    """Tests for to_dict() / from_dict()."""

    def test_primary_flag_not_serialized(self):
        item = ConnectedInterface.from_interface(_iface("eth0", is_primary=True))
        assert item.is_primary_connected is True

        data = item.to_dict()
        assert "is_primary_connected" not in data
        assert data["kind"] == "connected_interface"
        assert data["category"] == "wired"
        assert data["cidr"] == "192.168.1.50/24"

    def test_from_dict_recomputes_category(self):
        data = ConnectedInterface.from_interface(_iface("wlan0")).to_dict()
        data["category"] = "loopback"
        data["is_primary_connected"] = True

        item = UnifiedNetworkItem.from_dict(data)
        assert isinstance(item, ConnectedInterface)
        assert item.category == ItemCategory.WIRELESS
        assert item.is_primary_connected is False

    def test_hotspot_from_dict(self):
        item = UnifiedNetworkItem.from_dict({
            "kind": "wifi_hotspot",
            "id": "wifi:10:20:30:40:50:60",
            "name": "CoffeeShop",
            "security": "",
            "category": "secured_hotspot",
        })
        assert isinstance(item, AvailableWifiHotspot)
        assert item.category == ItemCategory.OPEN_HOTSPOT

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            UnifiedNetworkItem.from_dict({"kind": "satellite", "id": "x", "name": "x"})

    def test_json_round_trip(self):
        items = [
            ConnectedInterface.from_interface(_iface("eth0", is_primary=True)),
            *parse_nmcli_wifi(NMCLI_OUTPUT),
        ]
        text = items_to_json(items)
        assert "is_primary_connected" not in text

        restored = items_from_json(text)
        assert [i.to_dict() for i in restored] == [i.to_dict() for i in items]
        assert json.loads(text)[0]["name"] == "eth0"


# ─── Wi-Fi Parsing Tests ─────────────────────────────────────────────────────


class TestWifiParsing:
    """Tests for nmcli and iw output parsing."""

    def test_percent_to_dbm(self):
        assert percent_to_dbm(100) == -50.0
        assert percent_to_dbm(0) == -100.0

    def test_nmcli(self):
        hotspots = parse_nmcli_wifi(NMCLI_OUTPUT)

        # The in-use network is skipped
        assert [h.name for h in hotspots] == ["CoffeeShop", "Neighbour:5G"]
        coffee = hotspots[0]
        assert coffee.id == "wifi:10:20:30:40:50:60"
        assert coffee.mac == "10:20:30:40:50:60"
        assert coffee.channel == 11
        assert coffee.frequency == 2462
        assert coffee.signal_level == -80.0
        assert coffee.category == ItemCategory.OPEN_HOTSPOT
        assert hotspots[1].category == ItemCategory.SECURED_HOTSPOT

    def test_iw(self):
        hotspots = parse_iw_scan(IW_OUTPUT)

        # The associated BSS is skipped
        assert [h.name for h in hotspots] == ["CoffeeShop", "OldRouter"]
        coffee, old = hotspots
        assert coffee.channel == 11
        assert coffee.signal_level == -80.0
        assert coffee.category == ItemCategory.OPEN_HOTSPOT
        assert old.security == "WEP"
        assert old.category == ItemCategory.SECURED_HOTSPOT

    def test_scan_prefers_nmcli(self):
        runner = MagicMock(return_value=(NMCLI_OUTPUT, "", 0))
        hotspots = scan_wifi_networks("wlan0", runner=runner)

        assert len(hotspots) == 2
        cmd = runner.call_args[0][0]
        assert cmd[0] == "nmcli"
        assert cmd[-2:] == ["ifname", "wlan0"]

    def test_scan_falls_back_to_iw(self):
        runner = MagicMock(side_effect=[("", "not found", -1), (IW_OUTPUT, "", 0)])
        hotspots = scan_wifi_networks("wlan0", runner=runner)

        assert [h.name for h in hotspots] == ["CoffeeShop", "OldRouter"]
        assert runner.call_args[0][0] == ["iw", "dev", "wlan0", "scan"]

    def test_scan_unavailable(self):
        runner = MagicMock(return_value=("", "", -1))
        assert scan_wifi_networks(None, runner=runner) == []
        assert runner.call_count == 1


# ─── Collection Tests ────────────────────────────────────────────────────────


class TestCollectNetworkItems:
    """Tests for collect_network_items()."""

    def test_interfaces_then_hotspots(self):
        interfaces = [_iface("eth0", is_primary=True), _iface("wlan0", ipv4="192.168.1.51")]
        scanner = MagicMock(return_value=parse_nmcli_wifi(NMCLI_OUTPUT))

        items = collect_network_items(interfaces, wifi_scanner=scanner)

        assert [i.kind for i in items] == [
            "connected_interface", "connected_interface", "wifi_hotspot", "wifi_hotspot",
        ]
        scanner.assert_called_once_with("wlan0")

    def test_hotspots_deduplicated_across_radios(self):
        interfaces = [_iface("wlan0"), _iface("wlan1", ipv4="192.168.1.52")]
        scanner = MagicMock(side_effect=lambda name: parse_nmcli_wifi(NMCLI_OUTPUT))

        items = collect_network_items(interfaces, wifi_scanner=scanner)
        assert len([i for i in items if i.kind == "wifi_hotspot"]) == 2

    def test_down_and_wired_interfaces_not_scanned(self):
        interfaces = [_iface("eth0"), _iface("wlan0", is_up=False)]
        scanner = MagicMock(return_value=[])

        collect_network_items(interfaces, wifi_scanner=scanner)
        scanner.assert_not_called()

    def test_scanner_failure_keeps_interfaces(self):
        scanner = MagicMock(side_effect=OSError("rfkill"))
        items = collect_network_items([_iface("wlan0")], wifi_scanner=scanner)
        assert [i.name for i in items] == ["wlan0"]

    def test_without_scanner(self):
        items = collect_network_items([_iface("eth0")], wifi_scanner=None)
        assert len(items) == 1
