"""
Unit tests for the neighbour table reader and OUI vendor lookup.
"""

from unittest.mock import MagicMock, patch

import pytest

from modules import arp_table
from modules.arp_table import (
    LOCALLY_ADMINISTERED,
    builtin_vendor,
    load_vendor_database,
    lookup_vendor,
    normalize_mac,
    parse_arp_a,
    parse_ip_neigh,
    read_arp_table,
    update_vendor_database,
)

PROC_ARP = """IP address       HW type     Flags       HW address            Mask     Device
192.168.1.1      0x1         0x2         a4:2b:b0:11:22:33     *        eth0
192.168.1.20     0x1         0x2         00:17:88:aa:bb:cc     *        eth0
192.168.1.30     0x1         0x0         00:00:00:00:00:00     *        eth0
10.8.0.5         0x1         0x2         02:11:22:33:44:55     *        tun0
"""

IP_NEIGH = """192.168.1.1 dev eth0 lladdr a4:2b:b0:11:22:33 REACHABLE
192.168.1.44 dev eth0  FAILED
fe80::1 dev eth0 lladdr a4:2b:b0:11:22:33 router STALE
"""

ARP_A_BSD = """? (192.168.1.1) at a4:2b:b0:11:22:33 on en0 ifscope [ethernet]
? (192.168.1.7) at 8:0:27:a:b:c on en0 ifscope [ethernet]
? (192.168.1.9) at (incomplete) on en0 ifscope [ethernet]
"""

ARP_A_WINDOWS = """Interface: 192.168.1.23 --- 0xb
  Internet Address      Physical Address      Type
  192.168.1.1           a4-2b-b0-11-22-33     dynamic
  192.168.1.255         ff-ff-ff-ff-ff-ff     static
"""


# ─── MAC Normalisation Tests ─────────────────────────────────────────────────


class TestNormalizeMac:
    """Tests for normalize_mac()."""

    @pytest.mark.parametrize("raw,expected", [
        ("aa:bb:cc:dd:ee:ff", "AA:BB:CC:DD:EE:FF"),
        ("AA-BB-CC-DD-EE-FF", "AA:BB:CC:DD:EE:FF"),
        ("8:0:27:a:b:c", "08:00:27:0A:0B:0C"),
        ("(incomplete)", None),
        ("aa:bb:cc", None),
        ("zz:bb:cc:dd:ee:ff", None),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_mac(raw) == expected


# ─── Neighbour Table Tests ───────────────────────────────────────────────────


class TestReadArpTable:
    """Tests for read_arp_table() and its fallbacks."""

    def test_proc_arp(self, tmp_path):
        proc = tmp_path / "arp"
        proc.write_text(PROC_ARP)
        runner = MagicMock()

        pairs = read_arp_table("192.168.1.0/24", proc_path=proc, runner=runner)

        assert pairs == [
            ("192.168.1.1", "A4:2B:B0:11:22:33"),
            ("192.168.1.20", "00:17:88:AA:BB:CC"),
        ]
        runner.assert_not_called()

    def test_ip_neigh_fallback(self, tmp_path):
        runner = MagicMock(return_value=(IP_NEIGH, "", 0))
        pairs = read_arp_table("192.168.1.0/24", proc_path=tmp_path / "missing", runner=runner)

        assert pairs == [("192.168.1.1", "A4:2B:B0:11:22:33")]
        assert runner.call_args[0][0] == ["ip", "neigh", "show"]

    def test_arp_a_fallback(self, tmp_path):
        runner = MagicMock(side_effect=[("", "not found", -1), (ARP_A_BSD, "", 0)])
        pairs = read_arp_table("192.168.1.0/24", proc_path=tmp_path / "missing", runner=runner)

        assert pairs == [
            ("192.168.1.1", "A4:2B:B0:11:22:33"),
            ("192.168.1.7", "08:00:27:0A:0B:0C"),
        ]

    def test_nothing_available(self, tmp_path):
        runner = MagicMock(return_value=("", "", -1))
        assert read_arp_table("192.168.1.0/24", proc_path=tmp_path / "missing", runner=runner) == []

    def test_invalid_network(self):
        assert read_arp_table("not-a-cidr") == []

    def test_windows_arp_a(self):
        pairs = parse_arp_a(ARP_A_WINDOWS)
        assert ("192.168.1.1", "a4-2b-b0-11-22-33") in pairs

    def test_parse_ip_neigh_skips_failed(self):
        assert [ip for ip, _ in parse_ip_neigh(IP_NEIGH)] == ["192.168.1.1"]


# ─── Vendor Lookup Tests ─────────────────────────────────────────────────────


class TestVendorLookup:
    """Tests for lookup_vendor() and the bundled OUI table."""

    @pytest.mark.parametrize("mac,vendor", [
        ("00:17:88:12:34:56", "Philips Hue/Smart Lighting"),
        ("D0:73:D5:00:00:01", "LIFX Smart Bulb"),
        ("50-C7-BF-01-02-03", "TP-Link Kasa"),
        ("b4:7c:9c:aa:bb:cc", "Amazon/Alexa"),
        ("64:16:8D:00:11:22", "Google/Nest"),
        ("AC:DE:48:00:11:22", "Apple Device"),
        ("5C:AA:FE:00:11:22", "Sonos"),
        ("84:3A:4B:00:11:22", "Tuya Smart Device"),
    ])
    def test_builtin_table(self, mac, vendor):
        assert builtin_vendor(mac) == vendor

    def test_locally_administered(self):
        assert builtin_vendor("02:11:22:33:44:55") == LOCALLY_ADMINISTERED
        assert builtin_vendor("DA:A1:19:00:00:01") == LOCALLY_ADMINISTERED

    def test_unknown(self):
        assert builtin_vendor("00:11:22:33:44:55") is None
        assert builtin_vendor("00:11") is None

    @patch("modules.arp_table.load_vendor_database")
    def test_ieee_database_first(self, mock_get):
        mock_get.return_value.lookup.return_value = "Signify Netherlands B.V."
        assert lookup_vendor("00:17:88:12:34:56") == "Signify Netherlands B.V."

    @patch("modules.arp_table.load_vendor_database")
    def test_unknown_oui_falls_back(self, mock_get):
        mock_get.return_value.lookup.side_effect = KeyError("not found")
        assert lookup_vendor("D0:73:D5:00:00:01") == "LIFX Smart Bulb"

    @patch("modules.arp_table.load_vendor_database", return_value=None)
    def test_database_unavailable_falls_back(self, mock_get):
        assert lookup_vendor("5C:AA:FE:00:11:22") == "Sonos"

    def test_empty_mac(self):
        assert lookup_vendor("") is None


# ─── Vendor Database Tests ───────────────────────────────────────────────────


@pytest.fixture
def fresh_database(monkeypatch):
    monkeypatch.setattr(arp_table, "_mac_lookup", None)
    monkeypatch.setattr(arp_table, "_mac_lookup_loaded", False)


@pytest.mark.usefixtures("fresh_database")
class TestVendorDatabase:
    """Tests for load_vendor_database() and update_vendor_database()."""

    @patch("modules.arp_table.MacLookup")
    def test_no_local_copy_never_downloads(self, mock_cls):
        mock_cls.return_value.find_vendors_list.return_value = None

        assert load_vendor_database() is None
        assert lookup_vendor("5C:AA:FE:00:11:22") == "Sonos"
        mock_cls.return_value.load_vendors.assert_not_called()
        mock_cls.return_value.update_vendors.assert_not_called()
        mock_cls.return_value.lookup.assert_not_called()

    @patch("modules.arp_table.MacLookup")
    def test_local_copy_loaded_once(self, mock_cls):
        lookup = mock_cls.return_value
        lookup.find_vendors_list.return_value = "/home/user/.cache/mac-vendors.txt"
        lookup.async_lookup.prefixes = {b"001788": b"Signify Netherlands B.V."}
        lookup.lookup.return_value = "Signify Netherlands B.V."

        assert load_vendor_database() is lookup
        assert lookup_vendor("00:17:88:12:34:56") == "Signify Netherlands B.V."
        assert lookup_vendor("00:17:88:12:34:57") == "Signify Netherlands B.V."
        lookup.load_vendors.assert_called_once()
        mock_cls.assert_called_once()
        lookup.update_vendors.assert_not_called()

    @patch("modules.arp_table.MacLookup")
    def test_empty_local_copy_unused(self, mock_cls):
        lookup = mock_cls.return_value
        lookup.find_vendors_list.return_value = "/home/user/.cache/mac-vendors.txt"
        lookup.async_lookup.prefixes = {}

        assert load_vendor_database() is None
        lookup.update_vendors.assert_not_called()

    @patch("modules.arp_table.MacLookup")
    def test_unreadable_local_copy(self, mock_cls):
        lookup = mock_cls.return_value
        lookup.find_vendors_list.return_value = "/home/user/.cache/mac-vendors.txt"
        lookup.load_vendors.side_effect = ValueError("not enough values to unpack")

        assert load_vendor_database() is None
        assert lookup_vendor("D0:73:D5:00:00:01") == "LIFX Smart Bulb"

    @patch("modules.arp_table.MacLookup")
    def test_update_downloads_and_installs(self, mock_cls):
        lookup = mock_cls.return_value
        lookup.async_lookup.prefixes = {b"001788": b"Signify Netherlands B.V."}

        assert update_vendor_database() is True
        lookup.update_vendors.assert_called_once()
        assert load_vendor_database() is lookup

    @patch("modules.arp_table.MacLookup")
    def test_update_failure(self, mock_cls):
        mock_cls.return_value.update_vendors.side_effect = OSError("unreachable")
        assert update_vendor_database() is False
