"""
Unit tests for the ordered name-extraction rules.
"""

import pytest

from modules.name_extractors import (
    HTML_RULES,
    HUE_RULES,
    KASA_RULES,
    TUYA_RULES,
    UPNP_RULES,
    clean_device_name,
    device_name_from_mdns,
    extract_smart_bulb_name,
    first_match,
    ip_from_record_name,
    is_meaningful_bulb_name,
    name_from_server_header,
    regex_rule,
)


# ─── Rule Engine Tests ───────────────────────────────────────────────────────


class TestRuleEngine:
    """Tests for regex_rule() and first_match()."""

    def test_list_order_is_priority(self):
        body = '{"model": "HS100", "alias": "Desk Plug"}'
        assert first_match(KASA_RULES, body) == "Desk Plug"

    def test_later_rule_used_when_earlier_misses(self):
        assert first_match(KASA_RULES, '{"model": "HS100"}') == "HS100"

    def test_min_length(self):
        rule = regex_rule(r'"name"\s*:\s*"([^"]+)"', min_length=3)
        assert rule('{"name": "ab"}') is None
        assert rule('{"name": "abc"}') == "abc"

    def test_empty_body(self):
        assert first_match(KASA_RULES, "") is None

    def test_accept_filter(self):
        rules = [regex_rule(r'a=(\w+)'), regex_rule(r'b=(\w+)')]
        assert first_match(rules, "a=bad b=good", accept=lambda n: n != "bad") == "good"

    def test_clean_device_name(self):
        assert clean_device_name(' "Kitchen <Lamp>" ') == "Kitchen Lamp"
        assert clean_device_name("null") == ""


# ─── Vendor Rule Set Tests ───────────────────────────────────────────────────


class TestVendorRules:
    """Tests for the Hue, Tuya and smart-bulb rule sets."""

    def test_hue_json_name(self):
        assert first_match(HUE_RULES, '{"name": "Hue Bridge", "bridgeid": "001788FFFE"}') == "Hue Bridge"

    def test_hue_xml_friendly_name(self):
        body = "<root><device><friendlyName>Philips hue (192.168.1.2)</friendlyName></device></root>"
        assert first_match(HUE_RULES, body) == "Philips hue 192.168.1.2"

    def test_tuya_device_name(self):
        assert first_match(TUYA_RULES, '{"device_name": "Porch Light"}') == "Porch Light"

    def test_bulb_placeholders_rejected(self):
        assert is_meaningful_bulb_name("Bedroom Bulb") is True
        assert is_meaningful_bulb_name("Unknown device") is False
        assert is_meaningful_bulb_name("Cloud-Connected IoT") is False
        assert is_meaningful_bulb_name("bulb") is False

    def test_bulb_skips_placeholder_then_finds_name(self):
        body = '{"device_name": "Default", "nickname": "Reading Lamp"}'
        assert extract_smart_bulb_name(body) == "Reading Lamp"

    def test_bulb_plain_text_status(self):
        assert extract_smart_bulb_name("Status: on\nDevice Name: Hallway\n") == "Hallway"


# ─── HTTP / UPnP Rule Tests ──────────────────────────────────────────────────


class TestHttpRules:
    """Tests for Server-header tokens and HTML rules."""

    @pytest.mark.parametrize("server,expected", [
        ("HomeMATE/2.0", "HomeMATE Smart Device"),
        ("nginx Philips", "Philips Hue Device"),
        ("TP-LINK HTTPD/1.0", "Kasa Smart Device"),
        ("Sonos/63.2", "Sonos Speaker"),
        ("nginx/1.25", None),
    ])
    def test_server_header(self, server, expected):
        assert name_from_server_header(server) == expected

    def test_title(self):
        assert first_match(HTML_RULES, "<html><TITLE>Garage Door</TITLE></html>") == "Garage Door"

    def test_index_title_ignored(self):
        body = '<title>Index of /</title><meta name="application-name" content="NAS Box">'
        assert first_match(HTML_RULES, body) == "NAS Box"

    def test_upnp_fallbacks(self):
        assert first_match(UPNP_RULES, "<modelName>RX-V685</modelName>") == "RX-V685"
        body = "<deviceName>Den TV</deviceName><modelName>X</modelName>"
        assert first_match(UPNP_RULES, body) == "Den TV"


# ─── mDNS Name Tests ─────────────────────────────────────────────────────────


class TestMdnsNames:
    """Tests for mDNS record name helpers."""

    @pytest.mark.parametrize("record,expected", [
        ("Living-Room-TV-4f2a._googlecast._tcp.local.", "Living-Room-TV"),
        ("lamp1.local.", "lamp1"),
        ("Office Printer._ipp._tcp.local.", "Office Printer"),
    ])
    def test_device_name(self, record, expected):
        assert device_name_from_mdns(record) == expected

    def test_ip_in_forward_name(self):
        assert ip_from_record_name("192.168.1.20.local.") == "192.168.1.20"

    def test_ip_in_reverse_name(self):
        assert ip_from_record_name("20.1.168.192.in-addr.arpa.") == "192.168.1.20"

    def test_no_ip(self):
        assert ip_from_record_name("lamp1.local.") is None
        assert ip_from_record_name("a.b.c.d.local.") is None
