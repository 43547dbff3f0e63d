"""
Name Extraction Rules

Every probe that reads a free-form body (JSON, XML, HTML, decrypted Kasa
payloads) turns it into a device name with an ordered list of small pure
functions ``(body) -> Optional[str]``.  The first rule that yields a usable
name wins, so list order is priority order.
"""

import ipaddress
import re
from typing import Callable, Iterable, List, Optional

NameRule = Callable[[str], Optional[str]]

_NAME_NOISE = ['"', '\\', 'null', 'undefined', '<', '>', '{', '}', '[', ']', '(', ')']


def clean_device_name(name: str) -> str:
    """Strip quoting, markup and placeholder tokens from a raw name."""
    for token in _NAME_NOISE:
        name = name.replace(token, "")
    return name.strip()


def regex_rule(pattern: str, min_length: int = 1, flags: int = 0) -> NameRule:
    """Build a rule returning the cleaned first capture group of ``pattern``."""
    compiled = re.compile(pattern, flags)

    def rule(body: str) -> Optional[str]:
        match = compiled.search(body)
        if not match:
            return None
        name = clean_device_name(match.group(1))
        if len(name) < min_length:
            return None
        return name

    rule.pattern = pattern
    return rule


def first_match(
    rules: Iterable[NameRule],
    body: str,
    accept: Optional[Callable[[str], bool]] = None,
) -> Optional[str]:
    """Evaluate rules in order and return the first accepted name."""
    if not body:
        return None
    for rule in rules:
        name = rule(body)
        if name and (accept is None or accept(name)):
            return name
    return None


# ---------------------------------------------------------------------------
# Vendor rule sets
# ---------------------------------------------------------------------------

HUE_RULES: List[NameRule] = [
    regex_rule(r'"name"\s*:\s*"([^"]+)"', min_length=3),
    regex_rule(r'"bridgeid"\s*:\s*"([^"]+)"', min_length=3),
    regex_rule(r'"friendlyName">([^<]+)<', min_length=3),
    regex_rule(r'<friendlyName>([^<]+)</friendlyName>', min_length=3),
    regex_rule(r'"modelDescription"\s*:\s*"([^"]+)"', min_length=3),
]

KASA_RULES: List[NameRule] = [
    regex_rule(r'"alias"\s*:\s*"([^"]+)"'),
    regex_rule(r'"dev_name"\s*:\s*"([^"]+)"'),
    regex_rule(r'"model"\s*:\s*"([^"]+)"'),
]

TUYA_RULES: List[NameRule] = [
    regex_rule(r'"name"\s*:\s*"([^"]+)"'),
    regex_rule(r'"device_name"\s*:\s*"([^"]+)"'),
    regex_rule(r'"friendly_name"\s*:\s*"([^"]+)"'),
]

SMART_BULB_RULES: List[NameRule] = [
    regex_rule(pattern, min_length=3)
    for pattern in (
        # JSON fields
        r'"device_name"\s*:\s*"([^"]+)"',
        r'"name"\s*:\s*"([^"]+)"',
        r'"friendly_name"\s*:\s*"([^"]+)"',
        r'"nickname"\s*:\s*"([^"]+)"',
        r'"alias"\s*:\s*"([^"]+)"',
        r'"room"\s*:\s*"([^"]+)"',
        r'"label"\s*:\s*"([^"]+)"',
        r'"device_alias"\s*:\s*"([^"]+)"',
        r'"custom_name"\s*:\s*"([^"]+)"',
        r'"user_name"\s*:\s*"([^"]+)"',
        r'"device"\s*:\s*\{[^}]*"name"\s*:\s*"([^"]+)"',
        r'"info"\s*:\s*\{[^}]*"name"\s*:\s*"([^"]+)"',
        r'"config"\s*:\s*\{[^}]*"name"\s*:\s*"([^"]+)"',
        r'"devices"\s*:\s*\[[^\]]*"name"\s*:\s*"([^"]+)"',
        r'"devName"\s*:\s*"([^"]+)"',
        r'"devAlias"\s*:\s*"([^"]+)"',
        r'"deviceName"\s*:\s*"([^"]+)"',
        r'"smartName"\s*:\s*"([^"]+)"',
        # XML elements
        r'<device_name>([^<]+)</device_name>',
        r'<name>([^<]+)</name>',
        r'<friendly_name>([^<]+)</friendly_name>',
        r'<friendlyName>([^<]+)</friendlyName>',
        r'<deviceName>([^<]+)</deviceName>',
        r'<alias>([^<]+)</alias>',
        r'<nickname>([^<]+)</nickname>',
        r'<room>([^<]+)</room>',
        r'<label>([^<]+)</label>',
        r'<title>([^<]+)</title>',
        # Plain text status pages
        r'Device Name:\s*([^\n\r<]+)',
        r'Name:\s*([^\n\r<]+)',
        r'Friendly Name:\s*([^\n\r<]+)',
        r'Device:\s*([^\n\r<]+)',
        r'Label:\s*([^\n\r<]+)',
        r'^([A-Za-z0-9\s]+\d+)$',
    )
]

_PLACEHOLDER_FRAGMENTS = ("cloud-connected", "iot device", "unknown", "default")
_PLACEHOLDER_NAMES = ("device", "smart", "bulb")


def is_meaningful_bulb_name(name: str) -> bool:
    """Reject the generic placeholders cheap firmware reports as a name."""
    lower = name.lower()
    if any(fragment in lower for fragment in _PLACEHOLDER_FRAGMENTS):
        return False
    return lower not in _PLACEHOLDER_NAMES


def extract_smart_bulb_name(body: str) -> Optional[str]:
    return first_match(SMART_BULB_RULES, body, accept=is_meaningful_bulb_name)


# ---------------------------------------------------------------------------
# HTTP / UPnP
# ---------------------------------------------------------------------------

UPNP_RULES: List[NameRule] = [
    regex_rule(r'<friendlyName>([^<]+)</friendlyName>'),
    regex_rule(r'<deviceName>([^<]+)</deviceName>'),
    regex_rule(r'<modelName>([^<]+)</modelName>'),
]

UPNP_MANUFACTURER_RULES: List[NameRule] = [
    regex_rule(r'<manufacturer>([^<]+)</manufacturer>'),
]

# (token, name) pairs checked against the Server header, case-insensitively
SERVER_HEADER_TOKENS = [
    ("homemate", "HomeMATE Smart Device"),
    ("philips", "Philips Hue Device"),
    ("hue", "Philips Hue Device"),
    ("kasa", "Kasa Smart Device"),
    ("tp-link", "Kasa Smart Device"),
    ("tuya", "Tuya Device"),
    ("wyze", "Wyze Device"),
    ("sonos", "Sonos Speaker"),
]


def name_from_server_header(server: str) -> Optional[str]:
    lower = server.lower()
    for token, name in SERVER_HEADER_TOKENS:
        if token in lower:
            return name
    return None


_TITLE_RE = re.compile(r'<title[^>]*>([^<]*)</title>', re.IGNORECASE)


def html_title_rule(body: str) -> Optional[str]:
    match = _TITLE_RE.search(body)
    if not match:
        return None
    title = clean_device_name(match.group(1))
    if len(title) < 3 or "index" in title.lower():
        return None
    return title


HTML_RULES: List[NameRule] = [
    html_title_rule,
    regex_rule(
        r'<meta\s+name=["\'](?:application-name|device-name|apple-mobile-web-app-title)["\']\s+content=["\']([^"\']+)["\']',
        flags=re.IGNORECASE,
    ),
    regex_rule(r'device[_-]?name[\'"]\s*:\s*[\'"]([^\'"]+)[\'"]', flags=re.IGNORECASE),
    regex_rule(r'friendly[_-]?name[\'"]\s*:\s*[\'"]([^\'"]+)[\'"]', flags=re.IGNORECASE),
    regex_rule(r'room[_-]?name[\'"]\s*:\s*[\'"]([^\'"]+)[\'"]', flags=re.IGNORECASE),
    regex_rule(r'<name>([^<]+)</name>'),
    regex_rule(r'deviceName[\'"]\s*:\s*[\'"]([^\'"]+)[\'"]'),
]


# ---------------------------------------------------------------------------
# mDNS
# ---------------------------------------------------------------------------

def device_name_from_mdns(record_name: str) -> str:
    """
    Turn an mDNS record name into a display name.

    'Living-Room-TV-4f2a._googlecast._tcp.local.' -> 'Living-Room-TV'
    'lamp1.local.' -> 'lamp1'
    """
    first = record_name.split(".", 1)[0]
    if "-" in first:
        parts = first.split("-")
        if len(parts) > 1:
            return "-".join(parts[:-1])
    return clean_device_name(first)


def ip_from_record_name(record_name: str) -> Optional[str]:
    """Recover an IPv4 address encoded in a record name, if any."""
    labels = [label for label in record_name.strip(".").split(".") if label]
    if len(labels) < 4:
        return None
    if record_name.lower().rstrip(".").endswith(".in-addr.arpa"):
        octets = list(reversed(labels[:4]))
    else:
        octets = labels[:4]
    try:
        return str(ipaddress.IPv4Address(".".join(octets)))
    except ValueError:
        return None
