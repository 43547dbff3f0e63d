"""
LanScout Configuration Module

Contains all configuration constants and default values for the discovery engine.
"""

import os
from pathlib import Path
from typing import Dict, List

# Project Paths
PROJECT_ROOT = Path(__file__).parent
LOGS_DIR = PROJECT_ROOT / "logs"

# Scan scope
DEFAULT_MAX_HOSTS = 254  # a /24 worth of candidates
DEFAULT_MAX_IN_FLIGHT = 64
DEFAULT_SCAN_DEADLINE = 30.0  # seconds for the whole pass

# Primary adapter naming conventions per platform
PRIMARY_INTERFACE_NAMES: Dict[str, List[str]] = {
    "Darwin": ["en0"],
    "Linux": ["eth0", "enp0s3", "wlan0", "wlp2s0"],
    "Windows": ["Ethernet", "Wi-Fi"],
}

# Per-probe timeouts (seconds)
MDNS_TIMEOUT = 3.0
REVERSE_DNS_TIMEOUT = 1.5
HTTP_PROBE_TIMEOUT = 0.8
UPNP_PROBE_TIMEOUT = 0.6
HUE_PROBE_TIMEOUT = 0.6
KASA_PROBE_TIMEOUT = 0.6
TUYA_PROBE_TIMEOUT = 0.4
BULB_PROBE_TIMEOUT = 0.6
UDP_DISCOVERY_TIMEOUT = 1.0  # reply window after the datagrams go out

# Vendor protocol constants
KASA_PORT = 9999
KASA_CIPHER_SEED = 171
KASA_SYSINFO_REQUEST = '{"system":{"get_sysinfo":{}}}'
TUYA_PORT = 6668
TUYA_PATH = "/d.json"

# Generic UDP discovery: every payload goes to every port of the host
UDP_DISCOVERY_PORTS: List[int] = [80, 8080, 48899, 10001, 1982, 6666, 6667, 6668, 8888, 7000, 5683]
UDP_DISCOVERY_MESSAGES: List[str] = [
    '{"system":{"get_sysinfo":{}}}',
    '{"smartlife.iot.smartbulb.lightingservice":{"transition_light_state":{}}}',
    "discovery",
    "hello",
    (
        "M-SEARCH * HTTP/1.1\r\n"
        "HOST: 239.255.255.250:1982\r\n"
        'MAN: "ssdp:discover"\r\n'
        "MX: 1\r\n"
        "ST: wifi_bulb\r\n"
    ),
    (
        '{"id":1,"method":"get_prop","params":'
        '["power","bright","ct","rgb","flowing","delayoff","flow_params","music_on","name"]}'
    ),
]

# Service types browsed over mDNS, one listener each
MDNS_SERVICES: List[str] = [
    "_http._tcp.local.",
    "_device-info._tcp.local.",
    "_airplay._tcp.local.",
    "_raop._tcp.local.",
    "_googlecast._tcp.local.",
    "_homekit._tcp.local.",
    "_hap._tcp.local.",
    "_ipp._tcp.local.",
    "_printer._tcp.local.",
    "_smb._tcp.local.",
    "_afpovertcp._tcp.local.",
    "_ssh._tcp.local.",
    "_workstation._tcp.local.",
    "_sonos._tcp.local.",
    "_spotify-connect._tcp.local.",
    "_hue._tcp.local.",
]

# mDNS services that only smart-home / IoT gear advertises
IOT_SERVICE_ALLOWLIST: List[str] = [
    "_homekit._tcp.local.",
    "_hap._tcp.local.",
    "_googlecast._tcp.local.",
    "_hue._tcp.local.",
    "_sonos._tcp.local.",
    "_spotify-connect._tcp.local.",
    "_airplay._tcp.local.",
]

# Structured logging collaborator
LOG_HISTORY_SIZE = 500  # recent entries kept in memory

# Logging Configuration
LOG_FILE = LOGS_DIR / "lanscout.log"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Device name overrides
DEFAULT_OVERRIDES_FILE = PROJECT_ROOT / "device_config.json"

# MAC Vendor Lookup
ENABLE_MAC_VENDOR_LOOKUP = True

# Environment Variable Overrides
def get_env_int(key: str, default: int) -> int:
    """Get integer from environment variable with fallback to default."""
    try:
        return int(os.getenv(key, default))
    except (ValueError, TypeError):
        return default

def get_env_float(key: str, default: float) -> float:
    """Get float from environment variable with fallback to default."""
    try:
        return float(os.getenv(key, default))
    except (ValueError, TypeError):
        return default

def get_env_bool(key: str, default: bool) -> bool:
    """Get boolean from environment variable with fallback to default."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")

def get_env_str(key: str, default: str) -> str:
    """Get string from environment variable with fallback to default."""
    value = os.getenv(key)
    return value.strip() if value else default

def get_env_list(key: str, default: List[str]) -> List[str]:
    """Get list from comma-separated environment variable."""
    value = os.getenv(key)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]

# Apply environment overrides
MAX_HOSTS = get_env_int("LANSCOUT_MAX_HOSTS", DEFAULT_MAX_HOSTS)
MAX_IN_FLIGHT = get_env_int("LANSCOUT_MAX_IN_FLIGHT", DEFAULT_MAX_IN_FLIGHT)
SCAN_DEADLINE = get_env_float("LANSCOUT_SCAN_DEADLINE", DEFAULT_SCAN_DEADLINE)
ENABLE_MDNS = get_env_bool("LANSCOUT_ENABLE_MDNS", True)
ENABLE_VENDOR_PROBES = get_env_bool("LANSCOUT_ENABLE_VENDOR_PROBES", True)
SUBNET_OVERRIDE = get_env_str("LANSCOUT_SUBNET", "")
OVERRIDES_FILE = Path(get_env_str("LANSCOUT_OVERRIDES_FILE", str(DEFAULT_OVERRIDES_FILE)))
MDNS_SERVICE_CATALOGUE = get_env_list("LANSCOUT_MDNS_SERVICES", MDNS_SERVICES)
DEBUG_MODE = get_env_bool("LANSCOUT_DEBUG", False)
