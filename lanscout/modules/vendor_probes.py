"""
Vendor Handshake Probes

Protocol-specific identity probes for smart-home device families.  Every
probe has the same contract, ``(ip, timeout, cancel) -> Optional[str]``, uses
its own sockets/requests with a short timeout and never raises, so a
misbehaving device on one protocol cannot affect any other probe.

Architecture:
    - Hue-style:   a few bridge HTTP endpoints, JSON/XML name rules
    - Kasa-style:  UDP 9999 with rolling-XOR obfuscated JSON
    - Tuya-style:  plain HTTP on the vendor port
    - Smart bulbs: a long ordered endpoint list across common ports
    - UDP sweep:   discovery datagrams to the usual bulb ports, one socket

Smart-bulb and UDP probes are marked as sweeps: the engine queues them only
after every host's quick probes are queued.
"""

import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional
from urllib.parse import urlsplit

import requests

from config import (
    BULB_PROBE_TIMEOUT,
    HUE_PROBE_TIMEOUT,
    KASA_CIPHER_SEED,
    KASA_PORT,
    KASA_PROBE_TIMEOUT,
    KASA_SYSINFO_REQUEST,
    TUYA_PATH,
    TUYA_PORT,
    TUYA_PROBE_TIMEOUT,
    UDP_DISCOVERY_MESSAGES,
    UDP_DISCOVERY_PORTS,
    UDP_DISCOVERY_TIMEOUT,
)
from .errors import ErrorKind
from .http_probe import USER_AGENT, http_get, response_text
from .name_extractors import (
    HUE_RULES,
    KASA_RULES,
    TUYA_RULES,
    extract_smart_bulb_name,
    first_match,
)

logger = logging.getLogger(__name__)

# Longest single wait on a UDP socket between cancel checks
_UDP_POLL_INTERVAL = 0.2

VendorProbeFunc = Callable[..., Optional[str]]


def _cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


# ---------------------------------------------------------------------------
# Kasa wire obfuscation
# ---------------------------------------------------------------------------
# Kasa devices expect every byte XORed with the previous ciphertext byte,
# starting from a fixed seed.  There is no key exchange and no integrity
# check: this is a protocol compatibility shim, NOT encryption.

def kasa_encrypt(data: bytes, seed: int = KASA_CIPHER_SEED) -> bytes:
    key = seed
    out = bytearray()
    for byte in data:
        key = byte ^ key
        out.append(key)
    return bytes(out)


def kasa_decrypt(data: bytes, seed: int = KASA_CIPHER_SEED) -> bytes:
    key = seed
    out = bytearray()
    for byte in data:
        out.append(byte ^ key)
        key = byte
    return bytes(out)


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------

HUE_ENDPOINTS = ["/api/", "/api/config", "/description.xml", "/"]


def probe_hue(
    ip: str,
    timeout: float = HUE_PROBE_TIMEOUT,
    cancel: Optional[threading.Event] = None,
) -> Optional[str]:
    """Ask a Hue-style bridge for its name; returns 'Hue: <name>'."""
    for path in HUE_ENDPOINTS:
        if _cancelled(cancel):
            return None
        response = http_get(f"http://{ip}{path}", timeout)
        if response is None:
            # Nothing listens on port 80; the remaining endpoints share it
            return None
        if not response.ok:
            continue
        name = first_match(HUE_RULES, response_text(response))
        if name:
            return f"Hue: {name}"
    return None


def probe_kasa(
    ip: str,
    timeout: float = KASA_PROBE_TIMEOUT,
    cancel: Optional[threading.Event] = None,
) -> Optional[str]:
    """Send an obfuscated get_sysinfo datagram; returns 'Kasa: <alias>'."""
    if _cancelled(cancel):
        return None

    payload = kasa_encrypt(KASA_SYSINFO_REQUEST.encode("utf-8"))
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.settimeout(timeout)
            sock.sendto(payload, (ip, KASA_PORT))
            data, addr = sock.recvfrom(2048)
    except socket.timeout:
        logger.debug("%s: kasa %s", ErrorKind.PROBE_TIMEOUT.value, ip)
        return None
    except OSError as e:
        logger.debug("%s: kasa %s (%s)", ErrorKind.PROBE_TRANSPORT_ERROR.value, ip, e)
        return None

    if addr[0] != ip:
        return None

    body = kasa_decrypt(data).decode("utf-8", errors="replace")
    name = first_match(KASA_RULES, body)
    if name is None:
        logger.debug("%s: kasa %s", ErrorKind.MALFORMED_RESPONSE.value, ip)
        return None
    return f"Kasa: {name}"


def probe_tuya(
    ip: str,
    timeout: float = TUYA_PROBE_TIMEOUT,
    cancel: Optional[threading.Event] = None,
) -> Optional[str]:
    """Fetch the Tuya local status document; returns 'Smart Life: <name>'."""
    if _cancelled(cancel):
        return None
    response = http_get(f"http://{ip}:{TUYA_PORT}{TUYA_PATH}", timeout)
    if response is None or not response.ok:
        return None
    name = first_match(TUYA_RULES, response_text(response))
    if name:
        return f"Smart Life: {name}"
    return None


SMART_BULB_ENDPOINTS: List[str] = [
    ":80/",
    ":80/status",
    ":80/info",
    ":80/device",
    ":80/config",
    ":80/api/info",
    ":80/api/config",
    ":80/api/device",
    ":80/api/status",
    ":80/get_status",
    ":80/device_info",
    ":80/system/info",
    ":8080/",
    ":8080/status",
    ":8080/api/info",
    ":8080/device",
    ":6668/",
    ":6668/device",
    ":6668/config",
    ":6668/info",
    ":6668/api/device",
    ":6668/api/info",
    ":9999/",
    ":9999/info",
    ":9999/status",
    ":10000/",
    ":38899/",
    ":38899/info",
    ":6667/",
    ":6667/status",
    ":80/homemate",
    ":80/homemate/info",
    ":8080/homemate",
]


def probe_smart_bulb(
    ip: str,
    timeout: float = BULB_PROBE_TIMEOUT,
    cancel: Optional[threading.Event] = None,
    endpoints: Optional[List[str]] = None,
) -> Optional[str]:
    """
    Walk the generic smart-bulb endpoint list until one yields a name.

    A port that refuses or times out once is skipped for the rest of the
    list, which keeps dead hosts from costing one timeout per endpoint.
    """
    dead_ports = set()
    for suffix in endpoints or SMART_BULB_ENDPOINTS:
        if _cancelled(cancel):
            return None
        url = f"http://{ip}{suffix}"
        port = urlsplit(url).port or 80
        if port in dead_ports:
            continue

        try:
            response = requests.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        except (requests.ConnectionError, requests.Timeout):
            dead_ports.add(port)
            continue
        except requests.RequestException as e:
            logger.debug("%s: %s (%s)", ErrorKind.MALFORMED_RESPONSE.value, url, e)
            continue

        if not response.ok:
            continue
        name = extract_smart_bulb_name(response_text(response))
        if name:
            return name
    return None


def _read_udp_replies(
    sock: socket.socket,
    ip: str,
    timeout: float,
    cancel: Optional[threading.Event],
) -> Optional[str]:
    deadline = time.monotonic() + timeout
    while not _cancelled(cancel):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.debug("%s: udp discovery %s", ErrorKind.PROBE_TIMEOUT.value, ip)
            break
        sock.settimeout(min(remaining, _UDP_POLL_INTERVAL))
        try:
            data, addr = sock.recvfrom(2048)
        except socket.timeout:
            continue
        except ConnectionError:
            # ICMP port unreachable surfaces here on some platforms
            continue
        if addr[0] != ip:
            continue
        name = extract_smart_bulb_name(data.decode("utf-8", errors="replace"))
        if name:
            return name
    return None


def probe_udp_discovery(
    ip: str,
    timeout: float = UDP_DISCOVERY_TIMEOUT,
    cancel: Optional[threading.Event] = None,
    ports: Optional[List[int]] = None,
) -> Optional[str]:
    """
    Send every generic discovery datagram to every common bulb port of ``ip``.

    All datagrams leave from one socket, then replies are read for at most
    ``timeout`` seconds.  The first reply from ``ip`` that carries a
    meaningful name wins; replies from other hosts are ignored.
    """
    if _cancelled(cancel):
        return None

    payloads = [message.encode("utf-8") for message in UDP_DISCOVERY_MESSAGES]
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            for port in ports or UDP_DISCOVERY_PORTS:
                for payload in payloads:
                    sock.sendto(payload, (ip, port))
            return _read_udp_replies(sock, ip, timeout, cancel)
    except OSError as e:
        logger.debug("%s: udp discovery %s (%s)", ErrorKind.PROBE_TRANSPORT_ERROR.value, ip, e)
        return None


@dataclass(frozen=True)
class VendorProbe:
    tag: str
    func: VendorProbeFunc
    ports: FrozenSet[int] = field(default_factory=frozenset)
    # Many requests per host; dispatched after the quick probes
    sweep: bool = False


VENDOR_PROBES: List[VendorProbe] = [
    VendorProbe("hue", probe_hue, frozenset({80})),
    VendorProbe("kasa", probe_kasa, frozenset({KASA_PORT})),
    VendorProbe("tuya", probe_tuya, frozenset({TUYA_PORT})),
    VendorProbe("smart_bulb", probe_smart_bulb, sweep=True),
    VendorProbe("udp_discovery", probe_udp_discovery, sweep=True),
]
