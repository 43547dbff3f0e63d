"""
HTTP / UPnP Probe Module

Single-request, read-only banner grabbing.  Any transport failure, timeout or
unparseable body yields "no name"; nothing here raises.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from .errors import ErrorKind
from .name_extractors import (
    HTML_RULES,
    UPNP_MANUFACTURER_RULES,
    UPNP_RULES,
    first_match,
    name_from_server_header,
)

logger = logging.getLogger(__name__)

USER_AGENT = "LanScout/1.0"


def http_get(url: str, timeout: float) -> Optional[requests.Response]:
    """
    GET ``url`` and return the response, or None on any request failure.

    ``requests.get`` uses a throwaway session, so the underlying connection
    is released as soon as this returns.
    """
    try:
        return requests.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
    except requests.Timeout:
        logger.debug("%s: %s", ErrorKind.PROBE_TIMEOUT.value, url)
    except requests.ConnectionError as e:
        logger.debug("%s: %s (%s)", ErrorKind.PROBE_TRANSPORT_ERROR.value, url, e)
    except requests.RequestException as e:
        logger.debug("%s: %s (%s)", ErrorKind.MALFORMED_RESPONSE.value, url, e)
    return None


def response_text(response: requests.Response) -> str:
    try:
        return response.text or ""
    except (UnicodeDecodeError, requests.RequestException) as e:
        logger.debug("%s: %s", ErrorKind.MALFORMED_RESPONSE.value, e)
        return ""


def probe_http(ip: str, timeout: float = 0.8) -> Optional[str]:
    """
    Derive a device name from the root web page of ``ip``.

    The Server header is checked first for a known device family token;
    otherwise the HTML title and name-like markup are scanned.
    """
    response = http_get(f"http://{ip}/", timeout)
    if response is None:
        return None

    server = response.headers.get("Server") or response.headers.get("server")
    if server:
        name = name_from_server_header(server)
        if name:
            return name

    return first_match(HTML_RULES, response_text(response))


@dataclass(frozen=True)
class UpnpDescription:
    """The fields LanScout reads from a UPnP device description."""
    name: Optional[str] = None
    manufacturer: Optional[str] = None


def read_upnp_description(ip: str, timeout: float = 0.6) -> Optional[UpnpDescription]:
    """Fetch ``description.xml`` from ``ip``; None when it is not served."""
    response = http_get(f"http://{ip}/description.xml", timeout)
    if response is None or not response.ok:
        return None
    body = response_text(response)
    return UpnpDescription(
        name=first_match(UPNP_RULES, body),
        manufacturer=first_match(UPNP_MANUFACTURER_RULES, body),
    )


def probe_upnp(ip: str, timeout: float = 0.6) -> Optional[str]:
    """Read the friendly name from the device's UPnP description document."""
    description = read_upnp_description(ip, timeout)
    return description.name if description else None
