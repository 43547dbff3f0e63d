"""
Reverse-DNS Probe Module

PTR lookups against the resolvers from the system configuration.  This is
pure enrichment: every failure maps to "not found".
"""

import logging
from typing import Optional

import dns.exception
import dns.resolver

from .errors import ErrorKind

logger = logging.getLogger(__name__)


def reverse_lookup(
    ip: str,
    timeout: float = 1.5,
    resolver: Optional[dns.resolver.Resolver] = None,
) -> Optional[str]:
    """
    Resolve ``ip`` to a hostname.

    Args:
        ip: IPv4 or IPv6 address
        timeout: Overall lifetime of the query in seconds
        resolver: Resolver to use; built from /etc/resolv.conf (or the
            platform equivalent) when omitted

    Returns:
        Hostname without the trailing dot, or None
    """
    try:
        resolver = resolver or dns.resolver.Resolver()
        answer = resolver.resolve_address(ip, lifetime=timeout)
    except dns.exception.Timeout:
        logger.debug("%s: PTR %s", ErrorKind.PROBE_TIMEOUT.value, ip)
        return None
    except (dns.exception.DNSException, ValueError) as e:
        logger.debug("PTR lookup for %s failed: %s", ip, e)
        return None

    for record in answer:
        hostname = record.to_text().rstrip(".")
        if hostname:
            return hostname
    return None
