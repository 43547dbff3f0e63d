"""
Gateway Resolver Module

Determines the default gateway with one strategy per OS family, selected at
runtime.  A missing gateway is never fatal: the discovery pass simply scans
the local subnet without a distinguished router entry.
"""

import ipaddress
import logging
import platform
import re
import socket
import struct
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Tuple

from .errors import DiscoveryError, ErrorKind
from .interface_detector import run_command
from .models import DefaultGateway
from .scan_logger import LogCategory, ScanLogger

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., Tuple[str, str, int]]


def _valid_ipv4(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
        return True
    except ValueError:
        return False


def decode_route_hex(value: str) -> str:
    """Decode a little-endian hex IPv4 address as found in /proc/net/route."""
    return socket.inet_ntoa(struct.pack("<L", int(value, 16)))


class GatewayStrategy(ABC):
    """One way of asking the OS for its default route."""

    name = "base"

    @abstractmethod
    def resolve(self) -> Optional[DefaultGateway]:
        ...


class ProcRouteStrategy(GatewayStrategy):
    """Linux: read the kernel routing table file directly."""

    name = "proc_route"

    def __init__(
        self,
        route_file: Path = Path("/proc/net/route"),
        runner: CommandRunner = run_command,
    ):
        self.route_file = route_file
        self.runner = runner

    def resolve(self) -> Optional[DefaultGateway]:
        gateway = self._from_route_file()
        if gateway is None:
            gateway = self._from_ip_route()
        return gateway

    def _from_route_file(self) -> Optional[DefaultGateway]:
        try:
            lines = self.route_file.read_text().splitlines()
        except OSError as e:
            logger.debug(f"Could not read {self.route_file}: {e}")
            return None

        for line in lines[1:]:  # skip header
            fields = line.split()
            if len(fields) < 3 or fields[1] != "00000000":
                continue
            try:
                gateway_ip = decode_route_hex(fields[2])
            except (ValueError, struct.error):
                continue
            if gateway_ip != "0.0.0.0":
                return DefaultGateway(ip=gateway_ip, interface=fields[0])
        return None

    def _from_ip_route(self) -> Optional[DefaultGateway]:
        stdout, _, returncode = self.runner(["ip", "route", "show", "default"], timeout=5)
        if returncode != 0 or not stdout:
            return None
        match = re.search(r'default\s+via\s+(\d+\.\d+\.\d+\.\d+)(?:.*?\sdev\s+(\S+))?', stdout)
        if match:
            return DefaultGateway(ip=match.group(1), interface=match.group(2))
        return None


class RouteGetStrategy(GatewayStrategy):
    """macOS / BSD: parse ``route -n get default``."""

    name = "route_get"

    def __init__(self, runner: CommandRunner = run_command):
        self.runner = runner

    def resolve(self) -> Optional[DefaultGateway]:
        stdout, _, returncode = self.runner(["route", "-n", "get", "default"], timeout=5)
        if returncode != 0 or not stdout:
            return None

        gateway_ip = interface = None
        for line in stdout.splitlines():
            line = line.strip()
            if line.startswith("gateway:"):
                parts = line.split()
                if len(parts) >= 2 and _valid_ipv4(parts[1]):
                    gateway_ip = parts[1]
            elif line.startswith("interface:"):
                parts = line.split()
                if len(parts) >= 2:
                    interface = parts[1]

        if gateway_ip:
            return DefaultGateway(ip=gateway_ip, interface=interface)
        return None


class RoutePrintStrategy(GatewayStrategy):
    """Windows: parse the default-route line of ``route print 0.0.0.0``."""

    name = "route_print"

    def __init__(self, runner: CommandRunner = run_command):
        self.runner = runner

    def resolve(self) -> Optional[DefaultGateway]:
        stdout, _, returncode = self.runner(["route", "print", "0.0.0.0"], timeout=5)
        if returncode != 0 or not stdout:
            return None

        for line in stdout.splitlines():
            fields = line.split()
            if len(fields) >= 3 and fields[0] == "0.0.0.0" and fields[1] == "0.0.0.0":
                if _valid_ipv4(fields[2]):
                    return DefaultGateway(ip=fields[2])
        return None


def strategy_for_platform(platform_name: Optional[str] = None) -> GatewayStrategy:
    system = platform_name or platform.system()
    if system == "Linux":
        return ProcRouteStrategy()
    if system == "Windows":
        return RoutePrintStrategy()
    return RouteGetStrategy()


class GatewayResolver:
    """OS-agnostic front for the gateway strategies."""

    def __init__(
        self,
        strategy: Optional[GatewayStrategy] = None,
        scan_logger: Optional[ScanLogger] = None,
    ):
        self.strategy = strategy or strategy_for_platform()
        self.scan_logger = scan_logger

    def get_default_gateway(self) -> DefaultGateway:
        """
        Resolve the default gateway.

        Raises:
            DiscoveryError: GATEWAY_NOT_FOUND when the strategy finds no
                default route or fails outright
        """
        try:
            gateway = self.strategy.resolve()
        except Exception as e:
            logger.debug(f"Gateway strategy {self.strategy.name} failed: {e}")
            gateway = None

        if gateway is None:
            err = DiscoveryError(
                ErrorKind.GATEWAY_NOT_FOUND,
                "Could not find default gateway",
                context=self.strategy.name,
            )
            if self.scan_logger:
                self.scan_logger.warning(LogCategory.NETWORK_SCANNER, str(err))
            raise err

        if self.scan_logger:
            self.scan_logger.progress(
                LogCategory.NETWORK_SCANNER,
                f"Detected gateway {gateway.ip} via {self.strategy.name}",
            )
        return gateway
