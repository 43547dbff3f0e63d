"""
Discovery Data Model

Plain containers shared by every stage of a discovery run.  All of them are
scoped to a single scan; nothing here is persisted.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

# Namespace for identifiers derived from merge keys, so the same physical
# device receives the same id in every scan
DEVICE_ID_NAMESPACE = uuid.UUID("6f1d3c52-8a4e-4b8e-9a51-2f0e7c1b9d44")


class Protocol(str, Enum):
    """Source protocol of a finding."""
    ARP = "arp"
    MDNS = "mdns"
    REVERSE_DNS = "reverse_dns"
    HTTP = "http"
    UPNP = "upnp"
    VENDOR = "vendor"


class ScanState(str, Enum):
    IDLE = "idle"
    SCOPE_RESOLVED = "scope_resolved"
    PROBES_DISPATCHED = "probes_dispatched"
    AGGREGATING = "aggregating"
    COMPLETE = "complete"


# ---------------------------------------------------------------------------
# Scope entities
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NetworkInterfaceInfo:
    """Snapshot of one local interface."""
    name: str
    addresses: Tuple[Tuple[str, str], ...] = ()  # (ip, netmask)
    mac: Optional[str] = None
    ipv4: Optional[str] = None
    ipv4_netmask: Optional[str] = None
    ipv4_cidr: Optional[str] = None  # host notation, e.g. 192.168.1.50/24
    network_address: Optional[str] = None
    broadcast_address: Optional[str] = None
    ipv6: Optional[str] = None
    ipv6_prefix: Optional[int] = None
    is_up: bool = False
    is_primary: bool = False

    @property
    def prefix_length(self) -> Optional[int]:
        if not self.ipv4_cidr:
            return None
        return int(self.ipv4_cidr.split("/", 1)[1])

    @property
    def network_cidr(self) -> Optional[str]:
        """Network notation, e.g. 192.168.1.0/24."""
        if not self.network_address or self.prefix_length is None:
            return None
        return f"{self.network_address}/{self.prefix_length}"

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "addresses": [list(a) for a in self.addresses],
            "mac": self.mac,
            "ipv4": self.ipv4,
            "ipv4_netmask": self.ipv4_netmask,
            "ipv4_cidr": self.ipv4_cidr,
            "network_address": self.network_address,
            "broadcast_address": self.broadcast_address,
            "ipv6": self.ipv6,
            "ipv6_prefix": self.ipv6_prefix,
            "is_up": self.is_up,
            "is_primary": self.is_primary,
        }


@dataclass(frozen=True)
class DefaultGateway:
    ip: str
    interface: Optional[str] = None

    def to_dict(self) -> Dict:
        return {"ip": self.ip, "interface": self.interface}


@dataclass
class ScanScope:
    """Everything the orchestrator needs to know before dispatching probes."""
    interfaces: List[NetworkInterfaceInfo] = field(default_factory=list)
    gateway: Optional[DefaultGateway] = None
    interface: Optional[NetworkInterfaceInfo] = None
    cidr: Optional[str] = None
    candidate_ips: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "interfaces": [i.to_dict() for i in self.interfaces],
            "gateway": self.gateway.to_dict() if self.gateway else None,
            "interface": self.interface.name if self.interface else None,
            "cidr": self.cidr,
            "candidate_count": len(self.candidate_ips),
        }


# ---------------------------------------------------------------------------
# Findings and devices
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProbeResult:
    """A single protocol's finding about one IP."""
    protocol: Protocol
    ip: str
    mac: Optional[str] = None
    name: Optional[str] = None
    hostname: Optional[str] = None
    service_types: FrozenSet[str] = frozenset()
    ports: FrozenSet[int] = frozenset()
    metadata: Tuple[Tuple[str, str], ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)

    def meta(self, key: str) -> Optional[str]:
        for k, v in self.metadata:
            if k == key:
                return v
        return None


@dataclass
class DiscoveredDevice:
    """Aggregated record for one physical device."""
    ip: str
    id: str = ""
    mac: Optional[str] = None
    hostname: Optional[str] = None
    name: Optional[str] = None
    device_type: str = "unknown"
    open_ports: FrozenSet[int] = frozenset()
    services: FrozenSet[str] = frozenset()
    last_seen: datetime = field(default_factory=datetime.now)
    manufacturer: Optional[str] = None
    is_iot_device: bool = False
    sources: FrozenSet[str] = frozenset()
    room: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            self.id = device_id_for(self.mac or self.ip)

    @property
    def display_name(self) -> str:
        return self.name or self.hostname or self.ip

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "ip": self.ip,
            "mac": self.mac,
            "hostname": self.hostname,
            "name": self.name,
            "display_name": self.display_name,
            "device_type": self.device_type,
            "open_ports": sorted(self.open_ports),
            "services": sorted(self.services),
            "last_seen": self.last_seen.isoformat(),
            "manufacturer": self.manufacturer,
            "is_iot_device": self.is_iot_device,
            "sources": sorted(self.sources),
            "room": self.room,
        }


def device_id_for(merge_key: str) -> str:
    return str(uuid.uuid5(DEVICE_ID_NAMESPACE, merge_key.upper()))


@dataclass
class ScanReport:
    """What a discovery pass hands back to its caller."""
    devices: List[DiscoveredDevice] = field(default_factory=list)
    warnings: List[Exception] = field(default_factory=list)
    scope: Optional[ScanScope] = None
    state: ScanState = ScanState.IDLE
    started_at: datetime = field(default_factory=datetime.now)
    elapsed: float = 0.0
    probes_dispatched: int = 0
    probes_abandoned: int = 0
    cancelled: bool = False

    def to_dict(self) -> Dict:
        return {
            "devices": [d.to_dict() for d in self.devices],
            "warnings": [
                w.to_dict() if hasattr(w, "to_dict") else {"message": str(w)}
                for w in self.warnings
            ],
            "scope": self.scope.to_dict() if self.scope else None,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "elapsed": round(self.elapsed, 3),
            "probes_dispatched": self.probes_dispatched,
            "probes_abandoned": self.probes_abandoned,
            "cancelled": self.cancelled,
        }
