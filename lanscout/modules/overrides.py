"""
Device Name Overrides

Optional user file that relabels known devices by MAC address:

    {"devices": [{"mac_address": "AA:BB:CC:DD:EE:FF",
                  "device_name": "Desk Lamp",
                  "room": "Office",
                  "device_type": "smart_bulb"}]}

A bare list of entries is accepted too.  The file only relabels; it never
adds devices that the scan did not find.
"""

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Union

from .arp_table import normalize_mac
from .errors import DiscoveryError, ErrorKind
from .models import DiscoveredDevice
from .scan_logger import LogCategory, ScanLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceOverride:
    mac_address: str
    device_name: str
    room: Optional[str] = None
    device_type: Optional[str] = None

    @property
    def label(self) -> str:
        if self.room:
            return f"{self.device_name} ({self.room})"
        return self.device_name

    @classmethod
    def from_dict(cls, data: Dict) -> "DeviceOverride":
        return cls(
            mac_address=str(data["mac_address"]),
            device_name=str(data["device_name"]),
            room=data.get("room") or None,
            device_type=data.get("device_type") or None,
        )


class DeviceNameOverrides:
    """MAC-keyed lookup of user-supplied names, rooms and device types."""

    def __init__(self, overrides: Optional[List[DeviceOverride]] = None):
        self._by_mac: Dict[str, DeviceOverride] = {}
        for override in overrides or []:
            key = normalize_mac(override.mac_address) or override.mac_address.upper()
            self._by_mac[key] = override

    def __len__(self) -> int:
        return len(self._by_mac)

    @classmethod
    def load(
        cls,
        path: Union[str, Path],
        scan_logger: Optional[ScanLogger] = None,
    ) -> "DeviceNameOverrides":
        """
        Read overrides from ``path``.

        A missing or unreadable file yields an empty lookup; the problem is
        logged under the configuration category and never raised.
        """
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            cls._report(scan_logger, DiscoveryError(
                ErrorKind.CONFIG_FILE_MISSING, "Device override file not found", context=str(path),
            ))
            return cls()
        except (OSError, ValueError) as e:
            cls._report(scan_logger, DiscoveryError(
                ErrorKind.MALFORMED_RESPONSE, f"Unreadable device override file: {e}", context=str(path),
            ))
            return cls()

        entries = data.get("devices", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            entries = []

        overrides = []
        for entry in entries:
            try:
                overrides.append(DeviceOverride.from_dict(entry))
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed override entry {entry!r}: {e}")

        if scan_logger:
            scan_logger.progress(
                LogCategory.CONFIGURATION,
                f"Loaded {len(overrides)} device overrides from {path}",
            )
        return cls(overrides)

    @staticmethod
    def _report(scan_logger: Optional[ScanLogger], error: DiscoveryError) -> None:
        if scan_logger:
            scan_logger.error(LogCategory.CONFIGURATION, error, context=error.context)
        else:
            logger.warning("%s (%s)", error, error.context)

    def get(self, mac: Optional[str]) -> Optional[DeviceOverride]:
        if not mac:
            return None
        return self._by_mac.get(normalize_mac(mac) or mac.upper())

    def get_device_name(self, mac: Optional[str]) -> Optional[str]:
        override = self.get(mac)
        return override.label if override else None

    def apply(self, devices: List[DiscoveredDevice]) -> List[DiscoveredDevice]:
        """Return ``devices`` with matching entries relabelled."""
        relabelled = []
        for device in devices:
            override = self.get(device.mac)
            if override is None:
                relabelled.append(device)
                continue
            relabelled.append(replace(
                device,
                name=override.label,
                room=override.room,
                device_type=override.device_type or device.device_type,
            ))
        return relabelled
