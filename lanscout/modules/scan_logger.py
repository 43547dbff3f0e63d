"""
Scan Logger Module

Structured logging collaborator handed to the discovery engine.  Every call
carries a category so progress and failures can be filtered per subsystem.
Messages are forwarded to the standard ``logging`` hierarchy (where the host
application decides handlers and rotation) and the most recent entries are
kept in a bounded in-memory ring for status views and tests.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, List, Optional

from config import LOG_HISTORY_SIZE


class LogCategory(str, Enum):
    NETWORK_SCANNER = "network_scanner"
    DEVICE_DISCOVERY = "device_discovery"
    VENDOR_DETECTION = "vendor_detection"
    MDNS_DISCOVERY = "mdns_discovery"
    ARP_SCAN = "arp_scan"
    DNS_LOOKUP = "dns_lookup"
    SMART_DEVICE_PROBE = "smart_device_probe"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


@dataclass
class LogEntry:
    category: LogCategory
    message: str
    level: int = logging.INFO
    context: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "category": self.category.value,
            "message": self.message,
            "level": logging.getLevelName(self.level),
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


class ScanLogger:
    """Category-aware logger injected into the discovery components."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        history_size: int = LOG_HISTORY_SIZE,
    ):
        self._logger = logger or logging.getLogger("lanscout")
        self._entries: Deque[LogEntry] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def progress(self, category: LogCategory, message: str) -> None:
        self._record(LogEntry(category=category, message=message))

    def debug(self, category: LogCategory, message: str) -> None:
        self._record(LogEntry(category=category, message=message, level=logging.DEBUG))

    def warning(self, category: LogCategory, message: str) -> None:
        self._record(LogEntry(category=category, message=message, level=logging.WARNING))

    def error(
        self,
        category: LogCategory,
        error,
        context: Optional[str] = None,
    ) -> None:
        """Record a failure.  ``error`` may be an exception or a string."""
        self._record(
            LogEntry(
                category=category,
                message=str(error),
                level=logging.ERROR,
                context=context,
            )
        )

    def _record(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.append(entry)
        if entry.context:
            self._logger.log(
                entry.level, "[%s] %s (%s)", entry.category.value, entry.message, entry.context
            )
        else:
            self._logger.log(entry.level, "[%s] %s", entry.category.value, entry.message)

    # -- read helpers --------------------------------------------------------

    def entries(self, category: Optional[LogCategory] = None) -> List[LogEntry]:
        with self._lock:
            if category is None:
                return list(self._entries)
            return [e for e in self._entries if e.category == category]

    def errors(self) -> List[LogEntry]:
        with self._lock:
            return [e for e in self._entries if e.level >= logging.ERROR]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
