"""
Discovery error taxonomy.

Only scope-establishing failures (interface listing, gateway resolution) ever
reach a caller, and then only as warnings attached to a scan report.  Probe
failures are classified with the same kinds so they can be logged uniformly,
but they are absorbed inside the engine.
"""

from enum import Enum
from typing import Dict, Optional


class ErrorKind(str, Enum):
    INTERFACE_LIST_FAILED = "interface_list_failed"
    GATEWAY_NOT_FOUND = "gateway_not_found"
    PROBE_TIMEOUT = "probe_timeout"
    PROBE_TRANSPORT_ERROR = "probe_transport_error"
    MALFORMED_RESPONSE = "malformed_response"
    CONFIG_FILE_MISSING = "config_file_missing"


class DiscoveryError(Exception):
    """Non-fatal discovery failure with a machine-readable kind."""

    def __init__(self, kind: ErrorKind, message: str, context: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context = context

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"<DiscoveryError {self.kind.value}: {self.message}>"
