"""Core types and enums."""
import copy
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class NetworkQuality(Enum):
    """Discrete quality tiers, best first."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    OFFLINE = "offline"

    def __str__(self):
        return self.value


class ConnectionType(Enum):
    """Connection type of the primary interface."""

    ETHERNET = "ethernet"
    WIFI = "wifi"
    LOOPBACK = "loopback"
    OTHER = "other"
    NONE = "none"
    UNKNOWN = "unknown"

    def __str__(self):
        return self.value


class InterfaceType(Enum):
    """Interface type guessed from its name."""

    ETHERNET = "ethernet"
    WIFI = "wifi"
    LOOPBACK = "loopback"
    OTHER = "other"

    def __str__(self):
        return self.value


class ProbeErrorCode(Enum):
    """Error classification of a failed probe."""

    TIMEOUT = "ETIMEDOUT"
    REFUSED = "ECONNREFUSED"
    ADDRESS_NOT_AVAILABLE = "EADDRNOTAVAIL"
    UNREACHABLE = "ENETUNREACH"
    DNS_FAILURE = "EDNSFAIL"
    HTTP_ERROR = "EHTTP"
    UNKNOWN = "EUNKNOWN"

    @property
    def is_ambiguous(self) -> bool:
        """Address-not-available usually means VPN routing, not offline."""
        return self is ProbeErrorCode.ADDRESS_NOT_AVAILABLE

    def __str__(self):
        return self.value


class ChangeType(Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class AddressInfo:
    """One address bound to an interface."""

    address: str
    family: str  # "IPv4" or "IPv6"
    netmask: Optional[str] = None
    internal: bool = False


@dataclass
class InterfaceInfo:
    name: str
    addresses: List[AddressInfo] = field(default_factory=list)
    type: InterfaceType = InterfaceType.OTHER


@dataclass
class Diagnostics:
    dns_resolvable: bool = True
    internet_reachable: bool = True
    captive_portal: bool = False
    latency_ms: float = 0.0


@dataclass
class NetworkState:
    """
    Authoritative network state.

    Only the StateReconciler mutates it; everyone else receives deep copies.
    The default instance is the optimistic initial state: online until a
    check proves otherwise.
    """

    is_online: bool = True
    quality: NetworkQuality = NetworkQuality.GOOD
    vpn_active: bool = False
    interfaces: List[InterfaceInfo] = field(default_factory=list)
    primary_interface: Optional[str] = None
    connection_type: ConnectionType = ConnectionType.UNKNOWN
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    version: int = 0
    last_update: float = field(default_factory=time.time)

    def copy(self) -> "NetworkState":
        """Deep copy, safe to hand to consumers."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-friendly representation."""
        return _enum_values(asdict(self))


def _enum_values(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _enum_values(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_enum_values(v) for v in value]
    return value


@dataclass(frozen=True)
class StateChangeRecord:
    """Internal history entry used for flip-flop analysis."""

    was_online: bool
    is_online: bool
    timestamp: float
    type: str  # "stable" or "change"


@dataclass
class EndpointProbeResult:
    endpoint_id: str
    success: bool
    latency_ms: Optional[float] = None
    error_code: Optional[ProbeErrorCode] = None
    error: Optional[str] = None

    @property
    def is_ambiguous(self) -> bool:
        return not self.success and self.error_code is not None and self.error_code.is_ambiguous


@dataclass
class DnsProbeResult:
    host: str
    success: bool
    latency_ms: Optional[float] = None
    resolved_addresses: Optional[List[str]] = None
    error: Optional[str] = None
    strategy: Optional[str] = None


@dataclass
class InterfaceChange:
    type: ChangeType
    interface_name: str
    has_ipv4: bool = False
    has_ipv6: bool = False
    addresses: List[AddressInfo] = field(default_factory=list)
    previous_addresses: Optional[List[AddressInfo]] = None


@dataclass
class InterfaceAnalysis:
    significant_change: bool = False
    likely_online: bool = False
    vpn_detected: bool = False
    active_interface_count: int = 0


@dataclass
class CheckResult:
    """Combined verdict of one set of endpoint and DNS results."""

    is_online: bool
    quality: NetworkQuality
    confidence: float
    avg_latency_ms: Optional[float] = None
    min_latency_ms: Optional[float] = None
    dns_success: bool = False
    endpoint_success: bool = False


@dataclass(frozen=True)
class StateChangeEvent:
    """Published only for applied changes."""

    new_state: NetworkState
    old_state: NetworkState
    version: int
    changes: Dict[str, Any] = field(default_factory=dict)

    @property
    def connectivity_changed(self) -> bool:
        return self.new_state.is_online != self.old_state.is_online


@dataclass(frozen=True)
class VpnChangeEvent:
    active: bool
    was_active: bool
    interface: Optional[str] = None
    state: Optional[NetworkState] = None
