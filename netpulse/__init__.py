"""netpulse - network reachability and stability engine."""

__version__ = "0.3.0"
__author__ = "netpulse contributors"
__description__ = "Debounced online/offline, quality and VPN state from layered network signals"

from netpulse.core.config import EndpointConfig, EngineConfig
from netpulse.core.types import NetworkQuality, NetworkState, StateChangeEvent, VpnChangeEvent
from netpulse.services.network_engine import NetworkEngine

__all__ = [
    "EndpointConfig",
    "EngineConfig",
    "NetworkEngine",
    "NetworkQuality",
    "NetworkState",
    "StateChangeEvent",
    "VpnChangeEvent",
    "__version__",
]
