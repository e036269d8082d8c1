"""Protocols for type-safe dependency injection."""
from typing import Callable, Dict, List, Protocol

from netpulse.core.types import AddressInfo

# Monotonic seconds; tests inject a fake
Clock = Callable[[], float]


class InterfaceProvider(Protocol):
    """Protocol for interface enumeration capability."""

    def snapshot(self) -> Dict[str, List[AddressInfo]]:
        """Current interfaces keyed by name. Only IPv4/IPv6 addresses are listed."""
        ...
