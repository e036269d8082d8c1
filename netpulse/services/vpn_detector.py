"""VPN heuristic detector - interface naming conventions."""
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from loguru import logger

from netpulse.core.constants import VPN_STARTUP_GRACE
from netpulse.core.protocols import Clock
from netpulse.core.types import ChangeType, InterfaceChange, InterfaceInfo

VPN_NAME_PREFIXES = ("utun", "tun", "tap", "ppp", "wg")
VPN_NAME_KEYWORDS = ("vpn", "ipsec")


def is_vpn_interface(name: str) -> bool:
    """Check if an interface name follows a tunnel/tap/ppp/IPsec convention."""
    if not name:
        return False
    lowered = name.lower()
    return lowered.startswith(VPN_NAME_PREFIXES) or any(k in lowered for k in VPN_NAME_KEYWORDS)


@dataclass(frozen=True)
class VpnChangeSignal:
    active: bool
    interface: Optional[str] = None


class VpnDetector:
    """
    Turns interface changes into VPN connect/disconnect signals.

    Interface enumeration right after startup is unreliable, so disconnect
    signals inside the startup grace window are ignored.
    """

    def __init__(self, startup_grace: float = VPN_STARTUP_GRACE, clock: Clock = time.monotonic):
        self._startup_grace = startup_grace
        self._clock = clock
        self._started_at = clock()
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def detect_active(self, interfaces: Iterable[InterfaceInfo]) -> Optional[str]:
        """
        Find an active VPN interface.

        Args:
            interfaces: Interfaces carrying a non-internal IPv4 address

        Returns:
            Name of the first VPN-like interface, or None
        """
        for info in interfaces:
            if is_vpn_interface(info.name):
                logger.debug(f"[VpnDetector] VPN interface detected: {info.name}")
                return info.name
        return None

    def seed(self, active: bool) -> None:
        """Set the known VPN state without emitting a signal (initial snapshot)."""
        self._active = active

    def evaluate_changes(self, changes: Iterable[InterfaceChange]) -> List[VpnChangeSignal]:
        """Return VPN signals for significant VPN interface adds/removes."""
        signals = []
        for change in changes:
            if not is_vpn_interface(change.interface_name):
                continue

            if change.type == ChangeType.ADDED and change.has_ipv4:
                signal = VpnChangeSignal(active=True, interface=change.interface_name)
            elif change.type == ChangeType.REMOVED and _had_ipv4(change):
                signal = VpnChangeSignal(active=False, interface=change.interface_name)
            else:
                continue

            accepted = self._accept(signal)
            if accepted:
                signals.append(accepted)
        return signals

    def _accept(self, signal: VpnChangeSignal) -> Optional[VpnChangeSignal]:
        if not signal.active and self._clock() - self._started_at < self._startup_grace:
            logger.debug("[VpnDetector] Ignoring VPN disconnect signal during initialization phase")
            return None

        if signal.active == self._active:
            return None

        self._active = signal.active
        logger.info(
            f"[VpnDetector] VPN state changed: {'connected' if signal.active else 'disconnected'}"
            + (f" ({signal.interface})" if signal.interface else "")
        )
        return signal


def _had_ipv4(change: InterfaceChange) -> bool:
    return any(a.family == "IPv4" and not a.internal for a in change.previous_addresses or [])
