"""Interface enumerator and differ."""
import socket
import threading
from typing import Dict, List, Optional, Tuple

import psutil
from loguru import logger

from netpulse.core.protocols import InterfaceProvider
from netpulse.core.types import (
    AddressInfo,
    ChangeType,
    ConnectionType,
    InterfaceAnalysis,
    InterfaceChange,
    InterfaceInfo,
    InterfaceType,
)
from netpulse.services.vpn_detector import is_vpn_interface

Snapshot = Dict[str, List[AddressInfo]]

ETHERNET_PREFIXES = ("eth", "en0", "enp", "eno", "ens")
WIFI_PREFIXES = ("wlan", "wlp", "wi-fi", "airport", "en1")

_FAMILIES = {socket.AF_INET: "IPv4", socket.AF_INET6: "IPv6"}


class PsutilInterfaceProvider:
    """Enumerates interfaces through psutil.net_if_addrs()."""

    def snapshot(self) -> Snapshot:
        result: Snapshot = {}
        for name, addrs in psutil.net_if_addrs().items():
            entries = []
            for addr in addrs:
                family = _FAMILIES.get(addr.family)
                if family is None:
                    continue
                # Strip the IPv6 zone suffix ("fe80::1%eth0")
                address = addr.address.split("%", 1)[0]
                entries.append(
                    AddressInfo(
                        address=address,
                        family=family,
                        netmask=addr.netmask,
                        internal=_is_internal(address),
                    )
                )
            result[name] = entries
        return result


def _is_internal(address: str) -> bool:
    return address.startswith("127.") or address == "::1"


def _has_ipv4(addresses: Optional[List[AddressInfo]]) -> bool:
    return any(a.family == "IPv4" and not a.internal for a in addresses or [])


def _has_ipv6(addresses: Optional[List[AddressInfo]]) -> bool:
    return any(a.family == "IPv6" and not a.internal for a in addresses or [])


def classify_interface_type(name: str) -> InterfaceType:
    lowered = name.lower()
    if lowered.startswith(ETHERNET_PREFIXES):
        return InterfaceType.ETHERNET
    if lowered.startswith(WIFI_PREFIXES):
        return InterfaceType.WIFI
    if lowered.startswith("lo"):
        return InterfaceType.LOOPBACK
    return InterfaceType.OTHER


def active_interfaces(snapshot: Snapshot) -> List[InterfaceInfo]:
    """Interfaces with at least one non-internal IPv4 address, in snapshot order."""
    interfaces = []
    for name, addresses in snapshot.items():
        ipv4 = [a for a in addresses if a.family == "IPv4" and not a.internal]
        if ipv4:
            interfaces.append(InterfaceInfo(name=name, addresses=ipv4, type=classify_interface_type(name)))
    return interfaces


def find_primary_interface(interfaces: List[InterfaceInfo]) -> Optional[InterfaceInfo]:
    """Prefer ethernet, then wifi, then whatever comes first."""
    for wanted in (InterfaceType.ETHERNET, InterfaceType.WIFI):
        for info in interfaces:
            if info.type == wanted:
                return info
    return interfaces[0] if interfaces else None


def connection_type_for(primary: Optional[InterfaceInfo]) -> ConnectionType:
    if primary is None:
        return ConnectionType.NONE
    return ConnectionType(primary.type.value)


def diff_snapshots(previous: Snapshot, current: Snapshot) -> List[InterfaceChange]:
    """Compare two snapshots by interface name."""
    changes = []
    for name, addresses in current.items():
        last = previous.get(name)
        if last is None:
            changes.append(
                InterfaceChange(
                    type=ChangeType.ADDED,
                    interface_name=name,
                    has_ipv4=_has_ipv4(addresses),
                    has_ipv6=_has_ipv6(addresses),
                    addresses=list(addresses),
                )
            )
        elif last != addresses:
            changes.append(
                InterfaceChange(
                    type=ChangeType.MODIFIED,
                    interface_name=name,
                    has_ipv4=_has_ipv4(addresses),
                    has_ipv6=_has_ipv6(addresses),
                    addresses=list(addresses),
                    previous_addresses=list(last),
                )
            )

    for name, addresses in previous.items():
        if name not in current:
            changes.append(
                InterfaceChange(
                    type=ChangeType.REMOVED,
                    interface_name=name,
                    previous_addresses=list(addresses),
                )
            )
    return changes


def is_significant(change: InterfaceChange) -> bool:
    """A non-internal IPv4 address appeared or disappeared."""
    if change.type == ChangeType.ADDED:
        return change.has_ipv4
    if change.type == ChangeType.REMOVED:
        return _has_ipv4(change.previous_addresses)
    return _has_ipv4(change.previous_addresses) != change.has_ipv4


def analyze_changes(changes: List[InterfaceChange], current: Snapshot) -> InterfaceAnalysis:
    active = active_interfaces(current)
    significant = False
    for change in changes:
        if is_significant(change):
            significant = True
            logger.info(f"[InterfaceMonitor] Significant: interface {change.interface_name} {change.type} (IPv4)")

    return InterfaceAnalysis(
        significant_change=significant,
        likely_online=bool(active),
        vpn_detected=any(is_vpn_interface(info.name) for info in active),
        active_interface_count=len(active),
    )


class InterfaceMonitor:
    """
    Polls an InterfaceProvider and reports what changed since the last poll.

    The first poll only records a baseline and reports no changes.
    """

    def __init__(self, provider: Optional[InterfaceProvider] = None):
        self._provider = provider or PsutilInterfaceProvider()
        self._last: Optional[Snapshot] = None
        self._lock = threading.Lock()

    @property
    def last_snapshot(self) -> Snapshot:
        return dict(self._last or {})

    def snapshot(self) -> Optional[Snapshot]:
        """Take a snapshot; None when enumeration failed."""
        try:
            return self._provider.snapshot()
        except Exception as e:
            logger.warning(f"[InterfaceMonitor] Interface enumeration failed: {e}")
            return None

    def current_interfaces(self) -> List[InterfaceInfo]:
        return active_interfaces(self.snapshot() or {})

    def poll(self) -> Tuple[List[InterfaceChange], InterfaceAnalysis]:
        """
        Diff the current interfaces against the previous poll.

        Returns:
            Tuple of (changes, analysis)
        """
        current = self.snapshot()
        if current is None:
            # Keep the previous baseline, a failed enumeration is not "all removed"
            return [], analyze_changes([], self.last_snapshot)

        with self._lock:
            previous = self._last
            self._last = current

        if previous is None:
            logger.debug(f"[InterfaceMonitor] Baseline: {len(current)} interfaces")
            return [], analyze_changes([], current)

        changes = diff_snapshots(previous, current)
        if changes:
            logger.debug(f"[InterfaceMonitor] {len(changes)} interface change(s)")
        return changes, analyze_changes(changes, current)
