"""State broadcaster - typed observer channel for state and VPN changes."""
import threading
from typing import Callable, List, Optional

from loguru import logger

from netpulse.core.types import StateChangeEvent, VpnChangeEvent

StateCallback = Callable[[StateChangeEvent], None]
VpnCallback = Callable[[VpnChangeEvent], None]


class StateBroadcaster:
    """
    Fans out confirmed state changes to subscribers.

    Callbacks run synchronously on the publishing thread; a failing callback
    is logged and does not stop delivery to the others.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._state_callbacks: List[StateCallback] = []
        self._vpn_callbacks: List[VpnCallback] = []
        self._last_version: Optional[int] = None

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """
        Register a callback for confirmed state changes.

        Returns:
            Function that removes the subscription
        """
        with self._lock:
            self._state_callbacks.append(callback)
        return lambda: self._remove(self._state_callbacks, callback)

    def subscribe_vpn(self, callback: VpnCallback) -> Callable[[], None]:
        """Register a callback for VPN connect/disconnect events."""
        with self._lock:
            self._vpn_callbacks.append(callback)
        return lambda: self._remove(self._vpn_callbacks, callback)

    def _remove(self, callbacks: list, callback) -> None:
        with self._lock:
            if callback in callbacks:
                callbacks.remove(callback)

    @property
    def last_version(self) -> Optional[int]:
        return self._last_version

    def publish(self, event: StateChangeEvent) -> bool:
        """
        Deliver a state change event.

        Returns:
            False when the event was stale (version not newer than the last one)
        """
        with self._lock:
            if self._last_version is not None and event.version <= self._last_version:
                logger.warning(
                    f"[StateBroadcaster] Dropping stale event v{event.version} (last v{self._last_version})"
                )
                return False
            self._last_version = event.version
            callbacks = list(self._state_callbacks)

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"[StateBroadcaster] Callback error: {e}")
        return True

    def publish_vpn(self, event: VpnChangeEvent) -> None:
        with self._lock:
            callbacks = list(self._vpn_callbacks)

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"[StateBroadcaster] VPN callback error: {e}")

    def clear(self) -> None:
        """Drop all subscribers."""
        with self._lock:
            self._state_callbacks.clear()
            self._vpn_callbacks.clear()
        logger.debug("[StateBroadcaster] Subscribers cleared")
