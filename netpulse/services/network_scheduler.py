"""
Adaptive scheduler - drives interface polls, quick checks and comprehensive checks.

Each loop runs on its own daemon thread and re-arms only after its task has
finished, so a slow check never overlaps with the next one of its kind.
"""

import threading
import time
from concurrent.futures import Executor, TimeoutError as FutureTimeoutError
from typing import List, Optional

from loguru import logger

from netpulse.core.config import EngineConfig
from netpulse.core.constants import INTERFACE_SNAPSHOT_TIMEOUT
from netpulse.core.protocols import Clock
from netpulse.core.types import InterfaceInfo, NetworkState, VpnChangeEvent
from netpulse.services.dns_resolver import DnsResolverMultiplexer
from netpulse.services.endpoint_prober import EndpointProber
from netpulse.services.interface_monitor import (
    InterfaceMonitor,
    active_interfaces,
    connection_type_for,
    find_primary_interface,
)
from netpulse.services.quality_classifier import QualityClassifier
from netpulse.services.state_broadcaster import StateBroadcaster
from netpulse.services.state_reconciler import ProposalOutcome, StateReconciler
from netpulse.services.vpn_detector import VpnDetector


class NetworkScheduler:
    """Runs the three check cadences against one StateReconciler."""

    def __init__(
        self,
        config: EngineConfig,
        reconciler: StateReconciler,
        broadcaster: StateBroadcaster,
        prober: EndpointProber,
        resolver: DnsResolverMultiplexer,
        interface_monitor: InterfaceMonitor,
        vpn_detector: VpnDetector,
        classifier: QualityClassifier,
        executor: Executor,
        clock: Clock = time.monotonic,
    ):
        self._config = config
        self._reconciler = reconciler
        self._broadcaster = broadcaster
        self._prober = prober
        self._resolver = resolver
        self._interface_monitor = interface_monitor
        self._vpn_detector = vpn_detector
        self._classifier = classifier
        self._executor = executor
        self._clock = clock

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._running = False
        self._stopped = False

        # Comprehensive check bookkeeping (guarded by _lock)
        self._comprehensive_in_progress = False
        self._last_comprehensive_start: Optional[float] = None
        self._generation = 0
        self._comprehensive_count = 0

        self._change_timer: Optional[threading.Timer] = None
        self._started_at = clock()
        self._stable_mode = False

    # -------------------------------------------------------------- lifecycle

    def start(self) -> None:
        """Start the interface, quick and comprehensive loops."""
        with self._lock:
            if self._running or self._stopped:
                return
            self._running = True
            self._stop_event.clear()
            self._started_at = self._clock()

            loops = (
                ("NetworkScheduler-interfaces", self._interface_loop),
                ("NetworkScheduler-quick", self._quick_loop),
                ("NetworkScheduler-comprehensive", self._comprehensive_loop),
            )
            self._threads = [threading.Thread(target=target, daemon=True, name=name) for name, target in loops]
            for thread in self._threads:
                thread.start()

        logger.info(
            f"[NetworkScheduler] Started (interfaces={self._config.interface_poll_interval}s, "
            f"quick={self._config.quick_check_interval}s, comprehensive={self._config.comprehensive_check_interval}s)"
        )

    def stop(self) -> None:
        """Stop all loops; results of checks still in flight are discarded."""
        with self._lock:
            self._stopped = True
            was_running = self._running
            self._running = False
            self._stop_event.set()
            if self._change_timer:
                self._change_timer.cancel()
                self._change_timer = None
            threads = self._threads
            self._threads = []

        for thread in threads:
            if thread.is_alive() and thread is not threading.current_thread():
                thread.join(timeout=2.0)

        if was_running:
            logger.info("[NetworkScheduler] Stopped")

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    # ------------------------------------------------------------------ loops

    def _interface_loop(self):
        while not self._stop_event.is_set():
            try:
                self.poll_interfaces()
            except Exception as e:
                logger.error(f"[NetworkScheduler] Interface poll error: {e}")
            self._stop_event.wait(self._config.interface_poll_interval)

    def _quick_loop(self):
        while not self._stop_event.wait(self._interval(self._config.quick_check_interval)):
            try:
                self.run_quick_check()
            except Exception as e:
                logger.error(f"[NetworkScheduler] Quick connectivity check error: {e}")

    def _comprehensive_loop(self):
        while not self._stop_event.wait(self._interval(self._config.comprehensive_check_interval)):
            try:
                self.run_comprehensive_check()
            except Exception as e:
                logger.error(f"[NetworkScheduler] Comprehensive check error: {e}")

    def _interval(self, base: float) -> float:
        """Base interval, stretched while the network has been stable."""
        stable = self.is_stable_mode()
        with self._lock:
            changed = stable != self._stable_mode
            self._stable_mode = stable
        if changed:
            if stable:
                logger.info("[NetworkScheduler] Network stable - reducing check frequency")
            else:
                logger.info("[NetworkScheduler] Network unstable - resuming normal check frequency")
        return base * self._config.stable_multiplier if stable else base

    def is_stable_mode(self) -> bool:
        if not self._reconciler.get_state().is_online:
            return False
        reference = self._reconciler.last_transition_at
        if reference is None:
            reference = self._started_at
        return self._clock() - reference >= self._config.stability_threshold

    # ----------------------------------------------------------------- checks

    def _discarding(self) -> bool:
        return self._stopped or self._reconciler.is_destroyed

    def run_comprehensive_check(self, immediate: bool = False) -> NetworkState:
        """
        Run one full check: interfaces, DNS and weighted endpoints in parallel.

        Args:
            immediate: Skip the reconciler's debounce when applying the verdict

        Returns:
            Snapshot of the state after the verdict was proposed
        """
        if self._discarding():
            return self._reconciler.get_state()

        with self._lock:
            if self._comprehensive_in_progress:
                logger.debug("[NetworkScheduler] Comprehensive check already in progress, skipping")
                return self._reconciler.get_state()
            self._comprehensive_in_progress = True
            self._last_comprehensive_start = self._clock()
            self._generation += 1

        try:
            return self._comprehensive_check(immediate)
        finally:
            with self._lock:
                self._comprehensive_in_progress = False
                self._comprehensive_count += 1

    def _comprehensive_check(self, immediate: bool) -> NetworkState:
        logger.debug("[NetworkScheduler] Performing comprehensive network check...")

        interfaces_future = self._executor.submit(self._interface_monitor.current_interfaces)
        dns_pending = self._resolver.submit_all(self._config.dns_test_hosts, self._executor)
        endpoint_pending = self._prober.submit_all(self._config.endpoints, self._executor)

        endpoint_results = self._prober.collect(endpoint_pending)
        dns_results = self._resolver.collect(dns_pending)
        try:
            interfaces: List[InterfaceInfo] = interfaces_future.result(timeout=INTERFACE_SNAPSHOT_TIMEOUT)
        except FutureTimeoutError:
            interfaces_future.cancel()
            logger.warning("[NetworkScheduler] Interface enumeration timed out")
            interfaces = []

        weighted = [(result, endpoint.weight) for result, endpoint in zip(endpoint_results, self._config.endpoints)]
        check = self._classifier.classify(weighted, dns_results)

        if self._discarding():
            logger.debug("[NetworkScheduler] Discarding comprehensive check result after shutdown")
            return self._reconciler.get_state()

        primary = find_primary_interface(interfaces)
        changes = {
            "is_online": check.is_online,
            "quality": check.quality,
            "interfaces": interfaces,
            "primary_interface": primary.name if primary else None,
            "connection_type": connection_type_for(primary),
            "diagnostics": {
                "dns_resolvable": check.dns_success,
                "internet_reachable": check.endpoint_success,
                "latency_ms": round(check.avg_latency_ms or 0.0, 1),
            },
        }

        # Re-derived on every check; the detector drops disconnects inside its startup grace
        vpn_interface = self._vpn_detector.detect_active(interfaces)
        vpn_active = vpn_interface is not None
        was_active = self._vpn_detector.active
        self._vpn_detector.seed(vpn_active)
        changes["vpn_active"] = vpn_active

        outcome = self._reconciler.propose(changes, immediate=immediate)
        self._reconciler.mark_initial_check_complete()
        logger.info(
            f"[NetworkScheduler] Comprehensive check: online={check.is_online}, quality={check.quality}, "
            f"confidence={check.confidence:.2f}, dns={check.dns_success} -> {outcome}"
        )

        state = self._reconciler.get_state()
        with self._lock:
            first_check = self._comprehensive_count == 0
        if not first_check and vpn_active != was_active:
            logger.info(f"[NetworkScheduler] VPN state corrected by comprehensive check: active={vpn_active}")
            self._broadcaster.publish_vpn(
                VpnChangeEvent(active=vpn_active, was_active=was_active, interface=vpn_interface, state=state)
            )
        return state

    def run_quick_check(self) -> Optional[ProposalOutcome]:
        """
        Probe the primary quick endpoint (with fallbacks for ambiguous failures).

        Returns:
            Reconciler outcome, or None when the check was skipped or superseded
        """
        if self._discarding():
            return None

        with self._lock:
            recent = (
                self._last_comprehensive_start is not None
                and self._clock() - self._last_comprehensive_start < self._config.quick_check_skip_window
            )
            if self._comprehensive_in_progress or recent:
                logger.debug("[NetworkScheduler] Skipping quick check - comprehensive check active or recent")
                return None
            generation = self._generation

        primary, *fallbacks = self._config.quick_endpoints
        result = self._prober.probe_with_fallback(primary, fallbacks)

        with self._lock:
            superseded = generation != self._generation or self._comprehensive_in_progress
        if superseded or self._discarding():
            logger.debug("[NetworkScheduler] Quick check superseded, discarding result")
            return None

        outcome = self._reconciler.propose({"is_online": result.success}, immediate=True)
        if outcome == ProposalOutcome.APPLIED:
            logger.warning(
                f"[NetworkScheduler] QUICK CHECK STATE CHANGE: -> {'online' if result.success else 'offline'} "
                f"({result.endpoint_id}, error={result.error_code})"
            )
        return outcome

    def poll_interfaces(self) -> None:
        """Diff interfaces; on a significant change update VPN state and recheck soon."""
        if self._discarding():
            return

        changes, analysis = self._interface_monitor.poll()
        if not analysis.significant_change:
            return

        signals = self._vpn_detector.evaluate_changes(changes)
        interfaces = active_interfaces(self._interface_monitor.last_snapshot)
        primary = find_primary_interface(interfaces)
        update = {
            "interfaces": interfaces,
            "primary_interface": primary.name if primary else None,
            "connection_type": connection_type_for(primary),
        }
        if signals:
            update["vpn_active"] = signals[-1].active
        self._reconciler.update_state(update, immediate=True)

        for signal in signals:
            self._broadcaster.publish_vpn(
                VpnChangeEvent(
                    active=signal.active,
                    was_active=not signal.active,
                    interface=signal.interface,
                    state=self._reconciler.get_state(),
                )
            )

        logger.info(
            f"[NetworkScheduler] Significant interface change ({analysis.active_interface_count} active), "
            "scheduling comprehensive check"
        )
        self.request_comprehensive_check()

    def request_comprehensive_check(self) -> None:
        """Debounced comprehensive check, used for interface and platform change events."""
        with self._lock:
            if self._stopped:
                return
            if self._change_timer:
                self._change_timer.cancel()
            self._change_timer = threading.Timer(self._config.network_change_debounce, self._run_change_check)
            self._change_timer.daemon = True
            self._change_timer.start()

    def _run_change_check(self):
        with self._lock:
            self._change_timer = None
        try:
            self.run_comprehensive_check(immediate=True)
        except Exception as e:
            logger.error(f"[NetworkScheduler] Comprehensive check after network change failed: {e}")
