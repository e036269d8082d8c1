"""Network Engine - facade owning the reachability components and their lifecycle."""
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional

from loguru import logger

from netpulse.core.config import EngineConfig
from netpulse.core.protocols import Clock, InterfaceProvider
from netpulse.core.types import DnsProbeResult, InterfaceInfo, NetworkState
from netpulse.services.dns_resolver import DnsResolverMultiplexer, default_strategies
from netpulse.services.endpoint_prober import EndpointProber
from netpulse.services.interface_monitor import InterfaceMonitor
from netpulse.services.network_scheduler import NetworkScheduler
from netpulse.services.platform_watcher import PlatformChangeWatcher
from netpulse.services.quality_classifier import QualityClassifier
from netpulse.services.state_broadcaster import StateBroadcaster, StateCallback, VpnCallback
from netpulse.services.state_reconciler import StateReconciler
from netpulse.services.vpn_detector import VpnDetector


class NetworkEngine:
    """
    Reachability and stability engine.

    Consumers read snapshots with ``get_state()``, subscribe to confirmed
    transitions, and call ``force_check()`` on explicit demand only.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        prober: Optional[EndpointProber] = None,
        resolver: Optional[DnsResolverMultiplexer] = None,
        interface_provider: Optional[InterfaceProvider] = None,
        broadcaster: Optional[StateBroadcaster] = None,
        clock: Clock = time.monotonic,
    ):
        """
        Initialize the engine. Nothing runs until ``start()``.

        Args:
            config: Engine tunables; defaults come from constants/.env
            prober: Endpoint prober (injectable for tests)
            resolver: DNS multiplexer; defaults to the platform strategy chain
            interface_provider: Interface enumeration; defaults to psutil
            broadcaster: Subscription channel
            clock: Monotonic clock in seconds
        """
        self._config = config or EngineConfig()
        self._clock = clock

        self._broadcaster = broadcaster or StateBroadcaster()
        self._prober = prober or EndpointProber(grace=self._config.probe_grace)
        self._resolver = resolver or DnsResolverMultiplexer(
            default_strategies(
                nslookup_server=self._config.nslookup_server,
                command_timeout=self._config.subprocess_timeout,
            ),
            timeout=self._config.dns_timeout,
        )
        self._interface_monitor = InterfaceMonitor(interface_provider)
        self._vpn_detector = VpnDetector(startup_grace=self._config.vpn_startup_grace, clock=clock)
        self._reconciler = StateReconciler(self._broadcaster, config=self._config, clock=clock)

        self._executor = ThreadPoolExecutor(max_workers=self._config.probe_workers, thread_name_prefix="netpulse-probe")
        # Separate pool so waiting on a check never starves the probes it fans out
        self._control = ThreadPoolExecutor(max_workers=2, thread_name_prefix="netpulse-control")

        self._scheduler = NetworkScheduler(
            config=self._config,
            reconciler=self._reconciler,
            broadcaster=self._broadcaster,
            prober=self._prober,
            resolver=self._resolver,
            interface_monitor=self._interface_monitor,
            vpn_detector=self._vpn_detector,
            classifier=QualityClassifier(),
            executor=self._executor,
            clock=clock,
        )
        self._watcher: Optional[PlatformChangeWatcher] = None

        self._lock = threading.Lock()
        self._running = False
        self._stopped = False

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def reconciler(self) -> StateReconciler:
        return self._reconciler

    @property
    def scheduler(self) -> NetworkScheduler:
        return self._scheduler

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def start(self, wait_for_initial_check: bool = True) -> None:
        """
        Start monitoring.

        Args:
            wait_for_initial_check: Block until the first comprehensive check is proposed
        """
        with self._lock:
            if self._running:
                return
            if self._stopped:
                raise RuntimeError("NetworkEngine cannot be restarted after stop()")
            self._running = True

        logger.info("[NetworkEngine] Starting")
        self._interface_monitor.poll()  # baseline for the differ

        if wait_for_initial_check:
            self._scheduler.run_comprehensive_check(immediate=True)
        else:
            self._control.submit(self._initial_check)

        self._scheduler.start()

        if self._config.platform_events:
            self._watcher = PlatformChangeWatcher(on_change=self._scheduler.request_comprehensive_check)
            if not self._watcher.start():
                self._watcher = None

        state = self._reconciler.get_state()
        logger.info(f"[NetworkEngine] Started: online={state.is_online}, quality={state.quality}")

    def _initial_check(self):
        try:
            self._scheduler.run_comprehensive_check(immediate=True)
        except Exception as e:
            logger.error(f"[NetworkEngine] Initial check failed: {e}")

    def stop(self) -> None:
        """Cancel timers and loops, clear subscribers. In-flight results are discarded."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._running = False
            watcher = self._watcher
            self._watcher = None

        if watcher:
            watcher.stop()
        self._scheduler.stop()
        self._reconciler.destroy()
        self._broadcaster.clear()
        self._control.shutdown(wait=False, cancel_futures=True)
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("[NetworkEngine] Stopped")

    def get_state(self) -> NetworkState:
        """Current snapshot from cache; never triggers I/O."""
        return self._reconciler.get_state()

    def force_check(self) -> NetworkState:
        """
        Run one comprehensive check now and return the resulting snapshot.

        Bounded by ``force_check_timeout``; on timeout the cached state is returned.
        If a comprehensive check is already running, its result is not awaited.
        """
        if self._stopped:
            return self.get_state()

        future = self._control.submit(self._scheduler.run_comprehensive_check, True)
        try:
            return future.result(timeout=self._config.force_check_timeout)
        except FutureTimeoutError:
            logger.warning(f"[NetworkEngine] Forced check exceeded {self._config.force_check_timeout}s")
            return self.get_state()

    def check_once(self) -> NetworkState:
        """
        Measure the network once on an engine that is not monitoring.

        The initialization grace is skipped so an offline host reads as offline,
        and the check repeats until the consensus requirement is met.
        """
        self._reconciler.skip_init_grace()
        state = self.force_check()
        for _ in range(self._config.required_consecutive_checks - 1):
            if not self._reconciler.consensus.pending:
                break
            state = self.force_check()
        return state

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """Subscribe to confirmed state transitions. Returns an unsubscribe function."""
        return self._broadcaster.subscribe(callback)

    def subscribe_vpn(self, callback: VpnCallback) -> Callable[[], None]:
        return self._broadcaster.subscribe_vpn(callback)

    def current_interfaces(self) -> List[InterfaceInfo]:
        return self._interface_monitor.current_interfaces()

    def resolve(self, host: str) -> DnsProbeResult:
        return self._resolver.resolve(host)
