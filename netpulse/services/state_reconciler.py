"""
State Reconciler - the only writer of NetworkState.

Connectivity proposals pass a gate pipeline before they are applied:

    init grace -> hysteresis -> consensus -> flip-flop -> apply

A rejected proposal keeps the current connectivity verdict; its other
fields (VPN flag, interfaces) are still merged. Applied changes bump the
state version by exactly one and are published while the mutation lock
is still held, so subscribers see versions in order.
"""

import copy
import threading
import time
from collections import deque
from dataclasses import asdict, fields
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Set

from loguru import logger

from netpulse.core.config import EngineConfig
from netpulse.core.constants import (
    APPLY_MAX_RETRIES,
    APPLY_RETRY_BASE_DELAY,
    APPLY_RETRY_MAX_DELAY,
    FLIP_FLOP_SAMPLE_SIZE,
    MAX_HISTORY_SIZE,
)
from netpulse.core.exceptions import StateCorruption
from netpulse.core.protocols import Clock
from netpulse.core.types import (
    Diagnostics,
    NetworkQuality,
    NetworkState,
    StateChangeEvent,
    StateChangeRecord,
)
from netpulse.services.state_broadcaster import StateBroadcaster

CONNECTIVITY_FIELDS = ("is_online", "quality", "diagnostics")
RESERVED_FIELDS = ("version", "last_update")
STATE_FIELDS = {f.name for f in fields(NetworkState)}


class ProposalOutcome(Enum):
    """What happened to a proposal."""

    APPLIED = "applied"
    QUEUED = "queued"
    STABLE = "stable"
    SUPPRESSED_INIT = "suppressed_init"
    BLOCKED_HYSTERESIS = "blocked_hysteresis"
    PENDING_CONSENSUS = "pending_consensus"
    BLOCKED_FLIP_FLOP = "blocked_flip_flop"
    DISCARDED = "discarded"

    @property
    def rejected(self) -> bool:
        return self in (
            ProposalOutcome.SUPPRESSED_INIT,
            ProposalOutcome.BLOCKED_HYSTERESIS,
            ProposalOutcome.PENDING_CONSENSUS,
            ProposalOutcome.BLOCKED_FLIP_FLOP,
        )

    def __str__(self):
        return self.value


class ConsensusCounter:
    """Consecutive online/offline verdicts that disagree with the current state."""

    def __init__(self, required: int = 1):
        self.required = max(1, required)
        self.online = 0
        self.offline = 0

    def record(self, verdict: bool, current: bool) -> bool:
        """
        Count one check.

        Args:
            verdict: Online verdict of the check
            current: Current online state

        Returns:
            True when a disagreeing verdict has reached the required count
        """
        if verdict == current:
            self.reset()
            return False

        if verdict:
            self.online += 1
            self.offline = 0
            return self.online >= self.required

        self.offline += 1
        self.online = 0
        return self.offline >= self.required

    def count_for(self, verdict: bool) -> int:
        return self.online if verdict else self.offline

    @property
    def pending(self) -> bool:
        """True while a disagreeing verdict is waiting for more checks."""
        return bool(self.online or self.offline)

    def reset(self) -> None:
        self.online = 0
        self.offline = 0


def _merge_changes(target: Dict[str, Any], changes: Dict[str, Any]) -> None:
    """Fold ``changes`` into a pending change set, merging nested diagnostics."""
    for key, value in changes.items():
        if key == "diagnostics" and isinstance(target.get(key), dict):
            target[key].update(_as_dict(value))
        elif key == "diagnostics":
            target[key] = _as_dict(value)
        else:
            target[key] = value


def _as_dict(value) -> Dict[str, Any]:
    if isinstance(value, Diagnostics):
        return asdict(value)
    return dict(value or {})


def _content(state: NetworkState) -> Dict[str, Any]:
    data = asdict(state)
    for name in RESERVED_FIELDS:
        data.pop(name, None)
    return data


def _diff(old: NetworkState, new: NetworkState) -> Dict[str, Any]:
    before = _content(old)
    after = _content(new)
    return {key: value for key, value in after.items() if before.get(key) != value}


class StateReconciler:
    """Owns NetworkState and serializes every mutation of it."""

    def __init__(
        self,
        broadcaster: StateBroadcaster,
        config: Optional[EngineConfig] = None,
        clock: Clock = time.monotonic,
        initial_state: Optional[NetworkState] = None,
    ):
        """
        Initialize the reconciler.

        Args:
            broadcaster: Channel applied changes are published on
            config: Engine tunables (grace, hysteresis, consensus, debounce)
            clock: Monotonic clock in seconds
            initial_state: Starting state; defaults to the optimistic online state
        """
        config = config or EngineConfig()
        self._broadcaster = broadcaster
        self._clock = clock

        self._init_grace_period = config.init_grace_period
        self._hysteresis_delay = config.hysteresis_delay
        self._debounce_delay = config.debounce_delay
        self._flip_flop_window = config.flip_flop_window

        self._state = initial_state.copy() if initial_state else NetworkState()
        self._state_lock = threading.Lock()
        self._mutation_lock = threading.Lock()
        self._lock = threading.RLock()  # gates, history, counters

        self._consensus = ConsensusCounter(config.required_consecutive_checks)
        self._history: Deque[StateChangeRecord] = deque(maxlen=MAX_HISTORY_SIZE)
        self._created_at = clock()
        self._last_transition_at: Optional[float] = None
        self._initial_check_complete = False
        self._confirmed_online = False
        self._grace_skipped = False

        self._pending: Dict[str, Any] = {}
        self._pending_lock = threading.Lock()
        self._debounce_timer: Optional[threading.Timer] = None
        self._retry_timers: Set[threading.Timer] = set()
        self._destroyed = False

    # ------------------------------------------------------------------ reads

    def get_state(self) -> NetworkState:
        """Deep copy of the current state. Never does I/O."""
        with self._state_lock:
            return self._state.copy()

    @property
    def version(self) -> int:
        with self._state_lock:
            return self._state.version

    @property
    def last_transition_at(self) -> Optional[float]:
        """Clock time of the last applied connectivity transition."""
        return self._last_transition_at

    @property
    def consensus(self) -> ConsensusCounter:
        return self._consensus

    @property
    def history(self) -> List[StateChangeRecord]:
        with self._lock:
            return list(self._history)

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    # -------------------------------------------------------------- lifecycle

    def mark_initial_check_complete(self) -> None:
        if not self._initial_check_complete:
            self._initial_check_complete = True
            logger.debug("[StateReconciler] Initial check complete")

    def skip_init_grace(self) -> None:
        """Let offline verdicts through right away (one-shot checks)."""
        with self._lock:
            self._grace_skipped = True
        logger.debug("[StateReconciler] Initialization grace skipped")

    def reset_consensus(self) -> None:
        with self._lock:
            self._consensus.reset()

    def destroy(self) -> None:
        """Cancel pending timers; later proposals are discarded."""
        self._destroyed = True
        with self._pending_lock:
            if self._debounce_timer:
                self._debounce_timer.cancel()
                self._debounce_timer = None
            self._pending.clear()
            for timer in list(self._retry_timers):
                timer.cancel()
            self._retry_timers.clear()
        logger.debug("[StateReconciler] Destroyed")

    # ---------------------------------------------------------------- writes

    def propose(self, changes: Dict[str, Any], immediate: bool = False) -> ProposalOutcome:
        """
        Propose a state change coming from a connectivity check.

        Args:
            changes: Field name -> new value; ``is_online`` goes through the gates
            immediate: Apply now instead of after the debounce delay

        Returns:
            ProposalOutcome describing what happened to the connectivity verdict
        """
        if self._destroyed:
            return ProposalOutcome.DISCARDED

        changes = dict(changes)
        with self._lock:
            gate = None
            if "is_online" in changes:
                gate = self._gate_connectivity(bool(changes["is_online"]))
                if gate.rejected:
                    for name in CONNECTIVITY_FIELDS:
                        changes.pop(name, None)

            if not changes:
                return gate or ProposalOutcome.STABLE

            submitted = self._submit(changes, immediate)

        if gate is not None and gate.rejected:
            return gate
        return submitted

    def update_state(self, changes: Dict[str, Any], immediate: bool = False) -> ProposalOutcome:
        """Merge fields that need no gating (VPN flag, interfaces)."""
        if self._destroyed:
            return ProposalOutcome.DISCARDED
        return self._submit(dict(changes), immediate)

    # ----------------------------------------------------------------- gates

    def _gate_connectivity(self, verdict: bool) -> ProposalOutcome:
        """Run the gate pipeline for one online/offline verdict (under lock)."""
        with self._state_lock:
            current = self._state.is_online
        now = self._clock()

        if verdict == current:
            self._consensus.reset()
            self._record(current, verdict, now, "stable")
            if verdict:
                self._confirmed_online = True
            with self._pending_lock:
                # A newer check agrees with the current state; drop a queued flip
                for name in CONNECTIVITY_FIELDS:
                    self._pending.pop(name, None)
            return ProposalOutcome.STABLE

        direction = f"{'online' if current else 'offline'} -> {'online' if verdict else 'offline'}"

        if not verdict and self._in_init_grace(now):
            logger.debug(
                f"[StateReconciler] Suppressing offline during initialization "
                f"(elapsed={now - self._created_at:.1f}s, initial_check_complete={self._initial_check_complete})"
            )
            return ProposalOutcome.SUPPRESSED_INIT

        if self._last_transition_at is not None and now - self._last_transition_at < self._hysteresis_delay:
            logger.debug(f"[StateReconciler] State change blocked by hysteresis ({direction})")
            return ProposalOutcome.BLOCKED_HYSTERESIS

        if not self._consensus.record(verdict, current):
            logger.debug(
                f"[StateReconciler] Potential change {direction} waiting for confirmation "
                f"({self._consensus.count_for(verdict)}/{self._consensus.required})"
            )
            return ProposalOutcome.PENDING_CONSENSUS

        if self._is_flip_flopping(now):
            logger.warning(f"[StateReconciler] Flip-flop detected, suppressing state change ({direction})")
            return ProposalOutcome.BLOCKED_FLIP_FLOP

        logger.info(f"[StateReconciler] Accepting state change {direction}")
        return ProposalOutcome.APPLIED

    def _in_init_grace(self, now: float) -> bool:
        if self._confirmed_online or self._grace_skipped:
            return False
        return now - self._created_at < self._init_grace_period or not self._initial_check_complete

    def _record(self, was_online: bool, is_online: bool, timestamp: float, kind: str) -> None:
        self._history.append(StateChangeRecord(was_online, is_online, timestamp, kind))

    def _is_flip_flopping(self, now: float) -> bool:
        recent = [
            r for r in list(self._history)[-FLIP_FLOP_SAMPLE_SIZE:] if now - r.timestamp <= self._flip_flop_window
        ]
        if len(recent) >= 3:
            a, b, c = recent[-3:]
            if a.is_online != b.is_online and b.is_online != c.is_online:
                return True
        return sum(1 for r in recent if r.type == "change") >= 3

    # ----------------------------------------------------------------- apply

    def _submit(self, changes: Dict[str, Any], immediate: bool) -> ProposalOutcome:
        with self._pending_lock:
            if self._destroyed:
                return ProposalOutcome.DISCARDED

            if not immediate:
                _merge_changes(self._pending, changes)
                if self._debounce_timer:
                    self._debounce_timer.cancel()
                self._debounce_timer = threading.Timer(self._debounce_delay, self._flush_pending)
                self._debounce_timer.daemon = True
                self._debounce_timer.start()
                return ProposalOutcome.QUEUED

            # Immediate changes take any debounced ones along
            merged = self._pending
            self._pending = {}
            if self._debounce_timer:
                self._debounce_timer.cancel()
                self._debounce_timer = None
            _merge_changes(merged, changes)

        return self._apply(merged)

    def _flush_pending(self) -> None:
        with self._pending_lock:
            changes = self._pending
            self._pending = {}
            self._debounce_timer = None
        if changes:
            self._apply(changes)

    def _apply(self, changes: Dict[str, Any], attempt: int = 0) -> ProposalOutcome:
        if self._destroyed:
            return ProposalOutcome.DISCARDED

        if not self._mutation_lock.acquire(blocking=False):
            return self._schedule_retry(changes, attempt)

        try:
            return self._apply_locked(changes)
        finally:
            self._mutation_lock.release()

    def _schedule_retry(self, changes: Dict[str, Any], attempt: int) -> ProposalOutcome:
        if attempt >= APPLY_MAX_RETRIES:
            logger.error(
                f"[StateReconciler] Dropping state change after {attempt} retries, mutation lock busy: "
                f"{sorted(changes)}"
            )
            return ProposalOutcome.DISCARDED

        delay = min(APPLY_RETRY_BASE_DELAY * (2 ** attempt), APPLY_RETRY_MAX_DELAY)
        logger.warning(f"[StateReconciler] State update already in progress, retrying in {delay:.2f}s")

        timer = threading.Timer(delay, self._run_retry, args=(changes, attempt + 1))
        timer.daemon = True
        with self._pending_lock:
            if self._destroyed:
                return ProposalOutcome.DISCARDED
            self._retry_timers.add(timer)
        timer.start()
        return ProposalOutcome.QUEUED

    def _run_retry(self, changes: Dict[str, Any], attempt: int) -> None:
        with self._pending_lock:
            self._retry_timers.discard(threading.current_thread())
        self._apply(changes, attempt)

    def _apply_locked(self, changes: Dict[str, Any]) -> ProposalOutcome:
        """Clone, merge, verify and publish (mutation lock held)."""
        with self._state_lock:
            current = self._state
        expected = current.version

        candidate = self._merge(current, changes)
        if _content(candidate) == _content(current):
            return ProposalOutcome.STABLE

        try:
            self._verify_version(candidate, expected)
        except StateCorruption as e:
            logger.error(f"[StateReconciler] {e}; mutation dropped")
            return ProposalOutcome.DISCARDED

        candidate.last_update = time.time()
        with self._state_lock:
            self._state = candidate

        if candidate.is_online != current.is_online:
            with self._lock:
                now = self._clock()
                self._record(current.is_online, candidate.is_online, now, "change")
                self._last_transition_at = now
                self._consensus.reset()
                if candidate.is_online:
                    self._confirmed_online = True
            logger.warning(
                f"[StateReconciler] NETWORK STATE TRANSITION: "
                f"{'online' if current.is_online else 'offline'} -> {'online' if candidate.is_online else 'offline'} "
                f"(v{candidate.version}, quality={candidate.quality})"
            )
        else:
            logger.debug(f"[StateReconciler] State v{candidate.version}: {sorted(_diff(current, candidate))}")

        event = StateChangeEvent(
            new_state=candidate.copy(),
            old_state=current.copy(),
            version=candidate.version,
            changes=_diff(current, candidate),
        )
        self._broadcaster.publish(event)
        return ProposalOutcome.APPLIED

    def _merge(self, base: NetworkState, changes: Dict[str, Any]) -> NetworkState:
        state = base.copy()
        for key, value in changes.items():
            if key == "diagnostics":
                for name, item in _as_dict(value).items():
                    setattr(state.diagnostics, name, item)
            elif key in STATE_FIELDS and key not in RESERVED_FIELDS:
                setattr(state, key, copy.deepcopy(value))
            else:
                logger.warning(f"[StateReconciler] Ignoring unknown state field: {key}")

        # Offline always reads as offline quality; an online verdict without a tier starts at poor
        if not state.is_online:
            state.quality = NetworkQuality.OFFLINE
        elif state.quality == NetworkQuality.OFFLINE:
            state.quality = NetworkQuality.POOR

        state.version = base.version + 1
        return state

    def _verify_version(self, candidate: NetworkState, expected: int) -> None:
        if candidate.version != expected + 1:
            raise StateCorruption(expected + 1, candidate.version)
        with self._state_lock:
            live = self._state.version
        if live != expected:
            raise StateCorruption(expected, live)
