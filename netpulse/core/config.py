"""Engine configuration for netpulse."""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from loguru import logger

from netpulse.core import constants


@dataclass(frozen=True)
class EndpointConfig:
    """A single reachability target: either ``url`` or ``host``/``port``."""

    name: str
    host: Optional[str] = None
    port: Optional[int] = None
    url: Optional[str] = None
    timeout: float = constants.ENDPOINT_TIMEOUT
    weight: float = 1.0

    def __post_init__(self):
        if not self.url and not (self.host and self.port):
            raise ValueError(f"Endpoint '{self.name}' needs either url or host and port")
        if self.weight <= 0:
            raise ValueError(f"Endpoint '{self.name}' weight must be positive")
        if self.timeout <= 0:
            raise ValueError(f"Endpoint '{self.name}' timeout must be positive")

    @property
    def endpoint_id(self) -> str:
        return self.name

    @property
    def target(self) -> str:
        return self.url or f"{self.host}:{self.port}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EndpointConfig":
        return cls(
            name=data.get("name") or data.get("url") or f"{data.get('host')}:{data.get('port')}",
            host=data.get("host"),
            port=int(data["port"]) if data.get("port") is not None else None,
            url=data.get("url"),
            timeout=float(data.get("timeout", constants.ENDPOINT_TIMEOUT)),
            weight=float(data.get("weight", 1.0)),
        )


def _endpoints(raw: List[Dict[str, Any]]) -> List[EndpointConfig]:
    return [EndpointConfig.from_dict(item) for item in raw]


@dataclass
class EngineConfig:
    """All tunables of the reachability engine."""

    interface_poll_interval: float = constants.INTERFACE_POLL_INTERVAL
    quick_check_interval: float = constants.QUICK_CHECK_INTERVAL
    comprehensive_check_interval: float = constants.COMPREHENSIVE_CHECK_INTERVAL
    quick_check_skip_window: float = constants.QUICK_CHECK_SKIP_WINDOW
    network_change_debounce: float = constants.NETWORK_CHANGE_DEBOUNCE
    stability_threshold: float = constants.STABILITY_THRESHOLD
    stable_multiplier: float = constants.STABLE_MULTIPLIER

    init_grace_period: float = constants.INIT_GRACE_PERIOD
    hysteresis_delay: float = constants.HYSTERESIS_DELAY
    required_consecutive_checks: int = constants.REQUIRED_CONSECUTIVE_CHECKS
    debounce_delay: float = constants.DEBOUNCE_DELAY
    flip_flop_window: float = constants.FLIP_FLOP_WINDOW

    vpn_startup_grace: float = constants.VPN_STARTUP_GRACE

    probe_grace: float = constants.PROBE_GRACE
    dns_timeout: float = constants.DNS_TIMEOUT
    subprocess_timeout: float = constants.SUBPROCESS_TIMEOUT
    force_check_timeout: float = constants.FORCE_CHECK_TIMEOUT
    probe_workers: int = constants.PROBE_WORKERS

    dns_test_hosts: List[str] = field(default_factory=lambda: list(constants.DNS_TEST_HOSTS))
    nslookup_server: str = constants.NSLOOKUP_SERVER
    platform_events: bool = constants.PLATFORM_EVENTS

    endpoints: List[EndpointConfig] = field(default_factory=lambda: _endpoints(constants.DEFAULT_ENDPOINTS))
    quick_endpoints: List[EndpointConfig] = field(default_factory=lambda: _endpoints(constants.QUICK_ENDPOINTS))

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ValueError on settings the engine cannot run with."""
        for name in (
            "interface_poll_interval",
            "quick_check_interval",
            "comprehensive_check_interval",
            "dns_timeout",
            "subprocess_timeout",
            "force_check_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        for name in ("init_grace_period", "hysteresis_delay", "debounce_delay", "vpn_startup_grace", "probe_grace"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.required_consecutive_checks < 1:
            raise ValueError("required_consecutive_checks must be at least 1")
        if self.stable_multiplier < 1:
            raise ValueError("stable_multiplier must be at least 1")
        if self.probe_workers < 1:
            raise ValueError("probe_workers must be at least 1")
        if not self.quick_endpoints:
            raise ValueError("At least one quick endpoint is required")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Build a config from a plain mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            if key not in known:
                logger.warning(f"[EngineConfig] Ignoring unknown setting: {key}")
                continue
            if key in ("endpoints", "quick_endpoints"):
                value = _endpoints(value or [])
            kwargs[key] = value
        return cls(**kwargs)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "EngineConfig":
        """Load overrides from a YAML or JSON file."""
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        logger.info(f"[EngineConfig] Loaded settings from {path}")
        return cls.from_dict(data)
