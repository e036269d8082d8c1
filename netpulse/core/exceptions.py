"""Exception taxonomy for netpulse.

Signal-layer errors (probes, DNS, subprocesses) are raised internally and
converted to ``success=False`` result values at the component boundary.
``StateCorruption`` is only ever raised and handled inside the reconciler.
"""
from typing import Optional

from netpulse.core.types import ProbeErrorCode


class NetPulseError(Exception):
    """Base class for all netpulse errors."""


class ProbeError(NetPulseError):
    """A single endpoint probe failed."""

    error_code = ProbeErrorCode.UNKNOWN

    def __init__(self, message: str, endpoint_id: Optional[str] = None):
        super().__init__(message)
        self.endpoint_id = endpoint_id


class ProbeTimeout(ProbeError):
    error_code = ProbeErrorCode.TIMEOUT


class ProbeRefused(ProbeError):
    error_code = ProbeErrorCode.REFUSED


class ProbeAmbiguous(ProbeError):
    """Address not available: usually VPN routing, not a dead link."""

    error_code = ProbeErrorCode.ADDRESS_NOT_AVAILABLE


class ProbeUnreachable(ProbeError):
    error_code = ProbeErrorCode.UNREACHABLE


class ProbeDnsFailure(ProbeError):
    error_code = ProbeErrorCode.DNS_FAILURE


class DnsStrategyExhausted(NetPulseError):
    """Every DNS strategy in the chain failed for a host."""

    def __init__(self, host: str, attempts: Optional[dict] = None):
        self.host = host
        self.attempts = attempts or {}
        detail = "; ".join(f"{name}: {err}" for name, err in self.attempts.items())
        super().__init__(f"All DNS strategies failed for {host}" + (f" ({detail})" if detail else ""))


class SubprocessFailure(NetPulseError):
    """A lookup command was missing, crashed, timed out or exited non-zero."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        returncode: Optional[int] = None,
        output: str = "",
    ):
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.output = output


class StateCorruption(NetPulseError):
    """State version did not advance by exactly one during an apply."""

    def __init__(self, expected_version: int, observed_version: int):
        self.expected_version = expected_version
        self.observed_version = observed_version
        super().__init__(
            f"State version mismatch: expected {expected_version}, observed {observed_version}"
        )
